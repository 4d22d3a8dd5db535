"""Deepgram live transcription provider using a raw WebSocket connection.

Uses websocket-client on a worker thread; audio is handed over through a thread-safe queue
and transcripts are reported through the session's event callback.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

from speech_bridge.core.recognition.provider import (
    AudioSink,
    ConfigurationError,
    EventCallback,
    ProviderCredentials,
    RecognitionHandle,
    RecognitionOptions,
    RecognitionProvider,
)
from speech_bridge.domain.events import (
    CanceledEvent,
    ErrorEvent,
    FinalEvent,
    PartialEvent,
    SessionStoppedEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "wss://api.deepgram.com/v1/listen"

_CLOSE_STREAM = object()
_STOP = object()


@dataclass(slots=True)
class DeepgramProvider(RecognitionProvider):
    """Deepgram streaming provider; the client's `region` is accepted but unused."""

    model: str = "nova-3"
    endpoint: str = DEFAULT_ENDPOINT
    interim_results: bool = True
    connect_timeout_s: float = 5.0

    async def configure(
        self,
        credentials: ProviderCredentials,
        language_tag: str,
        options: RecognitionOptions,
    ) -> RecognitionHandle:
        if not credentials.key:
            raise ConfigurationError("Deepgram API key is required")
        options.validate()

        return _DeepgramHandle(
            api_key=credentials.key,
            url=build_listen_url(
                self.endpoint,
                model=self.model,
                language=language_tag,
                sample_rate_hz=options.sample_rate_hz,
                interim_results=self.interim_results,
            ),
            connect_timeout_s=self.connect_timeout_s,
        )


def build_listen_url(
    endpoint: str,
    *,
    model: str,
    language: str,
    sample_rate_hz: int,
    interim_results: bool,
) -> str:
    params = {
        "model": model,
        "language": language,
        "encoding": "linear16",
        "sample_rate": sample_rate_hz,
        "channels": 1,
        "interim_results": "true" if interim_results else "false",
        "punctuate": "true",
    }
    return f"{endpoint}?{urlencode(params)}"


def parse_message(message: str | bytes) -> Any:
    """Map one Deepgram server message to an event, or None when it carries nothing."""
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="ignore")
    try:
        data = json.loads(message)
    except json.JSONDecodeError:
        logger.debug("[Deepgram] Message parse error")
        return None
    if not isinstance(data, dict):
        return None

    msg_type = data.get("type", "")
    if msg_type == "Results":
        alternatives = (data.get("channel") or {}).get("alternatives") or []
        if not alternatives:
            return None
        transcript = str(alternatives[0].get("transcript", "") or "").strip()
        if not transcript:
            return None
        if data.get("is_final", False):
            return FinalEvent(transcript)
        return PartialEvent(transcript)
    if msg_type == "Error" or "err_code" in data:
        reason = str(data.get("err_code") or "Error")
        details = str(data.get("err_msg") or data.get("description") or "")
        return CanceledEvent(reason=reason, details=details)
    return None


@dataclass(slots=True)
class _DeepgramSink(AudioSink):
    audio_q: queue.Queue[bytes | object]
    _closed: bool = field(init=False, default=False)

    async def write(self, pcm16le: bytes) -> None:
        if self._closed:
            return
        self.audio_q.put_nowait(pcm16le)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.audio_q.put_nowait(_CLOSE_STREAM)


@dataclass(slots=True)
class _DeepgramHandle(RecognitionHandle):
    api_key: str
    url: str
    connect_timeout_s: float = 5.0

    _audio_q: queue.Queue[bytes | object] = field(init=False, repr=False)
    _sink: _DeepgramSink | None = field(init=False, default=None, repr=False)
    _on_event: EventCallback | None = field(init=False, default=None, repr=False)
    _ws: Any = field(init=False, default=None, repr=False)
    _ws_thread: threading.Thread | None = field(init=False, default=None, repr=False)
    _thread: threading.Thread | None = field(init=False, default=None, repr=False)
    _connected: threading.Event = field(init=False, repr=False)
    _finished: threading.Event = field(init=False, repr=False)
    _stopped: bool = field(init=False, default=False)
    _closed: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._audio_q = queue.Queue()
        self._connected = threading.Event()
        self._finished = threading.Event()

    async def open_audio_sink(self) -> AudioSink:
        if self._sink is None:
            self._sink = _DeepgramSink(audio_q=self._audio_q)
        return self._sink

    async def start(self, on_event: EventCallback) -> None:
        import websocket

        self._on_event = on_event
        self._ws = websocket.WebSocketApp(
            self.url,
            header={"Authorization": f"Token {self.api_key}"},
            on_open=self._on_open,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close,
        )
        self._ws_thread = threading.Thread(target=self._ws.run_forever, name="deepgram-ws", daemon=True)
        self._ws_thread.start()

        connected = await asyncio.to_thread(self._connected.wait, self.connect_timeout_s)
        if not connected or self._finished.is_set():
            self._on_event = None
            with contextlib.suppress(Exception):
                self._ws.close()
            raise RuntimeError("Deepgram WebSocket connection failed")

        self._thread = threading.Thread(target=self._send_loop, name="deepgram-audio", daemon=True)
        self._thread.start()
        logger.info("[Deepgram] Connected")

    def _send_loop(self) -> None:
        import websocket

        sent = 0
        while True:
            data = self._audio_q.get()
            if data is _STOP or data is _CLOSE_STREAM:
                break
            if isinstance(data, bytes) and self._ws is not None:
                try:
                    self._ws.send(data, opcode=websocket.ABNF.OPCODE_BINARY)
                    sent += 1
                except Exception as exc:
                    logger.warning("[Deepgram] Failed to send audio: %s", exc)
                    break

        logger.debug("[Deepgram] Audio loop finished after %d chunks", sent)
        # Deepgram flushes pending results and closes the socket after CloseStream.
        if self._ws is not None:
            with contextlib.suppress(Exception):
                self._ws.send(json.dumps({"type": "CloseStream"}))

    def _on_open(self, ws: Any) -> None:
        _ = ws
        self._connected.set()

    def _on_message(self, ws: Any, message: str | bytes) -> None:
        _ = ws
        event = parse_message(message)
        if event is not None:
            self._emit(event)

    def _on_error(self, ws: Any, error: Any) -> None:
        _ = ws
        logger.warning("[Deepgram] WebSocket error: %s", error)
        if self._connected.is_set() and not self._stopped:
            self._emit(ErrorEvent(f"Deepgram WebSocket error: {error}"))

    def _on_close(self, ws: Any, close_status_code: Any, close_msg: Any) -> None:
        _ = ws
        logger.info("[Deepgram] WebSocket closed: %s %s", close_status_code, close_msg)
        already_finished = self._finished.is_set()
        self._finished.set()
        if self._connected.is_set() and not already_finished:
            self._emit(SessionStoppedEvent())
        # Unblock start() when the handshake never completed.
        self._connected.set()

    def _emit(self, event: Any) -> None:
        callback = self._on_event
        if callback is not None:
            callback(event)

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._audio_q.put_nowait(_STOP)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.stop()
        if self._thread is not None:
            await asyncio.to_thread(self._thread.join, 5.0)
            self._thread = None
        if self._ws is not None:
            with contextlib.suppress(Exception):
                self._ws.close()
            self._ws = None
        if self._ws_thread is not None:
            await asyncio.to_thread(self._ws_thread.join, 5.0)
            if self._ws_thread.is_alive():
                logger.warning("[Deepgram] WebSocket thread did not exit")
            self._ws_thread = None
        self._on_event = None
