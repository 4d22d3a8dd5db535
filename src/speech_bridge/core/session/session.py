from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from uuid import uuid4

from speech_bridge.core.protocol.codec import classify_message
from speech_bridge.core.recognition.provider import (
    AudioSink,
    ConfigurationError,
    ProviderCredentials,
    RecognitionHandle,
    RecognitionOptions,
    RecognitionProvider,
)
from speech_bridge.core.session.relay import EventRelay
from speech_bridge.domain.events import (
    TERMINAL_PROVIDER_EVENTS,
    ErrorEvent,
    FinalEvent,
    OutboundEvent,
    PartialEvent,
    SessionState,
    SessionStoppedEvent,
    StartedEvent,
)
from speech_bridge.domain.models import (
    AudioFrame,
    ConfigCommand,
    RecognitionConfig,
    StopCommand,
)

logger = logging.getLogger(__name__)

CREDENTIALS_REQUIRED_MESSAGE = "Credential key and region are required"
ALREADY_CONFIGURED_MESSAGE = "Session is already configured"

_AUDIO_STATES = (SessionState.CONFIGURED, SessionState.RECOGNIZING)


@dataclass(slots=True)
class RelaySession:
    """Recognition session bound to a single client connection.

    Inbound messages are handled one at a time by the connection task. Provider events may
    arrive on any thread; they pass through `_on_provider_event` into the relay, and terminal
    ones are handed back to the event loop to drive the shutdown path.
    """

    provider: RecognitionProvider
    relay: EventRelay
    options: RecognitionOptions = field(default_factory=RecognitionOptions)
    stop_timeout_s: float = 5.0
    session_id: str = field(default_factory=lambda: uuid4().hex[:8])

    _state: SessionState = field(init=False, default=SessionState.IDLE)
    _config: RecognitionConfig | None = field(init=False, default=None)
    _handle: RecognitionHandle | None = field(init=False, default=None, repr=False)
    _sink: AudioSink | None = field(init=False, default=None, repr=False)
    _loop: asyncio.AbstractEventLoop | None = field(init=False, default=None, repr=False)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock, repr=False)
    _closed: asyncio.Event = field(init=False, default_factory=asyncio.Event, repr=False)
    _provider_done: asyncio.Event = field(init=False, default_factory=asyncio.Event, repr=False)
    _shutting_down: bool = field(init=False, default=False)
    _shutdown_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)

    # Guarded by _gate; touched from provider threads.
    _gate: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)
    _held: list[OutboundEvent] | None = field(init=False, default=None, repr=False)
    _results_open: bool = field(init=False, default=False)
    _provider_muted: bool = field(init=False, default=False)

    _frames_forwarded: int = field(init=False, default=0)
    _frames_dropped: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.stop_timeout_s <= 0:
            raise ValueError("stop_timeout_s must be > 0")
        self.options.validate()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> RecognitionConfig | None:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def frames_forwarded(self) -> int:
        return self._frames_forwarded

    @property
    def frames_dropped(self) -> int:
        return self._frames_dropped

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def handle_message(self, message: str | bytes) -> None:
        if self._state == SessionState.CLOSED:
            return

        msg = classify_message(message)
        if isinstance(msg, AudioFrame):
            await self.write_audio(msg)
        elif isinstance(msg, ConfigCommand):
            logger.info(
                "[Session %s] Config command: region=%s, language=%s",
                self.session_id,
                msg.region,
                msg.language,
            )
            await self.configure(msg)
        elif isinstance(msg, StopCommand):
            logger.info("[Session %s] Stop command received", self.session_id)
            await self.stop()

    async def configure(self, command: ConfigCommand) -> None:
        start_failed = False
        async with self._lock:
            if self._state != SessionState.IDLE:
                if self._state in _AUDIO_STATES:
                    self.relay.publish(ErrorEvent(ALREADY_CONFIGURED_MESSAGE))
                return

            try:
                config = command.to_config()
            except ValueError:
                logger.warning("[Session %s] Rejected config without key/region", self.session_id)
                self.relay.publish(ErrorEvent(CREDENTIALS_REQUIRED_MESSAGE))
                return

            try:
                handle = await self.provider.configure(
                    ProviderCredentials(key=config.credential_key, region=config.region),
                    config.language,
                    self.options,
                )
            except ConfigurationError as exc:
                logger.warning("[Session %s] Provider rejected configuration: %s", self.session_id, exc)
                self.relay.publish(ErrorEvent(str(exc) or CREDENTIALS_REQUIRED_MESSAGE))
                return
            except Exception as exc:
                logger.exception("[Session %s] Provider configuration failed", self.session_id)
                self.relay.publish(ErrorEvent(f"Failed to configure recognition: {exc}"))
                return

            self._config = config
            self._handle = handle
            self._loop = asyncio.get_running_loop()
            with self._gate:
                self._held = []
                self._results_open = True
            self._set_state(SessionState.CONFIGURED)
            logger.info(
                "[Session %s] Initializing recognition: region=%s, language=%s",
                self.session_id,
                config.region,
                config.language,
            )

            try:
                self._sink = await handle.open_audio_sink()
                await handle.start(self._on_provider_event)
            except Exception as exc:
                logger.error("[Session %s] Error starting recognition: %s", self.session_id, exc)
                with self._gate:
                    self._held = None
                    self._results_open = False
                self.relay.publish(ErrorEvent(str(exc) or type(exc).__name__))
                start_failed = True
            else:
                with self._gate:
                    self.relay.publish(StartedEvent())
                    for event in self._held or ():
                        self.relay.publish(event)
                    self._held = None
                self._set_state(SessionState.RECOGNIZING)
                logger.info("[Session %s] Recognition started", self.session_id)

        if start_failed:
            await self._shutdown(errored=True)

    async def write_audio(self, frame: AudioFrame) -> None:
        async with self._lock:
            sink = self._sink
            if sink is None or self._state not in _AUDIO_STATES:
                self._frames_dropped += 1
                return
            try:
                await sink.write(frame.data)
            except Exception as exc:
                logger.warning("[Session %s] Failed to write audio frame: %s", self.session_id, exc)
                return
            self._frames_forwarded += 1

    async def stop(self) -> None:
        if self._state == SessionState.IDLE:
            logger.info("[Session %s] Stop ignored, session not configured", self.session_id)
            return
        await self._shutdown(errored=False)

    async def close(self) -> None:
        """Release everything the session owns; safe to call on every exit path."""
        await self._shutdown(errored=False)
        if self._shutdown_task is not None:
            await asyncio.gather(self._shutdown_task, return_exceptions=True)

    def _on_provider_event(self, event: OutboundEvent) -> None:
        with self._gate:
            if self._provider_muted:
                return
            if isinstance(event, (PartialEvent, FinalEvent)) and not self._results_open:
                logger.debug("[Session %s] Dropping %s after stop", self.session_id, event.type.value)
                return
            if self._held is not None:
                self._held.append(event)
            else:
                self.relay.publish(event)

        if isinstance(event, TERMINAL_PROVIDER_EVENTS) and self._loop is not None:
            self._loop.call_soon_threadsafe(self._on_provider_terminal, event)

    def _on_provider_terminal(self, event: OutboundEvent) -> None:
        self._provider_done.set()
        if self._state not in _AUDIO_STATES or self._shutdown_task is not None:
            return
        if isinstance(event, SessionStoppedEvent):
            logger.info("[Session %s] Provider stopped the session", self.session_id)
            errored = False
        else:
            logger.warning("[Session %s] Provider fault: %s", self.session_id, event)
            errored = True
        self._shutdown_task = asyncio.create_task(
            self._shutdown(errored=errored), name=f"session-{self.session_id}-shutdown"
        )

    async def _shutdown(self, *, errored: bool) -> None:
        async with self._lock:
            already_running = self._shutting_down
            self._shutting_down = True
            if not already_running:
                sink, handle = self._sink, self._handle
                self._sink = None
                self._handle = None
                if handle is None:
                    self._set_state(SessionState.CLOSED)
                    self._closed.set()
                    return
                self._set_state(SessionState.ERRORED if errored else SessionState.STOPPING)
                if errored:
                    with self._gate:
                        self._results_open = False

        if already_running:
            await self._closed.wait()
            return

        try:
            await self._release(sink, handle, errored=errored)
        finally:
            self._set_state(SessionState.CLOSED)
            self._closed.set()

    async def _release(self, sink: AudioSink | None, handle: RecognitionHandle, *, errored: bool) -> None:
        if sink is not None:
            try:
                await asyncio.wait_for(sink.close(), timeout=self.stop_timeout_s)
            except Exception as exc:
                logger.warning("[Session %s] Error closing audio sink: %s", self.session_id, exc)

        if not errored and not self._provider_done.is_set():
            try:
                await asyncio.wait_for(handle.stop(), timeout=self.stop_timeout_s)
            except Exception as exc:
                logger.warning("[Session %s] Error stopping recognition: %s", self.session_id, exc)
        # Closed whether or not the provider already ended on its own while the sink closed.
        with self._gate:
            self._results_open = False

        if not errored and not self._provider_done.is_set():
            try:
                await asyncio.wait_for(self._provider_done.wait(), timeout=self.stop_timeout_s)
                logger.info("[Session %s] Recognition stopped", self.session_id)
            except asyncio.TimeoutError:
                logger.warning(
                    "[Session %s] Provider did not confirm stop within %.1fs",
                    self.session_id,
                    self.stop_timeout_s,
                )
                with self._gate:
                    self._provider_muted = True
                    self.relay.publish(SessionStoppedEvent())

        try:
            await asyncio.wait_for(handle.close(), timeout=self.stop_timeout_s)
        except Exception as exc:
            logger.warning("[Session %s] Error closing recognizer: %s", self.session_id, exc)
        with self._gate:
            self._provider_muted = True

    def _set_state(self, state: SessionState) -> None:
        if self._state == state:
            return
        old_state = self._state
        self._state = state
        logger.info("[Session %s] State: %s -> %s", self.session_id, old_state.name, state.name)
