"""Azure Cognitive Services Speech provider.

Continuous recognition over a push stream, tuned for aggressive partial results. The SDK
delivers callbacks on its own threads and exposes blocking futures, so lifecycle calls are
moved off the event loop with `asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

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
    FinalEvent,
    PartialEvent,
    SessionStoppedEvent,
)

logger = logging.getLogger(__name__)


def _speechsdk():
    try:
        import azure.cognitiveservices.speech as speechsdk  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "azure-cognitiveservices-speech is required for AzureSpeechProvider; "
            "install with `pip install azure-cognitiveservices-speech`"
        ) from exc
    return speechsdk


@dataclass(slots=True)
class AzureSpeechProvider(RecognitionProvider):
    segmentation_silence_timeout_ms: int = 100
    initial_silence_timeout_ms: int = 3000
    end_silence_timeout_ms: int = 100
    word_level_timestamps: bool = True
    sentence_boundary: bool = True
    custom_segmentation: bool = True
    stable_partial_threshold: int = 1
    raw_profanity: bool = True
    dictation: bool = False
    conversation_transcriber: bool = False
    audio_logging: bool = True

    async def configure(
        self,
        credentials: ProviderCredentials,
        language_tag: str,
        options: RecognitionOptions,
    ) -> RecognitionHandle:
        if not credentials.key or not credentials.region:
            raise ConfigurationError("Azure key and region are required")
        options.validate()

        speechsdk = _speechsdk()
        try:
            speech_config = speechsdk.SpeechConfig(subscription=credentials.key, region=credentials.region)
        except (ValueError, RuntimeError) as exc:
            raise ConfigurationError(f"Invalid Azure credentials: {exc}") from exc

        speech_config.speech_recognition_language = language_tag
        speech_config.set_property(
            speechsdk.PropertyId.Speech_SegmentationSilenceTimeoutMs,
            str(self.segmentation_silence_timeout_ms),
        )
        speech_config.set_property(
            speechsdk.PropertyId.SpeechServiceConnection_InitialSilenceTimeoutMs,
            str(self.initial_silence_timeout_ms),
        )
        speech_config.set_property(
            speechsdk.PropertyId.SpeechServiceConnection_EndSilenceTimeoutMs,
            str(self.end_silence_timeout_ms),
        )
        if self.word_level_timestamps:
            speech_config.request_word_level_timestamps()
            speech_config.set_property_by_name("SPEECH-WordLevelTimingEnabled", "true")
        if self.sentence_boundary:
            speech_config.set_property(speechsdk.PropertyId.SpeechServiceResponse_RequestSentenceBoundary, "true")
        if self.custom_segmentation:
            # Service-side knobs without a PropertyId; they push partials out sooner.
            speech_config.set_property_by_name("SPEECH-SegmentationStrategy", "Custom")
            speech_config.set_property_by_name(
                "SPEECH-SegmentationMaximumSilence", str(self.segmentation_silence_timeout_ms)
            )
        if self.stable_partial_threshold > 0:
            speech_config.set_property_by_name(
                "SPEECH-TranslationStablePartialThreshold", str(self.stable_partial_threshold)
            )
        speech_config.output_format = speechsdk.OutputFormat.Simple
        if self.raw_profanity:
            speech_config.set_profanity(speechsdk.ProfanityOption.Raw)
        if self.conversation_transcriber and self.audio_logging:
            speech_config.enable_audio_logging()
        if self.dictation:
            speech_config.enable_dictation()

        logger.info("[Azure] Configured: region=%s, language=%s", credentials.region, language_tag)
        return _AzureRecognitionHandle(
            speech_config=speech_config,
            options=options,
            conversation_transcriber=self.conversation_transcriber,
        )


@dataclass(slots=True)
class _AzurePushStreamSink(AudioSink):
    push_stream: Any
    _closed: bool = field(init=False, default=False)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    async def write(self, pcm16le: bytes) -> None:
        with self._lock:
            if self._closed:
                return
            self.push_stream.write(pcm16le)

    async def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.push_stream.close()


@dataclass(slots=True)
class _AzureRecognitionHandle(RecognitionHandle):
    speech_config: Any
    options: RecognitionOptions
    conversation_transcriber: bool = False

    _recognizer: Any = field(init=False, default=None, repr=False)
    _sink: _AzurePushStreamSink | None = field(init=False, default=None, repr=False)
    _on_event: EventCallback | None = field(init=False, default=None, repr=False)
    _started: bool = field(init=False, default=False)
    _stopped: bool = field(init=False, default=False)
    _closed: bool = field(init=False, default=False)

    async def open_audio_sink(self) -> AudioSink:
        if self._sink is not None:
            return self._sink

        speechsdk = _speechsdk()
        stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=self.options.sample_rate_hz,
            bits_per_sample=self.options.bits_per_sample,
            channels=self.options.channels,
        )
        push_stream = speechsdk.audio.PushAudioInputStream(stream_format=stream_format)
        audio_config = speechsdk.audio.AudioConfig(stream=push_stream)
        if self.conversation_transcriber:
            self._recognizer = speechsdk.transcription.ConversationTranscriber(
                speech_config=self.speech_config, audio_config=audio_config
            )
        else:
            self._recognizer = speechsdk.SpeechRecognizer(
                speech_config=self.speech_config, audio_config=audio_config
            )
        self._sink = _AzurePushStreamSink(push_stream=push_stream)
        return self._sink

    async def start(self, on_event: EventCallback) -> None:
        if self._recognizer is None:
            raise RuntimeError("open_audio_sink() must be called before start()")
        self._on_event = on_event
        self._connect_callbacks()

        recognizer = self._recognizer
        if self.conversation_transcriber:
            await asyncio.to_thread(lambda: recognizer.start_transcribing_async().get())
        else:
            await asyncio.to_thread(lambda: recognizer.start_continuous_recognition_async().get())
        self._started = True

    async def stop(self) -> None:
        if not self._started or self._stopped or self._recognizer is None:
            return
        self._stopped = True
        recognizer = self._recognizer
        if self.conversation_transcriber:
            await asyncio.to_thread(lambda: recognizer.stop_transcribing_async().get())
        else:
            await asyncio.to_thread(lambda: recognizer.stop_continuous_recognition_async().get())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.stop()
        except Exception as exc:
            logger.warning("[Azure] Error stopping recognizer during close: %s", exc)
        if self._sink is not None:
            try:
                await self._sink.close()
            except Exception as exc:
                logger.warning("[Azure] Error closing push stream: %s", exc)
        self._disconnect_callbacks()
        self._recognizer = None
        self._on_event = None

    def _connect_callbacks(self) -> None:
        recognizer = self._recognizer
        if self.conversation_transcriber:
            recognizer.transcribing.connect(self._on_partial)
            recognizer.transcribed.connect(self._on_final)
        else:
            recognizer.recognizing.connect(self._on_partial)
            recognizer.recognized.connect(self._on_final)
        recognizer.canceled.connect(self._on_canceled)
        recognizer.session_stopped.connect(self._on_session_stopped)

    def _disconnect_callbacks(self) -> None:
        recognizer = self._recognizer
        if recognizer is None or self._on_event is None:
            return
        signals = ["canceled", "session_stopped"]
        if self.conversation_transcriber:
            signals += ["transcribing", "transcribed"]
        else:
            signals += ["recognizing", "recognized"]
        for name in signals:
            try:
                getattr(recognizer, name).disconnect_all()
            except Exception as exc:
                logger.debug("[Azure] Failed to disconnect %s: %s", name, exc)

    def _emit(self, event) -> None:
        callback = self._on_event
        if callback is not None:
            callback(event)

    def _on_partial(self, evt: Any) -> None:
        text = _result_text(evt)
        if text:
            self._emit(PartialEvent(text))

    def _on_final(self, evt: Any) -> None:
        # Empty on no-match.
        text = _result_text(evt)
        if text:
            self._emit(FinalEvent(text))

    def _on_canceled(self, evt: Any) -> None:
        details = getattr(evt, "cancellation_details", None)
        reason = getattr(details, "reason", None) or getattr(evt, "reason", None)
        error_details = getattr(details, "error_details", None) or getattr(evt, "error_details", "")
        reason_name = getattr(reason, "name", None) or str(reason)
        logger.info("[Azure] Recognition canceled: %s %s", reason_name, error_details)
        self._emit(CanceledEvent(reason=reason_name, details=str(error_details or "")))

    def _on_session_stopped(self, evt: Any) -> None:
        _ = evt
        logger.info("[Azure] Session stopped")
        self._emit(SessionStoppedEvent())


def _result_text(evt: Any) -> str:
    result = getattr(evt, "result", None)
    if result is None:
        return ""
    return str(getattr(result, "text", "") or "")
