from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

from speech_bridge.domain.events import OutboundEvent

# Clients stream 16 kHz, 16-bit, mono PCM; nothing on the wire says otherwise.
WIRE_SAMPLE_RATE_HZ = 16000

# Called from whatever thread the engine delivers results on.
EventCallback = Callable[[OutboundEvent], None]


class ConfigurationError(Exception):
    """Credentials are missing or were rejected by the engine."""


@dataclass(frozen=True, slots=True)
class ProviderCredentials:
    key: str
    region: str


@dataclass(frozen=True, slots=True)
class RecognitionOptions:
    sample_rate_hz: int = WIRE_SAMPLE_RATE_HZ
    bits_per_sample: int = 16
    channels: int = 1

    def validate(self) -> None:
        if self.sample_rate_hz != WIRE_SAMPLE_RATE_HZ:
            raise ValueError(f"sample_rate_hz must be {WIRE_SAMPLE_RATE_HZ}")
        if self.bits_per_sample != 16:
            raise ValueError("bits_per_sample must be 16")
        if self.channels != 1:
            raise ValueError("channels must be 1 (mono)")


class AudioSink(Protocol):
    async def write(self, pcm16le: bytes) -> None: ...
    async def close(self) -> None: ...


class RecognitionHandle(Protocol):
    async def open_audio_sink(self) -> AudioSink: ...
    async def start(self, on_event: EventCallback) -> None: ...
    async def stop(self) -> None: ...
    async def close(self) -> None: ...


class RecognitionProvider(Protocol):
    async def configure(
        self,
        credentials: ProviderCredentials,
        language_tag: str,
        options: RecognitionOptions,
    ) -> RecognitionHandle: ...
