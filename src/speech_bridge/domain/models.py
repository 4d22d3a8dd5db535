from __future__ import annotations

from dataclasses import dataclass

DEFAULT_LANGUAGE = "en-US"


@dataclass(frozen=True, slots=True)
class RecognitionConfig:
    credential_key: str
    region: str
    language: str = DEFAULT_LANGUAGE

    def __post_init__(self) -> None:
        if not self.credential_key:
            raise ValueError("credential_key must be non-empty")
        if not self.region:
            raise ValueError("region must be non-empty")
        if not self.language:
            raise ValueError("language must be non-empty")


@dataclass(frozen=True, slots=True)
class ConfigCommand:
    """Raw `config` command as sent by the client; fields are validated by the session."""

    key: str | None
    region: str | None
    language: str = DEFAULT_LANGUAGE

    def to_config(self) -> RecognitionConfig:
        return RecognitionConfig(
            credential_key=self.key or "",
            region=self.region or "",
            language=self.language,
        )


@dataclass(frozen=True, slots=True)
class StopCommand:
    pass


@dataclass(frozen=True, slots=True)
class AudioFrame:
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


InboundMessage = ConfigCommand | StopCommand | AudioFrame
