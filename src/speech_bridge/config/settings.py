from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

PORT_ENV = "PORT"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ProviderName(str, Enum):
    AZURE = "azure"
    DEEPGRAM = "deepgram"


@dataclass(slots=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 3000
    max_message_bytes: int = 1024 * 1024
    ping_interval_s: float = 20.0

    def validate(self) -> None:
        if not self.host:
            raise ValueError("host must be non-empty")
        if not (0 <= self.port <= 65535):
            raise ValueError("port must be in 0..65535")
        if self.max_message_bytes <= 0:
            raise ValueError("max_message_bytes must be > 0")
        if self.ping_interval_s <= 0:
            raise ValueError("ping_interval_s must be > 0")


@dataclass(slots=True)
class ProviderSettings:
    name: ProviderName = ProviderName.AZURE

    def validate(self) -> None:
        if not isinstance(self.name, ProviderName):
            raise ValueError("invalid provider")


@dataclass(slots=True)
class SessionSettings:
    stop_timeout_s: float = 5.0

    def validate(self) -> None:
        if self.stop_timeout_s <= 0:
            raise ValueError("stop_timeout_s must be > 0")


@dataclass(slots=True)
class AzureSpeechSettings:
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

    def validate(self) -> None:
        if self.segmentation_silence_timeout_ms <= 0:
            raise ValueError("segmentation_silence_timeout_ms must be > 0")
        if self.initial_silence_timeout_ms <= 0:
            raise ValueError("initial_silence_timeout_ms must be > 0")
        if self.end_silence_timeout_ms <= 0:
            raise ValueError("end_silence_timeout_ms must be > 0")
        if self.stable_partial_threshold < 0:
            raise ValueError("stable_partial_threshold must be >= 0")


@dataclass(slots=True)
class DeepgramSettings:
    model: str = "nova-3"
    endpoint: str = "wss://api.deepgram.com/v1/listen"
    interim_results: bool = True

    def validate(self) -> None:
        if not self.model:
            raise ValueError("model must be non-empty")
        if not self.endpoint.startswith(("ws://", "wss://")):
            raise ValueError("endpoint must be a ws:// or wss:// URL")


@dataclass(slots=True)
class LoggingSettings:
    level: str = "INFO"
    file_path: str = ""
    max_bytes: int = 1024 * 1024
    backup_count: int = 0

    def validate(self) -> None:
        if self.level.upper() not in _LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(_LOG_LEVELS)}")
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        if self.backup_count < 0:
            raise ValueError("backup_count must be >= 0")

    @property
    def level_no(self) -> int:
        return logging.getLevelName(self.level.upper())


@dataclass(slots=True)
class AppSettings:
    server: ServerSettings = field(default_factory=ServerSettings)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    azure: AzureSpeechSettings = field(default_factory=AzureSpeechSettings)
    deepgram: DeepgramSettings = field(default_factory=DeepgramSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def validate(self) -> None:
        self.server.validate()
        self.provider.validate()
        self.session.validate()
        self.azure.validate()
        self.deepgram.validate()
        self.logging.validate()


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return {
        "server": {
            "host": settings.server.host,
            "port": settings.server.port,
            "max_message_bytes": settings.server.max_message_bytes,
            "ping_interval_s": settings.server.ping_interval_s,
        },
        "provider": {"name": settings.provider.name.value},
        "session": {
            "stop_timeout_s": settings.session.stop_timeout_s,
        },
        "azure": {
            "segmentation_silence_timeout_ms": settings.azure.segmentation_silence_timeout_ms,
            "initial_silence_timeout_ms": settings.azure.initial_silence_timeout_ms,
            "end_silence_timeout_ms": settings.azure.end_silence_timeout_ms,
            "word_level_timestamps": settings.azure.word_level_timestamps,
            "sentence_boundary": settings.azure.sentence_boundary,
            "custom_segmentation": settings.azure.custom_segmentation,
            "stable_partial_threshold": settings.azure.stable_partial_threshold,
            "raw_profanity": settings.azure.raw_profanity,
            "dictation": settings.azure.dictation,
            "conversation_transcriber": settings.azure.conversation_transcriber,
            "audio_logging": settings.azure.audio_logging,
        },
        "deepgram": {
            "model": settings.deepgram.model,
            "endpoint": settings.deepgram.endpoint,
            "interim_results": settings.deepgram.interim_results,
        },
        "logging": {
            "level": settings.logging.level,
            "file_path": settings.logging.file_path,
            "max_bytes": settings.logging.max_bytes,
            "backup_count": settings.logging.backup_count,
        },
    }


def from_dict(data: dict[str, Any]) -> AppSettings:
    server = _section(data, "server")
    provider = _section(data, "provider")
    session = _section(data, "session")
    azure = _section(data, "azure")
    deepgram = _section(data, "deepgram")
    log = _section(data, "logging")

    try:
        settings = AppSettings(
            server=ServerSettings(
                host=str(server.get("host", "0.0.0.0")),
                port=int(server.get("port", 3000)),
                max_message_bytes=int(server.get("max_message_bytes", 1024 * 1024)),
                ping_interval_s=float(server.get("ping_interval_s", 20.0)),
            ),
            provider=ProviderSettings(
                name=ProviderName(provider.get("name", ProviderName.AZURE.value)),
            ),
            session=SessionSettings(
                stop_timeout_s=float(session.get("stop_timeout_s", 5.0)),
            ),
            azure=AzureSpeechSettings(
                segmentation_silence_timeout_ms=int(azure.get("segmentation_silence_timeout_ms", 100)),
                initial_silence_timeout_ms=int(azure.get("initial_silence_timeout_ms", 3000)),
                end_silence_timeout_ms=int(azure.get("end_silence_timeout_ms", 100)),
                word_level_timestamps=bool(azure.get("word_level_timestamps", True)),
                sentence_boundary=bool(azure.get("sentence_boundary", True)),
                custom_segmentation=bool(azure.get("custom_segmentation", True)),
                stable_partial_threshold=int(azure.get("stable_partial_threshold", 1)),
                raw_profanity=bool(azure.get("raw_profanity", True)),
                dictation=bool(azure.get("dictation", False)),
                conversation_transcriber=bool(azure.get("conversation_transcriber", False)),
                audio_logging=bool(azure.get("audio_logging", True)),
            ),
            deepgram=DeepgramSettings(
                model=str(deepgram.get("model", "nova-3")),
                endpoint=str(deepgram.get("endpoint", "wss://api.deepgram.com/v1/listen")),
                interim_results=bool(deepgram.get("interim_results", True)),
            ),
            logging=LoggingSettings(
                level=str(log.get("level", "INFO")),
                file_path=str(log.get("file_path", "") or ""),
                max_bytes=int(log.get("max_bytes", 1024 * 1024)),
                backup_count=int(log.get("backup_count", 0)),
            ),
        )
    except TypeError as exc:
        # e.g. int(None) for a field written as null
        raise ValueError(f"invalid settings value: {exc}") from exc
    settings.validate()
    return settings


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"settings section '{name}' must be a JSON object")
    return section


def apply_env_overrides(settings: AppSettings, environ: Mapping[str, str] | None = None) -> AppSettings:
    environ = os.environ if environ is None else environ
    port = environ.get(PORT_ENV)
    if not port:
        return settings
    try:
        port_value = int(port)
    except ValueError as exc:
        raise ValueError(f"{PORT_ENV} must be an integer, got {port!r}") from exc
    settings = replace(settings, server=replace(settings.server, port=port_value))
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("settings file must contain a JSON object")
    return from_dict(raw)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
