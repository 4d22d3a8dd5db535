"""Wire codec for the relay protocol.

Inbound messages are either JSON control commands or raw PCM audio. There is no framing
byte to tell them apart, so a message is probed as a command first and anything that does
not parse into a known command is handed on as audio.
"""

from __future__ import annotations

import json
from typing import Any

from speech_bridge.domain.events import (
    CanceledEvent,
    ErrorEvent,
    FinalEvent,
    OutboundEvent,
    PartialEvent,
    SessionStoppedEvent,
    StartedEvent,
)
from speech_bridge.domain.models import (
    DEFAULT_LANGUAGE,
    AudioFrame,
    ConfigCommand,
    InboundMessage,
    StopCommand,
)

_OBJECT_START = ord("{")


def classify_message(message: str | bytes) -> InboundMessage:
    """Return the command carried by `message`, or an `AudioFrame` wrapping it.

    Never raises: a failed parse is a classification result, not an error.
    """
    raw = message.encode("utf-8") if isinstance(message, str) else bytes(message)
    command = _probe_command(raw)
    if command is not None:
        return command
    return AudioFrame(raw)


def _probe_command(raw: bytes) -> ConfigCommand | StopCommand | None:
    # PCM rarely starts with 0x7B; skip decoding large frames that cannot be JSON.
    if not raw or raw[0] != _OBJECT_START:
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    cmd = data.get("cmd")
    if cmd == "config":
        return ConfigCommand(
            key=_optional_str(data.get("key")),
            region=_optional_str(data.get("region")),
            language=_optional_str(data.get("language")) or DEFAULT_LANGUAGE,
        )
    if cmd == "stop":
        return StopCommand()
    return None


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    return None


def event_to_dict(event: OutboundEvent) -> dict[str, Any]:
    if isinstance(event, StartedEvent):
        return {"type": event.type.value}
    if isinstance(event, (PartialEvent, FinalEvent)):
        return {"type": event.type.value, "text": event.text}
    if isinstance(event, CanceledEvent):
        return {"type": event.type.value, "reason": event.reason, "details": event.details}
    if isinstance(event, SessionStoppedEvent):
        return {"type": event.type.value}
    if isinstance(event, ErrorEvent):
        return {"type": event.type.value, "message": event.message}
    raise TypeError(f"Unknown OutboundEvent: {type(event)}")


def encode_event(event: OutboundEvent) -> str:
    return json.dumps(event_to_dict(event), ensure_ascii=False, separators=(",", ":"))
