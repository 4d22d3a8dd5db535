from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionState(str, Enum):
    IDLE = "IDLE"
    CONFIGURED = "CONFIGURED"
    RECOGNIZING = "RECOGNIZING"
    STOPPING = "STOPPING"
    CLOSED = "CLOSED"
    ERRORED = "ERRORED"


class OutboundEventType(str, Enum):
    STARTED = "started"
    PARTIAL = "partial"
    FINAL = "final"
    CANCELED = "canceled"
    SESSION_STOPPED = "sessionStopped"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StartedEvent:
    type: OutboundEventType = OutboundEventType.STARTED


@dataclass(frozen=True, slots=True)
class PartialEvent:
    text: str
    type: OutboundEventType = OutboundEventType.PARTIAL


@dataclass(frozen=True, slots=True)
class FinalEvent:
    text: str
    type: OutboundEventType = OutboundEventType.FINAL


@dataclass(frozen=True, slots=True)
class CanceledEvent:
    reason: str
    details: str = ""
    type: OutboundEventType = OutboundEventType.CANCELED


@dataclass(frozen=True, slots=True)
class SessionStoppedEvent:
    type: OutboundEventType = OutboundEventType.SESSION_STOPPED


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    type: OutboundEventType = OutboundEventType.ERROR


OutboundEvent = (
    StartedEvent | PartialEvent | FinalEvent | CanceledEvent | SessionStoppedEvent | ErrorEvent
)

# Events after which the provider will not produce further results.
TERMINAL_PROVIDER_EVENTS = (CanceledEvent, SessionStoppedEvent, ErrorEvent)
