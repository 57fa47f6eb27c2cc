"""
Line parser for sensor output.

Turns one line from the microcontroller into a typed event:

    Person: PRESENT      -> Presence("PRESENT")
    Gesture: LEFT        -> Gesture("LEFT")
    ERROR: sensor init   -> DeviceError("sensor init")
    anything else        -> Unrecognized(raw)

Parsing is pure; callers decide what to publish, log or drop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

PRESENCE_PREFIX = "Person: "
GESTURE_PREFIX = "Gesture: "
ERROR_PREFIX = "ERROR: "


class PresenceKind(Enum):
    """Open enumeration of presence readings."""
    PRESENT = "PRESENT"
    AWAY = "AWAY"
    OTHER = "OTHER"


@dataclass(frozen=True)
class Presence:
    """A person was (or was not) detected in front of the sensor."""
    value: str

    @property
    def kind(self) -> PresenceKind:
        if self.value == PresenceKind.PRESENT.value:
            return PresenceKind.PRESENT
        if self.value == PresenceKind.AWAY.value:
            return PresenceKind.AWAY
        return PresenceKind.OTHER


@dataclass(frozen=True)
class Gesture:
    """A hand gesture (LEFT, RIGHT, UP, DOWN, ...)."""
    kind: str


@dataclass(frozen=True)
class DeviceError:
    """Diagnostic reported by the device itself."""
    message: str


@dataclass(frozen=True)
class Unrecognized:
    """Line without a known prefix."""
    raw: str


DomainEvent = Union[Presence, Gesture, DeviceError, Unrecognized]


def decode_line(data: bytes) -> str:
    """Decode raw serial bytes and strip the line terminator."""
    return data.decode("utf-8", errors="replace").rstrip("\r\n")


def parse_line(line: str) -> DomainEvent:
    """Parse a delimiter-stripped line into a domain event."""
    line = line.rstrip("\r\n")
    if line.startswith(PRESENCE_PREFIX):
        return Presence(line[len(PRESENCE_PREFIX):].strip())
    if line.startswith(GESTURE_PREFIX):
        return Gesture(line[len(GESTURE_PREFIX):].strip())
    if line.startswith(ERROR_PREFIX):
        return DeviceError(line[len(ERROR_PREFIX):])
    return Unrecognized(line)


def format_line(event: DomainEvent) -> str:
    """Render an event in the device's wire format (without newline)."""
    if isinstance(event, Presence):
        return PRESENCE_PREFIX + event.value
    if isinstance(event, Gesture):
        return GESTURE_PREFIX + event.kind
    if isinstance(event, DeviceError):
        return ERROR_PREFIX + event.message
    return event.raw
