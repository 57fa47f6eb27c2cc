"""
Gesture Sensor Bridge - Sensor Daemon

Relays presence and gesture readings from a serial sensor board to
subscribers and turns the display off when nobody is around.
"""

from .interfaces import (
    SessionState,
    PowerState,
    PortInfo,
    SerialPortInterface,
    FileSystemInterface,
    ClockInterface,
    LoggerInterface,
    EventPublisherInterface,
    PowerActionInterface,
    DeviceResolverInterface,
)

from .errors import BridgeError, SerialIOError, DeviceNotFoundError, ConfigError
from .line_parser import Presence, PresenceKind, Gesture, DeviceError, Unrecognized, parse_line
from .power import DisplayPowerController
from .session import DeviceSessionManager, SessionResult

__version__ = "0.1.0"

__all__ = [
    "SessionState",
    "PowerState",
    "PortInfo",
    "SerialPortInterface",
    "FileSystemInterface",
    "ClockInterface",
    "LoggerInterface",
    "EventPublisherInterface",
    "PowerActionInterface",
    "DeviceResolverInterface",
    "BridgeError",
    "SerialIOError",
    "DeviceNotFoundError",
    "ConfigError",
    "Presence",
    "PresenceKind",
    "Gesture",
    "DeviceError",
    "Unrecognized",
    "parse_line",
    "DisplayPowerController",
    "DeviceSessionManager",
    "SessionResult",
]
