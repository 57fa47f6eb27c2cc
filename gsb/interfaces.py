"""
Interfaces for the Gesture Sensor Bridge daemon.

Every collaborator of the session manager and the power controller sits
behind one of these ABCs. Production code wires in the classes from
implementations.py and power_action.py; tests wire in mocks.py, so the
reconnect and debounce logic runs without a board or a display.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Callable, Any, Dict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SessionState(Enum):
    """Serial session lifecycle."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class PowerState(Enum):
    """Last confirmed display power state."""
    ON = "on"
    OFF = "off"


@dataclass
class PortInfo:
    """One enumerated serial port, as reported by the OS."""
    device: str
    description: str
    hwid: str


class SerialPortInterface(ABC):
    """
    Byte link to the sensor board.

    A handle is used for one connection only; the session manager asks
    its port factory for a fresh one on every attempt.
    """

    @abstractmethod
    def open(self, port: str, baud: int, timeout: float = 1.0) -> bool:
        """Connect to the device path. False if it cannot be opened."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Safe to call twice."""

    @abstractmethod
    def is_open(self) -> bool:
        """False once the link is closed or the board was unplugged."""

    @abstractmethod
    def read_line(self) -> Optional[bytes]:
        """Next complete line including its terminator, or None if none is ready.

        Raises SerialIOError if the connection failed.
        """

    @abstractmethod
    def list_ports(self) -> List[PortInfo]:
        """Serial ports currently present on the machine."""


class FileSystemInterface(ABC):
    """Where status.json and events.jsonl live."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Whole file as text."""

    @abstractmethod
    def write_file(self, path: str, content: str, append: bool = False) -> None:
        """Replace (or append to) a file, creating parent directories."""

    @abstractmethod
    def ensure_dir(self, path: str) -> None:
        """mkdir -p."""


class ClockInterface(ABC):
    """
    Time source for timers, timestamps and idle sleeps.

    MockClock only moves when a test calls advance().
    """

    @abstractmethod
    def now(self) -> datetime:
        """Local time, used for record timestamps."""

    @abstractmethod
    def timestamp(self) -> float:
        """Wall-clock seconds since the epoch. Can jump when NTP steps the clock."""

    @abstractmethod
    def monotonic(self) -> float:
        """Seconds from an arbitrary origin that never goes backwards; timer deadlines use this."""

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Block the main loop while idle."""


class LoggerInterface(ABC):
    """Diagnostics sink for the daemon components."""

    @abstractmethod
    def debug(self, msg: str) -> None:
        ...

    @abstractmethod
    def info(self, msg: str) -> None:
        ...

    @abstractmethod
    def warning(self, msg: str) -> None:
        ...

    @abstractmethod
    def error(self, msg: str) -> None:
        ...


class EventPublisherInterface(ABC):
    """
    Broadcast sink for parsed device events.

    Fire-and-forget: no acknowledgement, the caller never waits on subscribers.
    """

    @abstractmethod
    def publish(self, event_kind: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Publish one event. May raise OSError if the sink is unavailable."""


class PowerActionInterface(ABC):
    """
    Performs the external "turn display on/off" action.

    The action is asynchronous and idempotent. Completion is reported by
    calling ``callback(success)``, possibly from another thread.
    """

    @abstractmethod
    def set_display(self, on: bool, callback: Optional[Callable[[bool], None]] = None) -> None:
        """Start turning the display on or off."""

    @abstractmethod
    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight actions. Returns True if none are left running."""


class DeviceResolverInterface(ABC):
    """
    Resolves which device path to open.

    Called at session start and on every reconnect attempt, since the path
    may change across reconnects (e.g. a different USB node).
    """

    @abstractmethod
    def resolve(self) -> str:
        """Return the device path. Raises DeviceNotFoundError if none found."""
