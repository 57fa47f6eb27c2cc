"""
Mock implementations for testing.

These classes implement the abstract interfaces with in-memory behavior
suitable for unit testing without hardware.
"""

from typing import Any, Callable, Optional, List, Dict
from datetime import datetime, timedelta
from collections import deque

from .errors import DeviceNotFoundError, SerialIOError
from .line_parser import DomainEvent, format_line
from .interfaces import (
    SerialPortInterface, FileSystemInterface, ClockInterface, LoggerInterface,
    EventPublisherInterface, PowerActionInterface, DeviceResolverInterface,
    PortInfo,
)


class MockSerialPort(SerialPortInterface):
    """
    Mock serial port for testing.

    Provides a queue-based simulation of serial communication.
    Test code can inject data with inject_line() and simulate failures
    with set_disconnect_after() or set_read_error().
    """

    def __init__(self):
        self._is_open = False
        self._port = ""
        self._baud = 0
        self._rx_buffer: deque = deque()
        self._disconnect_after: Optional[int] = None
        self._read_count = 0
        self._fail_on_open = False
        self._read_error: Optional[str] = None
        self._available_ports: List[PortInfo] = []
        self.open_calls: List[str] = []

    @property
    def port(self) -> str:
        return self._port

    @property
    def baud(self) -> int:
        return self._baud

    def open(self, port: str, baud: int, timeout: float = 1.0) -> bool:
        self.open_calls.append(port)
        if self._fail_on_open:
            return False
        self._port = port
        self._baud = baud
        self._is_open = True
        return True

    def close(self) -> None:
        self._is_open = False

    def is_open(self) -> bool:
        return self._is_open

    def read_line(self) -> Optional[bytes]:
        if not self._is_open:
            return None

        if self._read_error:
            error, self._read_error = self._read_error, None
            self._is_open = False
            raise SerialIOError(error)

        self._read_count += 1

        # Simulate disconnect after N reads
        if self._disconnect_after and self._read_count >= self._disconnect_after:
            self._is_open = False
            self._disconnect_after = None
            return None

        if self._rx_buffer:
            return self._rx_buffer.popleft()
        return None

    def list_ports(self) -> List[PortInfo]:
        return list(self._available_ports)

    # Test helper methods

    def inject_line(self, line: str) -> None:
        """Inject a line into the receive buffer (for testing)."""
        self._rx_buffer.append((line + "\n").encode())

    def inject_event(self, event: DomainEvent) -> None:
        """Inject an event in the device's wire format."""
        self.inject_line(format_line(event))

    def inject_bytes(self, data: bytes) -> None:
        """Inject raw bytes into the receive buffer."""
        self._rx_buffer.append(data)

    def pending_lines(self) -> int:
        return len(self._rx_buffer)

    def set_disconnect_after(self, reads: int) -> None:
        """Simulate disconnect after N read operations."""
        self._disconnect_after = reads
        self._read_count = 0

    def set_read_error(self, message: str) -> None:
        """Make the next read_line() raise SerialIOError."""
        self._read_error = message

    def set_fail_on_open(self, fail: bool) -> None:
        """Make open() fail (for testing error handling)."""
        self._fail_on_open = fail

    def set_available_ports(self, ports: List[PortInfo]) -> None:
        """Set the list returned by list_ports()."""
        self._available_ports = ports


class MockFileSystem(FileSystemInterface):
    """
    In-memory file system for testing.

    All file operations are performed in memory without touching disk.
    """

    def __init__(self):
        self._files: Dict[str, str] = {}
        self._dirs: set = set()

    def read_file(self, path: str) -> str:
        if path not in self._files:
            raise FileNotFoundError(f"No such file: {path}")
        return self._files[path]

    def write_file(self, path: str, content: str, append: bool = False) -> None:
        if append and path in self._files:
            self._files[path] += content
        else:
            self._files[path] = content

    def ensure_dir(self, path: str) -> None:
        self._dirs.add(path)


class MockClock(ClockInterface):
    """
    Controllable clock for testing.

    Time can be advanced manually for deterministic testing of
    time-dependent behavior.
    """

    def __init__(self, start_time: Optional[datetime] = None):
        self._current_time = start_time or datetime(2025, 1, 1, 0, 0, 0)
        self._monotonic = 0.0
        self._sleep_calls: List[float] = []

    def now(self) -> datetime:
        return self._current_time

    def timestamp(self) -> float:
        return self._current_time.timestamp()

    def monotonic(self) -> float:
        return self._monotonic

    def sleep(self, seconds: float) -> None:
        self._sleep_calls.append(seconds)
        # Don't actually sleep, just record the call

    # Test helper methods

    def advance(self, seconds: float) -> None:
        """Advance time by specified seconds."""
        self._current_time += timedelta(seconds=seconds)
        self._monotonic += seconds

    def set_now(self, when: datetime) -> None:
        """Step the wall clock only, as an NTP correction would."""
        self._current_time = when

    def get_sleep_calls(self) -> List[float]:
        """Get list of all sleep() calls made."""
        return self._sleep_calls.copy()


class MockLogger(LoggerInterface):
    """
    Logger that captures all messages for testing.
    """

    def __init__(self):
        self._messages: List[tuple] = []

    def debug(self, msg: str) -> None:
        self._messages.append(("DEBUG", msg))

    def info(self, msg: str) -> None:
        self._messages.append(("INFO", msg))

    def warning(self, msg: str) -> None:
        self._messages.append(("WARNING", msg))

    def error(self, msg: str) -> None:
        self._messages.append(("ERROR", msg))

    # Test helper methods

    def get_messages(self, level: Optional[str] = None) -> List[tuple]:
        """Get logged messages, optionally filtered by level."""
        if level:
            return [(l, m) for l, m in self._messages if l == level]
        return self._messages.copy()

    def clear(self) -> None:
        """Clear all logged messages."""
        self._messages.clear()

    def contains(self, substring: str, level: Optional[str] = None) -> bool:
        """Check if any message contains substring."""
        messages = self.get_messages(level)
        return any(substring in m for _, m in messages)


class MockPublisher(EventPublisherInterface):
    """Records published events in memory."""

    def __init__(self):
        self.events: List[tuple] = []
        self._fail = False

    def publish(self, event_kind: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if self._fail:
            raise OSError("publish sink unavailable")
        self.events.append((event_kind, payload or {}))

    def set_fail(self, fail: bool) -> None:
        """Make publish() raise OSError."""
        self._fail = fail


class MockPowerAction(PowerActionInterface):
    """
    Records display actions.

    With auto_complete=True each call reports ``succeed`` immediately.
    Otherwise callbacks are held until complete() is called, which lets
    tests interleave events with in-flight actions.
    """

    def __init__(self, auto_complete: bool = True, succeed: bool = True):
        self.calls: List[bool] = []
        self._auto_complete = auto_complete
        self._succeed = succeed
        self._pending: deque = deque()

    def set_display(self, on: bool, callback: Optional[Callable[[bool], None]] = None) -> None:
        self.calls.append(on)
        if self._auto_complete:
            if callback:
                callback(self._succeed)
        else:
            self._pending.append(callback)

    def join(self, timeout: Optional[float] = None) -> bool:
        return not self._pending

    # Test helper methods

    def complete(self, success: bool = True) -> None:
        """Finish the oldest pending action."""
        callback = self._pending.popleft()
        if callback:
            callback(success)

    def set_succeed(self, succeed: bool) -> None:
        self._succeed = succeed

    @property
    def on_calls(self) -> int:
        return sum(1 for c in self.calls if c)

    @property
    def off_calls(self) -> int:
        return sum(1 for c in self.calls if not c)


class MockDeviceResolver(DeviceResolverInterface):
    """Returns queued paths; None in the queue means "not found"."""

    def __init__(self, default: Optional[str] = "/dev/ttyUSB0"):
        self._default = default
        self._queue: deque = deque()
        self.resolve_calls = 0

    def resolve(self) -> str:
        self.resolve_calls += 1
        path = self._queue.popleft() if self._queue else self._default
        if path is None:
            raise DeviceNotFoundError("no device found")
        return path

    def queue(self, *paths: Optional[str]) -> None:
        """Queue results for the next resolve() calls."""
        self._queue.extend(paths)

    def set_default(self, path: Optional[str]) -> None:
        self._default = path
