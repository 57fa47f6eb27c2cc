"""
Device Session Manager.

Owns the serial connection to the sensor board:

    CONNECTING -> OPEN -> (parse loop) -> CLOSED -> CONNECTING ...

Every failure (path not resolved, open failed, read error, unplug) counts
one reconnect attempt. A successful open resets the count. Once the count
reaches max_attempts the session stops retrying and reports an exhausted
SessionResult; the daemon then turns the display off and exits.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from .errors import DeviceNotFoundError, SerialIOError
from .event_loop import EventLoop, TimerHandle
from .interfaces import (
    DeviceResolverInterface, EventPublisherInterface, LoggerInterface,
    SerialPortInterface, SessionState,
)
from .line_parser import (
    DeviceError, DomainEvent, Gesture, Presence, Unrecognized, decode_line, parse_line,
)
from .power import DisplayPowerController
from .status_manager import StatusManager

DEFAULT_BAUD = 9600
DEFAULT_MAX_ATTEMPTS = 5

EVENT_PRESENCE = "presence"
EVENT_GESTURE = "gesture"


@dataclass
class SessionResult:
    """Terminal outcome of a device session."""
    exhausted: bool
    attempts: int
    reason: str


class DeviceSessionManager:
    """
    Manages the serial session with bounded reconnection.

    Features:
    - Fresh serial handle (from port_factory) on every attempt
    - Device path re-resolved on every attempt
    - Retries scheduled on the event loop, never blocking
    - Fatal result instead of exiting, so the caller decides how to shut down
    """

    def __init__(
        self,
        port_factory: Callable[[], SerialPortInterface],
        resolver: DeviceResolverInterface,
        publisher: EventPublisherInterface,
        power_controller: DisplayPowerController,
        loop: EventLoop,
        logger: LoggerInterface,
        baud: int = DEFAULT_BAUD,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = 0.0,
        status: Optional[StatusManager] = None,
    ):
        self._port_factory = port_factory
        self._resolver = resolver
        self._publisher = publisher
        self._power = power_controller
        self._loop = loop
        self._logger = logger
        self._baud = baud
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._status = status

        self._state = SessionState.CLOSED
        self._port: Optional[SerialPortInterface] = None
        self._port_name: Optional[str] = None
        self._reconnect_attempts = 0
        self._open_count = 0
        self._retry_handle: Optional[TimerHandle] = None
        self._result: Optional[SessionResult] = None
        self._stopped = False

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        """Consecutive failures since the last successful open."""
        return self._reconnect_attempts

    @property
    def open_count(self) -> int:
        """Number of successful opens over the session's lifetime."""
        return self._open_count

    @property
    def port_name(self) -> Optional[str]:
        return self._port_name

    @property
    def result(self) -> Optional[SessionResult]:
        """Set once retries are exhausted."""
        return self._result

    def start(self) -> None:
        """Open the first connection. Call on the loop thread."""
        self._stopped = False
        self._connect()

    def poll(self) -> bool:
        """
        Read and process one line if the session is open.

        Returns True if a line was processed, False when idle.
        """
        if self._state != SessionState.OPEN or self._port is None:
            return False

        try:
            data = self._port.read_line()
        except SerialIOError as e:
            self._logger.error(f"Serial error: {e}")
            self._on_closed(str(e))
            return False

        if data is None:
            if not self._port.is_open():
                self._on_closed("serial port closed")
            return False

        self._process_line(decode_line(data))
        return True

    def close(self) -> None:
        """Close the session without counting a failure."""
        self._stopped = True
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._release_port()
        self._set_state(SessionState.CLOSED)
        self._logger.info("Session closed")

    def _connect(self) -> None:
        self._retry_handle = None
        if self._stopped:
            return
        self._set_state(SessionState.CONNECTING)

        try:
            path = self._resolver.resolve()
        except DeviceNotFoundError as e:
            self._logger.error(f"Device resolution failed: {e}")
            self._on_closed(str(e))
            return

        port = self._port_factory()
        self._logger.info(f"Opening {path} at {self._baud} baud")
        if not port.open(path, self._baud):
            self._logger.error(f"Could not open {path}")
            self._on_closed(f"could not open {path}")
            return

        self._port = port
        self._port_name = path
        self._reconnect_attempts = 0
        self._open_count += 1
        self._set_state(SessionState.OPEN)
        self._logger.info(f"Serial port opened: {path}")
        if self._status:
            self._status.set_reconnect_attempts(0)

    def _on_closed(self, reason: str) -> None:
        was_open = self._state == SessionState.OPEN
        self._release_port()
        self._set_state(SessionState.CLOSED)
        if was_open:
            self._logger.warning(f"Serial port closed: {reason}")
            if self._status:
                self._status.record_disconnect()

        self._reconnect_attempts += 1
        if self._status:
            self._status.set_reconnect_attempts(self._reconnect_attempts)

        if self._reconnect_attempts >= self._max_attempts:
            self._logger.error(
                f"Failed to reopen serial port after {self._reconnect_attempts} attempts"
            )
            self._result = SessionResult(
                exhausted=True,
                attempts=self._reconnect_attempts,
                reason=reason,
            )
            return

        self._logger.info(
            f"Attempting to reopen serial port "
            f"({self._reconnect_attempts}/{self._max_attempts} failures)"
        )
        self._retry_handle = self._loop.call_later(self._retry_delay, self._connect)

    def _release_port(self) -> None:
        if self._port is not None:
            self._port.close()
            self._port = None

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        if self._status:
            self._status.set_session_state(state, self._port_name)

    def _process_line(self, line: str) -> None:
        """Dispatch one decoded line."""
        if self._status:
            self._status.record_line(len(line))

        event = parse_line(line)
        if isinstance(event, Presence):
            self._logger.info(line)
            self._publish(EVENT_PRESENCE, event.value, event)
            self._power.handle_presence(event)
        elif isinstance(event, Gesture):
            self._logger.info(line)
            self._publish(EVENT_GESTURE, event.kind, event)
        elif isinstance(event, DeviceError):
            self._logger.error(f"Device error: {event.message}")
            if self._status:
                self._status.record_event("device_error")
        elif isinstance(event, Unrecognized):
            self._logger.debug(f"Ignoring line: {event.raw!r}")
            if self._status:
                self._status.record_event("ignored")

    def _publish(self, kind: str, value: str, event: DomainEvent) -> None:
        if self._status:
            self._status.record_event(kind)
        try:
            self._publisher.publish(kind, {"value": value})
        except OSError as e:
            self._logger.error(f"Could not publish {event}: {e}")
            if self._status:
                self._status.record_publish_error()
