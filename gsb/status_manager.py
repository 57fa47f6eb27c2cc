"""
Status Manager for the bridge daemon.

Writes session state, display power state and statistics to status.json
for gsbctl and other readers.
Uses atomic file writes to prevent race conditions with readers.
"""

from typing import Dict, Optional
from datetime import datetime
import json
import os
import tempfile

from .interfaces import FileSystemInterface, ClockInterface, SessionState, PowerState


class StatusManager:
    """
    Manages status.json file with daemon state.

    Provides a single JSON file describing:
    - Current session info
    - Serial session state and reconnect attempts
    - Display power state
    - Event counters
    - Health indicators

    Uses atomic file writes (temp file + rename) to prevent partial reads.
    """

    def __init__(
        self,
        filesystem: FileSystemInterface,
        clock: ClockInterface,
        status_path: str,
    ):
        self._fs = filesystem
        self._clock = clock
        self._status_path = status_path

        self._session_id: str = ""
        self._started: Optional[datetime] = None
        self._baud: int = 0
        self._max_attempts: int = 0
        self._port: Optional[str] = None
        self._state = SessionState.CLOSED
        self._reconnect_attempts = 0
        self._disconnects = 0
        self._power_state = PowerState.ON
        self._power_changed: Optional[datetime] = None
        self._lines_received = 0
        self._bytes_received = 0
        self._event_counts: Dict[str, int] = {}
        self._publish_errors = 0
        self._last_activity_time: Optional[datetime] = None
        self._exhausted = False

    @property
    def status_path(self) -> str:
        return self._status_path

    def start_session(self, session_id: str, baud: int, max_attempts: int) -> None:
        """Start tracking a new session."""
        self._session_id = session_id
        self._baud = baud
        self._max_attempts = max_attempts
        self._started = self._clock.now()
        self._state = SessionState.CONNECTING
        self._reconnect_attempts = 0
        self._disconnects = 0
        self._lines_received = 0
        self._bytes_received = 0
        self._event_counts = {}
        self._publish_errors = 0
        self._exhausted = False
        self.update()

    def set_session_state(self, state: SessionState, port: Optional[str] = None) -> None:
        """Update serial session state."""
        self._state = state
        if port:
            self._port = port
        self.update()

    def set_reconnect_attempts(self, attempts: int) -> None:
        self._reconnect_attempts = attempts
        self.update()

    def set_power_state(self, state: PowerState) -> None:
        """Record a display power transition."""
        self._power_state = state
        self._power_changed = self._clock.now()
        self.update()

    def set_exhausted(self) -> None:
        """Mark the session as given up."""
        self._exhausted = True
        self.update()

    def record_disconnect(self) -> None:
        """Record loss of an open connection."""
        self._disconnects += 1
        self.update()

    def record_line(self, byte_count: int = 0) -> None:
        """Record a received line."""
        self._lines_received += 1
        self._bytes_received += byte_count
        self._last_activity_time = self._clock.now()

    def record_event(self, kind: str) -> None:
        """Count a parsed event by kind (presence, gesture, device_error, ignored)."""
        self._event_counts[kind] = self._event_counts.get(kind, 0) + 1

    def record_publish_error(self) -> None:
        self._publish_errors += 1

    def update(self) -> None:
        """Write current status to file using atomic write."""
        now = self._clock.now()
        uptime = (now - self._started).total_seconds() if self._started else 0

        if self._last_activity_time:
            idle_seconds = (now - self._last_activity_time).total_seconds()
        else:
            idle_seconds = uptime  # No activity yet means idle since start

        status = {
            "session": {
                "id": self._session_id,
                "started": self._started.isoformat() if self._started else None,
                "uptime_seconds": int(uptime),
            },
            "connection": {
                "port": self._port,
                "baud": self._baud,
                "status": self._state.value,
                "reconnect_attempts": self._reconnect_attempts,
                "max_attempts": self._max_attempts,
                "disconnects": self._disconnects,
            },
            "display": {
                "power": self._power_state.value,
                "last_changed": self._power_changed.isoformat() if self._power_changed else None,
            },
            "counters": {
                "lines_received": self._lines_received,
                "bytes_received": self._bytes_received,
                "events": dict(self._event_counts),
                "publish_errors": self._publish_errors,
            },
            "health": {
                "last_activity": self._last_activity_time.isoformat() if self._last_activity_time else None,
                "idle_seconds": int(idle_seconds),
                "status": self._compute_health_status(),
            },
            "last_updated": now.isoformat(),
        }

        self._atomic_write(json.dumps(status, indent=2))

    def _compute_health_status(self) -> str:
        """Compute overall health status."""
        if self._exhausted:
            return "failed"
        if self._state != SessionState.OPEN:
            return "reconnecting" if self._reconnect_attempts else "disconnected"
        if self._publish_errors:
            return "degraded"
        return "healthy"

    def _atomic_write(self, content: str) -> None:
        """Write content atomically using temp file + rename."""
        status_dir = os.path.dirname(self._status_path)
        if not status_dir:
            status_dir = "."

        # Write to temp file in same directory (ensures same filesystem)
        try:
            fd, temp_path = tempfile.mkstemp(
                suffix=".tmp",
                prefix="status_",
                dir=status_dir
            )
            try:
                os.write(fd, content.encode("utf-8"))
            finally:
                os.close(fd)

            # Atomic rename
            os.replace(temp_path, self._status_path)
        except OSError:
            # Fallback to non-atomic write if atomic fails
            self._fs.write_file(self._status_path, content)
