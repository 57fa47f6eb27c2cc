"""
Event publishing for the Gesture Sensor Bridge daemon.

Every presence and gesture reading becomes one JSON line in events.jsonl.
The display UI (and gsbctl events --follow) tails that file, so the
daemon never waits on a subscriber and needs no sockets.

Record format:

    {"schema_version": 1, "sequence": 7, "timestamp": "...",
     "type": "gesture", "session_id": "gsb_...", "data": {"value": "LEFT"}}
"""

from __future__ import annotations

import json
import os
from typing import Any, Optional

import portalocker

from .interfaces import ClockInterface, EventPublisherInterface, FileSystemInterface

SCHEMA_VERSION = 1


class EventEmitter(EventPublisherInterface):
    """Appends events to a JSONL file with a sequence that survives restarts."""

    def __init__(self, filesystem: FileSystemInterface, clock: ClockInterface, events_path: str) -> None:
        self._clock = clock
        self._events_path = events_path
        self._session_id: Optional[str] = None

        filesystem.ensure_dir(os.path.dirname(events_path) or ".")
        self._sequence = _last_sequence(events_path)

    @property
    def events_path(self) -> str:
        return self._events_path

    def set_session_id(self, session_id: str) -> None:
        self._session_id = session_id

    def publish(self, event_kind: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Append one event and return the record written.

        Raises OSError if events.jsonl cannot be written.
        """
        self._sequence += 1
        record = {
            "schema_version": SCHEMA_VERSION,
            "sequence": self._sequence,
            "timestamp": self._clock.now().isoformat(),
            "type": event_kind,
            "session_id": self._session_id,
            "data": payload or {},
        }
        line = json.dumps(record, sort_keys=True) + "\n"

        with open(self._events_path, "a", encoding="utf-8") as f:
            # Readers may be mid-read; hold the lock for the whole line
            portalocker.lock(f, portalocker.LOCK_EX)
            try:
                f.write(line)
                f.flush()
            finally:
                portalocker.unlock(f)
        return record


def _last_sequence(path: str) -> int:
    last_line = read_last_line(path)
    if not last_line:
        return 0
    try:
        return int(json.loads(last_line).get("sequence", 0) or 0)
    except (ValueError, TypeError, AttributeError):
        return 0


def read_last_line(path: str, window: int = 4096) -> Optional[str]:
    """Return the last non-empty line of a file, or None.

    Only the final ``window`` bytes are read.
    """
    try:
        with open(path, "rb") as f:
            size = f.seek(0, os.SEEK_END)
            if size == 0:
                return None
            f.seek(max(size - window, 0))
            tail = f.read()
    except OSError:
        return None

    for raw in reversed(tail.splitlines()):
        if raw.strip():
            return raw.decode("utf-8", errors="replace")
    return None


def read_events(path: str, limit: Optional[int] = None) -> list[dict[str, Any]]:
    """Load published events, oldest first. Malformed lines are skipped."""
    events: list[dict[str, Any]] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except ValueError:
                    continue
    except FileNotFoundError:
        return []
    if limit is not None:
        return events[-limit:] if limit > 0 else []
    return events
