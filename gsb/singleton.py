"""
Singleton enforcement for the bridge daemon.

Only one daemon may own the display and the sensor at a time. The daemon
holds an exclusive portalocker lock on <base_dir>/daemon.pid for its whole
lifetime and describes itself in <base_dir>/daemon.json.
"""

from __future__ import annotations

import atexit
import errno
import json
import os
import signal
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import portalocker

from .interfaces import LoggerInterface

PID_FILENAME = "daemon.pid"
INFO_FILENAME = "daemon.json"


@dataclass
class ExistingDaemon:
    """Information about an existing daemon."""
    pid: int
    is_alive: bool
    port: str
    base_dir: str
    started: str


def pid_alive(pid: int) -> bool:
    """True if a process with this PID exists (even if we can't signal it)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as exc:
        return exc.errno == errno.EPERM
    return True


def read_pid(path: str) -> Optional[int]:
    """PID stored in path, or None if missing or unreadable."""
    try:
        with open(path, "r") as f:
            return int(f.read().strip())
    except (OSError, ValueError):
        return None


class SingletonDaemon:
    """
    Ensures only one bridge daemon runs per base directory.

    Usage:
        singleton = SingletonDaemon(base_dir, logger=logger)
        if not singleton.acquire(port="/dev/ttyUSB0"):
            sys.exit(1)
        ...
        singleton.release()   # also registered with atexit
    """

    def __init__(self, base_dir: str, logger: Optional[LoggerInterface] = None):
        self._base_dir = base_dir
        self._logger = logger
        self._lock_fd: Optional[int] = None
        self._owns_lock = False
        self.pid_file = os.path.join(base_dir, PID_FILENAME)
        self.info_file = os.path.join(base_dir, INFO_FILENAME)

    def _log(self, msg: str, error: bool = False) -> None:
        if self._logger is None:
            return
        if error:
            self._logger.error(f"[Singleton] {msg}")
        else:
            self._logger.info(f"[Singleton] {msg}")

    @property
    def owns_lock(self) -> bool:
        return self._owns_lock

    def get_existing(self) -> Optional[ExistingDaemon]:
        """Describe the daemon recorded in the PID file, if any."""
        pid = read_pid(self.pid_file)
        if pid is None:
            return None

        info = {}
        try:
            with open(self.info_file, "r") as f:
                info = json.load(f)
        except (OSError, ValueError):
            pass

        return ExistingDaemon(
            pid=pid,
            is_alive=pid_alive(pid),
            port=info.get("port", "unknown"),
            base_dir=info.get("base_dir", self._base_dir),
            started=info.get("started", "unknown"),
        )

    def acquire(self, kill_existing: bool = False, port: str = "") -> bool:
        """
        Acquire the singleton lock.

        Args:
            kill_existing: Stop a running daemon first instead of refusing
            port: Serial port recorded in the info file

        Returns:
            True if lock acquired, False otherwise
        """
        existing = self.get_existing()
        if existing and existing.pid != os.getpid():
            if existing.is_alive:
                if not kill_existing:
                    self._log(
                        f"Another daemon is already running (PID {existing.pid}, "
                        f"port {existing.port}). Use --force to take over.",
                        error=True,
                    )
                    return False
                self._log(f"Stopping existing daemon (PID {existing.pid})...")
                if not stop_process(existing.pid):
                    self._log(f"Could not stop daemon (PID {existing.pid})", error=True)
                    return False
            else:
                self._log(f"Removing stale PID file (PID {existing.pid} not running)")
                try:
                    os.unlink(self.pid_file)
                except OSError:
                    pass

        os.makedirs(self._base_dir, exist_ok=True)

        try:
            self._lock_fd = os.open(self.pid_file, os.O_CREAT | os.O_RDWR, 0o644)
            portalocker.lock(self._lock_fd, portalocker.LOCK_EX | portalocker.LOCK_NB)
        except (OSError, portalocker.LockException) as e:
            self._log(f"Could not acquire lock: {e}", error=True)
            if self._lock_fd is not None:
                os.close(self._lock_fd)
                self._lock_fd = None
            return False

        os.ftruncate(self._lock_fd, 0)
        os.write(self._lock_fd, f"{os.getpid()}\n".encode())
        os.fsync(self._lock_fd)

        try:
            with open(self.info_file, "w") as f:
                json.dump({
                    "pid": os.getpid(),
                    "port": port,
                    "base_dir": self._base_dir,
                    "started": datetime.now().isoformat(),
                }, f)
        except OSError as e:
            self._log(f"Could not write info file: {e}", error=True)

        self._owns_lock = True
        atexit.register(self.release)
        self._log(f"Acquired singleton lock (PID {os.getpid()})")
        return True

    def release(self) -> None:
        """Release the singleton lock."""
        if not self._owns_lock:
            return
        self._owns_lock = False

        for path in (self.info_file, self.pid_file):
            try:
                os.unlink(path)
            except OSError:
                pass

        if self._lock_fd is not None:
            try:
                portalocker.unlock(self._lock_fd)
            except (OSError, portalocker.LockException):
                pass
            os.close(self._lock_fd)
            self._lock_fd = None

        self._log("Released singleton lock")


def stop_process(pid: int, timeout_s: float = 5.0) -> bool:
    """SIGTERM, wait up to timeout_s, then SIGKILL. True if the process is gone."""
    if not pid_alive(pid):
        return True
    try:
        os.kill(pid, signal.SIGTERM)
    except OSError:
        return True

    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if not pid_alive(pid):
            return True
        time.sleep(0.1)

    try:
        os.kill(pid, signal.SIGKILL)
        time.sleep(0.5)
    except OSError:
        pass
    return not pid_alive(pid)


def check_daemon(base_dir: str) -> Optional[ExistingDaemon]:
    """Quick check for a daemon recorded under base_dir."""
    return SingletonDaemon(base_dir).get_existing()
