"""Display power commands run in the background.

The power controller asks for "display on" or "display off"; this module
runs the matching shell command (xrandr by default) on a worker thread so
the daemon keeps reading serial lines while the command runs. The outcome
is reported through the caller's callback.
"""

from __future__ import annotations

import logging
import os
import queue
import shlex
import subprocess
import threading
from typing import Callable, Dict, Optional, Tuple

from .interfaces import PowerActionInterface

logger = logging.getLogger(__name__)

DEFAULT_ON_COMMAND = 'xrandr --output HDMI-1 --mode 1920x1080 --rotate left'
DEFAULT_OFF_COMMAND = 'xrandr --output HDMI-1 --off'
DEFAULT_DISPLAY_ENV = {"DISPLAY": ":0"}


class CommandPowerAction(PowerActionInterface):
    """Runs a configurable command to switch the display.

    Thread-safe: set_display() can be called from any thread. Requests run
    one at a time, in the order they were made, on a single worker thread,
    so a later "off" always lands after an earlier "on". join() waits until
    every queued request has finished.

    Args:
        on_command: Shell-style command line that turns the display on.
        off_command: Command line that turns the display off.
        env: Extra environment variables (e.g. DISPLAY=:0).
        timeout: Seconds before a hung command counts as failed.
    """

    def __init__(
        self,
        on_command: str = DEFAULT_ON_COMMAND,
        off_command: str = DEFAULT_OFF_COMMAND,
        env: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
    ) -> None:
        self._on_command = on_command
        self._off_command = off_command
        self._env = dict(DEFAULT_DISPLAY_ENV if env is None else env)
        self._timeout = timeout
        self._jobs: "queue.Queue[Tuple[str, bool, Optional[Callable[[bool], None]]]]" = queue.Queue()
        self._idle = threading.Condition()
        self._outstanding = 0
        self._worker: Optional[threading.Thread] = None

    def set_display(self, on: bool, callback: Optional[Callable[[bool], None]] = None) -> None:
        command = self._on_command if on else self._off_command
        with self._idle:
            self._outstanding += 1
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._work,
                    name="gsb-display",
                    daemon=True,
                )
                self._worker.start()
        self._jobs.put((command, on, callback))

    def join(self, timeout: Optional[float] = None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    def run_command(self, on: bool) -> bool:
        """Run the on/off command synchronously. Returns True on success."""
        return self._execute(self._on_command if on else self._off_command)

    def _work(self) -> None:
        """Worker thread: run queued commands in order."""
        while True:
            command, on, callback = self._jobs.get()
            try:
                self._run(command, on, callback)
            finally:
                with self._idle:
                    self._outstanding -= 1
                    self._idle.notify_all()

    def _run(self, command: str, on: bool, callback: Optional[Callable[[bool], None]]) -> None:
        """Run one command, then report."""
        success = self._execute(command)
        if callback is not None:
            try:
                callback(success)
            except Exception:
                logger.exception("Display %s callback failed", "on" if on else "off")

    def _execute(self, command: str) -> bool:
        env = os.environ.copy()
        env.update(self._env)
        try:
            result = subprocess.run(
                shlex.split(command),
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env=env,
            )
        except FileNotFoundError as e:
            logger.error("Display command not found: %s (%s)", command, e)
            return False
        except subprocess.TimeoutExpired:
            logger.error("Display command timed out after %.1fs: %s", self._timeout, command)
            return False
        except OSError as e:
            logger.error("Display command failed to start: %s (%s)", command, e)
            return False

        if result.returncode != 0:
            logger.error(
                "Display command exited %d: %s: %s",
                result.returncode,
                command,
                (result.stderr or "").strip(),
            )
            return False

        logger.debug("Display command succeeded: %s", command)
        return True
