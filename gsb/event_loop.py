"""
Serialized event loop for the bridge daemon.

Every state change of the session manager and the power controller runs
as a callback on this loop, in the daemon's main thread. Background work
(display commands) hands its result back with call_soon_threadsafe(), so
completions re-enter the same sequential timeline as serial lines.

Timers are driven by the injected ClockInterface.monotonic(), which lets tests move
time forward with MockClock.advance() instead of sleeping.
"""

from __future__ import annotations

import heapq
import itertools
import queue
from typing import Any, Callable, List, Optional, Tuple

from .interfaces import ClockInterface


class TimerHandle:
    """Handle for a scheduled callback. cancel() is final."""

    def __init__(self, deadline: float, callback: Callable[..., Any], args: tuple) -> None:
        self.deadline = deadline
        self._callback = callback
        self._args = args
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def _run(self) -> None:
        if not self._cancelled:
            self._callback(*self._args)


class EventLoop:
    """
    Single-threaded callback loop with timers.

    Usage:
        loop = EventLoop(clock)
        handle = loop.call_later(300.0, controller.on_timeout)
        ...
        loop.run_pending()   # call from the daemon main loop
    """

    def __init__(self, clock: ClockInterface) -> None:
        self._clock = clock
        self._timers: List[Tuple[float, int, TimerHandle]] = []
        self._sequence = itertools.count()
        self._inbox: "queue.Queue[Tuple[Callable[..., Any], tuple]]" = queue.Queue()

    def time(self) -> float:
        return self._clock.monotonic()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Schedule callback after delay seconds. Must be called from the loop thread."""
        handle = TimerHandle(self.time() + max(delay, 0.0), callback, args)
        heapq.heappush(self._timers, (handle.deadline, next(self._sequence), handle))
        return handle

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.call_later(0.0, callback, *args)

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue callback from any thread; it runs on the next run_pending()."""
        self._inbox.put((callback, args))

    def next_deadline(self) -> Optional[float]:
        """Deadline of the earliest live timer, or None."""
        while self._timers and self._timers[0][2].cancelled:
            heapq.heappop(self._timers)
        if not self._timers:
            return None
        return self._timers[0][0]

    def pending_timers(self) -> int:
        return sum(1 for _, _, h in self._timers if not h.cancelled)

    def run_pending(self) -> int:
        """Run queued completions and every due timer. Returns callbacks run."""
        ran = 0

        while True:
            try:
                callback, args = self._inbox.get_nowait()
            except queue.Empty:
                break
            callback(*args)
            ran += 1

        # Timers scheduled while running (e.g. call_soon chains) run on this
        # pass only if already due.
        now = self.time()
        while self._timers and self._timers[0][0] <= now:
            _, _, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            handle._run()
            ran += 1

        return ran
