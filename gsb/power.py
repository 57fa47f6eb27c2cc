"""
Display Power Controller.

Two-state machine (ON, OFF) driven by presence events, with one debounce
timer. A single AWAY reading never blanks the display; only an absence
that lasts the full debounce interval without a PRESENT reading does.

All methods run on the EventLoop thread. Power action completions are
posted back onto the loop before they touch the state, so transitions are
serialized with the serial line stream.
"""

from typing import Callable, Optional

from .event_loop import EventLoop, TimerHandle
from .interfaces import LoggerInterface, PowerActionInterface, PowerState
from .line_parser import Presence, PresenceKind

DEFAULT_DEBOUNCE_SECONDS = 300.0


class DisplayPowerController:
    """
    Debounced display power state machine.

    State only advances on a successful action: a failed "turn off" leaves
    the state ON, a failed "turn on" leaves it OFF.
    """

    def __init__(
        self,
        power_action: PowerActionInterface,
        loop: EventLoop,
        logger: LoggerInterface,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_state_change: Optional[Callable[[PowerState], None]] = None,
    ):
        self._power_action = power_action
        self._loop = loop
        self._logger = logger
        self._debounce_seconds = debounce_seconds
        self._on_state_change = on_state_change

        self._state = PowerState.ON
        self._timer: Optional[TimerHandle] = None
        self._pending_on = False
        self._pending_off = False
        self._actions_failed = 0
        self._on_wanted = False
        self._fail_safe = False

    @property
    def state(self) -> PowerState:
        """Current display power state."""
        return self._state

    @property
    def timer_pending(self) -> bool:
        """True while a debounce timer is armed."""
        return self._timer is not None and not self._timer.cancelled

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    @property
    def actions_failed(self) -> int:
        return self._actions_failed

    def handle_presence(self, presence: Presence) -> None:
        """Apply one presence reading."""
        kind = presence.kind

        if kind == PresenceKind.OTHER:
            self._logger.debug(f"Ignoring presence value {presence.value!r}")
            return
        if self._fail_safe:
            self._logger.debug(f"Fail-safe engaged, ignoring presence {presence.value}")
            return

        if self._timer is not None:
            self._logger.debug("Cancelling display-off timer")
        self._cancel_timer()

        if kind == PresenceKind.PRESENT:
            if self._pending_off:
                # Re-issued once the off completes
                self._on_wanted = True
            elif self._state == PowerState.OFF:
                self._turn_on()
        elif kind == PresenceKind.AWAY:
            self._on_wanted = False
            if self._state == PowerState.ON or self._pending_on:
                self._logger.info(
                    f"Person away, display off in {self._debounce_seconds:g}s"
                )
                self._timer = self._loop.call_later(self._debounce_seconds, self._on_timeout)

    def fail_safe_off(self) -> None:
        """Turn the display off unconditionally (retry exhaustion path).

        Supersedes any in-flight "turn on": its completion no longer moves
        the state, and later presence readings are ignored.
        """
        self._cancel_timer()
        self._fail_safe = True
        self._on_wanted = False
        self._logger.warning("Fail-safe: turning display off")
        self._pending_off = True
        self._power_action.set_display(False, self._post(self._on_off_result))

    def cancel(self) -> None:
        """Drop any armed timer (daemon shutdown)."""
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        if self._state != PowerState.ON:
            return
        if self._pending_off:
            self._logger.debug("Display-off action already in flight")
            return
        self._logger.info("No presence for debounce interval, turning display off")
        self._pending_off = True
        self._power_action.set_display(False, self._post(self._on_off_result))

    def _turn_on(self) -> None:
        if self._pending_on:
            self._logger.debug("Display-on action already in flight")
            return
        self._logger.info("Person present, turning display on")
        self._pending_on = True
        self._power_action.set_display(True, self._post(self._on_on_result))

    def _post(self, handler: Callable[[bool], None]) -> Callable[[bool], None]:
        """Wrap a completion handler so it runs on the loop thread."""
        def callback(success: bool) -> None:
            self._loop.call_soon_threadsafe(handler, success)
        return callback

    def _on_on_result(self, success: bool) -> None:
        self._pending_on = False
        if self._fail_safe:
            self._logger.debug("Display-on result superseded by fail-safe")
            return
        if success:
            self._logger.info("Turned display on")
            self._set_state(PowerState.ON)
        else:
            self._actions_failed += 1
            self._logger.error("Failed to turn display on")

    def _on_off_result(self, success: bool) -> None:
        self._pending_off = False
        on_wanted, self._on_wanted = self._on_wanted, False
        if success:
            self._logger.info("Turned display off")
            self._set_state(PowerState.OFF)
            if on_wanted:
                self._turn_on()
        else:
            self._actions_failed += 1
            self._logger.error("Failed to turn display off")

    def _set_state(self, state: PowerState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)
