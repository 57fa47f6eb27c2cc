"""
Tests for the display power controller.

The controller starts ON; AWAY arms a debounce timer, PRESENT cancels it.
Action completions are delivered through the event loop, so tests drain
the loop after every step that may complete an action.
"""

from gsb.interfaces import PowerState
from gsb.line_parser import Presence
from gsb.mocks import MockPowerAction
from gsb.power import DisplayPowerController

from conftest import drain

PRESENT = Presence("PRESENT")
AWAY = Presence("AWAY")


def _turn_off(controller, clock, loop):
    controller.handle_presence(AWAY)
    clock.advance(controller.debounce_seconds)
    drain(loop)
    assert controller.state == PowerState.OFF


class TestDebounce:
    def test_initial_state_is_on(self, controller):
        assert controller.state == PowerState.ON
        assert not controller.timer_pending

    def test_sustained_absence_turns_display_off_once(self, controller, action, clock, loop):
        controller.handle_presence(AWAY)
        assert controller.timer_pending

        clock.advance(299.0)
        drain(loop)
        assert action.calls == []

        clock.advance(1.0)
        drain(loop)

        assert action.calls == [False]
        assert controller.state == PowerState.OFF
        assert not controller.timer_pending

        clock.advance(3600.0)
        drain(loop)
        assert action.off_calls == 1

    def test_presence_before_interval_cancels_timer(self, controller, action, clock, loop):
        controller.handle_presence(AWAY)
        clock.advance(120.0)
        drain(loop)

        controller.handle_presence(PRESENT)
        assert not controller.timer_pending

        clock.advance(600.0)
        drain(loop)
        assert action.calls == []
        assert controller.state == PowerState.ON

    def test_repeated_away_restarts_debounce(self, controller, action, clock, loop):
        controller.handle_presence(AWAY)
        clock.advance(100.0)
        controller.handle_presence(AWAY)
        clock.advance(100.0)
        controller.handle_presence(AWAY)

        assert loop.pending_timers() == 1

        # 299s after the last AWAY: still on
        clock.advance(299.0)
        drain(loop)
        assert action.calls == []

        clock.advance(1.0)
        drain(loop)
        assert action.calls == [False]
        assert controller.state == PowerState.OFF

    def test_burst_of_away_events_yields_single_timer(self, controller, action, clock, loop):
        for _ in range(50):
            controller.handle_presence(AWAY)

        assert loop.pending_timers() == 1
        clock.advance(300.0)
        drain(loop)
        assert action.off_calls == 1


class TestTransitions:
    def test_present_while_off_turns_display_on(self, controller, action, clock, loop):
        _turn_off(controller, clock, loop)
        action.calls.clear()

        controller.handle_presence(PRESENT)
        drain(loop)

        assert action.calls == [True]
        assert controller.state == PowerState.ON

    def test_present_while_on_issues_no_action(self, controller, action, loop):
        controller.handle_presence(PRESENT)
        drain(loop)
        assert action.calls == []
        assert controller.state == PowerState.ON

    def test_away_while_off_arms_no_timer(self, controller, action, clock, loop):
        _turn_off(controller, clock, loop)
        controller.handle_presence(AWAY)
        assert not controller.timer_pending

    def test_unknown_presence_value_is_noop(self, controller, action, clock, loop):
        controller.handle_presence(AWAY)
        controller.handle_presence(Presence("MAYBE"))
        assert controller.timer_pending

        clock.advance(300.0)
        drain(loop)
        assert action.calls == [False]

    def test_state_changes_reported(self, action, loop, logger, clock):
        changes = []
        controller = DisplayPowerController(
            power_action=action,
            loop=loop,
            logger=logger,
            debounce_seconds=60.0,
            on_state_change=changes.append,
        )
        controller.handle_presence(AWAY)
        clock.advance(60.0)
        drain(loop)
        controller.handle_presence(PRESENT)
        drain(loop)

        assert changes == [PowerState.OFF, PowerState.ON]


class TestActionOutcomes:
    def test_state_only_changes_after_completion(self, loop, logger, clock):
        action = MockPowerAction(auto_complete=False)
        controller = DisplayPowerController(action, loop, logger, debounce_seconds=10.0)

        controller.handle_presence(AWAY)
        clock.advance(10.0)
        drain(loop)
        assert action.calls == [False]
        assert controller.state == PowerState.ON

        action.complete(success=True)
        assert controller.state == PowerState.ON  # not yet delivered
        drain(loop)
        assert controller.state == PowerState.OFF

    def test_failed_power_off_leaves_state_on(self, controller, action, clock, loop, logger):
        action.set_succeed(False)
        controller.handle_presence(AWAY)
        clock.advance(300.0)
        drain(loop)

        assert controller.state == PowerState.ON
        assert controller.actions_failed == 1
        assert logger.contains("Failed to turn display off", level="ERROR")

        # Logically still on, so PRESENT does not call "turn on"
        controller.handle_presence(PRESENT)
        drain(loop)
        assert action.on_calls == 0

    def test_failed_power_on_leaves_state_off(self, controller, action, clock, loop):
        _turn_off(controller, clock, loop)
        action.set_succeed(False)

        controller.handle_presence(PRESENT)
        drain(loop)
        assert controller.state == PowerState.OFF

        # Next PRESENT retries through the normal path
        action.set_succeed(True)
        controller.handle_presence(PRESENT)
        drain(loop)
        assert action.on_calls == 2
        assert controller.state == PowerState.ON

    def test_no_duplicate_turn_on_while_in_flight(self, loop, logger, clock):
        action = MockPowerAction(auto_complete=False)
        controller = DisplayPowerController(action, loop, logger, debounce_seconds=10.0)
        controller.handle_presence(AWAY)
        clock.advance(10.0)
        drain(loop)
        action.complete(True)
        drain(loop)
        assert controller.state == PowerState.OFF

        controller.handle_presence(PRESENT)
        controller.handle_presence(PRESENT)
        controller.handle_presence(PRESENT)
        assert action.on_calls == 1

        action.complete(True)
        drain(loop)
        assert controller.state == PowerState.ON


class TestFailSafe:
    def test_fail_safe_cancels_timer_and_turns_off(self, controller, action, clock, loop):
        controller.handle_presence(AWAY)
        controller.fail_safe_off()
        drain(loop)

        assert not controller.timer_pending
        assert action.calls == [False]
        assert controller.state == PowerState.OFF

        clock.advance(300.0)
        drain(loop)
        assert action.off_calls == 1

    def test_fail_safe_issues_off_even_when_already_off(self, controller, action, clock, loop):
        _turn_off(controller, clock, loop)
        controller.fail_safe_off()
        drain(loop)
        assert action.off_calls == 2

    def test_fail_safe_supersedes_in_flight_turn_on(self, loop, logger, clock):
        action = MockPowerAction(auto_complete=False)
        controller = DisplayPowerController(action, loop, logger, debounce_seconds=10.0)
        controller.handle_presence(AWAY)
        clock.advance(10.0)
        drain(loop)
        action.complete(True)
        drain(loop)

        controller.handle_presence(PRESENT)
        assert action.calls == [False, True]

        controller.fail_safe_off()
        assert action.calls == [False, True, False]

        # "on" finishes first, then the fail-safe "off"
        action.complete(True)
        action.complete(True)
        drain(loop)
        assert controller.state == PowerState.OFF

    def test_fail_safe_ignores_later_presence(self, controller, action, loop):
        controller.fail_safe_off()
        drain(loop)

        controller.handle_presence(PRESENT)
        drain(loop)
        assert action.calls == [False]
        assert controller.state == PowerState.OFF


class TestInFlightPresence:
    def test_present_during_turn_off_turns_display_back_on(self, loop, logger, clock):
        action = MockPowerAction(auto_complete=False)
        controller = DisplayPowerController(action, loop, logger, debounce_seconds=10.0)
        controller.handle_presence(AWAY)
        clock.advance(10.0)
        drain(loop)
        assert action.calls == [False]

        controller.handle_presence(PRESENT)
        action.complete(True)
        drain(loop)

        assert action.calls == [False, True]
        action.complete(True)
        drain(loop)
        assert controller.state == PowerState.ON

    def test_away_after_present_during_turn_off_keeps_display_off(self, loop, logger, clock):
        action = MockPowerAction(auto_complete=False)
        controller = DisplayPowerController(action, loop, logger, debounce_seconds=10.0)
        controller.handle_presence(AWAY)
        clock.advance(10.0)
        drain(loop)

        controller.handle_presence(PRESENT)
        controller.handle_presence(AWAY)
        action.complete(True)
        drain(loop)

        assert action.calls == [False]
        assert controller.state == PowerState.OFF

    def test_present_during_failed_turn_off_needs_no_turn_on(self, loop, logger, clock):
        action = MockPowerAction(auto_complete=False)
        controller = DisplayPowerController(action, loop, logger, debounce_seconds=10.0)
        controller.handle_presence(AWAY)
        clock.advance(10.0)
        drain(loop)

        controller.handle_presence(PRESENT)
        action.complete(False)
        drain(loop)

        assert action.calls == [False]
        assert controller.state == PowerState.ON

    def test_away_during_turn_on_arms_timer(self, loop, logger, clock):
        action = MockPowerAction(auto_complete=False)
        controller = DisplayPowerController(action, loop, logger, debounce_seconds=10.0)
        controller.handle_presence(AWAY)
        clock.advance(10.0)
        drain(loop)
        action.complete(True)
        drain(loop)

        controller.handle_presence(PRESENT)
        controller.handle_presence(AWAY)
        assert controller.timer_pending
        action.complete(True)
        drain(loop)
        assert controller.state == PowerState.ON

        clock.advance(10.0)
        drain(loop)
        assert action.calls == [False, True, False]
