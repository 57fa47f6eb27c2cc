"""
Tests for the device session manager.

Every failure (resolve, open, read error, unplug) counts one reconnect
attempt; a successful open resets the count; reaching max_attempts
yields an exhausted SessionResult and no further attempts.
"""

import json

import pytest

from gsb.discovery import DeviceResolver
from gsb.interfaces import PortInfo, PowerState, SessionState
from gsb.line_parser import Presence
from gsb.mocks import MockDeviceResolver, MockFileSystem, MockSerialPort
from gsb.session import DeviceSessionManager
from gsb.status_manager import StatusManager

from conftest import drain


class PortFactory:
    """Creates a fresh MockSerialPort per attempt."""

    def __init__(self):
        self.ports = []
        self.fail_next = 0
        self.fail_all = False

    def __call__(self):
        port = MockSerialPort()
        if self.fail_all or self.fail_next > 0:
            port.set_fail_on_open(True)
            self.fail_next = max(self.fail_next - 1, 0)
        self.ports.append(port)
        return port

    @property
    def current(self):
        return self.ports[-1]


@pytest.fixture
def factory():
    return PortFactory()


@pytest.fixture
def resolver():
    return MockDeviceResolver()


def make_session(factory, resolver, publisher, controller, loop, logger, **kwargs):
    return DeviceSessionManager(
        port_factory=factory,
        resolver=resolver,
        publisher=publisher,
        power_controller=controller,
        loop=loop,
        logger=logger,
        **kwargs,
    )


@pytest.fixture
def session(factory, resolver, publisher, controller, loop, logger):
    return make_session(factory, resolver, publisher, controller, loop, logger)


def poll_all(session, limit=100):
    for _ in range(limit):
        if not session.poll():
            return


class TestConnect:
    def test_start_opens_resolved_port(self, session, factory):
        session.start()

        assert session.state == SessionState.OPEN
        assert session.reconnect_attempts == 0
        assert session.port_name == "/dev/ttyUSB0"
        assert factory.current.port == "/dev/ttyUSB0"
        assert factory.current.baud == 9600

    def test_resolution_failure_counts_as_attempt(self, session, factory, resolver, loop, logger):
        resolver.queue(None, None, "/dev/ttyACM0")

        session.start()
        assert session.state == SessionState.CLOSED
        assert session.reconnect_attempts == 1

        drain(loop)
        assert session.state == SessionState.OPEN
        assert session.port_name == "/dev/ttyACM0"
        assert session.reconnect_attempts == 0
        assert len(factory.ports) == 1
        assert logger.contains("Device resolution failed", level="ERROR")

    def test_path_is_re_resolved_on_reconnect(self, session, factory, resolver, loop):
        resolver.queue("/dev/ttyUSB0", "/dev/ttyUSB1")
        session.start()
        first = factory.current

        first.close()
        session.poll()
        drain(loop)

        assert session.port_name == "/dev/ttyUSB1"
        assert factory.current is not first
        assert session.open_count == 2


class TestLineDispatch:
    def test_events_published_and_presence_forwarded(self, session, factory, publisher, controller, logger):
        session.start()
        port = factory.current
        port.inject_line("Person: AWAY")
        port.inject_line("Gesture: LEFT")
        port.inject_line("ERROR: gesture sensor not responding")
        port.inject_line("booting...")

        poll_all(session)

        assert publisher.events == [
            ("presence", {"value": "AWAY"}),
            ("gesture", {"value": "LEFT"}),
        ]
        assert controller.timer_pending
        assert logger.contains("Device error: gesture sensor not responding", level="ERROR")
        assert logger.contains("Ignoring line", level="DEBUG")

    def test_presence_burst_keeps_single_timer(self, session, factory, controller, loop):
        session.start()
        port = factory.current
        for value in ("AWAY", "AWAY", "PRESENT", "AWAY"):
            port.inject_event(Presence(value))

        poll_all(session)

        assert controller.timer_pending
        assert loop.pending_timers() == 1

    def test_carriage_return_stripped(self, session, factory, publisher):
        session.start()
        factory.current.inject_bytes(b"Person: PRESENT\r\n")
        session.poll()
        assert publisher.events == [("presence", {"value": "PRESENT"})]

    def test_unknown_presence_value_is_still_published(self, session, factory, publisher, controller):
        session.start()
        factory.current.inject_line("Person: NEAR")
        session.poll()
        assert publisher.events == [("presence", {"value": "NEAR"})]
        assert not controller.timer_pending

    def test_publish_failure_does_not_drop_session(self, session, factory, publisher, controller, logger):
        session.start()
        publisher.set_fail(True)
        factory.current.inject_line("Person: AWAY")

        assert session.poll() is True
        assert session.state == SessionState.OPEN
        assert controller.timer_pending
        assert logger.contains("Could not publish", level="ERROR")

    def test_absence_through_session_turns_display_off(self, session, factory, controller, action, clock, loop):
        session.start()
        factory.current.inject_line("Person: AWAY")
        session.poll()

        clock.advance(300.0)
        drain(loop)

        assert action.calls == [False]
        assert controller.state == PowerState.OFF

    def test_poll_when_idle_returns_false(self, session):
        session.start()
        assert session.poll() is False
        assert session.state == SessionState.OPEN


class TestReconnection:
    def test_five_failures_exhaust_without_sixth_attempt(self, session, factory, resolver, loop):
        factory.fail_all = True

        session.start()
        drain(loop)

        result = session.result
        assert result is not None
        assert result.exhausted is True
        assert result.attempts == 5
        assert len(factory.ports) == 5
        assert resolver.resolve_calls == 5

        drain(loop)
        session.poll()
        assert len(factory.ports) == 5

    def test_disconnect_then_four_failures_exhausts(self, session, factory, loop, logger):
        session.start()
        factory.fail_all = True

        factory.current.close()
        session.poll()
        assert session.reconnect_attempts == 1

        drain(loop)
        assert session.result is not None
        assert session.result.attempts == 5
        assert len(factory.ports) == 5
        assert logger.contains("Failed to reopen serial port after 5 attempts", level="ERROR")

    def test_success_after_three_failures_resets_count(self, session, factory, loop):
        factory.fail_next = 3

        session.start()
        drain(loop)

        assert session.state == SessionState.OPEN
        assert session.reconnect_attempts == 0
        assert len(factory.ports) == 4

        factory.current.set_read_error("device reports readiness to read but returned no data")
        session.poll()

        assert session.state == SessionState.CLOSED
        assert session.reconnect_attempts == 1

        drain(loop)
        assert session.state == SessionState.OPEN
        assert session.reconnect_attempts == 0
        assert session.result is None

    def test_counter_restarts_from_one_after_success(self, session, factory, loop):
        factory.fail_next = 3
        session.start()
        drain(loop)

        # The unplug is failure 1; four more failed opens reach the limit
        factory.fail_all = True
        factory.current.close()
        session.poll()
        assert session.reconnect_attempts == 1

        drain(loop)

        assert session.result is not None
        assert session.result.attempts == 5
        assert len(factory.ports) == 4 + 4

    def test_unplug_mid_stream_triggers_reconnect(self, session, factory, publisher, loop):
        session.start()
        port = factory.current
        port.inject_line("Gesture: UP")
        port.inject_line("Gesture: DOWN")
        port.set_disconnect_after(2)

        poll_all(session)
        assert publisher.events == [("gesture", {"value": "UP"})]
        assert session.reconnect_attempts == 1

        drain(loop)
        assert session.state == SessionState.OPEN
        assert factory.current is not port

    def test_retry_delay_is_scheduled_not_blocking(self, factory, resolver, publisher, controller, loop, logger, clock):
        session = make_session(factory, resolver, publisher, controller, loop, logger, retry_delay=2.0)
        factory.fail_next = 1

        session.start()
        drain(loop)
        assert session.state == SessionState.CLOSED
        assert len(factory.ports) == 1

        clock.advance(2.0)
        drain(loop)
        assert session.state == SessionState.OPEN
        assert clock.get_sleep_calls() == []

    def test_close_cancels_pending_retry(self, factory, resolver, publisher, controller, loop, logger, clock):
        session = make_session(factory, resolver, publisher, controller, loop, logger, retry_delay=1.0)
        factory.fail_next = 1
        session.start()

        session.close()
        clock.advance(5.0)
        drain(loop)

        assert len(factory.ports) == 1
        assert session.state == SessionState.CLOSED
        assert session.result is None

    def test_custom_max_attempts(self, factory, resolver, publisher, controller, loop, logger):
        session = make_session(factory, resolver, publisher, controller, loop, logger, max_attempts=2)
        factory.fail_all = True
        session.start()
        drain(loop)
        assert session.result.attempts == 2
        assert len(factory.ports) == 2


class TestStatusReporting:
    def test_status_tracks_attempts_and_events(self, factory, resolver, publisher, controller, loop, logger, clock):
        fs = MockFileSystem()
        status = StatusManager(fs, clock, "/nonexistent/gsb/status.json")
        status.start_session("gsb_test", baud=9600, max_attempts=5)
        session = make_session(factory, resolver, publisher, controller, loop, logger, status=status)

        factory.fail_next = 2
        session.start()
        drain(loop)
        factory.current.inject_line("Gesture: LEFT")
        factory.current.inject_line("noise")
        poll_all(session)
        status.update()

        data = json.loads(fs.read_file("/nonexistent/gsb/status.json"))
        assert data["connection"]["status"] == "open"
        assert data["connection"]["port"] == "/dev/ttyUSB0"
        assert data["connection"]["reconnect_attempts"] == 0
        assert data["counters"]["lines_received"] == 2
        assert data["counters"]["events"] == {"gesture": 1, "ignored": 1}
        assert data["health"]["status"] == "healthy"


class TestEnumerationFailure:
    def test_port_enumeration_error_is_a_retryable_failure(self, factory, publisher, controller, loop, logger):
        calls = []

        def list_ports():
            calls.append(1)
            if len(calls) == 1:
                raise OSError("udev not ready")
            return [PortInfo("/dev/ttyUSB0", "USB Serial", "")]

        resolver = DeviceResolver("auto", list_ports=list_ports)
        session = make_session(factory, resolver, publisher, controller, loop, logger)

        session.start()
        assert session.state == SessionState.CLOSED
        assert session.reconnect_attempts == 1
        assert logger.contains("Could not enumerate serial ports", level="ERROR")

        drain(loop)
        assert session.state == SessionState.OPEN
        assert session.port_name == "/dev/ttyUSB0"
