"""Shared pytest fixtures for gsb tests."""

import pytest

from gsb.event_loop import EventLoop
from gsb.mocks import MockClock, MockLogger, MockPowerAction, MockPublisher
from gsb.power import DisplayPowerController


def drain(loop: EventLoop) -> None:
    """Run the loop until nothing is due (completions may queue more work)."""
    for _ in range(100):
        if not loop.run_pending():
            return
    raise AssertionError("event loop did not settle")


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def loop(clock):
    return EventLoop(clock)


@pytest.fixture
def logger():
    return MockLogger()


@pytest.fixture
def action():
    return MockPowerAction()


@pytest.fixture
def publisher():
    return MockPublisher()


@pytest.fixture
def controller(action, loop, logger):
    return DisplayPowerController(
        power_action=action,
        loop=loop,
        logger=logger,
        debounce_seconds=300.0,
    )
