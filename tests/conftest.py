"""Shared fixtures for journey service tests."""
from datetime import datetime, timedelta, timezone

import pytest

from journey_service.flow_control.journey.conditions import Equals
from journey_service.flow_control.journey.engine import JourneyEngine
from journey_service.flow_control.journey.models import Journey, Stage


class FakeClock:
    """Deterministic clock for the engine."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    """Notification dispatcher that records messages."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, user_id: str, message: str) -> bool:
        if self.fail:
            raise RuntimeError("SMS provider unavailable")
        self.sent.append((user_id, message))
        return True


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture
def engine(clock, notifier):
    return JourneyEngine(notifier=notifier, clock=clock)


@pytest.fixture
def make_checkout_journey():
    """Factory for the two-stage login -> checkout journey."""

    def _make(journey_id: str = "checkout", recurring: bool = False, **kwargs) -> Journey:
        journey = Journey(id=journey_id, name="Login to Checkout", is_recurring=recurring, **kwargs)
        journey.add_stage(
            Stage(id="login", name="Login", condition=Equals("event", "login"), is_onboarding=True)
        ).add_stage(
            Stage(
                id="checkout",
                name="Checkout",
                condition=Equals("event", "checkout"),
                is_terminal=True,
                notify_on_transition=True,
            )
        )
        journey.connect_stages("login", "checkout")
        return journey

    return _make


@pytest.fixture
def active_checkout_journey(engine, make_checkout_journey):
    journey = engine.create_journey(make_checkout_journey())
    engine.update_state(journey.id, True)
    return journey
