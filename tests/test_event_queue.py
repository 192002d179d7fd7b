"""Unit tests for the event queue and the journey consumer."""
import threading

import pytest
from structlog.testing import capture_logs

from journey_service.events.consumer import build_journey_consumer, extract_user_id
from journey_service.events.event_queue import EventQueue


@pytest.fixture
def event_queue():
    q = EventQueue(max_size=10, poll_timeout=0.05)
    yield q
    q.stop(timeout=2)


class TestEventQueue:
    """Test consumer registration and delivery."""

    def test_register_and_unregister(self, event_queue):
        first = event_queue.register_consumer(lambda event: None)
        second = event_queue.register_consumer(lambda event: None)

        assert first != second
        assert event_queue.consumer_count() == 2
        assert event_queue.unregister_consumer(first) is True
        assert event_queue.unregister_consumer(first) is False
        assert event_queue.consumer_count() == 1

    def test_dispatch_in_publish_order(self, event_queue):
        received = []
        event_queue.register_consumer(lambda event: received.append(("a", event["event"])))
        event_queue.register_consumer(lambda event: received.append(("b", event["event"])))

        event_queue.publish({"event": "login"})
        event_queue.publish({"event": "checkout"})

        assert event_queue.pending() == 2
        assert event_queue.dispatch_pending() == 2
        assert event_queue.pending() == 0
        assert received == [
            ("a", "login"),
            ("b", "login"),
            ("a", "checkout"),
            ("b", "checkout"),
        ]

    def test_unregistered_consumer_stops_receiving(self, event_queue):
        received = []
        handle = event_queue.register_consumer(received.append)

        event_queue.publish({"event": "login"})
        event_queue.dispatch_pending()
        event_queue.unregister_consumer(handle)
        event_queue.publish({"event": "checkout"})
        event_queue.dispatch_pending()

        assert received == [{"event": "login"}]

    def test_failing_consumer_does_not_block_others(self, event_queue):
        received = []

        def broken(event):
            raise RuntimeError("consumer crashed")

        event_queue.register_consumer(broken)
        event_queue.register_consumer(received.append)

        event_queue.publish({"event": "login"})
        event_queue.dispatch_pending()

        assert received == [{"event": "login"}]

    def test_full_queue_drops_event(self):
        q = EventQueue(max_size=1)

        assert q.publish({"event": "login"}) is True
        assert q.publish({"event": "checkout"}) is False
        assert q.pending() == 1

    def test_background_dispatcher(self, event_queue):
        delivered = threading.Event()
        received = []

        def consumer(event):
            received.append(event)
            delivered.set()

        event_queue.register_consumer(consumer)
        event_queue.start()
        event_queue.publish({"event": "login"})

        assert delivered.wait(timeout=2)
        event_queue.join()
        assert received == [{"event": "login"}]


class TestJourneyConsumer:
    """Test the callback that feeds queued events into the engine."""

    def test_extract_user_id(self):
        assert extract_user_id({"user_id": "user1"}) == "user1"
        assert extract_user_id({"userId": 42}) == "42"
        assert extract_user_id({"event": "login"}) is None

    def test_events_advance_users(self, engine, active_checkout_journey, event_queue):
        event_queue.register_consumer(build_journey_consumer(engine))

        event_queue.publish({"user_id": "user1", "event": "login"})
        event_queue.publish({"user_id": "user2", "event": "login"})
        event_queue.publish({"user_id": "user1", "event": "checkout"})
        event_queue.dispatch_pending()

        assert engine.get_current_stage("user1", "checkout").id == "checkout"
        assert engine.get_current_stage("user2", "checkout").id == "login"

    def test_event_without_user_is_ignored(self, engine, active_checkout_journey):
        consume = build_journey_consumer(engine)

        assert consume({"event": "login"}) == []
        assert engine.get_users_in_journey("checkout") == []

    def test_event_names_are_logged(self, engine, active_checkout_journey, event_queue):
        event_queue.register_consumer(build_journey_consumer(engine))

        with capture_logs() as logs:
            assert event_queue.publish({"user_id": "user1", "event": "login"}) is True
            event_queue.dispatch_pending()

        logged = {entry["event"]: entry for entry in logs}
        assert logged["Event published"]["event_name"] == "login"
        assert logged["Processing event"]["event_name"] == "login"
        assert engine.is_onboarded("user1", "checkout")

    def test_dropped_event_is_logged(self):
        q = EventQueue(max_size=1)
        q.publish({"user_id": "user1", "event": "login"})

        with capture_logs() as logs:
            assert q.publish({"user_id": "user1", "event": "checkout"}) is False

        assert logs[0]["event"] == "Event queue full, event dropped"
        assert logs[0]["event_name"] == "checkout"
