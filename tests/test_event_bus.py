"""
Tests for the in-process event bus.
"""

from context_engine.domain.events import EventBus, EventType


class TestEventBus:

    def test_listeners_called_in_subscription_order(self):
        bus = EventBus(source="Test")
        calls = []
        bus.subscribe(EventType.CONTEXT_CREATED, lambda e: calls.append("first"))
        bus.subscribe(EventType.CONTEXT_CREATED, lambda e: calls.append("second"))

        bus.emit(EventType.CONTEXT_CREATED, {"id": 1})
        assert calls == ["first", "second"]

    def test_only_matching_type_is_delivered(self):
        bus = EventBus(source="Test")
        received = []
        bus.subscribe(EventType.MEMORY_UPDATED, received.append)

        bus.emit(EventType.CONTEXT_CREATED)
        assert received == []

    def test_unsubscribe_by_identity(self):
        bus = EventBus(source="Test")
        received = []
        listener = received.append
        bus.subscribe("context_updated", listener)

        assert bus.unsubscribe(EventType.CONTEXT_UPDATED, listener) is True
        assert bus.unsubscribe(EventType.CONTEXT_UPDATED, listener) is False
        bus.emit(EventType.CONTEXT_UPDATED)
        assert received == []

    def test_failing_listener_is_isolated(self):
        bus = EventBus(source="Test")
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.subscribe(EventType.ERROR_OCCURRED, broken)
        bus.subscribe(EventType.ERROR_OCCURRED, received.append)

        event = bus.emit(EventType.ERROR_OCCURRED, {"error": "x"})
        assert received == [event]

    def test_event_envelope(self):
        bus = EventBus(source="Test")
        event = bus.emit(EventType.CONTEXT_CACHED, {"key": "k"})

        assert event.type == EventType.CONTEXT_CACHED
        assert event.payload == {"key": "k"}
        assert event.source == "Test"

        forwarded = event.forwarded("Other")
        assert forwarded.source == "Other"
        assert forwarded.timestamp == event.timestamp
        assert forwarded.payload == event.payload

    def test_listener_count_and_clear(self):
        bus = EventBus(source="Test")
        bus.subscribe(EventType.CONTEXT_CREATED, print)
        bus.subscribe(EventType.CONTEXT_EXPIRED, print)

        assert bus.listener_count() == 2
        assert bus.listener_count(EventType.CONTEXT_CREATED) == 1
        bus.clear()
        assert bus.listener_count() == 0
