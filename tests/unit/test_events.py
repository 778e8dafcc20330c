"""
Tests for the event bus, event records and payload validation.

Covers:
- Closed topic vocabulary and immutable payloads
- Schema validation before delivery
- Per-subscriber FIFO ordering and failure isolation
- Unsubscribe, flush and close
"""

import threading

import pytest

from captain.errors import PayloadValidationError
from captain.events.bus import EventBus
from captain.events.types import Event, Topic
from captain.events.validation import ALLOWED_FIELDS, REQUIRED_FIELDS, validate_payload


class TestTopic:

    def test_vocabulary_is_closed(self):
        assert Topic.parse("build.blocked") is Topic.BUILD_BLOCKED
        with pytest.raises(ValueError):
            Topic.parse("build.exploded")

    def test_every_topic_has_a_schema(self):
        for topic in Topic:
            assert topic in ALLOWED_FIELDS
            assert topic in REQUIRED_FIELDS
            assert REQUIRED_FIELDS[topic] <= ALLOWED_FIELDS[topic]


class TestEvent:

    def test_payload_is_immutable(self):
        event = Event(topic=Topic.BUILD_BLOCKED, payload={"task_id": "t1", "reasons": ["a"]})

        with pytest.raises(TypeError):
            event.payload["task_id"] = "t2"
        assert event.payload["reasons"] == ("a",)

    def test_payload_is_copied(self):
        payload = {"task_id": "t1"}
        event = Event(topic=Topic.TASK_COMPLETE, payload=payload)
        payload["task_id"] = "changed"
        assert event.payload["task_id"] == "t1"

    def test_to_dict_thaws_payload(self):
        event = Event(
            topic=Topic.HUMAN_INTERACT,
            payload={"request_id": "r1", "question": "?", "options": [{"label": "A"}]},
            correlation_id="c1",
        )
        data = event.to_dict()
        assert data["payload"]["options"] == [{"label": "A"}]
        assert Event.from_dict(data).correlation_id == "c1"


class TestValidation:

    def test_valid_payload(self):
        assert validate_payload(Topic.TASK_START, {"task_id": "t1", "title": "x"})

    def test_unknown_field_rejected(self):
        with pytest.raises(PayloadValidationError, match="Invalid payload field"):
            validate_payload(Topic.TASK_START, {"task_id": "t1", "title": "x", "extra": 1})

    def test_missing_field_rejected(self):
        with pytest.raises(PayloadValidationError, match="Missing payload field"):
            validate_payload(Topic.BUILD_BLOCKED, {"task_id": "t1"})


class TestEventBus:

    def test_delivers_to_topic_subscribers_only(self, bus):
        started, completed = [], []
        bus.subscribe(Topic.TASK_START, started.append)
        bus.subscribe("task.complete", completed.append)

        bus.publish(Topic.TASK_START, {"task_id": "t1", "title": "x"})
        assert bus.flush(timeout=2.0)

        assert [e.payload["task_id"] for e in started] == ["t1"]
        assert completed == []

    def test_publish_returns_correlation_id(self, bus):
        received = []
        bus.subscribe(Topic.TASK_COMPLETE, received.append)

        cid = bus.publish(Topic.TASK_COMPLETE, {"task_id": "t1"}, correlation_id="corr-1")
        bus.flush(timeout=2.0)

        assert cid == "corr-1"
        assert received[0].correlation_id == "corr-1"

    def test_invalid_payload_is_never_delivered(self, bus, recorder):
        with pytest.raises(PayloadValidationError):
            bus.publish(Topic.TASK_COMPLETE, {"task_id": "t1", "bogus": True})
        bus.flush(timeout=2.0)
        assert recorder.events == []

    def test_unknown_topic_rejected(self, bus):
        with pytest.raises(ValueError):
            bus.publish("not.a.topic", {})

    def test_fifo_per_subscriber(self, bus):
        received = []
        bus.subscribe(Topic.BUILD_DONE, lambda e: received.append(e.payload["attempt"]))

        for attempt in range(50):
            bus.publish(Topic.BUILD_DONE, {"task_id": "t1", "attempt": attempt})
        bus.flush(timeout=5.0)

        assert received == list(range(50))

    def test_concurrent_publishers_see_same_order(self, bus):
        first, second = [], []
        bus.subscribe(Topic.BUILD_DONE, lambda e: first.append(e.payload["attempt"]))
        bus.subscribe(Topic.BUILD_DONE, lambda e: second.append(e.payload["attempt"]))

        def publish_range(start):
            for i in range(start, start + 25):
                bus.publish(Topic.BUILD_DONE, {"task_id": "t1", "attempt": i})

        threads = [threading.Thread(target=publish_range, args=(n * 25,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        bus.flush(timeout=5.0)

        assert len(first) == 100
        assert first == second

    def test_failing_subscriber_is_isolated(self, bus):
        received = []

        def explode(event):
            raise RuntimeError("boom")

        bad = bus.subscribe(Topic.TASK_COMPLETE, explode, name="explode")
        bus.subscribe(Topic.TASK_COMPLETE, received.append)

        bus.publish(Topic.TASK_COMPLETE, {"task_id": "t1"})
        bus.publish(Topic.TASK_COMPLETE, {"task_id": "t2"})
        bus.flush(timeout=2.0)

        assert bad.failures == 2
        assert [e.payload["task_id"] for e in received] == ["t1", "t2"]

    def test_slow_subscriber_does_not_block_others(self, bus):
        release = threading.Event()
        fast = []
        bus.subscribe(Topic.TASK_COMPLETE, lambda e: release.wait(5.0))
        bus.subscribe(Topic.TASK_COMPLETE, fast.append)

        bus.publish(Topic.TASK_COMPLETE, {"task_id": "t1"})
        assert not bus.flush(timeout=0.3)
        assert len(fast) == 1

        release.set()
        assert bus.flush(timeout=2.0)

    def test_observer_sees_every_topic(self, bus, recorder):
        bus.publish(Topic.LOOP_HALTED, {"reason": "x"})
        bus.publish(Topic.LOOP_RESUMED, {})
        bus.flush(timeout=2.0)
        assert recorder.topics() == ["loop.halted", "loop.resumed"]

    def test_unsubscribe(self, bus):
        received = []
        subscription = bus.subscribe(Topic.TASK_COMPLETE, received.append)
        assert bus.subscriber_count(Topic.TASK_COMPLETE) == 1

        subscription.unsubscribe()
        bus.publish(Topic.TASK_COMPLETE, {"task_id": "t1"})
        bus.flush(timeout=2.0)

        assert bus.subscriber_count(Topic.TASK_COMPLETE) == 0
        assert received == []

    def test_closed_bus_rejects_publish(self):
        bus = EventBus()
        bus.close()
        assert bus.closed
        with pytest.raises(RuntimeError, match="closed"):
            bus.publish(Topic.LOOP_RESUMED, {})

    def test_close_drains_queued_events(self):
        bus = EventBus()
        received = []
        bus.subscribe(Topic.BUILD_DONE, received.append)
        for attempt in range(10):
            bus.publish(Topic.BUILD_DONE, {"task_id": "t1", "attempt": attempt})
        bus.close(timeout=2.0)
        assert len(received) == 10
