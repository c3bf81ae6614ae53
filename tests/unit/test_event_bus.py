"""Unit tests for the event bus."""
import json
import logging

import pytest

from tutorline.services.events.bus import EventBus
from tutorline.services.events.models import (
    LifecycleEvent,
    LogEvent,
    LogLevel,
    MetricsSnapshot,
    NetworkCallRecord,
    PipelineStage,
    PipelineStageUpdate,
    StageStatus,
    parse_event,
)


class TestPublish:
    """Test publishing and sequencing."""

    def test_sequence_is_global_and_increasing(self):
        """Test every published event gets the next sequence number."""
        bus = EventBus()
        first = bus.log("one")
        second = bus.stage("CA1", PipelineStage.INTAKE, StageStatus.ACTIVE, state="welcome")
        third = bus.network_call("post", "/webhooks/voice/menu", 200, 12.345)

        assert [first.sequence, second.sequence, third.sequence] == [1, 2, 3]
        assert bus.last_sequence == 3
        assert third.method == "POST"
        assert third.latency_ms == 12.3

    def test_events_are_immutable(self):
        """Test published events cannot be modified."""
        bus = EventBus()
        event = bus.log("hello")
        with pytest.raises(Exception):
            event.message = "changed"

    def test_ring_buffer_keeps_newest(self):
        """Test the recent buffer is bounded and ordered oldest first."""
        bus = EventBus(buffer_size=3)
        for i in range(5):
            bus.log(f"event {i}")

        recent = bus.recent()
        assert [e.message for e in recent] == ["event 2", "event 3", "event 4"]
        assert [e.message for e in bus.recent(2)] == ["event 3", "event 4"]
        assert bus.recent(0) == []

    def test_publish_without_observers(self):
        """Test publishing with nobody listening still buffers."""
        bus = EventBus()
        bus.log("nobody here")
        assert bus.observer_count == 0
        assert len(bus.recent()) == 1


class TestObservers:
    """Test observer subscription and delivery."""

    def test_subscribe_starts_with_snapshot(self):
        """Test a new observer first receives a metrics snapshot."""
        bus = EventBus()
        bus.log("before")
        handle = bus.subscribe(name="dashboard")

        first = handle.get_nowait()
        assert isinstance(first, MetricsSnapshot)
        assert first.sequence == 1
        assert first.connected_observers == 1

    def test_observers_see_publication_order(self):
        """Test each observer receives events in publication order."""
        bus = EventBus()
        a = bus.subscribe()
        b = bus.subscribe()
        for i in range(3):
            bus.log(f"event {i}")

        for handle in (a, b):
            events = handle.drain()[1:]
            assert [e.sequence for e in events] == [1, 2, 3]

    def test_subscribe_mid_burst(self):
        """Test an observer joining mid-burst sees the rest in order."""
        bus = EventBus(observer_queue_size=100)
        for i in range(25):
            bus.log(f"event {i}")
        handle = bus.subscribe()
        for i in range(25, 50):
            bus.log(f"event {i}")

        snapshot, *events = handle.drain()
        assert snapshot.sequence == 25
        assert [e.sequence for e in events] == list(range(26, 51))

    def test_slow_observer_drops_oldest(self):
        """Test a full queue evicts its oldest event without blocking."""
        bus = EventBus(observer_queue_size=3)
        slow = bus.subscribe(name="slow")
        for i in range(5):
            bus.log(f"event {i}")

        events = slow.drain()
        assert [e.message for e in events] == ["event 2", "event 3", "event 4"]
        assert slow.dropped == 3
        assert slow.delivered == 6

    def test_slow_observer_does_not_affect_others(self):
        """Test saturation is per observer."""
        bus = EventBus(observer_queue_size=2)
        slow = bus.subscribe(name="slow")
        fast = bus.subscribe(name="fast", maxsize=100)
        for i in range(10):
            bus.log(f"event {i}")

        assert slow.dropped > 0
        assert fast.dropped == 0
        assert len(fast.drain()) == 11

    def test_unsubscribe_is_idempotent(self):
        """Test unsubscribing twice is harmless and stops delivery."""
        bus = EventBus()
        handle = bus.subscribe()
        bus.unsubscribe(handle)
        bus.unsubscribe(handle)
        bus.log("after")

        assert bus.observer_count == 0
        assert handle.closed
        assert [type(e) for e in handle.drain()] == [MetricsSnapshot]

    def test_unsubscribe_reports_counts(self, caplog):
        """Test the unsubscribe log carries delivery and drop counts."""
        caplog.set_level(logging.INFO, logger="tutorline.services.events.bus")
        bus = EventBus()
        handle = bus.subscribe(name="dashboard")
        bus.log("one")
        bus.unsubscribe(handle)

        assert "2 delivered, 0 dropped" in caplog.text

    @pytest.mark.asyncio
    async def test_async_iteration_ends_when_closed(self):
        """Test iterating a closed handle drains it and stops."""
        bus = EventBus()
        handle = bus.subscribe()
        bus.log("one")
        bus.unsubscribe(handle)

        received = [event async for event in handle]
        assert len(received) == 2


class TestWireFormat:
    """Test event serialization."""

    def test_wire_format_is_camel_case_with_kind(self):
        """Test the JSON record carries kind and camelCase fields."""
        bus = EventBus()
        event = bus.stage(
            "CA1", PipelineStage.ANSWER_GENERATION, StageStatus.COMPLETE, duration_ms=812.26
        )
        record = json.loads(event.to_wire())

        assert record["kind"] == "pipelineStageUpdate"
        assert record["callId"] == "CA1"
        assert record["stage"] == "answerGeneration"
        assert record["durationMs"] == 812.3
        assert record["sequence"] == 1

    def test_parse_event_restores_type(self):
        """Test wire records parse back into their event class."""
        bus = EventBus()
        log = bus.log("call", level=LogLevel.TWILIO, call_id="CA1", event=LifecycleEvent.CALL_STARTED)
        net = bus.network_call("GET", "/api/metrics", 200, 1.0)

        parsed_log = parse_event(log.to_wire())
        parsed_net = parse_event(net.to_wire())
        assert isinstance(parsed_log, LogEvent)
        assert parsed_log.event == LifecycleEvent.CALL_STARTED
        assert isinstance(parsed_net, NetworkCallRecord)
        assert parsed_net.sequence == 2

    def test_stage_update_fields(self):
        """Test stage updates carry call and state."""
        event = PipelineStageUpdate(
            call_id="CA2", stage=PipelineStage.DELIVERY, status=StageStatus.ERROR, state="menu"
        )
        assert event.call_id == "CA2"
        assert event.status == "error"
