"""Unit tests for the dashboard observer client."""
import asyncio

import pytest

from tutorline.services.events.bus import EventBus
from tutorline.services.events.models import LogLevel, MetricsSnapshot
from tutorline.services.events.observer import (
    ConnectionState,
    ObserverClient,
    backoff_delay,
    is_urgent,
)


class FakeConnection:
    """Async context manager standing in for a websocket connection."""

    def __init__(self, messages):
        self.messages = list(messages)
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.messages or self.closed:
            raise StopAsyncIteration
        return self.messages.pop(0)

    async def close(self):
        self.closed = True


def refusing_connect(url):
    raise ConnectionRefusedError("connection refused")


class TestBackoff:
    """Test reconnect delays."""

    def test_delay_grows_and_caps(self):
        """Test delays grow geometrically up to the ceiling."""
        assert backoff_delay(1, base=3.0, factor=1.5, ceiling=30.0) == 3.0
        assert backoff_delay(2, base=3.0, factor=1.5, ceiling=30.0) == 4.5
        assert backoff_delay(20, base=3.0, factor=1.5, ceiling=30.0) == 30.0
        assert backoff_delay(0) == 0.0

    def test_delay_never_decreases(self):
        delays = [backoff_delay(n, base=3.0, factor=1.5, ceiling=30.0) for n in range(1, 15)]
        assert delays == sorted(delays)
        assert max(delays) == 30.0


class TestAccept:
    """Test duplicate suppression."""

    def _client(self):
        return ObserverClient("ws://test/ws/events", on_events=lambda events: None)

    def test_duplicates_dropped(self):
        """Test events at or below the cursor are skipped."""
        bus = EventBus()
        client = self._client()
        first = bus.log("one")
        second = bus.log("two")

        assert client.accept(first)
        assert client.accept(second)
        assert not client.accept(first)
        assert not client.accept(second)
        assert client.last_sequence == 2

    def test_lower_snapshot_resets_cursor(self):
        """Test a server restart is detected from the snapshot sequence."""
        client = self._client()
        client.last_sequence = 500

        assert client.accept(MetricsSnapshot(sequence=3))
        assert client.last_sequence == 3

        restarted = EventBus()
        for _ in range(4):
            event = restarted.log("after restart")
        assert client.accept(event)


class TestUrgency:
    """Test which events flush immediately."""

    def test_urgent_events(self):
        bus = EventBus()
        assert is_urgent(bus.log("boom", level=LogLevel.ERROR))
        assert is_urgent(bus.log("yay", level=LogLevel.SUCCESS))
        assert is_urgent(bus.log("typing", live=True))
        assert not is_urgent(bus.log("plain"))
        assert not is_urgent(MetricsSnapshot())


class TestRun:
    """Test the connection loop."""

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        """Test the client reports FAILED after exhausting attempts."""
        states = []
        client = ObserverClient(
            "ws://test/ws/events",
            on_events=lambda events: None,
            on_state_change=states.append,
            base_delay=0.001,
            max_attempts=3,
            connect=refusing_connect,
        )

        final = await asyncio.wait_for(client.run(), timeout=5)

        assert final == ConnectionState.FAILED
        assert client.attempts == 3
        assert states[0] == ConnectionState.CONNECTING
        assert ConnectionState.RECONNECTING in states

    @pytest.mark.asyncio
    async def test_renders_events_and_dedupes_across_reconnect(self):
        """Test events from a replayed connection are rendered once."""
        bus = EventBus()
        snapshot = bus.snapshot().to_wire()
        one = bus.log("one").to_wire()
        two = bus.log("two", level=LogLevel.SUCCESS).to_wire()
        connections = [
            FakeConnection([snapshot, one]),
            FakeConnection([one, two, "not json"]),
        ]
        rendered = []

        def connect(url):
            if connections:
                return connections.pop(0)
            raise ConnectionRefusedError("gone")

        client = ObserverClient(
            "ws://test/ws/events",
            on_events=rendered.extend,
            base_delay=0.001,
            max_attempts=1,
            flush_interval=0.01,
            connect=connect,
        )

        final = await asyncio.wait_for(client.run(), timeout=5)

        messages = [getattr(e, "message", None) for e in rendered]
        assert messages.count("one") == 1
        assert messages.count("two") == 1
        assert isinstance(rendered[0], MetricsSnapshot)
        assert final == ConnectionState.FAILED
        assert len(client.replay()) == 3

    @pytest.mark.asyncio
    async def test_close_stops_reconnecting(self):
        """Test closing while running ends with CLOSED."""
        client = ObserverClient(
            "ws://test/ws/events",
            on_events=lambda events: None,
            base_delay=0.01,
            connect=lambda url: FakeConnection([]),
        )
        runner = asyncio.create_task(client.run())
        await asyncio.sleep(0.05)
        await client.close()

        final = await asyncio.wait_for(runner, timeout=5)
        assert final == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_render_error_does_not_stop_the_client(self):
        """Test a failing renderer on an urgent event keeps the loop alive."""
        bus = EventBus()
        urgent = bus.log("provider down", level=LogLevel.ERROR).to_wire()
        later = bus.log("after").to_wire()
        connections = [FakeConnection([urgent, later])]
        calls = []

        def render(events):
            calls.append(events)
            raise RuntimeError("render failed")

        def connect(url):
            if connections:
                return connections.pop(0)
            raise ConnectionRefusedError("gone")

        client = ObserverClient(
            "ws://test/ws/events",
            on_events=render,
            base_delay=0.001,
            max_attempts=1,
            flush_interval=0.01,
            connect=connect,
        )

        final = await asyncio.wait_for(client.run(), timeout=5)

        assert final == ConnectionState.FAILED
        assert client.last_sequence == 2
        assert calls
