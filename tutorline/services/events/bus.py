"""In-process event broadcast bus.

``publish`` never waits: every observer owns a bounded queue and a full queue
drops its oldest event. Delivery is best-effort and at-most-once; the only
ordering guarantee is that each observer sees events in publication order.
"""
import asyncio
import itertools
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from tutorline.services.events.models import (
    BaseEvent,
    LifecycleEvent,
    LogEvent,
    LogLevel,
    MetricsSnapshot,
    NetworkCallRecord,
    PipelineStage,
    PipelineStageUpdate,
    StageStatus,
)

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], MetricsSnapshot]


class ObserverHandle:
    """A registered observer and its outbound queue."""

    def __init__(self, observer_id: int, maxsize: int, name: str = ""):
        self.id = observer_id
        self.name = name or f"observer-{observer_id}"
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.delivered = 0
        self.closed = False

    def offer(self, event: BaseEvent) -> None:
        """Enqueue without blocking, evicting the oldest event when full."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self.dropped += 1
            self.queue.put_nowait(event)
        self.delivered += 1

    async def get(self) -> BaseEvent:
        return await self.queue.get()

    def get_nowait(self) -> Optional[BaseEvent]:
        try:
            return self.queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> List[BaseEvent]:
        """Take everything currently queued."""
        events = []
        while True:
            event = self.get_nowait()
            if event is None:
                return events
            events.append(event)

    def __aiter__(self):
        return self

    async def __anext__(self) -> BaseEvent:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        return await self.queue.get()


class EventBus:
    """Fan-out of typed events to any number of observers."""

    def __init__(self, buffer_size: int = 100, observer_queue_size: int = 256):
        self.observer_queue_size = observer_queue_size
        self._buffer: Deque[BaseEvent] = deque(maxlen=buffer_size)
        self._observers: Dict[int, ObserverHandle] = {}
        self._ids = itertools.count(1)
        self._sequence = 0
        self._snapshot_provider: Optional[SnapshotProvider] = None
        self.started_at = time.time()

    @property
    def last_sequence(self) -> int:
        return self._sequence

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def set_snapshot_provider(self, provider: SnapshotProvider) -> None:
        """Register the source of snapshots sent to new observers."""
        self._snapshot_provider = provider

    def snapshot(self) -> MetricsSnapshot:
        if self._snapshot_provider is not None:
            snapshot = self._snapshot_provider()
        else:
            snapshot = MetricsSnapshot(
                uptime_seconds=int(time.time() - self.started_at),
                total_events=self._sequence,
                connected_observers=self.observer_count,
            )
        return snapshot.model_copy(update={"sequence": self._sequence})

    def publish(self, event: BaseEvent) -> BaseEvent:
        """
        Stamp an event with the next sequence number and fan it out.

        Returns:
            The stamped event
        """
        self._sequence += 1
        stamped = event.model_copy(update={"sequence": self._sequence})
        self._buffer.append(stamped)

        for handle in list(self._observers.values()):
            before = handle.dropped
            handle.offer(stamped)
            if handle.dropped != before:
                logger.debug(
                    f"[EVENT BUS] Observer {handle.name} saturated, dropped oldest event "
                    f"(total dropped: {handle.dropped})"
                )
        return stamped

    def subscribe(self, name: str = "", maxsize: Optional[int] = None) -> ObserverHandle:
        """Register an observer. Its queue starts with a metrics snapshot."""
        handle = ObserverHandle(
            next(self._ids), maxsize or self.observer_queue_size, name=name
        )
        self._observers[handle.id] = handle
        handle.offer(self.snapshot())
        logger.info(
            f"[EVENT BUS] Observer {handle.name} subscribed ({self.observer_count} connected)"
        )
        return handle

    def unsubscribe(self, handle: ObserverHandle) -> None:
        """Deregister an observer. Unknown handles are ignored."""
        handle.closed = True
        if self._observers.pop(handle.id, None) is not None:
            logger.info(
                f"[EVENT BUS] Observer {handle.name} unsubscribed "
                f"({self.observer_count} connected, "
                f"{handle.delivered} delivered, {handle.dropped} dropped)"
            )

    def recent(self, limit: Optional[int] = None) -> List[BaseEvent]:
        """Buffered events, oldest first."""
        events = list(self._buffer)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    # Typed emission helpers

    def log(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        call_id: Optional[str] = None,
        event: Optional[LifecycleEvent] = None,
        live: bool = False,
    ) -> BaseEvent:
        return self.publish(
            LogEvent(message=message, level=level, call_id=call_id, event=event, live=live)
        )

    def stage(
        self,
        call_id: str,
        stage: PipelineStage,
        status: StageStatus,
        state: Optional[str] = None,
        duration_ms: Optional[float] = None,
        detail: Optional[str] = None,
    ) -> BaseEvent:
        return self.publish(
            PipelineStageUpdate(
                call_id=call_id,
                stage=stage,
                status=status,
                state=state,
                duration_ms=round(duration_ms, 1) if duration_ms is not None else None,
                detail=detail,
            )
        )

    def network_call(
        self, method: str, endpoint: str, status_code: int, latency_ms: float
    ) -> BaseEvent:
        return self.publish(
            NetworkCallRecord(
                method=method.upper(),
                endpoint=endpoint,
                status_code=status_code,
                latency_ms=round(latency_ms, 1),
            )
        )
