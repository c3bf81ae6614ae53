"""Rolling call metrics derived from bus events."""
import asyncio
import logging
import time
from collections import deque
from typing import Deque, Optional

from tutorline.services.events.bus import EventBus, ObserverHandle
from tutorline.services.events.models import (
    BaseEvent,
    LifecycleEvent,
    LogEvent,
    MetricsSnapshot,
    PipelineStage,
    PipelineStageUpdate,
    StageStatus,
)

logger = logging.getLogger(__name__)

# Aggregator queue is larger than a dashboard's so bursts do not skew counters
AGGREGATOR_QUEUE_SIZE = 4096


class MetricsAggregator:
    """Consumes bus events on its own task and republishes snapshots."""

    def __init__(
        self,
        bus: EventBus,
        latency_window: int = 100,
        interval_seconds: float = 5.0,
    ):
        self.bus = bus
        self.interval_seconds = interval_seconds
        self.total_calls = 0
        self.active_sessions = 0
        self.latency_samples: Deque[float] = deque(maxlen=latency_window)
        self.transcription_time_ms = 0.0
        self.answer_time_ms = 0.0
        self.synthesis_time_ms = 0.0
        self.started_at = time.time()
        self._handle: Optional[ObserverHandle] = None
        self._consumer: Optional[asyncio.Task] = None
        self._ticker: Optional[asyncio.Task] = None
        bus.set_snapshot_provider(self.snapshot)

    @property
    def avg_latency_ms(self) -> float:
        if not self.latency_samples:
            return 0.0
        return round(sum(self.latency_samples) / len(self.latency_samples), 1)

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            total_calls=self.total_calls,
            active_sessions=self.active_sessions,
            avg_latency_ms=self.avg_latency_ms,
            transcription_time_ms=self.transcription_time_ms,
            answer_time_ms=self.answer_time_ms,
            synthesis_time_ms=self.synthesis_time_ms,
            uptime_seconds=int(time.time() - self.started_at),
            total_events=self.bus.last_sequence,
            connected_observers=self.bus.observer_count,
        )

    def handle_event(self, event: BaseEvent) -> bool:
        """
        Fold one event into the counters.

        Returns:
            True when the counters changed and a snapshot should be published
        """
        if isinstance(event, LogEvent):
            if event.event == LifecycleEvent.CALL_STARTED:
                self.total_calls += 1
                self.active_sessions += 1
                return True
            if event.event == LifecycleEvent.CALL_ENDED:
                self.active_sessions = max(0, self.active_sessions - 1)
                return True
            return False

        if (
            isinstance(event, PipelineStageUpdate)
            and event.status == StageStatus.COMPLETE
            and event.duration_ms is not None
        ):
            self.latency_samples.append(event.duration_ms)
            if event.stage == PipelineStage.TRANSCRIPTION:
                self.transcription_time_ms = event.duration_ms
            elif event.stage == PipelineStage.ANSWER_GENERATION:
                self.answer_time_ms = event.duration_ms
            elif event.stage == PipelineStage.SPEECH_SYNTHESIS:
                self.synthesis_time_ms = event.duration_ms
            return True
        return False

    def publish_snapshot(self) -> BaseEvent:
        return self.bus.publish(self.snapshot())

    async def _consume(self) -> None:
        if self._handle is None:
            return
        async for event in self._handle:
            if self.handle_event(event):
                self.publish_snapshot()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.publish_snapshot()

    def start(self) -> None:
        """Subscribe to the bus and start the consumer and periodic tasks."""
        if self._consumer is not None:
            return
        self._handle = self.bus.subscribe(name="metrics", maxsize=AGGREGATOR_QUEUE_SIZE)
        # The initial snapshot is our own output
        self._handle.drain()
        self._consumer = asyncio.create_task(self._consume())
        if self.interval_seconds > 0:
            self._ticker = asyncio.create_task(self._tick())
        logger.info("[METRICS] Aggregator started")

    async def stop(self) -> None:
        for task in (self._consumer, self._ticker):
            if task is not None:
                task.cancel()
        for task in (self._consumer, self._ticker):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if self._handle is not None:
            self.bus.unsubscribe(self._handle)
        self._consumer = self._ticker = self._handle = None
        logger.info("[METRICS] Aggregator stopped")
