"""Dashboard-side client for the event bus WebSocket.

Example:
    client = ObserverClient("ws://localhost:8000/ws/events", on_events=render)
    await client.run()
"""
import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, List, Optional, Union

import websockets
from pydantic import ValidationError

from tutorline.services.events.models import (
    BaseEvent,
    LogEvent,
    LogLevel,
    MetricsSnapshot,
    PipelineStageUpdate,
    StageStatus,
    parse_event,
)

logger = logging.getLogger(__name__)

RenderCallback = Callable[[List[BaseEvent]], Union[None, Awaitable[None]]]
StateCallback = Callable[["ConnectionState"], Union[None, Awaitable[None]]]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


def backoff_delay(
    attempt: int, base: float = 1.0, factor: float = 1.5, ceiling: float = 30.0
) -> float:
    """Delay before reconnect attempt number ``attempt`` (1-based)."""
    if attempt < 1:
        return 0.0
    return min(base * factor ** (attempt - 1), ceiling)


def is_urgent(event: BaseEvent) -> bool:
    """Events that bypass the render buffer."""
    if isinstance(event, LogEvent):
        return event.live or event.level in (LogLevel.ERROR, LogLevel.SUCCESS)
    if isinstance(event, PipelineStageUpdate):
        return event.status == StageStatus.ERROR
    return False


async def _maybe_await(result: Any) -> None:
    if asyncio.iscoroutine(result):
        await result


class ObserverClient:
    """Connects to the bus transport, reconnects with backoff, buffers renders."""

    def __init__(
        self,
        url: str,
        on_events: RenderCallback,
        on_state_change: Optional[StateCallback] = None,
        base_delay: float = 1.0,
        backoff_factor: float = 1.5,
        max_delay: float = 30.0,
        max_attempts: int = 5,
        flush_interval: float = 0.25,
        history_size: int = 100,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.url = url
        self.on_events = on_events
        self.on_state_change = on_state_change
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.flush_interval = flush_interval
        self._connect = connect

        self.state = ConnectionState.CLOSED
        self.attempts = 0
        self.last_sequence = 0
        self.history: Deque[BaseEvent] = deque(maxlen=history_size)
        self._buffer: List[BaseEvent] = []
        self._flusher: Optional[asyncio.Task] = None
        self._should_stop = False
        self._ws = None

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        logger.info(f"[OBSERVER] Connection state: {state.value}")
        if self.on_state_change is not None:
            await _maybe_await(self.on_state_change(state))

    def next_delay(self) -> float:
        return backoff_delay(
            self.attempts, self.base_delay, self.backoff_factor, self.max_delay
        )

    def accept(self, event: BaseEvent) -> bool:
        """
        Decide whether an incoming event is new.

        A snapshot carrying a lower sequence than the cursor means the server
        restarted; the cursor resets instead of dropping everything after it.
        """
        if isinstance(event, MetricsSnapshot):
            if event.sequence < self.last_sequence:
                logger.info(
                    f"[OBSERVER] Bus sequence went back ({self.last_sequence} -> "
                    f"{event.sequence}), resetting cursor"
                )
            self.last_sequence = event.sequence
            return True
        if event.sequence <= self.last_sequence:
            return False
        self.last_sequence = event.sequence
        return True

    async def handle_message(self, raw: Union[str, bytes]) -> None:
        try:
            event = parse_event(raw)
        except ValidationError as e:
            logger.warning(f"[OBSERVER] Ignoring malformed event: {e}")
            return

        if not self.accept(event):
            return
        self.history.append(event)
        self._buffer.append(event)
        if is_urgent(event):
            await self.flush()

    async def flush(self) -> None:
        """Hand buffered events to the renderer."""
        if not self._buffer:
            return
        events, self._buffer = self._buffer, []
        try:
            await _maybe_await(self.on_events(events))
        except Exception as e:
            logger.error(f"[OBSERVER] Render callback failed: {e}", exc_info=True)

    def replay(self, limit: Optional[int] = None) -> List[BaseEvent]:
        """Recently received events, oldest first."""
        events = list(self.history)
        return events[-limit:] if limit else events

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            await self.flush()

    async def _listen(self) -> None:
        async with self._connect(self.url) as ws:
            self._ws = ws
            self.attempts = 0
            await self._set_state(ConnectionState.CONNECTED)
            try:
                async for message in ws:
                    await self.handle_message(message)
            finally:
                self._ws = None

    async def run(self) -> ConnectionState:
        """
        Connect and consume until closed or out of reconnect attempts.

        Returns:
            The final state, CLOSED or FAILED
        """
        self._should_stop = False
        self._flusher = asyncio.create_task(self._flush_loop())
        await self._set_state(ConnectionState.CONNECTING)
        try:
            while not self._should_stop:
                try:
                    await self._listen()
                    logger.info("[OBSERVER] Server closed the connection")
                except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                    logger.warning(f"[OBSERVER] Connection failed: {type(e).__name__}: {e}")

                if self._should_stop:
                    break
                if self.attempts >= self.max_attempts:
                    logger.error(
                        f"[OBSERVER] Giving up after {self.attempts} reconnect attempts"
                    )
                    await self._set_state(ConnectionState.FAILED)
                    return self.state

                self.attempts += 1
                delay = self.next_delay()
                await self._set_state(ConnectionState.RECONNECTING)
                logger.info(
                    f"[OBSERVER] Reconnecting in {delay:.1f}s (attempt {self.attempts})"
                )
                await asyncio.sleep(delay)
        finally:
            self._flusher.cancel()
            try:
                await self._flusher
            except asyncio.CancelledError:
                pass
            await self.flush()

        await self._set_state(ConnectionState.CLOSED)
        return self.state

    async def close(self) -> None:
        """Stop reconnecting and close the current connection."""
        self._should_stop = True
        if self._ws is not None:
            await self._ws.close()
