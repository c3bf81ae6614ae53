"""Event stream endpoints for live dashboards."""
import asyncio
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from tutorline.core.dependencies import get_event_bus
from tutorline.services.events.bus import EventBus, ObserverHandle
from tutorline.services.events.models import LifecycleEvent, LogLevel

router = APIRouter()
logger = logging.getLogger(__name__)


async def _send_events(websocket: WebSocket, handle: ObserverHandle) -> None:
    async for event in handle:
        await websocket.send_text(event.to_wire())


async def _ignore_messages(websocket: WebSocket) -> None:
    # The stream is read-only; reading only detects the disconnect
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/events")
async def events_stream(websocket: WebSocket):
    """Stream bus events to one observer, starting with a metrics snapshot."""
    bus: EventBus = websocket.app.state.runtime.bus
    await websocket.accept()
    client = websocket.client.host if websocket.client else "unknown"
    handle = bus.subscribe(name=f"ws-{client}")
    bus.log(
        f"Observer connected from {client}",
        level=LogLevel.INFO,
        event=LifecycleEvent.OBSERVER_CONNECTED,
    )

    sender = asyncio.create_task(_send_events(websocket, handle))
    receiver = asyncio.create_task(_ignore_messages(websocket))
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"[EVENTS] Observer {handle.name} stream stopped: {type(error).__name__}: {error}")
    finally:
        bus.unsubscribe(handle)
        logger.info(f"[EVENTS] Observer {handle.name} disconnected (dropped={handle.dropped})")


@router.get("/api/events/recent")
async def recent_events(
    limit: int = Query(50, ge=0, le=1000),
    bus: EventBus = Depends(get_event_bus),
):
    """Buffered events, oldest first."""
    return [event.model_dump(mode="json", by_alias=True) for event in bus.recent(limit)]


@router.get("/api/metrics")
async def metrics(bus: EventBus = Depends(get_event_bus)):
    """Current metrics snapshot."""
    return bus.snapshot().model_dump(mode="json", by_alias=True)
