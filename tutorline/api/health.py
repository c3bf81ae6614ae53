"""Health check endpoints."""
import asyncio
import logging

from fastapi import APIRouter, Depends, Request

from tutorline.core.dependencies import Runtime, get_runtime

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {"status": "healthy"}


@router.get("/api/status")
async def status(runtime: Runtime = Depends(get_runtime)):
    """Which providers are usable, plus the current metrics."""
    history_available = False
    if runtime.history is not None:
        try:
            history_available = await asyncio.wait_for(
                runtime.history.is_available(), timeout=runtime.settings.stage_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("[HEALTH] History store did not answer the availability check")
    return {
        "status": "healthy",
        "providers": {
            "transcription": runtime.stt.available,
            "llm": runtime.llm.available,
            "synthesis": runtime.tts.available,
            "history": history_available,
        },
        "activeSessions": runtime.manager.active_count,
        "metrics": runtime.bus.snapshot().model_dump(mode="json", by_alias=True),
    }
