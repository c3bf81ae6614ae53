"""Caller question history endpoints."""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from tutorline.core.dependencies import get_history_repository
from tutorline.core.errors import StoreUnavailable
from tutorline.services.history.repository import HistoryEntry, HistoryRepository, SubjectStats

router = APIRouter()
logger = logging.getLogger(__name__)


def require_history(
    history: Optional[HistoryRepository] = Depends(get_history_repository),
) -> HistoryRepository:
    if history is None:
        raise HTTPException(status_code=503, detail="History store is not configured")
    return history


@router.get("/api/history/{caller}", response_model=List[HistoryEntry])
async def get_caller_history(
    caller: str,
    limit: int = Query(10, ge=1, le=100),
    subject: Optional[str] = None,
    history: HistoryRepository = Depends(require_history),
):
    """Get a caller's most recent questions, optionally for one subject."""
    logger.info(f"[HISTORY API] Fetching history - Caller: {caller}, Subject: {subject}, Limit: {limit}")
    try:
        if subject:
            return await history.query_by_subject(caller, subject, limit=limit)
        return await history.recent(caller, limit=limit)
    except StoreUnavailable as e:
        logger.error(f"[HISTORY API] Error fetching history - Caller: {caller}, Error: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/api/history/{caller}/stats", response_model=SubjectStats)
async def get_caller_stats(
    caller: str,
    history: HistoryRepository = Depends(require_history),
):
    """Get per-subject question counts for a caller."""
    try:
        return await history.stats(caller)
    except StoreUnavailable as e:
        logger.error(f"[HISTORY API] Error fetching stats - Caller: {caller}, Error: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@router.delete("/api/history/{caller}")
async def delete_caller_history(
    caller: str,
    history: HistoryRepository = Depends(require_history),
):
    """Delete all stored questions for a caller."""
    try:
        deleted = await history.delete_by_caller(caller)
    except StoreUnavailable as e:
        logger.error(f"[HISTORY API] Error deleting history - Caller: {caller}, Error: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    logger.info(f"[HISTORY API] Deleted {deleted} records - Caller: {caller}")
    return {"caller": caller, "deleted": deleted}
