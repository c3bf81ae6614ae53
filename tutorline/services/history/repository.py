"""Question/answer history persistence."""
import logging
from typing import Dict, List
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from sqlalchemy import select, func, desc, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tutorline.core.errors import StoreUnavailable
from tutorline.db.models import HistoryRecord

logger = logging.getLogger(__name__)


class HistoryEntry(BaseModel):
    """A stored question/answer pair."""

    id: int
    caller: str
    subject: str
    question: str
    answer: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubjectStats(BaseModel):
    """Per-subject question counts for a caller."""

    caller: str
    total_questions: int = 0
    per_subject: Dict[str, int] = {}


class HistoryRepository:
    """Stores and queries caller history.

    Every method opens its own short-lived session so the repository can be
    used from background tasks that outlive a request.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def is_available(self) -> bool:
        """Check that the database answers a trivial query."""
        try:
            async with self.session_factory() as db:
                await db.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"[HISTORY] Store unavailable: {type(e).__name__}: {e}")
            return False

    async def append(
        self, caller: str, subject: str, question: str, answer: str
    ) -> HistoryEntry:
        """Append a question/answer record for a caller and subject."""
        try:
            async with self.session_factory() as db:
                record = HistoryRecord(
                    caller=caller,
                    subject=subject,
                    question=question,
                    answer=answer,
                    created_at=datetime.utcnow(),
                )
                db.add(record)
                await db.commit()
                await db.refresh(record)
                logger.info(
                    f"[HISTORY] Stored record {record.id} - Caller: {caller}, Subject: {subject}"
                )
                return HistoryEntry.model_validate(record)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"append failed: {e}") from e

    async def query_by_subject(
        self, caller: str, subject: str, limit: int = 5
    ) -> List[HistoryEntry]:
        """
        Get the most recent records for a caller whose subject matches.

        Subject matching is case-insensitive and accepts partial matches, so
        "chemistry" also finds "Organic Chemistry".

        Returns:
            Records ordered most-recent-first
        """
        needle = subject.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{needle}%"
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(HistoryRecord)
                    .where(HistoryRecord.caller == caller)
                    .where(func.lower(HistoryRecord.subject).like(pattern, escape="\\"))
                    .order_by(desc(HistoryRecord.created_at), desc(HistoryRecord.id))
                    .limit(limit)
                )
                return [HistoryEntry.model_validate(r) for r in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"query failed: {e}") from e

    async def recent(self, caller: str, limit: int = 10) -> List[HistoryEntry]:
        """Get a caller's most recent records across all subjects."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(HistoryRecord)
                    .where(HistoryRecord.caller == caller)
                    .order_by(desc(HistoryRecord.created_at), desc(HistoryRecord.id))
                    .limit(limit)
                )
                return [HistoryEntry.model_validate(r) for r in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"recent query failed: {e}") from e

    async def stats(self, caller: str) -> SubjectStats:
        """Count a caller's questions per subject, largest first."""
        try:
            async with self.session_factory() as db:
                count = func.count(HistoryRecord.id)
                result = await db.execute(
                    select(HistoryRecord.subject, count)
                    .where(HistoryRecord.caller == caller)
                    .group_by(HistoryRecord.subject)
                    .order_by(desc(count))
                )
                per_subject = {subject: n for subject, n in result.all()}
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"stats query failed: {e}") from e

        return SubjectStats(
            caller=caller,
            total_questions=sum(per_subject.values()),
            per_subject=per_subject,
        )

    async def delete_by_caller(self, caller: str) -> int:
        """Delete all records for a caller. Returns the number removed."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(HistoryRecord).where(HistoryRecord.caller == caller)
                )
                records = result.scalars().all()
                for record in records:
                    await db.delete(record)
                await db.commit()
                return len(records)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"delete failed: {e}") from e
