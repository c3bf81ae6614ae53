"""Unit tests for the caller history repository."""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tutorline.core.errors import StoreUnavailable
from tutorline.services.history.repository import HistoryRepository


class TestHistoryRepository:
    """Test storing and querying history."""

    @pytest.mark.asyncio
    async def test_append_then_query(self, history_repository):
        """Test an appended record is returned by a subject query."""
        entry = await history_repository.append(
            "+15550001", "Biology", "What is a cell?", "The basic unit of life."
        )

        assert entry.id is not None
        records = await history_repository.query_by_subject("+15550001", "Biology")
        assert len(records) == 1
        assert records[0].question == "What is a cell?"
        assert records[0].answer == "The basic unit of life."

    @pytest.mark.asyncio
    async def test_most_recent_first_and_limit(self, history_repository):
        """Test subject queries are ordered newest first and limited."""
        for i in range(7):
            await history_repository.append("+15550001", "Physics", f"Question {i}", f"Answer {i}")

        records = await history_repository.query_by_subject("+15550001", "Physics", limit=5)
        assert [r.question for r in records] == [f"Question {i}" for i in (6, 5, 4, 3, 2)]

    @pytest.mark.asyncio
    async def test_subject_match_is_case_insensitive_and_partial(self, history_repository):
        """Test 'chemistry' finds any chemistry label."""
        await history_repository.append("+15550001", "Organic Chemistry", "q1", "a1")
        await history_repository.append("+15550001", "Chemistry", "q2", "a2")
        await history_repository.append("+15550001", "Biology", "q3", "a3")

        records = await history_repository.query_by_subject("+15550001", "CHEMISTRY")
        assert {r.question for r in records} == {"q1", "q2"}

    @pytest.mark.asyncio
    async def test_wildcards_in_subject_are_literal(self, history_repository):
        """Test % and _ in a spoken subject do not match everything."""
        await history_repository.append("+15550001", "Biology", "q1", "a1")
        await history_repository.append("+15550001", "Physics", "q2", "a2")

        assert await history_repository.query_by_subject("+15550001", "%") == []
        assert await history_repository.query_by_subject("+15550001", "_iology") == []

    @pytest.mark.asyncio
    async def test_callers_are_isolated(self, history_repository):
        """Test one caller never sees another caller's history."""
        await history_repository.append("+15550001", "History", "q1", "a1")
        await history_repository.append("+15550002", "History", "q2", "a2")

        records = await history_repository.query_by_subject("+15550002", "History")
        assert [r.question for r in records] == ["q2"]

    @pytest.mark.asyncio
    async def test_empty_history(self, history_repository):
        """Test a caller with no records gets an empty list."""
        assert await history_repository.query_by_subject("+15550009", "Physics") == []
        assert await history_repository.recent("+15550009") == []

    @pytest.mark.asyncio
    async def test_stats(self, history_repository):
        """Test per-subject counts for a caller."""
        for subject in ("Physics", "Physics", "Biology"):
            await history_repository.append("+15550001", subject, "q", "a")

        stats = await history_repository.stats("+15550001")
        assert stats.total_questions == 3
        assert stats.per_subject == {"Physics": 2, "Biology": 1}

    @pytest.mark.asyncio
    async def test_recent_and_delete(self, history_repository):
        """Test recent records across subjects and deleting a caller."""
        await history_repository.append("+15550001", "Physics", "q1", "a1")
        await history_repository.append("+15550001", "Biology", "q2", "a2")

        recent = await history_repository.recent("+15550001", limit=10)
        assert [r.question for r in recent] == ["q2", "q1"]

        deleted = await history_repository.delete_by_caller("+15550001")
        assert deleted == 2
        assert await history_repository.recent("+15550001") == []

    @pytest.mark.asyncio
    async def test_is_available(self, history_repository):
        assert await history_repository.is_available()


class TestHistoryUnavailable:
    """Test failures surface as StoreUnavailable."""

    @pytest.mark.asyncio
    async def test_missing_table_raises_store_unavailable(self):
        """Test a store without its schema reports unavailability."""
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        repository = HistoryRepository(
            async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        )
        try:
            with pytest.raises(StoreUnavailable):
                await repository.append("+15550001", "Physics", "q", "a")
            with pytest.raises(StoreUnavailable):
                await repository.query_by_subject("+15550001", "Physics")
        finally:
            await engine.dispose()
