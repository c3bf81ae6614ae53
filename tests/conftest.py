"""Shared test fixtures and configuration."""
import os
import tempfile
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
_tmp_root = tempfile.mkdtemp(prefix="tutorline-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_tmp_root}/app.db")
os.environ.setdefault("AUDIO_DIR", os.path.join(_tmp_root, "audio"))
os.environ.setdefault("APP_NAME", "TutorLine")

from tutorline.main import app
from tutorline.core.config import Settings
from tutorline.core.dependencies import build_runtime
from tutorline.db.models import Base
from tutorline.services.call_session.manager import CallSessionManager
from tutorline.services.call_session.orchestrator import CallOrchestrator
from tutorline.services.events.bus import EventBus
from tutorline.services.history.repository import HistoryRepository
from tutorline.services.llm.client import LLMClient
from tutorline.services.speech.stt import SpeechToTextService
from tutorline.services.speech.tts import TextToSpeechService

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

QUESTION_TEXT = "What is photosynthesis?"
ANSWER_TEXT = "Photosynthesis is how plants turn light into food."


@pytest.fixture
def test_settings(tmp_path):
    """Settings with short timers for testing."""
    return Settings(
        openai_api_key=None,
        database_url=TEST_DATABASE_URL,
        audio_dir=str(tmp_path / "audio"),
        recording_max_seconds=0.05,
        summary_recording_max_seconds=0.05,
        recording_grace_seconds=0.05,
        stage_timeout_seconds=1,
        metrics_interval_seconds=0,
    )


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def history_repository(test_db_engine):
    """History repository backed by the in-memory test database."""
    session_factory = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return HistoryRepository(session_factory)


@pytest.fixture
def bus():
    return EventBus(buffer_size=500, observer_queue_size=500)


@pytest.fixture
def mock_stt():
    """Transcription provider that always hears the test question."""
    stt = Mock(spec=SpeechToTextService)
    stt.available = True
    stt.transcribe = AsyncMock(return_value=QUESTION_TEXT)
    return stt


@pytest.fixture
def mock_llm():
    """LLM provider with canned answers."""
    llm = Mock(spec=LLMClient)
    llm.available = True
    llm.answer = AsyncMock(return_value=ANSWER_TEXT)
    llm.classify = AsyncMock(return_value="Biology")
    llm.summarize = AsyncMock(return_value="You have been learning how plants make food.")
    return llm


@pytest.fixture
def mock_tts():
    """Speech synthesis that is not configured, so the gateway voice is used."""
    tts = Mock(spec=TextToSpeechService)
    tts.available = False
    tts.synthesize = AsyncMock(return_value=None)
    return tts


@pytest.fixture
def orchestrator(bus, mock_stt, mock_tts, mock_llm, history_repository, test_settings):
    return CallOrchestrator(
        bus, mock_stt, mock_tts, mock_llm, history=history_repository, config=test_settings
    )


@pytest.fixture
async def session_manager(orchestrator, bus):
    """Call session manager; all sessions are torn down after the test."""
    manager = CallSessionManager(orchestrator, bus)
    yield manager
    await manager.shutdown()


@pytest.fixture
def file_history_repository(tmp_path):
    """
    History repository on a file database.

    Used with the test client, whose event loop differs from the test's, so
    every connection must be opened on the loop that uses it.
    """
    db_path = tmp_path / "history.db"
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    return HistoryRepository(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))


@pytest.fixture
def runtime(test_settings, mock_stt, mock_tts, mock_llm, file_history_repository):
    return build_runtime(
        test_settings,
        bus=EventBus(buffer_size=500, observer_queue_size=500),
        stt=mock_stt,
        tts=mock_tts,
        llm=mock_llm,
        history=file_history_repository,
    )


@pytest.fixture
def test_client(runtime):
    """Create FastAPI test client with the test runtime."""
    app.state.runtime = runtime
    with TestClient(app) as client:
        yield client
    del app.state.runtime
