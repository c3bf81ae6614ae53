"""Runtime wiring and FastAPI dependencies."""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request

from tutorline.core.config import Settings, settings as default_settings
from tutorline.services.call_session.manager import CallSessionManager
from tutorline.services.call_session.orchestrator import CallOrchestrator
from tutorline.services.events.bus import EventBus
from tutorline.services.events.metrics import MetricsAggregator
from tutorline.services.history.repository import HistoryRepository
from tutorline.services.llm.client import LLMClient
from tutorline.services.speech.stt import SpeechToTextService
from tutorline.services.speech.tts import TextToSpeechService

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Long-lived services shared by every request."""

    settings: Settings
    bus: EventBus
    aggregator: MetricsAggregator
    stt: SpeechToTextService
    tts: TextToSpeechService
    llm: LLMClient
    history: Optional[HistoryRepository]
    manager: CallSessionManager

    async def start(self) -> None:
        self.aggregator.start()
        logger.info(
            f"[RUNTIME] Started - llm={self.llm.available}, stt={self.stt.available}, "
            f"tts={self.tts.available}, history={self.history is not None}"
        )

    async def stop(self) -> None:
        await self.manager.shutdown()
        await self.aggregator.stop()
        logger.info("[RUNTIME] Stopped")


def build_runtime(config: Optional[Settings] = None, **overrides: Any) -> Runtime:
    """
    Build the service graph.

    Any service can be replaced through ``overrides`` (bus, stt, tts, llm,
    history), which is how tests inject fakes.
    """
    config = config or default_settings
    bus = overrides.get("bus") or EventBus(
        buffer_size=config.event_buffer_size,
        observer_queue_size=config.observer_queue_size,
    )
    aggregator = MetricsAggregator(
        bus,
        latency_window=config.latency_window,
        interval_seconds=config.metrics_interval_seconds,
    )
    stt = overrides.get("stt") or SpeechToTextService(api_key=config.openai_api_key)
    tts = overrides.get("tts") or TextToSpeechService(
        api_key=config.openai_api_key, audio_dir=config.audio_dir
    )
    llm = overrides.get("llm") or LLMClient(api_key=config.openai_api_key, model=config.llm_model)

    if "history" in overrides:
        history = overrides["history"]
    else:
        from tutorline.db.database import AsyncSessionLocal

        history = HistoryRepository(AsyncSessionLocal)

    orchestrator = CallOrchestrator(bus, stt, tts, llm, history=history, config=config)
    manager = CallSessionManager(orchestrator, bus)
    return Runtime(
        settings=config,
        bus=bus,
        aggregator=aggregator,
        stt=stt,
        tts=tts,
        llm=llm,
        history=history,
        manager=manager,
    )


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_session_manager(request: Request) -> CallSessionManager:
    """Get call session manager."""
    return request.app.state.runtime.manager


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.runtime.bus


def get_history_repository(request: Request) -> Optional[HistoryRepository]:
    return request.app.state.runtime.history
