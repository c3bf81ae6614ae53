"""Typed events published on the event bus.

Events are immutable. The bus stamps each one with a global ``sequence``
when it is published; observers use it to keep publication order and to
skip events they already received.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineStage(str, Enum):
    """Pipeline stages shown on the dashboard."""

    INTAKE = "intake"
    TRANSCRIPTION = "transcription"
    RETRIEVAL = "retrieval"
    ANSWER_GENERATION = "answerGeneration"
    SPEECH_SYNTHESIS = "speechSynthesis"
    DELIVERY = "delivery"


class StageStatus(str, Enum):
    """Status of a pipeline stage."""

    ACTIVE = "active"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    TWILIO = "twilio"
    STT = "stt"
    LLM = "llm"
    TTS = "tts"


class LifecycleEvent(str, Enum):
    """Tags for log events that carry meaning beyond their message."""

    CALL_STARTED = "callStarted"
    CALL_ENDED = "callEnded"
    FEATURE_UNAVAILABLE = "featureUnavailable"
    OBSERVER_CONNECTED = "observerConnected"


class BaseEvent(BaseModel):
    """Fields shared by every event."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    timestamp: datetime = Field(default_factory=utcnow)
    sequence: int = 0

    def to_wire(self) -> str:
        """Serialize as a self-describing JSON record."""
        return self.model_dump_json(by_alias=True)


class LogEvent(BaseEvent):
    kind: Literal["log"] = "log"
    level: LogLevel = LogLevel.INFO
    message: str
    call_id: Optional[str] = None
    event: Optional[LifecycleEvent] = None
    live: bool = False


class PipelineStageUpdate(BaseEvent):
    kind: Literal["pipelineStageUpdate"] = "pipelineStageUpdate"
    stage: PipelineStage
    status: StageStatus
    call_id: str
    state: Optional[str] = None
    duration_ms: Optional[float] = None
    detail: Optional[str] = None


class MetricsSnapshot(BaseEvent):
    kind: Literal["metricsSnapshot"] = "metricsSnapshot"
    total_calls: int = 0
    active_sessions: int = 0
    avg_latency_ms: float = 0.0
    transcription_time_ms: float = 0.0
    answer_time_ms: float = 0.0
    synthesis_time_ms: float = 0.0
    uptime_seconds: int = 0
    total_events: int = 0
    connected_observers: int = 0


class NetworkCallRecord(BaseEvent):
    kind: Literal["networkCallRecord"] = "networkCallRecord"
    method: str
    endpoint: str
    status_code: int
    latency_ms: float


Event = Annotated[
    Union[LogEvent, PipelineStageUpdate, MetricsSnapshot, NetworkCallRecord],
    Field(discriminator="kind"),
]

EventAdapter: TypeAdapter = TypeAdapter(Event)


def parse_event(raw: Union[str, bytes]) -> BaseEvent:
    """Parse a wire record into its typed event."""
    return EventAdapter.validate_json(raw)
