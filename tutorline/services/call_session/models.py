"""Call session models."""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class CallState(str, Enum):
    """Voice menu states. IDLE means no session exists."""

    IDLE = "idle"
    WELCOME = "welcome"
    LANGUAGE_SELECT = "language_select"
    MENU = "menu"
    RECORDING = "recording"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    SUMMARY = "summary"
    ENDED = "ended"

    def __str__(self) -> str:
        return self.value


class Language(str, Enum):
    ENGLISH = "en"
    HINDI = "hi"


class RecordingPurpose(str, Enum):
    QUESTION = "question"
    SUMMARY = "summary"


class Outcome(str, Enum):
    """How a reply was reached, so each branch is observable."""

    OK = "ok"
    RACE_CONDITION = "race_condition"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_INPUT = "invalid_input"
    NO_QUESTION = "no_question"
    NO_HISTORY = "no_history"
    NOTHING_TO_STOP = "nothing_to_stop"
    SESSION_NOT_FOUND = "session_not_found"
    ENDED = "ended"


class CallSession(BaseModel):
    """State of one live call. Mutated only by its session task."""

    call_sid: str
    caller: str = "unknown"
    state: CallState = CallState.IDLE
    language: Language = Language.ENGLISH
    pending_question_text: Optional[str] = None
    last_answer_text: Optional[str] = None
    last_subject: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    recording_purpose: Optional[RecordingPurpose] = None
    recording_generation: int = 0
    transcription_pending: bool = False
    notice: Optional[str] = None

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()

    def take_notice(self) -> Optional[str]:
        """Return and clear the notice queued for the next prompt."""
        notice, self.notice = self.notice, None
        return notice


class InstructionType(str, Enum):
    SAY = "say"
    PLAY = "play"
    PAUSE = "pause"
    GATHER = "gather"
    RECORD = "record"
    REDIRECT = "redirect"
    HANGUP = "hangup"


class Instruction(BaseModel):
    """One gateway instruction. Targets are webhook names, not URLs."""

    type: InstructionType
    text: Optional[str] = None
    audio: Optional[str] = None
    target: Optional[str] = None
    seconds: Optional[int] = None
    max_length: Optional[int] = None
    finish_on_key: Optional[str] = None
    num_digits: int = 1


class VoiceReply(BaseModel):
    """What the gateway should do next for a call."""

    call_sid: str
    state: CallState
    outcome: Outcome = Outcome.OK
    prompt: str = ""
    language: Language = Language.ENGLISH
    instructions: List[Instruction] = []

    def say(self, text: str) -> "VoiceReply":
        self.instructions.append(Instruction(type=InstructionType.SAY, text=text))
        return self

    def play(self, audio: str) -> "VoiceReply":
        self.instructions.append(Instruction(type=InstructionType.PLAY, audio=audio))
        return self

    def pause(self, seconds: int = 1) -> "VoiceReply":
        self.instructions.append(Instruction(type=InstructionType.PAUSE, seconds=seconds))
        return self

    def gather(self, text: str, target: str = "menu") -> "VoiceReply":
        self.instructions.append(
            Instruction(type=InstructionType.GATHER, text=text, target=target)
        )
        return self

    def record(
        self, target: str, max_length: int, finish_on_key: str = "2"
    ) -> "VoiceReply":
        self.instructions.append(
            Instruction(
                type=InstructionType.RECORD,
                target=target,
                max_length=max_length,
                finish_on_key=finish_on_key,
            )
        )
        return self

    def redirect(self, target: str = "welcome") -> "VoiceReply":
        self.instructions.append(Instruction(type=InstructionType.REDIRECT, target=target))
        return self

    def hangup(self) -> "VoiceReply":
        self.instructions.append(Instruction(type=InstructionType.HANGUP))
        return self

    def spoken_text(self) -> str:
        """All text the caller will hear, in order."""
        return " ".join(i.text for i in self.instructions if i.text)
