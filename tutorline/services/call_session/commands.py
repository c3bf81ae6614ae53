"""Commands processed, one at a time, by a session's task.

Gateway webhooks and pipeline completions both become commands so that a
digit press and a finished transcription can never mutate a session at the
same time.
"""
from dataclasses import dataclass
from typing import Optional

from tutorline.services.call_session.models import RecordingPurpose


@dataclass(frozen=True)
class CallAccepted:
    caller: str


@dataclass(frozen=True)
class ShowWelcome:
    pass


@dataclass(frozen=True)
class DigitPressed:
    digit: str


@dataclass(frozen=True)
class RecordingFinished:
    recording_url: Optional[str]
    purpose: RecordingPurpose


@dataclass(frozen=True)
class RecordingTimedOut:
    generation: int


@dataclass(frozen=True)
class TranscriptionCompleted:
    generation: int
    text: str
    duration_ms: float


@dataclass(frozen=True)
class TranscriptionFailed:
    generation: int
    error: str


@dataclass(frozen=True)
class SubjectClassified:
    subject: str
