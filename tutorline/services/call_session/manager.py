"""Call session manager."""
import logging
from typing import Any, Dict, Optional

from tutorline.services.call_session.actor import SessionActor, SessionClosed
from tutorline.services.call_session.commands import (
    CallAccepted,
    DigitPressed,
    RecordingFinished,
    ShowWelcome,
)
from tutorline.services.call_session.models import (
    CallSession,
    CallState,
    Outcome,
    RecordingPurpose,
    VoiceReply,
)
from tutorline.services.call_session.orchestrator import CallOrchestrator
from tutorline.services.events.bus import EventBus
from tutorline.services.events.models import LifecycleEvent, LogLevel, PipelineStage, StageStatus

logger = logging.getLogger(__name__)


class CallSessionManager:
    """Owns the live call sessions, one actor per call."""

    def __init__(self, orchestrator: CallOrchestrator, bus: EventBus):
        self.orchestrator = orchestrator
        self.bus = bus
        self._actors: Dict[str, SessionActor] = {}

    @property
    def active_count(self) -> int:
        return len(self._actors)

    def get_session(self, call_sid: str) -> Optional[CallSession]:
        """Get an existing call session."""
        actor = self._actors.get(call_sid)
        return actor.session if actor else None

    def get_actor(self, call_sid: str) -> Optional[SessionActor]:
        return self._actors.get(call_sid)

    def _create(self, call_sid: str, caller: Optional[str]) -> SessionActor:
        session = CallSession(call_sid=call_sid, caller=caller or "unknown")
        actor = SessionActor(session, self.orchestrator.handle, on_ended=self._on_ended)
        self._actors[call_sid] = actor
        actor.start()
        logger.info(f"[CALL SESSION] Created session {call_sid} for caller {session.caller}")
        self.bus.log(
            f"Call started from {session.caller}",
            level=LogLevel.TWILIO,
            call_id=call_sid,
            event=LifecycleEvent.CALL_STARTED,
        )
        return actor

    async def _submit(self, actor: SessionActor, command: Any) -> VoiceReply:
        try:
            return await actor.submit(command)
        except SessionClosed:
            logger.info(f"[CALL SESSION] {actor.call_sid} closed before {type(command).__name__} ran")
            return VoiceReply(
                call_sid=actor.call_sid,
                state=CallState.IDLE,
                outcome=Outcome.ENDED,
                prompt="goodbye",
                language=actor.session.language,
            ).hangup()

    async def _fresh(self, call_sid: str, caller: Optional[str]) -> VoiceReply:
        """Start over for a call id with no session."""
        logger.warning(f"[CALL SESSION] No session for {call_sid}, starting a fresh one")
        reply = await self.accept_call(call_sid, caller)
        reply.outcome = Outcome.SESSION_NOT_FOUND
        return reply

    async def accept_call(self, call_sid: str, caller: Optional[str] = None) -> VoiceReply:
        """Create a session for an incoming call and greet the caller."""
        actor = self._actors.get(call_sid) or self._create(call_sid, caller)
        return await self._submit(actor, CallAccepted(caller=caller or actor.session.caller))

    async def welcome(self, call_sid: str, caller: Optional[str] = None) -> VoiceReply:
        actor = self._actors.get(call_sid)
        if actor is None:
            return await self._fresh(call_sid, caller)
        return await self._submit(actor, ShowWelcome())

    async def press_digit(self, call_sid: str, digit: str, caller: Optional[str] = None) -> VoiceReply:
        actor = self._actors.get(call_sid)
        if actor is None:
            return await self._fresh(call_sid, caller)
        return await self._submit(actor, DigitPressed(digit=digit))

    async def recording_finished(
        self,
        call_sid: str,
        recording_url: Optional[str],
        purpose: RecordingPurpose = RecordingPurpose.QUESTION,
        caller: Optional[str] = None,
    ) -> VoiceReply:
        actor = self._actors.get(call_sid)
        if actor is None:
            return await self._fresh(call_sid, caller)
        return await self._submit(actor, RecordingFinished(recording_url=recording_url, purpose=purpose))

    def _announce_end(self, session: CallSession, reason: str) -> None:
        session.state = CallState.IDLE
        session.touch()
        self.bus.stage(
            session.call_sid,
            PipelineStage.DELIVERY,
            StageStatus.COMPLETE,
            state=CallState.IDLE.value,
            detail=reason,
        )
        self.bus.log(
            f"Call ended ({reason})",
            level=LogLevel.TWILIO,
            call_id=session.call_sid,
            event=LifecycleEvent.CALL_ENDED,
        )
        logger.info(f"[CALL SESSION] Removed session {session.call_sid} ({reason})")

    async def _on_ended(self, actor: SessionActor) -> None:
        if self._actors.get(actor.call_sid) is actor:
            del self._actors[actor.call_sid]
            self._announce_end(actor.session, "caller hung up from menu")

    async def end_session(self, call_sid: str, reason: str = "completed") -> bool:
        """
        Tear down a call's session.

        Only this call's timer, transcription and task are cancelled.
        Returns False when no session exists.
        """
        actor = self._actors.pop(call_sid, None)
        if actor is None:
            return False
        await actor.close()
        self._announce_end(actor.session, reason)
        return True

    async def shutdown(self) -> None:
        for call_sid in list(self._actors):
            await self.end_session(call_sid, reason="shutdown")
        await self.orchestrator.shutdown()
