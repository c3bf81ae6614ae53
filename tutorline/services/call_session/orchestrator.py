"""
Call orchestrator.

Turns session commands (gateway webhooks, digit presses, pipeline
completions) into state transitions, pipeline stage events and gateway
replies. Every method here runs on the owning session's task.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from tutorline.core.config import Settings, settings as default_settings
from tutorline.core.errors import ProviderUnavailable, TranscriptionUnavailable
from tutorline.services.call_session import prompts
from tutorline.services.call_session.actor import SessionActor
from tutorline.services.call_session.commands import (
    CallAccepted,
    DigitPressed,
    RecordingFinished,
    RecordingTimedOut,
    ShowWelcome,
    SubjectClassified,
    TranscriptionCompleted,
    TranscriptionFailed,
)
from tutorline.services.call_session.models import (
    CallSession,
    CallState,
    Language,
    Outcome,
    RecordingPurpose,
    VoiceReply,
)
from tutorline.services.call_session.transitions import MenuAction, resolve_digit
from tutorline.services.events.bus import EventBus
from tutorline.services.events.models import (
    LifecycleEvent,
    LogLevel,
    PipelineStage,
    StageStatus,
)
from tutorline.services.history.repository import HistoryRepository
from tutorline.services.llm.client import LLMClient
from tutorline.services.llm.subjects import FALLBACK_SUBJECT, SUBJECT_LABELS, normalize_subject
from tutorline.services.speech.stt import SpeechToTextService
from tutorline.services.speech.tts import TextToSpeechService

logger = logging.getLogger(__name__)

# Stage event emitted when a call enters a state
STATE_STAGES: Dict[CallState, tuple] = {
    CallState.IDLE: (PipelineStage.DELIVERY, StageStatus.COMPLETE),
    CallState.WELCOME: (PipelineStage.INTAKE, StageStatus.ACTIVE),
    CallState.LANGUAGE_SELECT: (PipelineStage.INTAKE, StageStatus.ACTIVE),
    CallState.MENU: (PipelineStage.INTAKE, StageStatus.ACTIVE),
    CallState.RECORDING: (PipelineStage.INTAKE, StageStatus.PROCESSING),
    CallState.PROCESSING: (PipelineStage.TRANSCRIPTION, StageStatus.PROCESSING),
    CallState.SPEAKING: (PipelineStage.DELIVERY, StageStatus.ACTIVE),
    CallState.SUMMARY: (PipelineStage.RETRIEVAL, StageStatus.ACTIVE),
    CallState.ENDED: (PipelineStage.DELIVERY, StageStatus.COMPLETE),
}


def elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class CallOrchestrator:
    """Drives one call through the voice menu."""

    def __init__(
        self,
        bus: EventBus,
        stt: SpeechToTextService,
        tts: TextToSpeechService,
        llm: LLMClient,
        history: Optional[HistoryRepository] = None,
        config: Optional[Settings] = None,
    ):
        self.bus = bus
        self.stt = stt
        self.tts = tts
        self.llm = llm
        self.history = history
        self.config = config or default_settings
        self._background: Set[asyncio.Task] = set()

    # Entry point

    async def handle(self, actor: SessionActor, command: Any) -> Optional[VoiceReply]:
        """
        Process one command for a session.

        Posted commands (timers, completions) return None. Unexpected errors
        are reported and answered with an apology so the call stays usable.
        """
        try:
            return await self._dispatch(actor, command)
        except Exception as e:
            session = actor.session
            logger.error(
                f"[ORCHESTRATOR] Error handling {type(command).__name__} - "
                f"CallSid: {session.call_sid}, Error: {type(e).__name__}: {e}",
                exc_info=True,
            )
            self.bus.log(
                f"Error handling {type(command).__name__}: {e}",
                level=LogLevel.ERROR,
                call_id=session.call_sid,
            )
            self._transition(session, CallState.WELCOME)
            return self._apology(session, prompts.ANSWER_FAILED, Outcome.PROVIDER_UNAVAILABLE)

    async def _dispatch(self, actor: SessionActor, command: Any) -> Optional[VoiceReply]:
        if isinstance(command, CallAccepted):
            return self._on_call_accepted(actor, command)
        if isinstance(command, ShowWelcome):
            return self._on_welcome(actor)
        if isinstance(command, DigitPressed):
            return await self._on_digit(actor, command.digit)
        if isinstance(command, RecordingFinished):
            if command.purpose == RecordingPurpose.SUMMARY:
                return await self._on_summary_recorded(actor, command)
            return self._on_question_recorded(actor, command)
        if isinstance(command, RecordingTimedOut):
            self._on_recording_timeout(actor, command)
            return None
        if isinstance(command, TranscriptionCompleted):
            self._on_transcription_completed(actor, command)
            return None
        if isinstance(command, TranscriptionFailed):
            self._on_transcription_failed(actor, command)
            return None
        if isinstance(command, SubjectClassified):
            actor.session.last_subject = command.subject
            return None
        raise TypeError(f"Unknown session command: {type(command).__name__}")

    # Helpers

    def _transition(self, session: CallSession, state: CallState, detail: Optional[str] = None) -> None:
        previous = session.state
        session.state = state
        session.touch()
        stage, status = STATE_STAGES[state]
        logger.info(f"[CALL SESSION] {session.call_sid}: {previous} -> {state}")
        self.bus.stage(session.call_sid, stage, status, state=state.value, detail=detail)

    def _reply(self, session: CallSession, prompt: str, outcome: Outcome = Outcome.OK) -> VoiceReply:
        reply = VoiceReply(
            call_sid=session.call_sid,
            state=session.state,
            outcome=outcome,
            prompt=prompt,
            language=session.language,
        )
        notice = session.take_notice()
        if notice:
            reply.say(notice)
        return reply

    def _main_menu(self, session: CallSession, prompt: str = "main_menu", outcome: Outcome = Outcome.OK) -> VoiceReply:
        return self._reply(session, prompt, outcome).gather(prompts.MAIN_MENU)

    def _apology(self, session: CallSession, text: str, outcome: Outcome) -> VoiceReply:
        return self._reply(session, "apology", outcome).say(text).redirect("welcome")

    def _unavailable(self, session: CallSession, feature: str, text: str) -> VoiceReply:
        logger.warning(f"[ORCHESTRATOR] {feature} unavailable for call {session.call_sid}")
        self.bus.log(
            f"{feature} is unavailable",
            level=LogLevel.WARNING,
            call_id=session.call_sid,
            event=LifecycleEvent.FEATURE_UNAVAILABLE,
        )
        self._transition(session, CallState.WELCOME, detail=f"{feature} unavailable")
        return self._apology(session, text, Outcome.PROVIDER_UNAVAILABLE)

    def _abandon_capture(self, actor: SessionActor) -> None:
        """Drop a recording that is still being captured."""
        session = actor.session
        if session.state in (CallState.RECORDING, CallState.SUMMARY) and session.recording_purpose:
            actor.cancel_timer()
            session.recording_purpose = None
            session.recording_generation += 1

    def _arm_ceiling(self, actor: SessionActor, max_seconds: float) -> None:
        generation = actor.session.recording_generation
        actor.arm_timer(
            max_seconds + self.config.recording_grace_seconds,
            RecordingTimedOut(generation=generation),
        )

    def _arm_audio_watchdog(self, actor: SessionActor) -> None:
        """Give the gateway one more stage timeout to deliver the audio."""
        actor.arm_timer(
            self.config.stage_timeout_seconds,
            TranscriptionFailed(
                generation=actor.session.recording_generation, error="recording not received"
            ),
        )

    def _max_length(self, seconds: float) -> int:
        return max(1, int(seconds))

    async def _timed(self, stage: PipelineStage, session: CallSession, awaitable: Awaitable) -> Any:
        """Run a provider call under the stage timeout with stage events."""
        self.bus.stage(session.call_sid, stage, StageStatus.PROCESSING, state=session.state.value)
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(awaitable, timeout=self.config.stage_timeout_seconds)
        except (ProviderUnavailable, asyncio.TimeoutError) as e:
            detail = str(e) or type(e).__name__
            self.bus.stage(
                session.call_sid,
                stage,
                StageStatus.ERROR,
                state=session.state.value,
                duration_ms=elapsed_ms(started),
                detail=detail,
            )
            self.bus.log(f"{stage.value} failed: {detail}", level=LogLevel.ERROR, call_id=session.call_sid)
            raise
        self.bus.stage(
            session.call_sid,
            stage,
            StageStatus.COMPLETE,
            state=session.state.value,
            duration_ms=elapsed_ms(started),
        )
        return result

    def spawn(self, coro: Awaitable) -> asyncio.Task:
        """Run fire-and-forget work tracked for shutdown."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled() or task.exception() is None:
            return
        error = task.exception()
        logger.error(
            f"[ORCHESTRATOR] Background task failed: {type(error).__name__}: {error}",
            exc_info=error,
        )
        self.bus.log(f"Background task failed: {error}", level=LogLevel.ERROR)

    async def drain_background(self) -> None:
        """Wait for outstanding fire-and-forget work."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        self._background.clear()

    # Call intake

    def _on_call_accepted(self, actor: SessionActor, command: CallAccepted) -> VoiceReply:
        session = actor.session
        if session.state == CallState.IDLE:
            session.caller = command.caller or session.caller
            self._transition(session, CallState.WELCOME)
            self._transition(session, CallState.LANGUAGE_SELECT)
        elif session.state != CallState.LANGUAGE_SELECT:
            return self._on_welcome(actor)

        self.bus.log(f"Incoming call from {session.caller}", level=LogLevel.TWILIO, call_id=session.call_sid)
        return self._reply(session, "language_select").gather(
            prompts.LANGUAGE_SELECT.format(app_name=self.config.app_name)
        )

    def _on_welcome(self, actor: SessionActor) -> VoiceReply:
        session = actor.session
        if session.state in (CallState.IDLE, CallState.LANGUAGE_SELECT):
            return self._on_call_accepted(actor, CallAccepted(caller=session.caller))
        self._abandon_capture(actor)
        self._transition(session, CallState.WELCOME)
        return self._main_menu(session)

    # Digits

    async def _on_digit(self, actor: SessionActor, digit: str) -> VoiceReply:
        session = actor.session
        action = resolve_digit(session.state, digit)
        logger.info(f"[CALL SESSION] {session.call_sid}: digit '{digit}' in {session.state} -> {action.value}")
        self.bus.log(
            f"Caller pressed {digit} in {session.state.value}",
            level=LogLevel.TWILIO,
            call_id=session.call_sid,
        )

        handlers: Dict[MenuAction, Callable[[SessionActor], Any]] = {
            MenuAction.SELECT_ENGLISH: lambda a: self._select_language(a, Language.ENGLISH),
            MenuAction.SELECT_HINDI: lambda a: self._select_language(a, Language.HINDI),
            MenuAction.START_RECORDING: self._start_recording,
            MenuAction.STOP_RECORDING: self._stop_recording,
            MenuAction.GET_ANSWER: self._get_answer,
            MenuAction.START_SUMMARY: self._start_summary,
            MenuAction.RETURN_TO_MENU: self._return_to_menu,
            MenuAction.END_CALL: self._end_call,
            MenuAction.NOOP: self._already_stopped,
            MenuAction.INVALID: self._invalid,
        }
        result = handlers[action](actor)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def _select_language(self, actor: SessionActor, language: Language) -> VoiceReply:
        session = actor.session
        session.language = language
        self._transition(session, CallState.MENU, detail=f"language {language.value}")
        return self._main_menu(session)

    def _start_recording(self, actor: SessionActor) -> VoiceReply:
        session = actor.session
        if session.transcription_pending:
            # A new question supersedes the one still being transcribed
            actor.cancel_transcription()
            session.transcription_pending = False
        actor.cancel_timer()
        session.recording_generation += 1
        session.recording_purpose = RecordingPurpose.QUESTION
        session.pending_question_text = None
        self._transition(session, CallState.RECORDING)
        self._arm_ceiling(actor, self.config.recording_max_seconds)
        return (
            self._reply(session, "ask_question")
            .say(prompts.ASK_QUESTION)
            .record(
                target="question-recorded",
                max_length=self._max_length(self.config.recording_max_seconds),
                finish_on_key="2",
            )
        )

    def _question_received(self, session: CallSession, prompt: str = "question_received") -> VoiceReply:
        return self._reply(session, prompt).say(prompts.QUESTION_RECEIVED).gather(
            prompts.AFTER_QUESTION_OPTIONS
        )

    def _stop_recording(self, actor: SessionActor) -> VoiceReply:
        session = actor.session
        question_in_flight = (
            session.recording_purpose == RecordingPurpose.QUESTION or session.transcription_pending
        )
        if session.state != CallState.RECORDING and not question_in_flight:
            return self._reply(session, "nothing_to_stop", Outcome.NOTHING_TO_STOP).say(
                prompts.NOTHING_TO_STOP
            ).gather(prompts.MAIN_MENU)

        # The audio is still expected from the gateway, so the purpose stays set
        actor.cancel_timer()
        if session.recording_purpose == RecordingPurpose.QUESTION:
            self._arm_audio_watchdog(actor)
        self._transition(session, CallState.PROCESSING)
        return self._question_received(session)

    def _already_stopped(self, actor: SessionActor) -> VoiceReply:
        return self._reply(actor.session, "already_stopped").gather(prompts.AFTER_QUESTION_OPTIONS)

    async def _get_answer(self, actor: SessionActor) -> VoiceReply:
        session = actor.session
        if session.transcription_pending or session.recording_purpose == RecordingPurpose.QUESTION:
            logger.info(f"[CALL SESSION] {session.call_sid}: answer requested before transcription finished")
            return self._reply(session, "still_processing", Outcome.RACE_CONDITION).say(
                prompts.STILL_PROCESSING
            ).gather(prompts.AFTER_QUESTION_OPTIONS)

        question = session.pending_question_text
        if not question:
            self._transition(session, CallState.MENU)
            return self._reply(session, "no_question", Outcome.NO_QUESTION).say(
                prompts.NO_QUESTION
            ).gather(prompts.MAIN_MENU)

        if not self.llm.available:
            return self._unavailable(session, "Answer generation", prompts.AI_UNAVAILABLE)

        try:
            answer = await self._timed(
                PipelineStage.ANSWER_GENERATION,
                session,
                self.llm.answer(question, language=session.language.value),
            )
        except (ProviderUnavailable, asyncio.TimeoutError):
            self._transition(session, CallState.WELCOME)
            return self._apology(session, prompts.ANSWER_FAILED, Outcome.PROVIDER_UNAVAILABLE)

        session.last_answer_text = answer
        self.bus.log(f"Answer ready: {answer[:80]}", level=LogLevel.LLM, call_id=session.call_sid)
        audio = await self._synthesize(session, answer)

        self._transition(session, CallState.SPEAKING)
        reply = self._reply(session, "answer").say(prompts.ANSWER_INTRO)
        if audio:
            reply.play(audio)
        else:
            reply.say(answer)

        self.spawn(self._record_answer(actor, session.caller, question, answer))

        self._transition(session, CallState.MENU)
        reply.state = session.state
        self.bus.log("Answer delivered", level=LogLevel.SUCCESS, call_id=session.call_sid)
        return reply.gather(prompts.AFTER_ANSWER_OPTIONS)

    async def _synthesize(self, session: CallSession, text: str) -> Optional[str]:
        """Synthesize audio, or return None to fall back to the gateway voice."""
        if not self.tts.available:
            return None
        try:
            return await self._timed(
                PipelineStage.SPEECH_SYNTHESIS,
                session,
                self.tts.synthesize(text, session.call_sid),
            )
        except (ProviderUnavailable, asyncio.TimeoutError) as e:
            logger.warning(f"[TTS] Falling back to gateway voice for {session.call_sid}: {e}")
            return None
        except OSError as e:
            logger.error(f"[TTS] Could not write audio for {session.call_sid}: {e}")
            self.bus.stage(
                session.call_sid,
                PipelineStage.SPEECH_SYNTHESIS,
                StageStatus.ERROR,
                state=session.state.value,
                detail=str(e),
            )
            return None

    async def _record_answer(self, actor: SessionActor, caller: str, question: str, answer: str) -> None:
        """Classify a delivered answer and store it in the caller's history."""
        call_sid = actor.call_sid
        try:
            subject = await asyncio.wait_for(
                self.llm.classify(question, SUBJECT_LABELS),
                timeout=self.config.stage_timeout_seconds,
            )
        except (ProviderUnavailable, asyncio.TimeoutError) as e:
            logger.warning(f"[HISTORY] Classification failed for {call_sid}, using fallback: {e}")
            self.bus.stage(
                call_sid,
                PipelineStage.ANSWER_GENERATION,
                StageStatus.ERROR,
                detail=f"classification failed: {e}",
            )
            self.bus.log(
                f"Subject classification failed, filed under {FALLBACK_SUBJECT}: {e}",
                level=LogLevel.ERROR,
                call_id=call_sid,
            )
            subject = FALLBACK_SUBJECT
        actor.post(SubjectClassified(subject=subject))

        if self.history is None:
            logger.info(f"[HISTORY] No history store configured, skipping save for {call_sid}")
            return
        try:
            await asyncio.wait_for(
                self.history.append(caller, subject, question, answer),
                timeout=self.config.stage_timeout_seconds,
            )
        except (ProviderUnavailable, asyncio.TimeoutError) as e:
            logger.error(f"[HISTORY] Failed to save Q&A for {call_sid}: {e}")
            self.bus.log(f"Failed to save question history: {e}", level=LogLevel.ERROR, call_id=call_sid)
            return
        self.bus.log(f"Saved question under {subject}", level=LogLevel.SUCCESS, call_id=call_sid)

    async def _history_ready(self, call_sid: str) -> bool:
        if self.history is None:
            return False
        try:
            return await asyncio.wait_for(
                self.history.is_available(), timeout=self.config.stage_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(f"[HISTORY] Availability check timed out for {call_sid}")
            self.bus.log("History store did not respond", level=LogLevel.ERROR, call_id=call_sid)
            return False

    async def _start_summary(self, actor: SessionActor) -> VoiceReply:
        session = actor.session
        if not await self._history_ready(session.call_sid):
            return self._unavailable(session, "Question history", prompts.HISTORY_UNAVAILABLE)
        if not self.llm.available or not self.stt.available:
            return self._unavailable(session, "Summary generation", prompts.AI_UNAVAILABLE)

        actor.cancel_timer()
        session.recording_generation += 1
        session.recording_purpose = RecordingPurpose.SUMMARY
        self._transition(session, CallState.SUMMARY)
        self._arm_ceiling(actor, self.config.summary_recording_max_seconds)
        return (
            self._reply(session, "ask_subject")
            .say(prompts.ASK_SUBJECT)
            .record(
                target="summary-recorded",
                max_length=self._max_length(self.config.summary_recording_max_seconds),
                finish_on_key="#",
            )
        )

    def _return_to_menu(self, actor: SessionActor) -> VoiceReply:
        session = actor.session
        self._abandon_capture(actor)
        self._transition(session, CallState.MENU)
        return self._main_menu(session)

    def _end_call(self, actor: SessionActor) -> VoiceReply:
        session = actor.session
        actor.cancel_pipeline()
        session.transcription_pending = False
        session.recording_purpose = None
        self._transition(session, CallState.ENDED)
        self.bus.log("Caller ended the call", level=LogLevel.TWILIO, call_id=session.call_sid)
        return (
            self._reply(session, "goodbye", Outcome.ENDED)
            .say(prompts.GOODBYE.format(app_name=self.config.app_name))
            .hangup()
        )

    def _invalid(self, actor: SessionActor) -> VoiceReply:
        session = actor.session
        self._abandon_capture(actor)
        self._transition(session, CallState.WELCOME, detail="invalid input")
        return self._reply(session, "invalid_option", Outcome.INVALID_INPUT).say(
            prompts.INVALID_OPTION
        ).redirect("welcome")

    # Recordings

    def _on_question_recorded(self, actor: SessionActor, command: RecordingFinished) -> VoiceReply:
        session = actor.session
        if session.recording_purpose != RecordingPurpose.QUESTION:
            logger.warning(f"[CALL SESSION] {session.call_sid}: ignoring stale question recording")
            return self._main_menu(session)

        actor.cancel_timer()
        session.recording_purpose = None
        if session.state == CallState.RECORDING:
            self._transition(session, CallState.PROCESSING)

        if not command.recording_url:
            self.bus.stage(
                session.call_sid,
                PipelineStage.TRANSCRIPTION,
                StageStatus.ERROR,
                state=session.state.value,
                detail="no recording received",
            )
            self._transition(session, CallState.WELCOME)
            return self._apology(session, prompts.TRANSCRIPTION_FAILED, Outcome.NO_QUESTION)

        self.bus.log("Recording received", level=LogLevel.TWILIO, call_id=session.call_sid)
        session.transcription_pending = True
        actor.start_transcription(
            self._transcribe(actor, session.recording_generation, command.recording_url, session.language)
        )
        if session.state == CallState.PROCESSING:
            return self._question_received(session)
        return self._main_menu(session)

    async def _transcribe(self, actor: SessionActor, generation: int, recording_url: str, language: Language) -> None:
        """Transcribe off the session task and post the result back."""
        started = time.perf_counter()
        try:
            text = await asyncio.wait_for(
                self.stt.transcribe(recording_url, language=language.value),
                timeout=self.config.stage_timeout_seconds,
            )
        except (ProviderUnavailable, asyncio.TimeoutError) as e:
            actor.post(TranscriptionFailed(generation=generation, error=str(e) or type(e).__name__))
            return
        except Exception as e:
            logger.error(f"[STT] Unexpected transcription error for {actor.call_sid}: {e}", exc_info=True)
            actor.post(TranscriptionFailed(generation=generation, error=f"{type(e).__name__}: {e}"))
            return
        actor.post(TranscriptionCompleted(generation=generation, text=text, duration_ms=elapsed_ms(started)))

    def _on_recording_timeout(self, actor: SessionActor, command: RecordingTimedOut) -> None:
        session = actor.session
        if command.generation != session.recording_generation or session.recording_purpose is None:
            return

        if session.recording_purpose == RecordingPurpose.QUESTION:
            if session.state == CallState.RECORDING:
                logger.info(f"[CALL SESSION] {session.call_sid}: recording ceiling reached")
                self._transition(session, CallState.PROCESSING, detail="recording ceiling reached")
            self._arm_audio_watchdog(actor)
            return

        logger.info(f"[CALL SESSION] {session.call_sid}: summary subject was never recorded")
        session.recording_purpose = None
        session.notice = prompts.SUMMARY_FAILED
        if session.state == CallState.SUMMARY:
            self._transition(session, CallState.WELCOME, detail="summary recording not received")

    def _on_transcription_completed(self, actor: SessionActor, command: TranscriptionCompleted) -> None:
        session = actor.session
        if command.generation != session.recording_generation or not session.transcription_pending:
            logger.info(f"[CALL SESSION] {session.call_sid}: discarding stale transcription")
            return

        actor.transcription_task = None
        session.transcription_pending = False
        session.pending_question_text = command.text
        self.bus.stage(
            session.call_sid,
            PipelineStage.TRANSCRIPTION,
            StageStatus.COMPLETE,
            state=session.state.value,
            duration_ms=command.duration_ms,
        )
        self.bus.log(f"Transcribed: {command.text}", level=LogLevel.STT, call_id=session.call_sid)
        if session.state == CallState.PROCESSING:
            self._transition(session, CallState.MENU)

    def _on_transcription_failed(self, actor: SessionActor, command: TranscriptionFailed) -> None:
        session = actor.session
        if command.generation != session.recording_generation:
            return
        if not session.transcription_pending and session.recording_purpose != RecordingPurpose.QUESTION:
            return

        actor.cancel_timer()
        actor.transcription_task = None
        session.transcription_pending = False
        session.recording_purpose = None
        session.notice = prompts.TRANSCRIPTION_FAILED
        self.bus.stage(
            session.call_sid,
            PipelineStage.TRANSCRIPTION,
            StageStatus.ERROR,
            state=session.state.value,
            detail=command.error,
        )
        self.bus.log(f"Transcription failed: {command.error}", level=LogLevel.ERROR, call_id=session.call_sid)
        if session.state in (CallState.PROCESSING, CallState.MENU):
            self._transition(session, CallState.WELCOME, detail="transcription failed")

    async def _on_summary_recorded(self, actor: SessionActor, command: RecordingFinished) -> VoiceReply:
        session = actor.session
        if session.recording_purpose != RecordingPurpose.SUMMARY:
            logger.warning(f"[CALL SESSION] {session.call_sid}: ignoring stale summary recording")
            return self._main_menu(session)

        actor.cancel_timer()
        session.recording_purpose = None
        if not command.recording_url:
            self._transition(session, CallState.WELCOME)
            return self._apology(session, prompts.SUMMARY_FAILED, Outcome.NO_HISTORY)

        try:
            spoken = await self._timed(
                PipelineStage.TRANSCRIPTION,
                session,
                self.stt.transcribe(command.recording_url, language=session.language.value),
            )
        except (ProviderUnavailable, asyncio.TimeoutError) as e:
            if isinstance(e, TranscriptionUnavailable) and not self.stt.available:
                return self._unavailable(session, "Transcription", prompts.AI_UNAVAILABLE)
            self._transition(session, CallState.WELCOME)
            return self._apology(session, prompts.SUMMARY_FAILED, Outcome.PROVIDER_UNAVAILABLE)

        subject = normalize_subject(spoken, open_ended=True)
        session.last_subject = subject
        self.bus.log(f"Summary requested for {subject}", level=LogLevel.STT, call_id=session.call_sid)

        try:
            records = await self._timed(
                PipelineStage.RETRIEVAL,
                session,
                self.history.query_by_subject(
                    session.caller, subject, limit=self.config.summary_history_limit
                ),
            )
        except (ProviderUnavailable, asyncio.TimeoutError):
            return self._unavailable(session, "Question history", prompts.HISTORY_UNAVAILABLE)

        if not records:
            self._transition(session, CallState.WELCOME, detail=f"no history for {subject}")
            return self._reply(session, "no_history", Outcome.NO_HISTORY).say(
                prompts.NO_HISTORY.format(subject=subject)
            ).redirect("welcome")

        try:
            summary = await self._timed(
                PipelineStage.ANSWER_GENERATION,
                session,
                self.llm.summarize(subject, records),
            )
        except (ProviderUnavailable, asyncio.TimeoutError):
            self._transition(session, CallState.WELCOME)
            return self._apology(session, prompts.SUMMARY_FAILED, Outcome.PROVIDER_UNAVAILABLE)

        audio = await self._synthesize(session, summary)
        self._transition(session, CallState.SPEAKING)
        reply = self._reply(session, "summary").say(
            prompts.SUMMARY_INTRO.format(subject=subject, count=len(records))
        ).pause(1)
        if audio:
            reply.play(audio)
        else:
            reply.say(summary)

        self._transition(session, CallState.MENU)
        reply.state = session.state
        self.bus.log(f"Summary delivered for {subject}", level=LogLevel.SUCCESS, call_id=session.call_sid)
        return reply.gather(prompts.AFTER_ANSWER_OPTIONS)
