"""Per-call task that owns a session.

All mutations of a session happen on its worker task, one command at a time.
Pipeline work that outlives a command (recording ceiling timer,
transcription) runs in tasks owned by the actor and reports back by posting
commands, never by touching the session directly.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Tuple

from tutorline.core.errors import TutorLineError
from tutorline.services.call_session.models import CallSession, CallState, VoiceReply

logger = logging.getLogger(__name__)

Handler = Callable[["SessionActor", Any], Awaitable[Optional[VoiceReply]]]
EndedCallback = Callable[["SessionActor"], Awaitable[None]]


class SessionClosed(TutorLineError):
    """The session ended before a command could be processed."""


class SessionActor:
    """Exclusive owner of one call session."""

    def __init__(
        self,
        session: CallSession,
        handler: Handler,
        on_ended: Optional[EndedCallback] = None,
    ):
        self.session = session
        self._handler = handler
        self._on_ended = on_ended
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self.recording_timer: Optional[asyncio.Task] = None
        self.transcription_task: Optional[asyncio.Task] = None
        self.closed = False

    @property
    def call_sid(self) -> str:
        return self.session.call_sid

    def start(self) -> None:
        self._worker = asyncio.create_task(self._run(), name=f"session-{self.call_sid}")

    async def submit(self, command: Any) -> VoiceReply:
        """Queue a command and wait for the reply it produces."""
        if self.closed:
            raise SessionClosed(self.call_sid)
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((command, future))
        return await future

    def post(self, command: Any) -> bool:
        """Queue a command without waiting. Returns False once closed."""
        if self.closed:
            logger.debug(f"[SESSION ACTOR] Dropping {type(command).__name__} for closed call {self.call_sid}")
            return False
        self._queue.put_nowait((command, None))
        return True

    async def _run(self) -> None:
        while True:
            command, future = await self._queue.get()
            try:
                reply = await self._handler(self, command)
            except asyncio.CancelledError:
                if future is not None and not future.done():
                    future.set_exception(SessionClosed(self.call_sid))
                raise
            except Exception as e:
                logger.error(
                    f"[SESSION ACTOR] Unhandled error for {type(command).__name__} - "
                    f"CallSid: {self.call_sid}, Error: {type(e).__name__}: {e}",
                    exc_info=True,
                )
                if future is not None and not future.done():
                    future.set_exception(e)
            else:
                if future is not None and not future.done():
                    future.set_result(reply)

            if self.session.state == CallState.ENDED:
                self.closed = True
                self.cancel_pipeline()
                self._fail_pending()
                if self._on_ended is not None:
                    await self._on_ended(self)
                return

    def _pending(self) -> List[Tuple[Any, Optional[asyncio.Future]]]:
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return items

    def _fail_pending(self) -> None:
        for _, future in self._pending():
            if future is not None and not future.done():
                future.set_exception(SessionClosed(self.call_sid))

    # Pipeline tasks

    def arm_timer(self, delay: float, command: Any) -> None:
        """Post ``command`` after ``delay`` seconds unless re-armed or cancelled."""
        self.cancel_timer()

        async def _fire() -> None:
            await asyncio.sleep(delay)
            self.post(command)

        self.recording_timer = asyncio.create_task(_fire(), name=f"timer-{self.call_sid}")

    def cancel_timer(self) -> None:
        if self.recording_timer is not None and not self.recording_timer.done():
            self.recording_timer.cancel()
        self.recording_timer = None

    def start_transcription(self, coro: Coroutine[Any, Any, None]) -> None:
        self.cancel_transcription()
        self.transcription_task = asyncio.create_task(
            coro, name=f"transcription-{self.call_sid}"
        )

    def cancel_transcription(self) -> None:
        if self.transcription_task is not None and not self.transcription_task.done():
            self.transcription_task.cancel()
        self.transcription_task = None

    def cancel_pipeline(self) -> None:
        """Release recording and transcription handles for this call only."""
        self.cancel_timer()
        self.cancel_transcription()

    async def close(self) -> None:
        """Stop the worker and all pipeline tasks for this call."""
        self.closed = True
        self.cancel_pipeline()
        worker = self._worker
        if worker is not None and worker is not asyncio.current_task() and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._fail_pending()
