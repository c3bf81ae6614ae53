"""Twilio voice webhook endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import Response

from tutorline.core.config import settings
from tutorline.core.dependencies import get_session_manager
from tutorline.services.call_session.manager import CallSessionManager
from tutorline.services.call_session.models import RecordingPurpose, VoiceReply
from tutorline.services.speech.twiml import render_error_twiml, render_twiml

router = APIRouter()
logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed", "busy", "no-answer", "canceled")


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute URLs.

    Uses BASE_URL environment variable if set, otherwise constructs from request.
    """
    if settings.base_url:
        return settings.base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def twiml_response(reply: VoiceReply, request: Request) -> Response:
    twiml = render_twiml(reply, get_base_url(request))
    logger.debug(
        f"[TWIML] {reply.call_sid}: state={reply.state}, outcome={reply.outcome.value}, "
        f"length={len(twiml)} bytes"
    )
    return Response(content=twiml, media_type="application/xml")


def error_response(tag: str, call_sid: str, error: Exception, request: Request) -> Response:
    logger.error(
        f"[{tag}] Error - CallSid: {call_sid}, Error: {type(error).__name__}: {error}",
        exc_info=True,
    )
    return Response(content=render_error_twiml(get_base_url(request)), media_type="application/xml")


@router.post("/voice/incoming")
async def handle_incoming_call(
    request: Request,
    CallSid: str = Form(...),
    From: Optional[str] = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle incoming call from Twilio.

    Creates the session and asks the caller to pick a language.
    """
    logger.info(f"[INCOMING CALL] Received incoming call webhook - CallSid: {CallSid}, From: {From}")
    try:
        reply = await session_manager.accept_call(CallSid, From)
        return twiml_response(reply, request)
    except Exception as e:
        return error_response("INCOMING CALL", CallSid, e, request)


@router.post("/voice/welcome")
async def handle_welcome(
    request: Request,
    CallSid: str = Form(...),
    From: Optional[str] = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Play the main menu."""
    logger.info(f"[WELCOME] Main menu requested - CallSid: {CallSid}")
    try:
        reply = await session_manager.welcome(CallSid, From)
        return twiml_response(reply, request)
    except Exception as e:
        return error_response("WELCOME", CallSid, e, request)


@router.post("/voice/menu")
async def handle_menu(
    request: Request,
    CallSid: str = Form(...),
    Digits: str = Form(""),
    From: Optional[str] = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle a digit pressed by the caller.

    This endpoint is the action of every menu Gather.
    """
    logger.info(f"[MENU] Digit received - CallSid: {CallSid}, Digits: '{Digits}'")
    try:
        reply = await session_manager.press_digit(CallSid, Digits, From)
        logger.info(f"[MENU] {CallSid}: outcome={reply.outcome.value}, state={reply.state}")
        return twiml_response(reply, request)
    except Exception as e:
        return error_response("MENU", CallSid, e, request)


@router.post("/voice/question-recorded")
async def handle_question_recorded(
    request: Request,
    CallSid: str = Form(...),
    RecordingUrl: Optional[str] = Form(None),
    RecordingDuration: Optional[str] = Form(None),
    From: Optional[str] = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Handle a finished question recording."""
    logger.info(
        f"[RECORDING] Question recorded - CallSid: {CallSid}, "
        f"Duration: {RecordingDuration}, Url present: {bool(RecordingUrl)}"
    )
    try:
        reply = await session_manager.recording_finished(
            CallSid, RecordingUrl, RecordingPurpose.QUESTION, caller=From
        )
        return twiml_response(reply, request)
    except Exception as e:
        return error_response("RECORDING", CallSid, e, request)


@router.post("/voice/summary-recorded")
async def handle_summary_recorded(
    request: Request,
    CallSid: str = Form(...),
    RecordingUrl: Optional[str] = Form(None),
    From: Optional[str] = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Handle the recorded subject for a summary request."""
    logger.info(f"[SUMMARY] Subject recorded - CallSid: {CallSid}, Url present: {bool(RecordingUrl)}")
    try:
        reply = await session_manager.recording_finished(
            CallSid, RecordingUrl, RecordingPurpose.SUMMARY, caller=From
        )
        return twiml_response(reply, request)
    except Exception as e:
        return error_response("SUMMARY", CallSid, e, request)


@router.post("/voice/status")
async def handle_call_status(
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle call status updates from Twilio.

    Terminal statuses tear down the call's session.
    """
    logger.info(f"[CALL STATUS] Received status update - CallSid: {CallSid}, CallStatus: {CallStatus}")
    try:
        if CallStatus in TERMINAL_STATUSES:
            ended = await session_manager.end_session(CallSid, reason=CallStatus)
            logger.info(f"[CALL STATUS] Session teardown - CallSid: {CallSid}, had session: {ended}")
        return Response(content="OK", media_type="text/plain")
    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling call status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {e}",
            exc_info=True,
        )
        # Still return OK to Twilio to avoid retries
        return Response(content="OK", media_type="text/plain")
