"""Digit transition table for the voice menu."""
import logging
from enum import Enum
from typing import Dict, Tuple

from tutorline.services.call_session.models import CallState

logger = logging.getLogger(__name__)


class MenuAction(str, Enum):
    """What a digit press asks the orchestrator to do."""

    SELECT_ENGLISH = "select_english"
    SELECT_HINDI = "select_hindi"
    START_RECORDING = "start_recording"
    STOP_RECORDING = "stop_recording"
    GET_ANSWER = "get_answer"
    START_SUMMARY = "start_summary"
    RETURN_TO_MENU = "return_to_menu"
    END_CALL = "end_call"
    NOOP = "noop"
    INVALID = "invalid"


_MAIN_MENU: Dict[str, MenuAction] = {
    "1": MenuAction.START_RECORDING,
    "2": MenuAction.STOP_RECORDING,
    "3": MenuAction.GET_ANSWER,
    "4": MenuAction.START_SUMMARY,
    "5": MenuAction.RETURN_TO_MENU,
    "9": MenuAction.END_CALL,
}

TRANSITIONS: Dict[CallState, Dict[str, MenuAction]] = {
    CallState.LANGUAGE_SELECT: {
        "1": MenuAction.SELECT_ENGLISH,
        "2": MenuAction.SELECT_HINDI,
    },
    CallState.WELCOME: _MAIN_MENU,
    CallState.MENU: _MAIN_MENU,
    CallState.RECORDING: {
        "2": MenuAction.STOP_RECORDING,
        "9": MenuAction.END_CALL,
    },
    CallState.PROCESSING: {
        "1": MenuAction.START_RECORDING,
        "2": MenuAction.NOOP,
        "3": MenuAction.GET_ANSWER,
        "5": MenuAction.RETURN_TO_MENU,
        "9": MenuAction.END_CALL,
    },
    CallState.SUMMARY: {
        "5": MenuAction.RETURN_TO_MENU,
        "9": MenuAction.END_CALL,
    },
}


def resolve_digit(state: CallState, digit: str) -> MenuAction:
    """Look up the action for a digit. Unlisted pairs are INVALID."""
    action = TRANSITIONS.get(state, {}).get((digit or "").strip(), MenuAction.INVALID)
    if action == MenuAction.INVALID:
        logger.debug(f"[TRANSITIONS] No transition for digit '{digit}' in state {state.value}")
    return action


def defined_pairs() -> Tuple[Tuple[CallState, str], ...]:
    """Every (state, digit) pair with a defined action."""
    return tuple(
        (state, digit) for state, table in TRANSITIONS.items() for digit in table
    )
