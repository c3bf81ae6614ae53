"""TwiML rendering for voice replies."""
from typing import List

from tutorline.services.call_session.models import Instruction, InstructionType, VoiceReply
from tutorline.services.call_session.prompts import VOICES

GATHER_TIMEOUT_SECONDS = 10


def escape_xml(text: str) -> str:
    """Escape text for inclusion in TwiML."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def webhook_url(base_url: str, target: str) -> str:
    return f"{base_url.rstrip('/')}/webhooks/voice/{target}"


def audio_url(base_url: str, file_name: str) -> str:
    return f"{base_url.rstrip('/')}/audio/{file_name}"


def render_twiml(reply: VoiceReply, base_url: str) -> str:
    """
    Render a voice reply as a TwiML document.

    Gathers collect a single digit and fall through to the welcome webhook
    when the caller presses nothing.
    """
    voice, language = VOICES.get(reply.language.value, VOICES["en"])

    def say(text: str, indent: str = "    ") -> str:
        return f'{indent}<Say voice="{voice}" language="{language}">{escape_xml(text)}</Say>'

    lines: List[str] = []
    instruction: Instruction
    for instruction in reply.instructions:
        if instruction.type == InstructionType.SAY:
            lines.append(say(instruction.text or ""))
        elif instruction.type == InstructionType.PLAY:
            lines.append(f"    <Play>{escape_xml(audio_url(base_url, instruction.audio or ''))}</Play>")
        elif instruction.type == InstructionType.PAUSE:
            lines.append(f'    <Pause length="{instruction.seconds or 1}"/>')
        elif instruction.type == InstructionType.GATHER:
            action = escape_xml(webhook_url(base_url, instruction.target or "menu"))
            lines.append(
                f'    <Gather action="{action}" method="POST" input="dtmf" '
                f'numDigits="{instruction.num_digits}" timeout="{GATHER_TIMEOUT_SECONDS}">'
            )
            if instruction.text:
                lines.append(say(instruction.text, indent="        "))
            lines.append("    </Gather>")
            lines.append(
                f'    <Redirect method="POST">{escape_xml(webhook_url(base_url, "welcome"))}</Redirect>'
            )
        elif instruction.type == InstructionType.RECORD:
            action = escape_xml(webhook_url(base_url, instruction.target or "question-recorded"))
            lines.append(
                f'    <Record action="{action}" method="POST" maxLength="{instruction.max_length}" '
                f'finishOnKey="{escape_xml(instruction.finish_on_key or "")}" playBeep="true"/>'
            )
        elif instruction.type == InstructionType.REDIRECT:
            lines.append(
                f'    <Redirect method="POST">'
                f'{escape_xml(webhook_url(base_url, instruction.target or "welcome"))}</Redirect>'
            )
        elif instruction.type == InstructionType.HANGUP:
            lines.append("    <Hangup/>")

    body = "\n".join(lines)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
{body}
</Response>"""


def render_error_twiml(
    base_url: str, message: str = "I'm sorry, I encountered an error. Please try again."
) -> str:
    """Fallback TwiML when a reply could not be produced."""
    voice, language = VOICES["en"]
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say voice="{voice}" language="{language}">{escape_xml(message)}</Say>
    <Redirect method="POST">{escape_xml(webhook_url(base_url, "welcome"))}</Redirect>
</Response>"""
