"""TwiML documents for reminder calls.

The outbound reminder script and the replies to keypress callbacks.
All user supplied text is XML-escaped before it is embedded.
"""

from __future__ import annotations

from xml.sax.saxutils import escape

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}

ACKNOWLEDGE_DIGIT = "1"
SNOOZE_DIGIT = "2"


def escape_xml(text: str | None) -> str:
    """Escape text for embedding in TwiML."""
    if not text:
        return ""
    return escape(text, _XML_ENTITIES)


def _say(text: str, voice: str, language: str) -> str:
    return f'<Say voice="{voice}" language="{language}">{text}</Say>'


def reminder_call(
    title: str,
    description: str,
    due_time_label: str,
    gather_url: str,
    alert_audio_url: str,
    voice: str = "Polly.Joanna",
    language: str = "en-US",
    gather_timeout: int = 10,
    snooze_minutes: int = 5,
) -> str:
    """Build the script played when the callee picks up."""
    parts = [
        "<Response>",
        _say('<prosody rate="95%">Attention! This is your reminder.</prosody>', voice, language),
        '<Pause length="0.5"/>',
        _say(f'<prosody rate="90%">{escape_xml(title)}.</prosody>', voice, language),
    ]

    if description:
        parts.append('<Pause length="0.3"/>')
        parts.append(_say(escape_xml(description), voice, language))

    parts.extend([
        '<Pause length="0.5"/>',
        _say(f"This was scheduled for {escape_xml(due_time_label or 'now')}.", voice, language),
        '<Pause length="1"/>',
        _say(
            f"Press {ACKNOWLEDGE_DIGIT} to confirm you received this reminder. "
            f"Press {SNOOZE_DIGIT} to be called again in {snooze_minutes} minutes.",
            voice,
            language,
        ),
        f'<Gather numDigits="1" action="{escape_xml(gather_url)}" method="POST" '
        f'timeout="{gather_timeout}">',
        f'<Play loop="3">{escape_xml(alert_audio_url)}</Play>',
        "</Gather>",
        _say("No response received. This reminder was not acknowledged.", voice, language),
        "</Response>",
    ])
    return "".join(parts)


def acknowledged(voice: str = "Polly.Joanna") -> str:
    """Reply after the callee confirmed the reminder."""
    return (
        "<Response>"
        f'<Say voice="{voice}">Thank you! Your reminder has been acknowledged. Have a great day!</Say>'
        "<Hangup/>"
        "</Response>"
    )


def snoozed(snooze_minutes: int = 5, voice: str = "Polly.Joanna") -> str:
    """Reply after the callee asked to be called again."""
    return (
        "<Response>"
        f'<Say voice="{voice}">Got it! I will call you again in {snooze_minutes} minutes.</Say>'
        "<Hangup/>"
        "</Response>"
    )


def reprompt(gather_url: str, voice: str = "Polly.Joanna", gather_timeout: int = 10) -> str:
    """Reply to an unrecognized keypress: explain and gather again."""
    return (
        "<Response>"
        f'<Say voice="{voice}">Sorry, I didn\'t understand that. '
        f"Press {ACKNOWLEDGE_DIGIT} to confirm, or {SNOOZE_DIGIT} to snooze.</Say>"
        f'<Gather numDigits="1" action="{escape_xml(gather_url)}" method="POST" '
        f'timeout="{gather_timeout}"/>'
        "</Response>"
    )


def goodbye(voice: str = "Polly.Joanna") -> str:
    """Reply for keypresses on calls we no longer track."""
    return (
        "<Response>"
        f'<Say voice="{voice}">Thank you. Goodbye.</Say>'
        "<Hangup/>"
        "</Response>"
    )
