"""Call Dispatcher Factory.

Creates the appropriate call dispatcher based on configuration.

Supported providers:
- twilio: Twilio Programmable Voice
- mock: For development and testing
"""

from __future__ import annotations

from reminder_dispatch.config import Settings, get_settings
from reminder_dispatch.log_setup import get_logger
from reminder_dispatch.telephony.base import CallDispatcher, MockCallDispatcher

log = get_logger(__name__)


def create_call_dispatcher(settings: Settings | None = None) -> CallDispatcher:
    """Build the configured call dispatcher.

    Falls back to the mock dispatcher when Twilio credentials are missing.

    Returns:
        Call dispatcher instance based on config.
    """
    settings = settings or get_settings()
    provider = settings.telephony.provider.lower()
    log.info("Initializing call dispatcher", provider=provider)

    if provider == "twilio":
        twilio_config = settings.telephony.twilio

        if not twilio_config.account_sid or not twilio_config.auth_token:
            log.warning("Twilio credentials not configured, using mock dispatcher")
            return MockCallDispatcher()

        from reminder_dispatch.telephony.twilio import TwilioCallDispatcher

        dispatcher = TwilioCallDispatcher(
            account_sid=twilio_config.account_sid,
            auth_token=twilio_config.auth_token,
            from_number=twilio_config.from_number,
            base_url=twilio_config.base_url,
            voice=twilio_config.voice,
            language=twilio_config.language,
            alert_audio_path=twilio_config.alert_audio_path,
            gather_timeout=twilio_config.gather_timeout_seconds,
            snooze_minutes=settings.schedule.snooze_minutes,
            timeout=twilio_config.timeout_seconds,
        )
        log.info(
            "Twilio call dispatcher initialized",
            from_number=twilio_config.from_number,
            status_callback=dispatcher.status_callback_url,
        )
        return dispatcher

    if provider != "mock":
        log.warning(f"Unknown telephony provider '{provider}', using mock")

    return MockCallDispatcher()
