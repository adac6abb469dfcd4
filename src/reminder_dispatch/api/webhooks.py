"""Twilio webhook endpoints.

Status callbacks update the call records; gather callbacks carry the digit
the callee pressed and are answered with TwiML.
"""

from fastapi import APIRouter, Request, Response

from reminder_dispatch.api.rate_limits import RateLimits, limiter
from reminder_dispatch.dependencies import (
    ResponseHandlerDep,
    SettingsDep,
    WebhookSecurityDep,
)
from reminder_dispatch.log_setup import get_logger
from reminder_dispatch.services.response_handler import KeypressAction
from reminder_dispatch.telephony import twiml
from reminder_dispatch.telephony.twilio import (
    GATHER_WEBHOOK_PATH,
    STATUS_WEBHOOK_PATH,
    map_twilio_status,
)

log = get_logger(__name__)

router = APIRouter()

_PREFIX = "/api/v1"


def _twiml_response(document: str) -> Response:
    return Response(
        content='<?xml version="1.0" encoding="UTF-8"?>' + document,
        media_type="application/xml",
    )


@router.post(STATUS_WEBHOOK_PATH.removeprefix(_PREFIX))
@limiter.limit(RateLimits.WEBHOOK)
async def handle_twilio_status(
    request: Request,
    security: WebhookSecurityDep,
    handler: ResponseHandlerDep,
) -> Response:
    """Handle Twilio status callback webhook.

    Called on each call transition (initiated, ringing, answered, completed)
    and on failure outcomes (busy, no-answer, failed, canceled).
    """
    await security.validate_twilio(request)

    form_data = await request.form()
    call_sid = str(form_data.get("CallSid", ""))
    call_status = str(form_data.get("CallStatus", ""))

    log.info(
        "Twilio status webhook",
        call_sid=call_sid,
        status=call_status,
        duration=form_data.get("CallDuration"),
    )

    if call_sid and call_status:
        handler.handle_status(call_sid, map_twilio_status(call_status))

    return Response(content="OK", media_type="text/plain")


@router.post(GATHER_WEBHOOK_PATH.removeprefix(_PREFIX))
@limiter.limit(RateLimits.WEBHOOK)
async def handle_twilio_gather(
    request: Request,
    security: WebhookSecurityDep,
    handler: ResponseHandlerDep,
    settings: SettingsDep,
) -> Response:
    """Handle the keypress collected by the reminder script.

    Returns TwiML: a thank-you, a snooze confirmation, or a re-prompt.
    """
    await security.validate_twilio(request)

    form_data = await request.form()
    call_sid = str(form_data.get("CallSid", ""))
    digits = str(form_data.get("Digits", ""))

    log.info("Twilio gather webhook", call_sid=call_sid, digits=digits)

    result = handler.handle_keypress(call_sid, digits)
    twilio = settings.telephony.twilio

    if result.action == KeypressAction.ACKNOWLEDGED:
        return _twiml_response(twiml.acknowledged(voice=twilio.voice))

    if result.action == KeypressAction.SNOOZED:
        return _twiml_response(
            twiml.snoozed(handler.snooze_minutes, voice=twilio.voice)
        )

    if result.action == KeypressAction.REPROMPT:
        return _twiml_response(
            twiml.reprompt(
                gather_url=twilio.base_url.rstrip("/") + GATHER_WEBHOOK_PATH,
                voice=twilio.voice,
                gather_timeout=twilio.gather_timeout_seconds,
            )
        )

    return _twiml_response(twiml.goodbye(voice=twilio.voice))
