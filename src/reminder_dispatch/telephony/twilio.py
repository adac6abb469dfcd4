"""Twilio Call Dispatcher Implementation.

Places reminder calls through the Twilio Programmable Voice REST API with
inline TwiML. Call progress comes back through the status callback webhook,
keypresses through the gather webhook.

Status Callback Flow:
1. Call queued by Twilio (initiated)
2. Callee phone ringing
3. Call answered, TwiML script plays, Gather collects one digit
4. Twilio posts the digit to our gather webhook
5. Call completes (or fails, busy, no-answer, canceled)
6. Twilio posts each transition to our status webhook
"""
from __future__ import annotations

from datetime import datetime

import httpx

from reminder_dispatch.core.exceptions import DispatchFailureError
from reminder_dispatch.core.models import DialStatus
from reminder_dispatch.log_setup import get_logger
from reminder_dispatch.telephony import twiml
from reminder_dispatch.telephony.base import CallDispatcher, CallRequest, DispatchResult

log = get_logger(__name__)


# Twilio call resource status to our dispatcher status
TWILIO_STATUS_MAP: dict[str, str] = {
    "queued": DialStatus.INITIATED.value,
    "initiated": DialStatus.INITIATED.value,
    "ringing": DialStatus.RINGING.value,
    "in-progress": DialStatus.ANSWERED.value,
    "answered": DialStatus.ANSWERED.value,
    "completed": DialStatus.COMPLETED.value,
    "failed": DialStatus.FAILED.value,
    "busy": DialStatus.BUSY.value,
    "no-answer": DialStatus.NO_ANSWER.value,
    "canceled": DialStatus.CANCELED.value,
}

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]

STATUS_WEBHOOK_PATH = "/api/v1/webhooks/twilio/status"
GATHER_WEBHOOK_PATH = "/api/v1/webhooks/twilio/gather"


def map_twilio_status(status: str) -> str:
    """Translate a Twilio CallStatus value, passing unknown values through."""
    return TWILIO_STATUS_MAP.get(status, status)


class TwilioCallDispatcher(CallDispatcher):
    """Twilio voice call dispatcher.

    Attributes:
        account_sid: Twilio Account SID
        auth_token: Twilio Auth Token
        from_number: Caller ID phone number
        base_url: Public base URL of this service (webhooks, audio)
    """

    API_BASE = "https://api.twilio.com/2010-04-01"
    provider = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        base_url: str,
        voice: str = "Polly.Joanna",
        language: str = "en-US",
        alert_audio_path: str = "/audio/alert.mp3",
        gather_timeout: int = 10,
        snooze_minutes: int = 5,
        timeout: float = 30.0,
    ):
        """Initialize Twilio call dispatcher.

        Args:
            account_sid: Twilio Account SID
            auth_token: Twilio Auth Token
            from_number: Caller ID phone number (E.164 format)
            base_url: Public base URL for webhooks and audio
            voice: Twilio <Say> voice
            language: Twilio <Say> language
            alert_audio_path: Path of the alert sound below base_url
            gather_timeout: Seconds to wait for a keypress
            snooze_minutes: Snooze delay announced in the script
            timeout: HTTP request timeout
        """
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self.voice = voice
        self.language = language
        self.alert_audio_path = alert_audio_path
        self.gather_timeout = gather_timeout
        self.snooze_minutes = snooze_minutes
        self.timeout = timeout

        auth = httpx.BasicAuth(account_sid, auth_token)
        self._client = httpx.AsyncClient(
            base_url=f"{self.API_BASE}/Accounts/{account_sid}",
            auth=auth,
            timeout=timeout,
            headers={
                "Accept": "application/json",
            },
        )

    @property
    def status_callback_url(self) -> str:
        return f"{self.base_url}{STATUS_WEBHOOK_PATH}"

    @property
    def gather_url(self) -> str:
        return f"{self.base_url}{GATHER_WEBHOOK_PATH}"

    def build_twiml(self, request: CallRequest) -> str:
        """Render the reminder script for a call request."""
        return twiml.reminder_call(
            title=request.title,
            description=request.description,
            due_time_label=request.due_time_label,
            gather_url=self.gather_url,
            alert_audio_url=f"{self.base_url}{self.alert_audio_path}",
            voice=self.voice,
            language=self.language,
            gather_timeout=self.gather_timeout,
            snooze_minutes=self.snooze_minutes,
        )

    async def place_call(self, request: CallRequest) -> DispatchResult:
        """Place a reminder call via the Twilio API.

        Args:
            request: Call to place

        Returns:
            Result with the Twilio call SID

        Raises:
            DispatchFailureError: On error responses, timeouts and transport errors
        """
        data = {
            "To": request.to,
            "From": self.from_number,
            "Twiml": self.build_twiml(request),
            "StatusCallback": self.status_callback_url,
            "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
            "StatusCallbackMethod": "POST",
        }

        try:
            response = await self._client.post("/Calls.json", data=data)
        except httpx.TimeoutException as e:
            log.error("Twilio call timeout", to=request.to, job_id=request.job_id)
            raise DispatchFailureError(
                "Request timeout",
                details={"to": request.to, "provider": self.provider},
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            log.error("Twilio call HTTP error", error=str(e), to=request.to)
            raise DispatchFailureError(
                f"HTTP error: {e}",
                details={"to": request.to, "provider": self.provider},
                cause=e,
            ) from e

        if response.status_code in (200, 201):
            result_data = response.json()
            call_sid = result_data.get("sid", "")
            status = result_data.get("status", "queued")

            log.info(
                "Call placed via Twilio",
                call_sid=call_sid,
                to=request.to,
                status=status,
                job_id=request.job_id,
            )

            return DispatchResult(
                call_reference_id=call_sid,
                status=map_twilio_status(status),
                provider=self.provider,
                placed_at=datetime.now(),
            )

        try:
            error_data = response.json() if response.content else {}
        except (ValueError, TypeError):
            error_data = {}
        error_code = str(error_data.get("code", response.status_code))
        error_message = error_data.get("message", f"HTTP {response.status_code}")

        log.error(
            "Twilio call failed",
            status_code=response.status_code,
            error_code=error_code,
            error=error_message,
            to=request.to,
        )

        raise DispatchFailureError(
            f"[{error_code}] {error_message}",
            details={
                "to": request.to,
                "provider": self.provider,
                "status_code": response.status_code,
            },
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()
