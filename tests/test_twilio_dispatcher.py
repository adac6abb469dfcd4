"""Tests for the Twilio call dispatcher and the TwiML it produces."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from reminder_dispatch.config import Settings, TelephonySettings, TwilioSettings
from reminder_dispatch.core.exceptions import DispatchFailureError
from reminder_dispatch.telephony import twiml
from reminder_dispatch.telephony.base import CallRequest, MockCallDispatcher
from reminder_dispatch.telephony.factory import create_call_dispatcher
from reminder_dispatch.telephony.twilio import (
    GATHER_WEBHOOK_PATH,
    STATUS_CALLBACK_EVENTS,
    TwilioCallDispatcher,
    map_twilio_status,
)


@pytest.fixture
def mock_twilio_client():
    """Mock Twilio HTTP client."""
    with patch("httpx.AsyncClient") as mock:
        client = MagicMock()
        client.post = AsyncMock()
        client.aclose = AsyncMock()

        mock_response = MagicMock()
        mock_response.status_code = 201
        mock_response.json.return_value = {
            "sid": "CA1234567890abcdef",
            "status": "queued",
            "to": "+15551234567",
            "from": "+15557654321",
        }
        client.post.return_value = mock_response

        mock.return_value = client
        yield client


@pytest.fixture
def twilio_dispatcher(mock_twilio_client):
    """Create TwilioCallDispatcher with mocked client."""
    dispatcher = TwilioCallDispatcher(
        account_sid="AC123456789",
        auth_token="test_auth_token",
        from_number="+15557654321",
        base_url="https://reminders.example.com/",
    )
    dispatcher._client = mock_twilio_client
    return dispatcher


@pytest.fixture
def call_request() -> CallRequest:
    return CallRequest(
        to="+15551234567",
        title="Take medicine",
        description="Two pills <after> dinner & water",
        due_time_label="3:45 PM",
        job_id="r1",
    )


class TestPlaceCall:
    """Tests for call placement."""

    @pytest.mark.asyncio
    async def test_place_call_success(self, twilio_dispatcher, mock_twilio_client, call_request):
        result = await twilio_dispatcher.place_call(call_request)

        assert result.call_reference_id == "CA1234567890abcdef"
        assert result.status == "initiated"
        assert result.provider == "twilio"

        args, kwargs = mock_twilio_client.post.call_args
        assert args[0] == "/Calls.json"
        data = kwargs["data"]
        assert data["To"] == "+15551234567"
        assert data["From"] == "+15557654321"
        assert data["StatusCallback"] == "https://reminders.example.com/api/v1/webhooks/twilio/status"
        assert data["StatusCallbackEvent"] == STATUS_CALLBACK_EVENTS
        assert "Take medicine" in data["Twiml"]

    @pytest.mark.asyncio
    async def test_error_response_raises(self, twilio_dispatcher, mock_twilio_client, call_request):
        error_response = MagicMock()
        error_response.status_code = 400
        error_response.content = b"{}"
        error_response.json.return_value = {
            "code": 21211,
            "message": "The 'To' number is not a valid phone number.",
        }
        mock_twilio_client.post.return_value = error_response

        with pytest.raises(DispatchFailureError) as exc_info:
            await twilio_dispatcher.place_call(call_request)

        assert exc_info.value.message == "[21211] The 'To' number is not a valid phone number."
        assert exc_info.value.details["status_code"] == 400

    @pytest.mark.asyncio
    async def test_error_response_without_body(self, twilio_dispatcher, mock_twilio_client, call_request):
        error_response = MagicMock()
        error_response.status_code = 503
        error_response.content = b""
        mock_twilio_client.post.return_value = error_response

        with pytest.raises(DispatchFailureError) as exc_info:
            await twilio_dispatcher.place_call(call_request)

        assert exc_info.value.message == "[503] HTTP 503"

    @pytest.mark.asyncio
    async def test_timeout_raises(self, twilio_dispatcher, mock_twilio_client, call_request):
        mock_twilio_client.post.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(DispatchFailureError) as exc_info:
            await twilio_dispatcher.place_call(call_request)

        assert exc_info.value.message == "Request timeout"

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, twilio_dispatcher, mock_twilio_client, call_request):
        mock_twilio_client.post.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(DispatchFailureError) as exc_info:
            await twilio_dispatcher.place_call(call_request)

        assert "connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_close(self, twilio_dispatcher, mock_twilio_client):
        await twilio_dispatcher.close()
        mock_twilio_client.aclose.assert_awaited_once()


class TestReminderTwiml:
    """Tests for the outbound reminder script."""

    def test_script_content(self, twilio_dispatcher, call_request):
        document = twilio_dispatcher.build_twiml(call_request)

        assert "Attention! This is your reminder." in document
        assert "Take medicine." in document
        assert "This was scheduled for 3:45 PM." in document
        assert "Press 1 to confirm" in document
        assert "Press 2 to be called again in 5 minutes" in document
        assert (
            '<Gather numDigits="1" '
            f'action="https://reminders.example.com{GATHER_WEBHOOK_PATH}"'
        ) in document
        assert '<Play loop="3">https://reminders.example.com/audio/alert.mp3</Play>' in document
        assert "No response received." in document

    def test_user_text_is_escaped(self, twilio_dispatcher, call_request):
        document = twilio_dispatcher.build_twiml(call_request)

        assert "Two pills &lt;after&gt; dinner &amp; water" in document
        assert "<after>" not in document

    def test_description_is_optional(self, twilio_dispatcher):
        document = twilio_dispatcher.build_twiml(CallRequest(to="+15551234567", title="Walk"))

        assert document.count("<Say") == 5
        assert "scheduled for now" in document

    def test_escape_xml_quotes(self):
        assert twiml.escape_xml('Say "hi" & \'bye\'') == "Say &quot;hi&quot; &amp; &apos;bye&apos;"
        assert twiml.escape_xml(None) == ""

    def test_keypress_replies(self):
        assert "<Hangup/>" in twiml.acknowledged()
        assert "again in 5 minutes" in twiml.snoozed(5)
        reprompt = twiml.reprompt("https://example.com/gather")
        assert "didn't understand" in reprompt
        assert 'action="https://example.com/gather"' in reprompt


class TestStatusMapping:
    """Tests for Twilio status translation."""

    @pytest.mark.parametrize("twilio_status,expected", [
        ("queued", "initiated"),
        ("initiated", "initiated"),
        ("ringing", "ringing"),
        ("in-progress", "answered"),
        ("completed", "completed"),
        ("no-answer", "no-answer"),
        ("something-new", "something-new"),
    ])
    def test_map_twilio_status(self, twilio_status, expected):
        assert map_twilio_status(twilio_status) == expected


class TestFactory:
    """Tests for dispatcher selection."""

    def test_mock_provider(self):
        settings = Settings(telephony=TelephonySettings(provider="mock"))
        assert isinstance(create_call_dispatcher(settings), MockCallDispatcher)

    def test_twilio_without_credentials_falls_back(self):
        settings = Settings(telephony=TelephonySettings(provider="twilio"))
        assert isinstance(create_call_dispatcher(settings), MockCallDispatcher)

    def test_twilio_with_credentials(self, mock_twilio_client):
        settings = Settings(telephony=TelephonySettings(
            provider="twilio",
            twilio=TwilioSettings(
                account_sid="AC123",
                auth_token="secret",
                from_number="+15557654321",
                base_url="https://reminders.example.com",
            ),
        ))

        dispatcher = create_call_dispatcher(settings)

        assert isinstance(dispatcher, TwilioCallDispatcher)
        assert dispatcher.status_callback_url == (
            "https://reminders.example.com/api/v1/webhooks/twilio/status"
        )
