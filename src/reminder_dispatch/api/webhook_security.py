"""Webhook security and signature verification.

Validates that inbound Twilio callbacks (call status, keypress) were signed
with the account's auth token.

Security measures:
- HMAC-SHA1 signature verification
- Constant-time comparison
- Signed URL rebuilt from the public base URL when the service runs behind
  a tunnel or reverse proxy
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from reminder_dispatch.core.exceptions import WebhookSecurityError
from reminder_dispatch.log_setup import get_logger

if TYPE_CHECKING:
    from fastapi import Request

log = get_logger(__name__)


@dataclass
class WebhookSecurityConfig:
    """Webhook security configuration."""

    validate_signatures: bool = True

    twilio_auth_token: str = ""
    twilio_signature_header: str = "X-Twilio-Signature"

    # Public URL Twilio was told to call; empty means use the request URL
    public_base_url: str = ""


class TwilioSignatureValidator:
    """Validate Twilio webhook signatures.

    Twilio signs all webhook requests with HMAC-SHA1.
    See: https://www.twilio.com/docs/usage/security

    Signature calculation:
    1. Take the full URL of the request
    2. If POST, sort parameters alphabetically and append to URL
    3. Compute HMAC-SHA1 of the result using Auth Token as key
    4. Base64 encode the result
    """

    def __init__(self, auth_token: str) -> None:
        self.auth_token = auth_token

    def compute(self, url: str, params: dict[str, Any] | None = None) -> str:
        """Compute the signature Twilio would send for ``url`` and ``params``."""
        data = url
        for key, value in sorted((params or {}).items()):
            data += str(key) + str(value)

        return base64.b64encode(
            hmac.new(
                self.auth_token.encode("utf-8"),
                data.encode("utf-8"),
                hashlib.sha1,
            ).digest()
        ).decode("utf-8")

    def validate(
        self,
        signature: str,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> bool:
        """Validate Twilio signature.

        Args:
            signature: Value from X-Twilio-Signature header
            url: Full request URL (including https://)
            params: POST parameters (if any)

        Returns:
            True if signature is valid
        """
        if not self.auth_token:
            log.warning("Twilio auth token not configured")
            return False
        if not signature:
            return False

        return hmac.compare_digest(self.compute(url, params), signature)


class WebhookSecurityManager:
    """Webhook security manager.

    Usage:
        security = WebhookSecurityManager(config)

        @router.post("/webhooks/twilio/status")
        async def twilio_status(request: Request):
            await security.validate_twilio(request)
            # Process webhook...
    """

    def __init__(self, config: WebhookSecurityConfig) -> None:
        self.config = config
        self._twilio = TwilioSignatureValidator(config.twilio_auth_token)

    def signed_url(self, request: "Request") -> str:
        """URL as Twilio saw it when signing the request."""
        if not self.config.public_base_url:
            return str(request.url)

        url = self.config.public_base_url.rstrip("/") + request.url.path
        if request.url.query:
            url += "?" + request.url.query
        return url

    async def validate_twilio(self, request: "Request") -> None:
        """Validate Twilio webhook request.

        Args:
            request: FastAPI request

        Raises:
            WebhookSecurityError: If validation fails
        """
        if not self.config.validate_signatures:
            return

        signature = request.headers.get(self.config.twilio_signature_header, "")
        form = await request.form()
        params = {key: value for key, value in form.items() if isinstance(value, str)}

        if not self._twilio.validate(signature, self.signed_url(request), params):
            log.warning("Invalid Twilio signature", path=str(request.url.path))
            raise WebhookSecurityError(
                "Invalid Twilio signature",
                details={"path": request.url.path},
            )

        log.debug("Twilio webhook validated", path=str(request.url.path))
