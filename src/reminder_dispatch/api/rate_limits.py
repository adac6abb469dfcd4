"""Rate limiting configuration for API endpoints.

Provides rate limiting using slowapi to prevent abuse and ensure fair usage.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address


# Rate limiter instance - shared across the application
limiter = Limiter(key_func=get_remote_address)


class RateLimits:
    """Rate limit constants for different endpoint types."""

    # Listing and status lookups
    READ = "120/minute"

    # Submit and cancel
    WRITE = "60/minute"

    # Immediate calls (each one rings a phone)
    CALL_NOW = "5/minute"

    # Webhooks (high volume from Twilio)
    WEBHOOK = "300/minute"

    # Health checks (the mobile client polls on resume)
    HEALTH = "300/minute"
