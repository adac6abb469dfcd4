"""Telephony integration.

- CallDispatcher: abstract call placement capability
- MockCallDispatcher: development/testing dispatcher
- TwilioCallDispatcher: Twilio Programmable Voice
"""

from reminder_dispatch.telephony.base import (
    CallDispatcher,
    CallRequest,
    DispatchResult,
    MockCallDispatcher,
)
from reminder_dispatch.telephony.factory import create_call_dispatcher

__all__ = [
    "CallDispatcher",
    "CallRequest",
    "DispatchResult",
    "MockCallDispatcher",
    "create_call_dispatcher",
]
