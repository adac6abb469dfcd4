"""Reminder Dispatch.

Schedules reminder phone calls and places each one at most once, at
approximately the requested time.
"""

__version__ = "0.1.0"
