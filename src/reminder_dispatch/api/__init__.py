"""API routers.

- health: health, readiness and liveness checks
- reminders: reminder submission, cancellation, listing and call status
- webhooks: Twilio status and keypress callbacks
"""
