"""Structured logging configuration using structlog.

Every entry carries the process tags (``instance_id``, ``environment``) so
that logs from several reminder dispatch processes can be told apart, and
per-request fields such as ``job_id`` or ``call_sid`` are passed as keywords.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Per-request client loggers that would otherwise log every Twilio API call
_QUIET_LOGGERS = ("httpx", "httpcore")


def process_tags(**tags: str | None) -> structlog.types.Processor:
    """Build a processor stamping fixed tags on every entry.

    Empty tags are dropped; fields already bound on an entry win.
    """
    fixed = {key: value for key, value in tags.items() if value}

    def add_tags(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in fixed.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_tags


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    instance_id: str | None = None,
    environment: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines for log shipping; colored console otherwise
        instance_id: Process identifier stamped on every entry
        environment: Deployment environment stamped on every entry
    """
    log_level = getattr(logging, level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list[Any] = [
        process_tags(instance_id=instance_id, environment=environment),
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a module logger (typically ``get_logger(__name__)``)."""
    return structlog.get_logger(name)
