"""Structured logging configuration using ``structlog``.

Call :func:`setup_logging` once at start-up (the API lifespan does) to
configure both ``structlog`` and the standard-library ``logging``
module.  Events are snake_case names with keyword context, e.g.::

    logger.info("pipeline_started", command="pipeline /repo -o ...", token=3)
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structured logging for the service.

    Pipeline output lines are logged at ``DEBUG`` as ``pipeline_output``
    events, so run with ``CALLSITE_LOG_LEVEL=DEBUG`` to see them
    interleaved with supervisor events.

    Args:
        log_level: Minimum severity level (e.g. ``"DEBUG"``, ``"INFO"``).
        json_logs: Render one JSON object per line instead of the
            coloured console format.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    # The observer thread logs every raw file event at DEBUG.
    logging.getLogger("watchdog").setLevel(max(numeric_level, logging.WARNING))

    if json_logs:
        renderer = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderer = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
