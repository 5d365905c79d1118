"""
Structured logging configuration using structlog.

JSON lines in production, pretty console output in development. Everything goes
to stdout; the process manager decides where it ends up.

Protocol secrets never reach the log: verification token secrets, raw tokens
and submitted solutions are masked in every event by ``mask_secrets``.
"""

import logging
import sys

import structlog

from capgate.config import settings

# Event keys that may carry bearer material
SECRET_KEYS = frozenset({"token", "secret", "solutions", "authorization"})


def mask_secrets(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor replacing SECRET_KEYS values in the event."""
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def _level() -> int:
    return getattr(logging, settings.log_level)


def setup_logging() -> None:
    """
    Configure structlog and stdlib logging integration.

    Call this once at application startup.
    """
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            # Picks up the per-request correlation_id bound by LoggingMiddleware
            structlog.contextvars.merge_contextvars,
            mask_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # APScheduler, SQLAlchemy and the scheduler module log through stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=_level())

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.INFO)


def get_logger(name: str | None = None):
    """Structlog logger, bound to ``logger_name`` when a name is given."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger
