"""
Structured Logging

DESIGN DECISION: Every module logs through structlog with snake_case event
names and key/value context. A correlation id is bound for each user
action so that a save, the budget it auto-creates and the cascade rename
it triggers can be traced together.

Logging never raises into the data layer.
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from budgetcalm.config import get_settings


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of the stdlib logging module.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, optionally named after a module."""
    return structlog.get_logger(name)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g. saving an expense) and
    bind it to the logger for every step of that action.
    """
    return uuid4()


def configure_from_settings() -> None:
    """Apply the log level and renderer from AppSettings."""
    app = get_settings().app
    configure_logging(app.log_level, app.json_logs)


configure_logging()
