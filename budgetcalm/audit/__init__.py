"""Logging package."""

from budgetcalm.audit.logger import (
    configure_from_settings,
    configure_logging,
    create_correlation_id,
    get_logger,
)

__all__ = [
    "configure_from_settings",
    "configure_logging",
    "create_correlation_id",
    "get_logger",
]
