"""Validation package."""

from budgetcalm.validation.validator import (
    DuplicateBudgetError,
    RecordValidationError,
    RecordValidator,
    normalize_date,
    normalize_month,
)

__all__ = [
    "DuplicateBudgetError",
    "RecordValidationError",
    "RecordValidator",
    "normalize_date",
    "normalize_month",
]
