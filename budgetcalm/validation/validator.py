"""
Record Validation and Normalization

DESIGN DECISION: Validation happens in two stages before any write:

STAGE 1 - FIELD RULES (no storage needed):
- Reserved and empty names
- Positive, non-NaN amounts
- Month/date normalization

STAGE 2 - STORE RULES (needs the document store):
- Budget name uniqueness within a month
- Auto-categorization of new expenses from earlier ones

Rule violations raise RecordValidationError with a message that can be
shown to the user as-is. Malformed months and dates are not errors: they
are replaced with the current month / today.
"""

import math
from datetime import date, datetime
from typing import Optional

from budgetcalm.audit import get_logger
from budgetcalm.models.records import (
    FALLBACK_BUDGET_NAME,
    RESERVED_BUDGET_NAME,
    Budget,
    Collection,
    Expense,
)
from budgetcalm.services.storage import DocumentStoreInterface, where

logger = get_logger(__name__)

MONTH_FORMAT = "%Y-%m"
DATE_FORMAT = "%Y-%m-%d"


def normalize_month(value: Optional[str], today: Optional[date] = None) -> str:
    """Canonical YYYY-MM for `value`, or the current month if it doesn't parse."""
    try:
        return datetime.strptime(value or "", MONTH_FORMAT).strftime(MONTH_FORMAT)
    except ValueError:
        return (today or date.today()).strftime(MONTH_FORMAT)


def normalize_date(value: Optional[str], today: Optional[date] = None) -> str:
    """Canonical YYYY-MM-DD for `value`, or today if it doesn't parse."""
    try:
        return datetime.strptime(value or "", DATE_FORMAT).strftime(DATE_FORMAT)
    except ValueError:
        return (today or date.today()).strftime(DATE_FORMAT)


def _is_positive_amount(value: float) -> bool:
    return math.isfinite(value) and value > 0


class RecordValidator:
    """
    Validates and normalizes Budgets and Expenses.

    Every method returns a normalized copy; the input is never mutated.
    """

    def __init__(self, store: DocumentStoreInterface):
        self._store = store

    # -------------------------------------------------------------------------
    # Stage 1
    # -------------------------------------------------------------------------

    def check_budget_fields(self, budget: Budget) -> Budget:
        if budget.name == RESERVED_BUDGET_NAME:
            raise RecordValidationError(
                f'Cannot create budget named "{RESERVED_BUDGET_NAME}".', field="name"
            )
        if not budget.name.strip():
            raise RecordValidationError("The budget needs a valid name.", field="name")
        if not _is_positive_amount(budget.value):
            raise RecordValidationError("The budget needs a valid value.", field="value")

        return budget.model_copy(update={"month": normalize_month(budget.month)})

    def check_expense_fields(self, expense: Expense) -> Expense:
        if not expense.description.strip():
            raise RecordValidationError(
                "The expense needs a valid description.", field="description"
            )
        if not _is_positive_amount(expense.cost):
            raise RecordValidationError("The expense needs a valid cost.", field="cost")

        return expense.model_copy(update={"date": normalize_date(expense.date)})

    # -------------------------------------------------------------------------
    # Stage 2
    # -------------------------------------------------------------------------

    async def check_budget_unique(self, budget: Budget) -> None:
        """Reject a second budget with the same name in the same month."""
        duplicate = await self._store.find_one(
            Collection.BUDGETS,
            where("month").eq(budget.month)
            .where("name").eq(budget.name)
            .where("id").ne(budget.id),
        )
        if duplicate is not None:
            raise DuplicateBudgetError(
                "A budget with the same name for the same month already exists.",
                field="name",
            )

    async def categorize_expense(self, expense: Expense) -> Expense:
        """
        Pick a budget for an uncategorized new expense.

        A new expense without a budget (or filed under the fallback) takes
        the budget of any earlier expense with the same description. Anything
        still uncategorized falls back to FALLBACK_BUDGET_NAME.
        """
        budget_name = expense.budget
        if expense.is_new and budget_name in ("", FALLBACK_BUDGET_NAME):
            previous = await self._store.find_one(
                Collection.EXPENSES,
                where("description").eq(expense.description),
            )
            if previous is not None and previous.get("budget"):
                budget_name = previous["budget"]
                logger.debug(
                    "expense_budget_inherited",
                    description=expense.description,
                    budget=budget_name,
                )

        if not budget_name:
            budget_name = FALLBACK_BUDGET_NAME
        return expense.model_copy(update={"budget": budget_name})

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    async def validate_expense(self, expense: Expense) -> Expense:
        normalized = self.check_expense_fields(expense)
        return await self.categorize_expense(normalized)


class RecordValidationError(ValueError):
    """A record broke a business rule. The message is user-displayable."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DuplicateBudgetError(RecordValidationError):
    """Another budget in the same month already uses this name."""
    pass
