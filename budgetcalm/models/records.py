"""
Core Data Models for BudgetCalm

Budgets and Expenses are the only two record kinds. They are plain
documents identified by a string id and carry an opaque revision marker
(`_rev`) owned by the document store.

DESIGN DECISION: The models are deliberately permissive. Business rules
(positive amounts, reserved names, date normalization) are enforced by
the validator so that each violation gets its own user-facing message,
instead of a generic schema error.
"""

import random
import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# CONSTANTS
# =============================================================================

NEW_BUDGET_ID = "newBudget"
NEW_EXPENSE_ID = "newExpense"

# Computed aggregate shown by the UI; never a real budget
RESERVED_BUDGET_NAME = "Total"
FALLBACK_BUDGET_NAME = "Misc"
DEFAULT_BUDGET_VALUE = 100.0

REVISION_FIELD = "_rev"


class Collection(str, Enum):
    """Document collections held by the store."""
    BUDGETS = "budgets"
    EXPENSES = "expenses"


def generate_id() -> str:
    """
    Build a new record id.

    Millisecond timestamp and a random fraction, joined by ":".
    """
    return f"{int(time.time() * 1000)}:{random.random()}"


# =============================================================================
# RECORDS
# =============================================================================

class Record(BaseModel):
    """Common behaviour of stored documents."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    rev: Optional[str] = Field(
        default=None,
        alias=REVISION_FIELD,
        description="Revision marker assigned by the document store"
    )

    def to_document(self) -> dict[str, Any]:
        """Fields as stored, without the revision marker."""
        return self.model_dump(exclude={"rev"})

    @classmethod
    def from_document(cls, document: dict[str, Any]):
        return cls.model_validate(document)


class Budget(Record):
    """A named monthly spending allocation."""

    id: str = NEW_BUDGET_ID
    name: str
    month: str = Field(..., description="YYYY-MM")
    value: float

    @property
    def is_new(self) -> bool:
        return self.id == NEW_BUDGET_ID


class Expense(Record):
    """A dated cost attributed to a Budget by name."""

    id: str = NEW_EXPENSE_ID
    cost: float
    description: str
    budget: str = ""
    date: str = Field(..., description="YYYY-MM-DD")

    @property
    def is_new(self) -> bool:
        return self.id == NEW_EXPENSE_ID

    @property
    def month(self) -> str:
        """Month the expense counts towards."""
        return self.date[:7]


class ExportPayload(BaseModel):
    """
    Whole-dataset backup format.

    Field names match the stored documents; revision markers are never
    part of the payload.
    """

    budgets: list[Budget] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "budgets": [budget.to_document() for budget in self.budgets],
            "expenses": [expense.to_document() for expense in self.expenses],
        }
