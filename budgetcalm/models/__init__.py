"""
Data Models Package

All records flowing through BudgetCalm conform to these schemas.
"""

from budgetcalm.models.records import (
    DEFAULT_BUDGET_VALUE,
    FALLBACK_BUDGET_NAME,
    NEW_BUDGET_ID,
    NEW_EXPENSE_ID,
    RESERVED_BUDGET_NAME,
    REVISION_FIELD,
    Budget,
    Collection,
    Expense,
    ExportPayload,
    Record,
    generate_id,
)
from budgetcalm.models.sync import (
    ConnectionState,
    SyncChange,
    SyncDirection,
)

__all__ = [
    # Constants
    "DEFAULT_BUDGET_VALUE",
    "FALLBACK_BUDGET_NAME",
    "NEW_BUDGET_ID",
    "NEW_EXPENSE_ID",
    "RESERVED_BUDGET_NAME",
    "REVISION_FIELD",
    # Records
    "Budget",
    "Collection",
    "Expense",
    "ExportPayload",
    "Record",
    "generate_id",
    # Sync
    "ConnectionState",
    "SyncChange",
    "SyncDirection",
]
