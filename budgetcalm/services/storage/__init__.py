"""
Storage Services Package

Provides the abstract document store interface and the sqlite-backed
local implementation.
"""

from budgetcalm.services.storage.interface import (
    ChangeBatch,
    Checkpoint,
    Condition,
    DocumentStoreInterface,
    DuplicateError,
    NotFoundError,
    Query,
    RevisionConflictError,
    StorageError,
    StoreAlreadyOpenError,
    StoreUnavailableError,
    where,
)
from budgetcalm.services.storage.revisions import (
    new_revision,
    parse_revision,
    revision_wins,
)
from budgetcalm.services.storage.sqlite_store import SQLiteDocumentStore

__all__ = [
    # Interface
    "ChangeBatch",
    "Checkpoint",
    "Condition",
    "DocumentStoreInterface",
    "Query",
    "where",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "RevisionConflictError",
    "StorageError",
    "StoreAlreadyOpenError",
    "StoreUnavailableError",
    # Revisions
    "new_revision",
    "parse_revision",
    "revision_wins",
    # SQLite implementation
    "SQLiteDocumentStore",
]
