"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for the local store.
This allows us to:
1. Keep the ledger decoupled from sqlite
2. Replicate any implementation with the same replication code
3. Exercise business rules against a throwaway store in tests

The interface is intentionally small - this is not a query planner.
Predicates cover exactly what the application needs: equality,
exclusion and inclusive ranges on a single field.

Documents are plain dicts. Every stored document carries "id" and the
opaque "_rev" revision marker. Replication works with wire documents,
which additionally carry "_deleted" for tombstones.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, NamedTuple, Optional

from budgetcalm.models.records import Collection
from budgetcalm.services.signals import Signal


# =============================================================================
# QUERIES
# =============================================================================

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class Condition:
    field: str
    operator: str  # one of "eq", "ne", "gte", "lte"
    value: Any


class Query:
    """
    Immutable conjunction of field conditions.

    Usage:
        where("month").eq("2024-05").where("id").ne(budget_id)
        where("date").between("2024-05-01", "2024-05-31")
    """

    def __init__(self, conditions: tuple[Condition, ...] = ()):
        self.conditions = conditions

    def where(self, field: str) -> "FieldQuery":
        if not _FIELD_RE.match(field):
            raise ValueError(f"Invalid field name: {field!r}")
        return FieldQuery(self, field)

    def _extend(self, condition: Condition) -> "Query":
        return Query(self.conditions + (condition,))

    def __repr__(self) -> str:
        parts = [f"{c.field} {c.operator} {c.value!r}" for c in self.conditions]
        return f"Query({', '.join(parts)})"


class FieldQuery:
    """Pending condition on one field of a Query."""

    def __init__(self, query: Query, field: str):
        self._query = query
        self._field = field

    def eq(self, value: Any) -> Query:
        return self._query._extend(Condition(self._field, "eq", value))

    def ne(self, value: Any) -> Query:
        return self._query._extend(Condition(self._field, "ne", value))

    def gte(self, value: Any) -> Query:
        return self._query._extend(Condition(self._field, "gte", value))

    def lte(self, value: Any) -> Query:
        return self._query._extend(Condition(self._field, "lte", value))

    def between(self, low: Any, high: Any) -> Query:
        """Inclusive range."""
        return self.gte(low).where(self._field).lte(high)


def where(field: str) -> FieldQuery:
    """Start a new query on `field`."""
    return Query().where(field)


# =============================================================================
# REPLICATION SUPPORT TYPES
# =============================================================================

class ChangeBatch(NamedTuple):
    """Wire documents changed after a sequence number, in sequence order."""
    documents: list[dict[str, Any]]
    last_seq: int


class Checkpoint(NamedTuple):
    push_seq: int = 0
    pull_seq: int = 0


# =============================================================================
# INTERFACE
# =============================================================================

class DocumentStoreInterface(ABC):
    """
    Abstract interface for the local document store.

    All reads exclude deleted documents. `find_many` results carry no
    guaranteed order; callers sort explicitly.
    """

    def __init__(self):
        # Emits the collection after every committed local write
        self.changed: Signal[Collection] = Signal("local_change")

    @abstractmethod
    async def ensure_collection(self, collection: Collection) -> None:
        """Create the collection and its indexes if missing (idempotent)."""
        pass

    @abstractmethod
    async def insert(
        self,
        collection: Collection,
        record: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Insert a new document.

        Returns:
            The stored document, including its first revision

        Raises:
            DuplicateError: If the id is already taken
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection: Collection,
        record_id: str,
        fields: dict[str, Any],
        rev: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Apply a partial update.

        Args:
            collection: Target collection
            record_id: Id of the document to change
            fields: Fields to overwrite ("id" and "_rev" are ignored)
            rev: Expected current revision. When given and stale, the
                 write is rejected. When None, last writer wins.

        Raises:
            NotFoundError: If the document doesn't exist
            RevisionConflictError: If `rev` is stale
        """
        pass

    @abstractmethod
    async def remove(self, collection: Collection, record_id: str) -> None:
        """
        Delete a document, leaving a tombstone for replication.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        pass

    @abstractmethod
    async def get(
        self,
        collection: Collection,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        pass

    @abstractmethod
    async def find_one(
        self,
        collection: Collection,
        query: Optional[Query] = None,
    ) -> Optional[dict[str, Any]]:
        """First matching document, or None."""
        pass

    @abstractmethod
    async def find_many(
        self,
        collection: Collection,
        query: Optional[Query] = None,
    ) -> list[dict[str, Any]]:
        """All matching documents (unordered)."""
        pass

    @abstractmethod
    async def bulk_insert(
        self,
        collection: Collection,
        records: Iterable[dict[str, Any]],
    ) -> int:
        """
        Insert many documents atomically.

        Returns:
            Number of documents inserted

        Raises:
            DuplicateError: If any id is taken (nothing is inserted)
        """
        pass

    @abstractmethod
    async def drop_collection(self, collection: Collection) -> None:
        """Remove a collection with its tombstones and sync checkpoints."""
        pass

    @abstractmethod
    async def erase(self) -> None:
        """
        Wipe the underlying storage, reclaiming orphaned space, then
        recreate empty collections.
        """
        pass

    # Replication support

    @abstractmethod
    async def changes_since(
        self,
        collection: Collection,
        since: int,
        limit: int,
    ) -> ChangeBatch:
        """Wire documents (tombstones included) written after `since`."""
        pass

    @abstractmethod
    async def apply_replicated(
        self,
        collection: Collection,
        document: dict[str, Any],
    ) -> bool:
        """
        Store a wire document received from a remote, keeping its revision.

        Returns:
            True if it replaced the local state (it won last-writer-wins)

        Raises:
            KeyError: If the document has no id or revision
            ValueError: If its revision is malformed
        """
        pass

    @abstractmethod
    async def get_checkpoint(
        self,
        collection: Collection,
        remote_id: str,
    ) -> Checkpoint:
        pass

    @abstractmethod
    async def set_checkpoint(
        self,
        collection: Collection,
        remote_id: str,
        checkpoint: Checkpoint,
    ) -> None:
        pass


# =============================================================================
# EXCEPTIONS
# =============================================================================

class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Document not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a document whose id is taken."""
    pass


class RevisionConflictError(StorageError):
    """Write issued against a stale revision."""
    pass


class StoreUnavailableError(StorageError):
    """The store is closed or could not be opened."""
    pass


class StoreAlreadyOpenError(StorageError):
    """A second live handle to the same storage was requested."""
    pass
