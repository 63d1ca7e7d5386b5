"""
Abstract Remote Store Interface

The remote endpoint is identified entirely by the user's sync token.
It only has to support change feeds by sequence number, revision lookup,
conditional writes and a full erase; revision comparison happens on the
replicating side.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from budgetcalm.models.records import Collection
from budgetcalm.services.storage.interface import ChangeBatch


class RemoteStoreInterface(ABC):
    """
    Abstract interface for a remote replica.

    Wire documents are dicts holding "id", "_rev", "_deleted" and the
    record fields.
    """

    @property
    @abstractmethod
    def remote_id(self) -> str:
        """Stable identifier of the endpoint, used to key checkpoints."""
        pass

    @abstractmethod
    async def changes_since(
        self,
        collection: Collection,
        since: int,
        limit: int,
    ) -> ChangeBatch:
        """
        Documents written after remote sequence `since`, in order.

        Raises:
            RemoteUnavailableError: If the endpoint can't be reached
        """
        pass

    @abstractmethod
    async def fetch_revisions(
        self,
        collection: Collection,
        record_ids: list[str],
    ) -> dict[str, str]:
        """Current remote revision of each id that exists remotely."""
        pass

    @abstractmethod
    async def put(
        self,
        collection: Collection,
        documents: list[dict[str, Any]],
        expected: dict[str, Optional[str]],
    ) -> list[str]:
        """
        Write wire documents, assigning new sequences.

        Each write only lands if the remote revision still equals
        `expected[id]` (None: the id must not exist remotely yet).

        Returns:
            Ids whose remote revision moved in the meantime; nothing was
            written for them
        """
        pass

    @abstractmethod
    async def erase(self) -> None:
        """
        Remove every document from every collection.

        Sequence numbering must keep increasing afterwards so that other
        replicas' checkpoints stay valid.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class RemoteStoreError(Exception):
    """Base exception for remote replica operations."""
    pass


class RemoteUnavailableError(RemoteStoreError):
    """Could not reach the remote endpoint."""
    pass


class InvalidSyncTokenError(RemoteStoreError):
    """The sync token does not describe a usable endpoint."""
    pass
