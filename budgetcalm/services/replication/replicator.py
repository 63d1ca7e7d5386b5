"""
Live Replication

One Replication keeps one local collection and its remote counterpart
converged. Each round pushes local changes past the push checkpoint,
then pulls remote changes past the pull checkpoint. Conflicts resolve by
last-writer-wins on revisions, so both sides settle on the same winner.

A live replication is a background asyncio task that syncs, then sleeps
until a local write or the poll interval wakes it. Transport and storage
failures are retried forever with exponential backoff; they are reported
through the `alive` signal only and never reach foreground callers. Any
other error is logged and stops the task. A single malformed document is
skipped rather than failing its whole batch.
"""

import asyncio
from typing import Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    wait_exponential,
)

from budgetcalm.audit import get_logger
from budgetcalm.config import SyncSettings, get_settings
from budgetcalm.models.records import REVISION_FIELD, Collection
from budgetcalm.models.sync import SyncChange, SyncDirection
from budgetcalm.services.replication.interface import RemoteStoreError, RemoteStoreInterface
from budgetcalm.services.signals import Signal, Subscription
from budgetcalm.services.storage import DocumentStoreInterface, StorageError, revision_wins

logger = get_logger(__name__)


class Replication:
    """
    Bidirectional replication of a single collection.

    Signals:
        alive:  emits True/False on every liveness transition
        change: emits a SyncChange for every batch that wrote documents
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        remote: RemoteStoreInterface,
        collection: Collection,
        settings: Optional[SyncSettings] = None,
    ):
        self._store = store
        self._remote = remote
        self._settings = settings or get_settings().sync
        self.collection = collection

        self.alive: Signal[bool] = Signal(f"{collection.value}_alive")
        self.change: Signal[SyncChange] = Signal(f"{collection.value}_change")

        self._alive = False
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._store_subscription: Optional[Subscription] = None

    @property
    def is_alive(self) -> bool:
        return self._alive

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------------------------------------------------------------
    # One round
    # -------------------------------------------------------------------------

    async def sync_once(self) -> int:
        """
        Push then pull until both directions are drained.

        Returns:
            Number of documents written on either side
        """
        pushed = await self._push()
        pulled = await self._pull()
        return pushed + pulled

    async def _push(self) -> int:
        checkpoint = await self._store.get_checkpoint(self.collection, self._remote.remote_id)
        written = 0
        while True:
            batch = await self._store.changes_since(
                self.collection, checkpoint.push_seq, self._settings.batch_size
            )
            if not batch.documents:
                break

            remote_revisions = await self._remote.fetch_revisions(
                self.collection, [doc["id"] for doc in batch.documents]
            )
            winners = [
                doc for doc in batch.documents
                if self._wins_remote(doc, remote_revisions.get(doc["id"]))
            ]
            conflicts = await self._remote.put(
                self.collection,
                winners,
                {doc["id"]: remote_revisions.get(doc["id"]) for doc in winners},
            )

            pushed = len(winners) - len(conflicts)
            if pushed:
                written += pushed
                self._report(SyncDirection.PUSH, pushed)
            if conflicts:
                # Another replica wrote in between; decide again on the same batch
                logger.info(
                    "sync_push_conflicts",
                    collection=self.collection.value,
                    ids=conflicts,
                )
                continue

            checkpoint = checkpoint._replace(push_seq=batch.last_seq)
            await self._store.set_checkpoint(self.collection, self._remote.remote_id, checkpoint)
            if len(batch.documents) < self._settings.batch_size:
                break
        return written

    def _wins_remote(self, document: dict, remote_revision: Optional[str]) -> bool:
        try:
            return revision_wins(document[REVISION_FIELD], remote_revision)
        except ValueError as e:
            self._skip(document, e)
            return False

    def _skip(self, document: dict, error: Exception) -> None:
        logger.warning(
            "sync_document_skipped",
            collection=self.collection.value,
            record_id=document.get("id"),
            error=str(error),
        )

    async def _pull(self) -> int:
        checkpoint = await self._store.get_checkpoint(self.collection, self._remote.remote_id)
        written = 0
        while True:
            batch = await self._remote.changes_since(
                self.collection, checkpoint.pull_seq, self._settings.batch_size
            )
            if not batch.documents:
                break

            applied = 0
            for document in batch.documents:
                try:
                    if await self._store.apply_replicated(self.collection, document):
                        applied += 1
                except (KeyError, ValueError) as e:
                    self._skip(document, e)

            checkpoint = checkpoint._replace(pull_seq=batch.last_seq)
            await self._store.set_checkpoint(self.collection, self._remote.remote_id, checkpoint)

            if applied:
                written += applied
                self._report(SyncDirection.PULL, applied)
            if len(batch.documents) < self._settings.batch_size:
                break
        return written

    def _report(self, direction: SyncDirection, documents: int) -> None:
        logger.info(
            "sync_batch_replicated",
            collection=self.collection.value,
            direction=direction.value,
            documents=documents,
        )
        self.change.emit(
            SyncChange(collection=self.collection, direction=direction, documents=documents)
        )

    # -------------------------------------------------------------------------
    # Live mode
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start live replication on the running event loop."""
        if self.is_running:
            return
        self._wake = asyncio.Event()
        self._store_subscription = self._store.changed.subscribe(self._on_local_change)
        self._task = asyncio.create_task(
            self._run(), name=f"replication-{self.collection.value}"
        )
        logger.info("sync_started", collection=self.collection.value)

    async def stop(self) -> None:
        """Stop live replication and release the store subscription."""
        if self._store_subscription is not None:
            self._store_subscription.unsubscribe()
            self._store_subscription = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._set_alive(False)
        logger.info("sync_stopped", collection=self.collection.value)

    def _on_local_change(self, collection: Collection) -> None:
        if collection == self.collection and self._wake is not None:
            self._wake.set()

    def _set_alive(self, alive: bool) -> None:
        if alive != self._alive:
            self._alive = alive
            self.alive.emit(alive)

    def _before_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "sync_failed",
            collection=self.collection.value,
            attempt=retry_state.attempt_number,
            error=str(error),
        )
        self._set_alive(False)

    async def _run(self) -> None:
        while True:
            self._wake.clear()
            try:
                async for attempt in AsyncRetrying(
                    retry=retry_if_exception_type((RemoteStoreError, StorageError)),
                    wait=wait_exponential(
                        multiplier=self._settings.retry_min_seconds,
                        min=self._settings.retry_min_seconds,
                        max=self._settings.retry_max_seconds,
                    ),
                    before_sleep=self._before_retry,
                    reraise=True,
                ):
                    with attempt:
                        await self.sync_once()
            except Exception:
                # Not a transport or storage failure; the task ends here
                logger.exception("sync_crashed", collection=self.collection.value)
                self._set_alive(False)
                return
            self._set_alive(True)

            try:
                await asyncio.wait_for(
                    self._wake.wait(), timeout=self._settings.poll_interval_seconds
                )
            except asyncio.TimeoutError:
                pass
