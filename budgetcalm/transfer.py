"""
Bulk Transfer: backup, restore and account reset.

Imports are written verbatim, without validation: the payload is trusted
to come from an earlier export. Bulk writes run with live replication
paused so that sync checkpoints aren't written back over a wiped store.
"""

from typing import Iterable

from budgetcalm.audit import get_logger
from budgetcalm.database import Database
from budgetcalm.ledger import sort_by_date, sort_by_name
from budgetcalm.models.records import Budget, Collection, Expense, ExportPayload
from budgetcalm.services.preferences import SettingName
from budgetcalm.services.replication import RemoteStoreError
from budgetcalm.services.storage import StorageError

logger = get_logger(__name__)


class BulkTransfer:
    """Whole-dataset export, import and wipe."""

    def __init__(self, database: Database):
        self._database = database

    async def export_all_data(self) -> ExportPayload:
        """
        Every budget (sorted by name) and expense (oldest first), without
        revision markers.
        """
        self._database.require_connected()
        store = self._database.store
        try:
            budget_docs = await store.find_many(Collection.BUDGETS)
            expense_docs = await store.find_many(Collection.EXPENSES)
        except StorageError as e:
            logger.error("export_failed", error=str(e))
            raise TransferError("Failed to export data") from e

        budgets = [
            Budget.from_document(doc).model_copy(update={"rev": None}) for doc in budget_docs
        ]
        expenses = [
            Expense.from_document(doc).model_copy(update={"rev": None}) for doc in expense_docs
        ]
        logger.info("data_exported", budgets=len(budgets), expenses=len(expenses))
        return ExportPayload(budgets=sort_by_name(budgets), expenses=sort_by_date(expenses))

    async def import_data(
        self,
        replace_data: bool,
        budgets: Iterable[Budget],
        expenses: Iterable[Expense],
    ) -> None:
        """
        Insert previously exported records, optionally wiping everything
        (local and remote) first.

        Raises:
            TransferError: If storage or the remote fails; a failed bulk
                           insert leaves that collection unchanged
        """
        self._database.require_connected()
        budget_records = [budget.to_document() for budget in budgets]
        expense_records = [expense.to_document() for expense in expenses]

        async with self._database.sync_paused():
            if replace_data:
                await self._wipe()
            try:
                await self._database.store.bulk_insert(Collection.BUDGETS, budget_records)
                await self._database.store.bulk_insert(Collection.EXPENSES, expense_records)
            except StorageError as e:
                logger.error("import_failed", error=str(e))
                raise TransferError(f"Failed to import data: {e}") from e

        logger.info(
            "data_imported",
            replaced=replace_data,
            budgets=len(budget_records),
            expenses=len(expense_records),
        )

    async def delete_all_data(self) -> None:
        """
        Drop every budget and expense locally and, when syncing, remotely.

        Raises:
            TransferError: If the local store or the remote can't be erased
        """
        self._database.require_connected()
        async with self._database.sync_paused():
            await self._wipe()
        logger.info("data_deleted", remote=self._database.sync_enabled)

    async def _wipe(self) -> None:
        store = self._database.store
        try:
            for collection in Collection:
                await store.drop_collection(collection)
            # Dropping alone leaves orphaned pages in the file
            await store.erase()
        except StorageError as e:
            logger.error("local_erase_failed", error=str(e))
            raise TransferError("Failed to erase local data") from e

        remote = self._database.remote
        if remote is None:
            if self._database.preferences.get_setting(SettingName.SYNC_TOKEN):
                logger.warning("remote_erase_skipped", reason="sync endpoint unavailable")
            return
        try:
            await remote.erase()
        except RemoteStoreError as e:
            logger.error("remote_erase_failed", error=str(e))
            raise TransferError("Failed to erase remote data") from e


class TransferError(Exception):
    """A bulk operation failed; the message is safe to show to the user."""
    pass
