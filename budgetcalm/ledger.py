"""
Ledger: Budgets and Expenses Consistency

This module owns every rule that spans more than one record:

1. Every expense resolves to a budget in its month (auto-created if missing)
2. Renaming a budget renames it on that month's expenses
3. A budget with expenses can't be deleted, except to drop a sync duplicate
4. A month's budgets can be copied into another month

DESIGN DECISION: Expenses reference budgets by (month, name), not by id.
The rename cascade is the only mechanism keeping that reference intact.
It is not transactional across records; it is safe to re-run, so a
partially applied rename is repaired by running it again.

All rule violations propagate to the caller. Nothing is swallowed here.
"""

from typing import Optional
from uuid import UUID

from budgetcalm.audit import create_correlation_id, get_logger
from budgetcalm.database import Database
from budgetcalm.models.records import (
    DEFAULT_BUDGET_VALUE,
    Budget,
    Collection,
    Expense,
    generate_id,
)
from budgetcalm.services.storage import DocumentStoreInterface, where
from budgetcalm.validation import RecordValidator

logger = get_logger(__name__)


def month_date_range(month: str) -> tuple[str, str]:
    """Inclusive YYYY-MM-DD bounds covering every day of `month`."""
    return f"{month}-01", f"{month}-31"


def sort_by_name(budgets: list[Budget]) -> list[Budget]:
    return sorted(budgets, key=lambda budget: budget.name)


def sort_by_date(expenses: list[Expense], newest_first: bool = False) -> list[Expense]:
    return sorted(expenses, key=lambda expense: expense.date, reverse=newest_first)


class Ledger:
    """
    Entry point for every budget and expense operation.

    Flow of a save:
    1. Field rules and normalization (validator stage 1)
    2. Store rules: uniqueness, auto-categorization (validator stage 2)
    3. Cross-record consistency (budget auto-creation, rename cascade)
    4. Write
    """

    def __init__(
        self,
        database: Database,
        validator: Optional[RecordValidator] = None,
    ):
        self._database = database
        self._validator = validator or RecordValidator(database.store)

    def _store(self) -> DocumentStoreInterface:
        self._database.require_connected()
        return self._database.store

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def fetch_budgets(self, month: str) -> list[Budget]:
        """Budgets of `month`, sorted by name."""
        documents = await self._store().find_many(
            Collection.BUDGETS, where("month").eq(month)
        )
        return sort_by_name([Budget.from_document(doc) for doc in documents])

    async def fetch_expenses(self, month: str) -> list[Expense]:
        """Expenses dated within `month`, newest first."""
        start, end = month_date_range(month)
        documents = await self._store().find_many(
            Collection.EXPENSES, where("date").between(start, end)
        )
        return sort_by_date(
            [Expense.from_document(doc) for doc in documents], newest_first=True
        )

    async def get_budget(self, budget_id: str) -> Optional[Budget]:
        document = await self._store().get(Collection.BUDGETS, budget_id)
        return Budget.from_document(document) if document else None

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        document = await self._store().get(Collection.EXPENSES, expense_id)
        return Expense.from_document(document) if document else None

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def save_budget(
        self,
        budget: Budget,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Create or update a budget.

        New budgets (id == NEW_BUDGET_ID) get a generated id. Updates only
        change name and value; month and id are fixed at creation. A name
        change is cascaded to the expenses of the budget's month.

        Raises:
            RecordValidationError: On a broken field rule
            DuplicateBudgetError: If the month already has that name
            RecordNotFoundError: If an existing id doesn't resolve
        """
        log = logger.bind(correlation_id=str(correlation_id or create_correlation_id()))
        store = self._store()

        normalized = self._validator.check_budget_fields(budget)
        existing = None
        if not normalized.is_new:
            existing = await store.get(Collection.BUDGETS, normalized.id)
            if existing is None:
                raise RecordNotFoundError(f"Budget not found: {normalized.id}")
            normalized = normalized.model_copy(update={"month": existing["month"]})
        await self._validator.check_budget_unique(normalized)

        if existing is None:
            record = normalized.to_document()
            record["id"] = generate_id()
            document = await store.insert(Collection.BUDGETS, record)
            log.info(
                "budget_created",
                budget_id=document["id"],
                month=document["month"],
                name=document["name"],
            )
            return Budget.from_document(document)

        document = await store.update(
            Collection.BUDGETS,
            normalized.id,
            {"name": normalized.name, "value": normalized.value},
        )
        log.info("budget_updated", budget_id=normalized.id, month=normalized.month)

        if existing["name"] != normalized.name:
            renamed = await self.rename_budget_expenses(
                existing["month"], existing["name"], normalized.name
            )
            log.info(
                "budget_renamed",
                budget_id=normalized.id,
                old_name=existing["name"],
                new_name=normalized.name,
                expenses=renamed,
            )
        return Budget.from_document(document)

    async def rename_budget_expenses(
        self,
        month: str,
        old_name: str,
        new_name: str,
    ) -> int:
        """
        Move `month`'s expenses from `old_name` to `new_name`.

        Each expense is updated separately; re-running after a partial
        failure finishes the job.

        Returns:
            Number of expenses rewritten
        """
        store = self._store()
        start, end = month_date_range(month)
        matching = await store.find_many(
            Collection.EXPENSES,
            where("date").between(start, end).where("budget").eq(old_name),
        )
        for document in matching:
            await store.update(Collection.EXPENSES, document["id"], {"budget": new_name})
        return len(matching)

    async def delete_budget(self, budget_id: str) -> None:
        """
        Delete a budget that no expense uses.

        A budget with expenses can still be deleted when exactly one other
        budget has the same month and name (a duplicate left by sync); the
        expenses then resolve to the remaining row.

        Raises:
            RecordNotFoundError: If the id doesn't resolve
            BudgetInUseError: If expenses still use the budget
            DuplicateBudgetAnomalyError: If more than two rows share the name
        """
        store = self._store()
        existing = await store.get(Collection.BUDGETS, budget_id)
        if existing is None:
            raise RecordNotFoundError(f"Budget not found: {budget_id}")

        month, name = existing["month"], existing["name"]
        start, end = month_date_range(month)
        expense = await store.find_one(
            Collection.EXPENSES,
            where("date").between(start, end).where("budget").eq(name),
        )

        if expense is not None:
            twins = await store.find_many(
                Collection.BUDGETS, where("month").eq(month).where("name").eq(name)
            )
            if len(twins) == 1:
                raise BudgetInUseError(
                    "There are expenses using this budget. "
                    "You can't delete a budget with expenses"
                )
            if len(twins) > 2:
                raise DuplicateBudgetAnomalyError(
                    f'{len(twins)} budgets named "{name}" exist for {month}; '
                    "remove the extra copies manually"
                )
            logger.warning(
                "duplicate_budget_removed", budget_id=budget_id, month=month, name=name
            )

        await store.remove(Collection.BUDGETS, budget_id)
        logger.info("budget_deleted", budget_id=budget_id, month=month)

    async def copy_budgets(self, origin_month: str, destination_month: str) -> list[Budget]:
        """
        Copy every budget of `origin_month` into `destination_month`.

        The copies get new ids and no revision; the originals are untouched.
        Deciding when a month should be seeded is up to the caller.
        """
        originals = await self.fetch_budgets(origin_month)
        copies = [
            budget.model_copy(
                update={"id": generate_id(), "month": destination_month, "rev": None}
            )
            for budget in originals
        ]
        if copies:
            await self._store().bulk_insert(
                Collection.BUDGETS, [copy.to_document() for copy in copies]
            )
        logger.info(
            "budgets_copied",
            origin=origin_month,
            destination=destination_month,
            count=len(copies),
        )
        return copies

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def save_expense(
        self,
        expense: Expense,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Create or update an expense.

        Missing budgets are created on the fly (value DEFAULT_BUDGET_VALUE)
        so the expense always resolves to a budget of its month.

        Raises:
            RecordValidationError: On a broken field rule
            RecordNotFoundError: If an existing id doesn't resolve
        """
        correlation_id = correlation_id or create_correlation_id()
        log = logger.bind(correlation_id=str(correlation_id))
        store = self._store()

        normalized = await self._validator.validate_expense(expense)
        # Checked before budget auto-creation so a failed update writes nothing
        if not normalized.is_new and await store.get(Collection.EXPENSES, normalized.id) is None:
            raise RecordNotFoundError(f"Expense not found: {normalized.id}")
        await self._ensure_budget(normalized.month, normalized.budget, correlation_id)

        if normalized.is_new:
            record = normalized.to_document()
            record["id"] = generate_id()
            document = await store.insert(Collection.EXPENSES, record)
            log.info(
                "expense_created",
                expense_id=document["id"],
                date=document["date"],
                budget=document["budget"],
            )
            return Expense.from_document(document)

        document = await store.update(
            Collection.EXPENSES,
            normalized.id,
            {
                "cost": normalized.cost,
                "description": normalized.description,
                "budget": normalized.budget,
                "date": normalized.date,
            },
        )
        log.info("expense_updated", expense_id=normalized.id, date=normalized.date)
        return Expense.from_document(document)

    async def _ensure_budget(
        self,
        month: str,
        name: str,
        correlation_id: UUID,
    ) -> None:
        existing = await self._store().find_one(
            Collection.BUDGETS, where("month").eq(month).where("name").eq(name)
        )
        if existing is None:
            await self.save_budget(
                Budget(name=name, month=month, value=DEFAULT_BUDGET_VALUE),
                correlation_id=correlation_id,
            )

    async def delete_expense(self, expense_id: str) -> None:
        """
        Raises:
            RecordNotFoundError: If the id doesn't resolve
        """
        store = self._store()
        if await store.get(Collection.EXPENSES, expense_id) is None:
            raise RecordNotFoundError(f"Expense not found: {expense_id}")
        await store.remove(Collection.EXPENSES, expense_id)
        logger.info("expense_deleted", expense_id=expense_id)


class LedgerError(Exception):
    """Base exception for cross-record rule violations."""
    pass


class RecordNotFoundError(LedgerError):
    pass


class BudgetInUseError(LedgerError):
    """The budget still has expenses."""
    pass


class DuplicateBudgetAnomalyError(LedgerError):
    """More than two budgets share one (month, name) pair."""
    pass
