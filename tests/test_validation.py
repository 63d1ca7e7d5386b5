"""
Tests for record validation and normalization.
"""

import asyncio
from datetime import date

import pytest

from budgetcalm.models import Budget, Collection, Expense
from budgetcalm.validation import (
    DuplicateBudgetError,
    RecordValidationError,
    RecordValidator,
    normalize_date,
    normalize_month,
)


@pytest.fixture
def validator(store):
    return RecordValidator(store)


class TestNormalization:
    """Month and date canonicalization."""

    def test_valid_month_is_kept(self):
        assert normalize_month("2024-05") == "2024-05"

    def test_month_is_zero_padded(self):
        assert normalize_month("2024-5") == "2024-05"

    @pytest.mark.parametrize("value", ["", None, "2024-13", "May 2024", "2024/05"])
    def test_invalid_month_becomes_current(self, value):
        assert normalize_month(value, today=date(2023, 2, 14)) == "2023-02"

    def test_valid_date_is_kept(self):
        assert normalize_date("2024-02-29") == "2024-02-29"

    @pytest.mark.parametrize("value", ["", None, "2023-02-29", "2024-05-32", "yesterday"])
    def test_invalid_date_becomes_today(self, value):
        assert normalize_date(value, today=date(2023, 2, 14)) == "2023-02-14"

    def test_default_today_is_the_real_date(self):
        assert normalize_date("nonsense") == date.today().isoformat()


class TestBudgetRules:
    """Field rules for budgets."""

    def test_reserved_name(self, validator):
        with pytest.raises(RecordValidationError, match='Cannot create budget named "Total".'):
            validator.check_budget_fields(Budget(name="Total", month="2024-05", value=10))

    def test_reserved_name_is_case_sensitive(self, validator):
        checked = validator.check_budget_fields(Budget(name="total", month="2024-05", value=10))
        assert checked.name == "total"

    @pytest.mark.parametrize("name", ["", "   ", "\t"])
    def test_blank_name(self, validator, name):
        with pytest.raises(RecordValidationError, match="The budget needs a valid name.") as info:
            validator.check_budget_fields(Budget(name=name, month="2024-05", value=10))
        assert info.value.field == "name"

    @pytest.mark.parametrize("value", [0, -0.01, -50, float("nan"), float("inf")])
    def test_non_positive_value(self, validator, value):
        with pytest.raises(RecordValidationError, match="The budget needs a valid value."):
            validator.check_budget_fields(Budget(name="Food", month="2024-05", value=value))

    def test_smallest_positive_value(self, validator):
        checked = validator.check_budget_fields(Budget(name="Food", month="2024-05", value=0.01))
        assert checked.value == 0.01

    def test_month_normalized_without_mutating_input(self, validator):
        original = Budget(name="Food", month="bad", value=10)
        checked = validator.check_budget_fields(original)
        assert checked.month == date.today().strftime("%Y-%m")
        assert original.month == "bad"


class TestBudgetUniqueness:
    """One budget name per month."""

    def test_duplicate_in_same_month(self, validator, store):
        asyncio.run(store.insert(
            Collection.BUDGETS, {"id": "b1", "name": "Food", "month": "2024-05", "value": 1}
        ))
        with pytest.raises(DuplicateBudgetError, match="same name for the same month"):
            asyncio.run(validator.check_budget_unique(
                Budget(name="Food", month="2024-05", value=10)
            ))

    def test_duplicate_error_is_a_validation_error(self):
        assert issubclass(DuplicateBudgetError, RecordValidationError)

    def test_same_name_other_month(self, validator, store):
        asyncio.run(store.insert(
            Collection.BUDGETS, {"id": "b1", "name": "Food", "month": "2024-05", "value": 1}
        ))
        asyncio.run(validator.check_budget_unique(Budget(name="Food", month="2024-06", value=10)))

    def test_record_does_not_clash_with_itself(self, validator, store):
        asyncio.run(store.insert(
            Collection.BUDGETS, {"id": "b1", "name": "Food", "month": "2024-05", "value": 1}
        ))
        asyncio.run(validator.check_budget_unique(
            Budget(id="b1", name="Food", month="2024-05", value=10)
        ))


class TestExpenseRules:
    """Field rules for expenses."""

    @pytest.mark.parametrize("description", ["", "  "])
    def test_blank_description(self, validator, description):
        with pytest.raises(RecordValidationError, match="The expense needs a valid description."):
            validator.check_expense_fields(
                Expense(cost=1, description=description, date="2024-05-01")
            )

    @pytest.mark.parametrize("cost", [0, -3, float("nan"), float("inf"), float("-inf")])
    def test_non_positive_cost(self, validator, cost):
        with pytest.raises(RecordValidationError, match="The expense needs a valid cost.") as info:
            validator.check_expense_fields(Expense(cost=cost, description="Tea", date="2024-05-01"))
        assert info.value.field == "cost"

    def test_invalid_date_becomes_today(self, validator):
        checked = validator.check_expense_fields(
            Expense(cost=0.01, description="Tea", date="05/01/2024")
        )
        assert checked.date == date.today().isoformat()


class TestCategorization:
    """Budget inference for new expenses."""

    def _seed(self, store, budget_name):
        asyncio.run(store.insert(Collection.EXPENSES, {
            "id": "e1", "cost": 4, "description": "Coffee",
            "budget": budget_name, "date": "2023-01-09",
        }))

    def test_new_expense_inherits_budget_by_description(self, validator, store):
        self._seed(store, "Treats")
        result = asyncio.run(validator.validate_expense(
            Expense(cost=3, description="Coffee", date="2024-05-01")
        ))
        assert result.budget == "Treats"

    def test_fallback_budget_is_also_recategorized(self, validator, store):
        self._seed(store, "Treats")
        result = asyncio.run(validator.validate_expense(
            Expense(cost=3, description="Coffee", budget="Misc", date="2024-05-01")
        ))
        assert result.budget == "Treats"

    def test_explicit_budget_is_kept(self, validator, store):
        self._seed(store, "Treats")
        result = asyncio.run(validator.validate_expense(
            Expense(cost=3, description="Coffee", budget="Work", date="2024-05-01")
        ))
        assert result.budget == "Work"

    def test_existing_expense_is_not_recategorized(self, validator, store):
        self._seed(store, "Treats")
        result = asyncio.run(validator.validate_expense(
            Expense(id="e9", cost=3, description="Coffee", budget="Misc", date="2024-05-01")
        ))
        assert result.budget == "Misc"

    def test_no_match_falls_back_to_misc(self, validator):
        result = asyncio.run(validator.validate_expense(
            Expense(cost=3, description="Coffee", date="2024-05-01")
        ))
        assert result.budget == "Misc"

    def test_description_match_is_exact(self, validator, store):
        self._seed(store, "Treats")
        result = asyncio.run(validator.validate_expense(
            Expense(cost=3, description="coffee", date="2024-05-01")
        ))
        assert result.budget == "Misc"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
