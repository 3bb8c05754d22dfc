"""
Tests for the Category Ledger spend rules and budget summary helpers.
"""

import pytest

from budget_ledger.engine.category_ledger import (
    allocated_percentage,
    category_spent_percentage,
    recompute_spent,
    remaining_budget,
    spent_for,
    total_allocated,
    total_spent,
)
from budget_ledger.models.ledger import Category, Expense, MonthPeriod, Reimbursement


def _month() -> MonthPeriod:
    return MonthPeriod(
        month="2025-02",
        salary_income=1000,
        categories=[
            Category(id="food", name="Groceries", allocated=500, order=0),
            Category(id="fun", name="Fun", allocated=100, order=1),
        ],
    )


class TestSpentFor:
    """Spend is expenses minus reimbursements, floored at zero."""

    def test_groceries_example(self):
        """Expense 120 gives spend 120; reimbursement 20 brings it to 100."""
        month = _month()
        month.expenses.append(Expense(category_id="food", amount=120, description="Shop"))
        recompute_spent(month)
        assert month.find_category("food").spent == 120

        month.reimbursements.append(Reimbursement(category_id="food", amount=20, description="Refund"))
        recompute_spent(month)
        assert month.find_category("food").spent == 100

    def test_never_negative(self):
        category = Category(id="fun", name="Fun")
        refunds = [Reimbursement(category_id="fun", amount=50, description="Refund")]
        assert spent_for(category, [], refunds) == 0.0

    def test_ignores_other_categories(self):
        category = Category(id="food", name="Food")
        expenses = [
            Expense(category_id="food", amount=10, description="a"),
            Expense(category_id="fun", amount=99, description="b"),
        ]
        assert spent_for(category, expenses, []) == 10

    def test_amounts_are_not_rounded(self):
        category = Category(id="food", name="Food")
        expenses = [Expense(category_id="food", amount=0.1, description=str(i)) for i in range(3)]
        assert spent_for(category, expenses, []) == pytest.approx(0.3)

    def test_recompute_only_named_categories(self):
        month = _month()
        month.expenses.append(Expense(category_id="food", amount=40, description="a"))
        month.expenses.append(Expense(category_id="fun", amount=30, description="b"))
        recompute_spent(month, ["fun"])
        assert month.find_category("fun").spent == 30
        assert month.find_category("food").spent == 0


class TestBudgetSummary:
    """Tests for the summary helpers."""

    def test_totals(self):
        month = _month()
        month.expenses.append(Expense(category_id="food", amount=250, description="a"))
        recompute_spent(month)
        assert total_allocated(month.categories) == 600
        assert total_spent(month.categories) == 250
        assert remaining_budget(month) == 400
        assert allocated_percentage(month) == pytest.approx(60.0)

    def test_zero_budget_percentage(self):
        month = MonthPeriod(month="2025-02")
        assert allocated_percentage(month) == 0.0

    def test_category_percentage(self):
        assert category_spent_percentage(Category(name="A", allocated=200, spent=50)) == 25.0
        assert category_spent_percentage(Category(name="B", allocated=0, spent=50)) == 0.0
