"""
Tests for the Month Store: month creation and single-month mutations.
"""

import pytest

from budget_ledger.engine.month_store import swap_with_neighbour
from budget_ledger.errors import NotFoundError, UnknownCategoryError, ValidationError
from budget_ledger.models.ledger import (
    CATEGORY_COLORS,
    Category,
    Expense,
    MonthPeriod,
    ReorderDirection,
)


@pytest.fixture
def current(store):
    month, _ = store.ensure_current_month()
    return month


class TestEnsureCurrentMonth:
    """Tests for month creation on rollover."""

    def test_creates_empty_month_without_history(self, store):
        month, created = store.ensure_current_month()
        assert created
        assert month.month == "2025-02"
        assert month.categories == []
        assert month.salary_income == 1000

    def test_second_call_is_noop(self, store):
        first, _ = store.ensure_current_month()
        second, created = store.ensure_current_month()
        assert not created
        assert second is first
        assert len(store.state.months) == 1

    def test_seeds_from_most_recent_month(self, state, store):
        """Categories are copied with the same ids; only recurring expenses carry over."""
        rent = Category(id="rent", name="Rent", allocated=600, spent=600, order=1)
        subs = Category(id="subs", name="Subscriptions", allocated=50, spent=27, order=0)
        netflix = Expense(
            category_id="subs", amount=15, description="Netflix",
            is_recurring=True, receipt="https://receipts.local/a.jpg",
        )
        state.months.append(MonthPeriod(month="2024-11"))
        state.months.append(MonthPeriod(
            month="2025-01",
            categories=[rent, subs],
            expenses=[
                netflix,
                Expense(category_id="subs", amount=12, description="Game"),
                Expense(category_id="rent", amount=600, description="January rent"),
            ],
        ))

        month, created = store.ensure_current_month()

        assert created
        assert [c.id for c in month.categories] == ["subs", "rent"]
        assert [c.order for c in month.categories] == [0, 1]
        assert month.find_category("rent").allocated == 600
        assert month.find_category("rent").spent == 0
        assert len(month.expenses) == 1
        copy = month.expenses[0]
        assert copy.recurrence_key == netflix.recurrence_key
        assert copy.id != netflix.id
        assert copy.receipt is None
        assert copy.timestamp == store._clock()
        assert month.find_category("subs").spent == 15

    def test_ignores_later_months(self, state, store):
        state.months.append(MonthPeriod(
            month="2025-05",
            categories=[Category(name="Future")],
        ))
        month, _ = store.ensure_current_month()
        assert month.categories == []


class TestCategories:
    """Tests for category commands."""

    def test_add_category_uses_palette_and_order(self, store, current):
        first = store.add_category("2025-02", " Food ", 300)
        second = store.add_category("2025-02", "Fun", 100)
        assert first.name == "Food"
        assert first.color == CATEGORY_COLORS[0]
        assert second.color == CATEGORY_COLORS[1]
        assert [first.order, second.order] == [0, 1]

    def test_add_category_missing_month(self, store):
        with pytest.raises(NotFoundError):
            store.add_category("2030-01", "Food", 100)

    def test_add_category_empty_name(self, store, current):
        with pytest.raises(ValidationError):
            store.add_category("2025-02", "   ", 100)
        assert current.categories == []

    def test_import_categories(self, store, current):
        store.add_category("2025-02", "Rent", 600)
        added = store.import_categories("2025-02", [
            {"name": "Food", "allocatedAmount": 300},
            {"name": "Transport", "allocated_amount": 80},
        ])
        assert [c.name for c in added] == ["Food", "Transport"]
        assert [c.order for c in added] == [1, 2]
        assert added[0].color == CATEGORY_COLORS[1]

    def test_import_rejects_bad_rows(self, store, current):
        with pytest.raises(ValidationError):
            store.import_categories("2025-02", [{"name": "Food"}])

    def test_update_category(self, store, current):
        category = store.add_category("2025-02", "Food", 300)
        store.update_category("2025-02", category.id, allocated=350, color="#000000")
        assert category.allocated == 350
        assert category.name == "Food"
        assert category.color == "#000000"

    def test_delete_category_cascades(self, store, current):
        food = store.add_category("2025-02", "Food", 300)
        fun = store.add_category("2025-02", "Fun", 100)
        rent = store.add_category("2025-02", "Rent", 600)
        store.add_expense("2025-02", food.id, 20, "Bread", receipt="https://receipts.local/1.jpg")
        store.add_expense("2025-02", fun.id, 30, "Cinema")
        store.add_reimbursement("2025-02", food.id, 5, "Refund")

        deleted, freed = store.delete_category("2025-02", food.id)

        assert deleted.id == food.id
        assert freed == ["https://receipts.local/1.jpg"]
        assert [e.description for e in current.expenses] == ["Cinema"]
        assert current.reimbursements == []
        assert [(c.id, c.order) for c in current.sorted_categories()] == [(fun.id, 0), (rent.id, 1)]

    def test_reorder_category(self, store, current):
        a = store.add_category("2025-02", "A", 1)
        b = store.add_category("2025-02", "B", 1)
        c = store.add_category("2025-02", "C", 1)

        assert store.reorder_category("2025-02", c.id, ReorderDirection.UP)
        assert [x.name for x in current.sorted_categories()] == ["A", "C", "B"]
        assert sorted(x.order for x in current.categories) == [0, 1, 2]

        assert not store.reorder_category("2025-02", a.id, "up")
        assert not store.reorder_category("2025-02", b.id, ReorderDirection.DOWN)
        assert [x.name for x in current.sorted_categories()] == ["A", "C", "B"]


class TestExpenses:
    """Tests for expense, reimbursement and income commands."""

    def test_add_expense_recomputes(self, store, current):
        food = store.add_category("2025-02", "Groceries", 500)
        expense = store.add_expense("2025-02", food.id, 120, "  Weekly shop ")
        assert expense.description == "Weekly shop"
        assert food.spent == 120
        store.add_reimbursement("2025-02", food.id, 20, "Coupon")
        assert food.spent == 100

    def test_unknown_category_is_validation_and_not_found(self, store, current):
        with pytest.raises(UnknownCategoryError) as exc_info:
            store.add_expense("2025-02", "missing", 10, "Lunch")
        assert isinstance(exc_info.value, ValidationError)
        assert isinstance(exc_info.value, NotFoundError)
        assert current.expenses == []

    def test_invalid_amount(self, store, current):
        food = store.add_category("2025-02", "Food", 100)
        for bad in (0, -5, float("nan"), float("inf"), "12"):
            with pytest.raises(ValidationError):
                store.add_expense("2025-02", food.id, bad, "Lunch")
        assert current.expenses == []

    def test_update_expense_moves_category(self, store, current):
        food = store.add_category("2025-02", "Food", 100)
        fun = store.add_category("2025-02", "Fun", 100)
        expense = store.add_expense("2025-02", food.id, 40, "Pizza")

        before, after = store.update_expense("2025-02", expense.id, category_id=fun.id, amount=45)

        assert before.category_id == food.id
        assert after.category_id == fun.id
        assert food.spent == 0
        assert fun.spent == 45

    def test_update_expense_unknown_category(self, store, current):
        food = store.add_category("2025-02", "Food", 100)
        expense = store.add_expense("2025-02", food.id, 40, "Pizza")
        with pytest.raises(UnknownCategoryError):
            store.update_expense("2025-02", expense.id, category_id="nope")

    def test_delete_expense(self, store, current):
        food = store.add_category("2025-02", "Food", 100)
        expense = store.add_expense("2025-02", food.id, 40, "Pizza")
        store.delete_expense("2025-02", expense.id)
        assert food.spent == 0
        with pytest.raises(NotFoundError):
            store.delete_expense("2025-02", expense.id)

    def test_reimbursement_edit_and_delete(self, store, current):
        food = store.add_category("2025-02", "Food", 100)
        store.add_expense("2025-02", food.id, 50, "Dinner")
        refund = store.add_reimbursement("2025-02", food.id, 10, "Split")
        store.update_reimbursement("2025-02", refund.id, amount=25)
        assert food.spent == 25
        store.delete_reimbursement("2025-02", refund.id)
        assert food.spent == 50

    def test_income(self, store, current):
        income = store.add_income("2025-02", 200, "Freelance")
        assert current.total_budget == 1200
        store.update_income("2025-02", income.id, amount=300)
        assert current.total_budget == 1300
        store.delete_income("2025-02", income.id)
        assert current.total_budget == 1000
        with pytest.raises(NotFoundError):
            store.update_income("2025-02", income.id, amount=1)

    def test_archived_month_is_editable(self, state, store):
        state.months.append(MonthPeriod(
            month="2024-12",
            categories=[Category(id="food", name="Food", allocated=100)],
            budget_total=1000,
            total_spent=0,
        ))
        store.add_expense("2024-12", "food", 30, "Late entry")
        assert state.get_month("2024-12").find_category("food").spent == 30
        assert state.get_month("2024-12").spent_total == 30

    def test_archived_total_follows_expense_edits(self, state, store):
        state.months.append(MonthPeriod(
            month="2024-12",
            categories=[
                Category(id="food", name="Food", allocated=100),
                Category(id="fun", name="Fun", allocated=50),
            ],
            budget_total=1000,
            total_spent=0,
        ))
        lunch = store.add_expense("2024-12", "food", 40, "Lunch")
        store.add_expense("2024-12", "fun", 25, "Cinema")
        assert state.get_month("2024-12").total_spent == 65

        store.update_expense("2024-12", lunch.id, amount=10)
        assert state.get_month("2024-12").total_spent == 35

        store.delete_category("2024-12", "fun")
        assert state.get_month("2024-12").total_spent == 10

        store.delete_expense("2024-12", lunch.id)
        assert state.get_month("2024-12").total_spent == 0

    def test_open_month_has_no_stored_total(self, store, current):
        food = store.add_category(current.month, "Food", 100)
        store.add_expense(current.month, food.id, 20, "Bread")
        assert current.total_spent is None
        assert current.spent_total == 20

    def test_delete_month(self, state, store):
        state.months.append(MonthPeriod(month="2024-12"))
        store.delete_month("2024-12")
        assert state.get_month("2024-12") is None
        with pytest.raises(NotFoundError):
            store.delete_month("2024-12")


class TestSwapWithNeighbour:
    def test_swap(self):
        items = [Category(id=i, name=i) for i in "abc"]
        assert swap_with_neighbour(items, "a", ReorderDirection.DOWN)
        assert [c.id for c in items] == ["b", "a", "c"]

    def test_unknown_id(self):
        items = [Category(id="a", name="a")]
        assert not swap_with_neighbour(items, "z", ReorderDirection.UP)
