"""
Month Store

Owns the MonthPeriods of a ledger: lookup, creation, and every mutation
of a single month's categories, expenses, reimbursements and income.

DESIGN DECISION: The store mutates the LedgerState it is given in place.
The ledger service hands it a private working copy and only publishes
that copy once the whole command has succeeded, so a command that raises
half-way leaves the live ledger untouched.

Every method that changes expenses or reimbursements finishes with a
Category Ledger recompute of the categories it could have affected.
"""

from datetime import datetime
from typing import Any, Iterable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from budget_ledger.engine.category_ledger import recompute_spent, refresh_stored_total
from budget_ledger.engine.months import Clock, month_key
from budget_ledger.errors import NotFoundError, UnknownCategoryError, ValidationError
from budget_ledger.models.ledger import (
    AdditionalIncome,
    Category,
    CategoryImportItem,
    Expense,
    LedgerState,
    MonthPeriod,
    Reimbursement,
    ReorderDirection,
    color_for_position,
    new_id,
)
from budget_ledger.validation import LedgerValidator

logger = structlog.get_logger(__name__)

# Marks an update argument the caller did not supply
UNSET: Any = object()


class MonthStore:
    """
    Command handlers for month-scoped ledger data.

    Operations against a missing month key, category or record raise
    NotFoundError; invalid input raises ValidationError.
    """

    def __init__(self, state: LedgerState, validator: LedgerValidator, clock: Clock):
        self._state = state
        self._validator = validator
        self._clock = clock

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def validator(self) -> LedgerValidator:
        return self._validator

    def current_key(self) -> str:
        return month_key(self._clock())

    # -------------------------------------------------------------------------
    # Months
    # -------------------------------------------------------------------------

    def get_month(self, key: str) -> Optional[MonthPeriod]:
        return self._state.get_month(key)

    def require_month(self, key: str) -> MonthPeriod:
        month = self._state.get_month(key)
        if month is None:
            raise NotFoundError("Month", key)
        return month

    def most_recent_before(self, key: str) -> Optional[MonthPeriod]:
        earlier = [m for m in self._state.months if m.month < key]
        return max(earlier, key=lambda m: m.month) if earlier else None

    def ensure_current_month(self) -> tuple[MonthPeriod, bool]:
        """
        Make sure the real-world current month exists.

        A new month copies the categories of the most recent earlier
        month (same ids and order, spend reset) and re-creates that
        month's recurring expenses with fresh ids and timestamps.

        Returns:
            (month, created)
        """
        key = self.current_key()
        existing = self.get_month(key)
        if existing is not None:
            return existing, False

        previous = self.most_recent_before(key)
        month = MonthPeriod(
            month=key,
            salary_income=self._state.salary_income,
            created_date=self._clock(),
        )

        if previous is not None:
            month.categories = [
                cat.model_copy(update={"spent": 0.0}) for cat in previous.sorted_categories()
            ]
            month.expenses = [
                self.renew_recurring(exp)
                for exp in previous.expenses
                if exp.is_recurring
            ]
            recompute_spent(month)

        self._state.months.append(month)
        logger.info(
            "month_created",
            month=key,
            seeded_from=previous.month if previous else None,
            recurring_count=len(month.expenses),
        )
        return month, True

    def renew_recurring(self, expense: Expense, timestamp: Optional[datetime] = None) -> Expense:
        """Fresh instance of a recurring expense: new id, new timestamp, no receipt."""
        return expense.model_copy(update={
            "id": new_id(),
            "timestamp": timestamp or self._clock(),
            "receipt": None,
            "is_recurring": True,
        })

    def delete_month(self, key: str) -> MonthPeriod:
        month = self.require_month(key)
        self._state.months = [m for m in self._state.months if m.month != key]
        return month

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    def require_category(self, month: MonthPeriod, category_id: str) -> Category:
        category = month.find_category(category_id)
        if category is None:
            raise NotFoundError("Category", category_id, month.month)
        return category

    def add_category(
        self,
        key: str,
        name: str,
        allocated: float,
        color: Optional[str] = None,
    ) -> Category:
        month = self.require_month(key)
        name, allocated = self._validator.validate_category(name, allocated)
        position = len(month.categories)
        category = Category(
            name=name,
            allocated=allocated,
            color=color or color_for_position(position),
            order=self._next_order(month),
        )
        month.categories.append(category)
        return category

    def import_categories(
        self,
        key: str,
        items: Iterable[CategoryImportItem | dict],
    ) -> list[Category]:
        """Batch insertion of collaborator-supplied {name, allocated_amount} pairs."""
        month = self.require_month(key)
        try:
            parsed = [
                item if isinstance(item, CategoryImportItem)
                else CategoryImportItem.model_validate(item)
                for item in items
            ]
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid import row: {e}") from e

        added = []
        for item in parsed:
            name, allocated = self._validator.validate_category(item.name, item.allocated_amount)
            category = Category(
                name=name,
                allocated=allocated,
                color=color_for_position(len(month.categories)),
                order=self._next_order(month),
            )
            month.categories.append(category)
            added.append(category)
        return added

    def update_category(
        self,
        key: str,
        category_id: str,
        name: Any = UNSET,
        allocated: Any = UNSET,
        color: Any = UNSET,
    ) -> Category:
        month = self.require_month(key)
        category = self.require_category(month, category_id)

        new_name = category.name if name is UNSET else name
        new_allocated = category.allocated if allocated is UNSET else allocated
        new_name, new_allocated = self._validator.validate_category(new_name, new_allocated)

        category.name = new_name
        category.allocated = new_allocated
        if color is not UNSET and color:
            category.color = color
        return category

    def delete_category(self, key: str, category_id: str) -> tuple[Category, list[str]]:
        """
        Delete a category and, with it, every expense and reimbursement
        of the month that references it.

        Returns:
            (deleted_category, receipt_references_no_longer_used)
        """
        month = self.require_month(key)
        category = self.require_category(month, category_id)

        removed = [e for e in month.expenses if e.category_id == category_id]
        removed += [r for r in month.reimbursements if r.category_id == category_id]

        month.categories = [c for c in month.categories if c.id != category_id]
        month.expenses = [e for e in month.expenses if e.category_id != category_id]
        month.reimbursements = [r for r in month.reimbursements if r.category_id != category_id]
        self._renumber(month.sorted_categories())
        refresh_stored_total(month)

        return category, [rec.receipt for rec in removed if rec.receipt]

    def reorder_category(self, key: str, category_id: str, direction: ReorderDirection) -> bool:
        """
        Swap a category with its neighbour, then renumber 0..n-1.

        Returns False (and changes nothing) when the category is already
        first and moved up, or last and moved down.
        """
        month = self.require_month(key)
        self.require_category(month, category_id)
        ordered = month.sorted_categories()
        moved = swap_with_neighbour(ordered, category_id, ReorderDirection(direction))
        if moved:
            self._renumber(ordered)
        return moved

    def _next_order(self, month: MonthPeriod) -> int:
        return max((c.order for c in month.categories), default=-1) + 1

    @staticmethod
    def _renumber(ordered: list[Any]) -> None:
        for index, item in enumerate(ordered):
            item.order = index

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def _check_category_reference(self, month: MonthPeriod, category_id: str) -> None:
        if month.find_category(category_id) is None:
            raise UnknownCategoryError(category_id, month.month)

    def require_expense(self, month: MonthPeriod, expense_id: str) -> Expense:
        expense = next((e for e in month.expenses if e.id == expense_id), None)
        if expense is None:
            raise NotFoundError("Expense", expense_id, month.month)
        return expense

    def add_expense(
        self,
        key: str,
        category_id: str,
        amount: float,
        description: str,
        receipt: Optional[str] = None,
        is_recurring: bool = False,
        timestamp: Optional[datetime] = None,
    ) -> Expense:
        month = self.require_month(key)
        amount, description = self._validator.validate_money_record(amount, description)
        self._check_category_reference(month, category_id)

        expense = Expense(
            category_id=category_id,
            amount=amount,
            description=description,
            timestamp=timestamp or self._clock(),
            receipt=receipt,
            is_recurring=is_recurring,
        )
        month.expenses.append(expense)
        recompute_spent(month, [category_id])
        return expense

    def update_expense(
        self,
        key: str,
        expense_id: str,
        category_id: Any = UNSET,
        amount: Any = UNSET,
        description: Any = UNSET,
        receipt: Any = UNSET,
        is_recurring: Any = UNSET,
    ) -> tuple[Expense, Expense]:
        """
        Edit an expense and recompute the old and new category.

        Returns:
            (before, after) copies of the expense
        """
        month = self.require_month(key)
        expense = self.require_expense(month, expense_id)
        before = expense.model_copy()

        updated = self._apply_money_updates(
            month, expense, category_id, amount, description, receipt,
        )
        if is_recurring is not UNSET:
            updated["is_recurring"] = is_recurring

        after = expense.model_copy(update=updated)
        month.expenses = [after if e.id == expense_id else e for e in month.expenses]
        recompute_spent(month, {before.category_id, after.category_id})
        return before, after.model_copy()

    def delete_expense(self, key: str, expense_id: str) -> Expense:
        month = self.require_month(key)
        expense = self.require_expense(month, expense_id)
        month.expenses = [e for e in month.expenses if e.id != expense_id]
        recompute_spent(month, [expense.category_id])
        return expense

    # -------------------------------------------------------------------------
    # Reimbursements
    # -------------------------------------------------------------------------

    def require_reimbursement(self, month: MonthPeriod, reimbursement_id: str) -> Reimbursement:
        found = next((r for r in month.reimbursements if r.id == reimbursement_id), None)
        if found is None:
            raise NotFoundError("Reimbursement", reimbursement_id, month.month)
        return found

    def add_reimbursement(
        self,
        key: str,
        category_id: str,
        amount: float,
        description: str,
        receipt: Optional[str] = None,
    ) -> Reimbursement:
        month = self.require_month(key)
        amount, description = self._validator.validate_money_record(amount, description)
        self._check_category_reference(month, category_id)

        reimbursement = Reimbursement(
            category_id=category_id,
            amount=amount,
            description=description,
            timestamp=self._clock(),
            receipt=receipt,
        )
        month.reimbursements.append(reimbursement)
        recompute_spent(month, [category_id])
        return reimbursement

    def update_reimbursement(
        self,
        key: str,
        reimbursement_id: str,
        category_id: Any = UNSET,
        amount: Any = UNSET,
        description: Any = UNSET,
        receipt: Any = UNSET,
    ) -> tuple[Reimbursement, Reimbursement]:
        month = self.require_month(key)
        reimbursement = self.require_reimbursement(month, reimbursement_id)
        before = reimbursement.model_copy()

        updated = self._apply_money_updates(
            month, reimbursement, category_id, amount, description, receipt,
        )
        after = reimbursement.model_copy(update=updated)
        month.reimbursements = [
            after if r.id == reimbursement_id else r for r in month.reimbursements
        ]
        recompute_spent(month, {before.category_id, after.category_id})
        return before, after.model_copy()

    def delete_reimbursement(self, key: str, reimbursement_id: str) -> Reimbursement:
        month = self.require_month(key)
        reimbursement = self.require_reimbursement(month, reimbursement_id)
        month.reimbursements = [r for r in month.reimbursements if r.id != reimbursement_id]
        recompute_spent(month, [reimbursement.category_id])
        return reimbursement

    def _apply_money_updates(
        self,
        month: MonthPeriod,
        record: Expense | Reimbursement,
        category_id: Any,
        amount: Any,
        description: Any,
        receipt: Any,
    ) -> dict:
        """Validate edit arguments and return the field updates to apply."""
        new_amount = record.amount if amount is UNSET else amount
        new_description = record.description if description is UNSET else description
        new_amount, new_description = self._validator.validate_money_record(
            new_amount, new_description,
        )
        updated = {"amount": new_amount, "description": new_description}

        if category_id is not UNSET:
            self._check_category_reference(month, category_id)
            updated["category_id"] = category_id
        if receipt is not UNSET:
            updated["receipt"] = receipt
        return updated

    # -------------------------------------------------------------------------
    # Additional income
    # -------------------------------------------------------------------------

    def require_income(self, month: MonthPeriod, income_id: str) -> AdditionalIncome:
        found = next((i for i in month.additional_income if i.id == income_id), None)
        if found is None:
            raise NotFoundError("AdditionalIncome", income_id, month.month)
        return found

    def add_income(self, key: str, amount: float, description: str) -> AdditionalIncome:
        month = self.require_month(key)
        amount, description = self._validator.validate_money_record(amount, description)
        income = AdditionalIncome(
            amount=amount,
            description=description,
            timestamp=self._clock(),
        )
        month.additional_income.append(income)
        return income

    def update_income(
        self,
        key: str,
        income_id: str,
        amount: Any = UNSET,
        description: Any = UNSET,
    ) -> AdditionalIncome:
        month = self.require_month(key)
        income = self.require_income(month, income_id)
        new_amount = income.amount if amount is UNSET else amount
        new_description = income.description if description is UNSET else description
        new_amount, new_description = self._validator.validate_money_record(
            new_amount, new_description,
        )
        income.amount = new_amount
        income.description = new_description
        return income

    def delete_income(self, key: str, income_id: str) -> AdditionalIncome:
        month = self.require_month(key)
        income = self.require_income(month, income_id)
        month.additional_income = [i for i in month.additional_income if i.id != income_id]
        return income


def swap_with_neighbour(ordered: list[Any], item_id: str, direction: ReorderDirection) -> bool:
    """
    Swap the item with its logical neighbour in an already sorted list.

    Returns False when the move would leave the list bounds.
    """
    index = next((i for i, item in enumerate(ordered) if item.id == item_id), -1)
    if index == -1:
        return False
    target = index - 1 if direction == ReorderDirection.UP else index + 1
    if target < 0 or target >= len(ordered):
        return False
    ordered[index], ordered[target] = ordered[target], ordered[index]
    return True
