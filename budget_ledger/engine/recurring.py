"""
Recurring Propagator

A recurring expense is a separate record in every month it appears in.
When an expense's recurring flag changes, the matching records in the
months between the pattern's origin month and the current month are
added or removed.

MATCHING: Two expenses are "the same recurring expense" when their
(description, category_id, amount) triples are exactly equal. Ids are
never compared, since every month holds its own record. Two unrelated
expenses that happen to share all three fields are indistinguishable;
this is accepted and kept for compatibility with existing ledgers.

ORIGIN:
- Unmarking: the earliest month holding a *recurring* match, looked up
  before the edit is applied. Its own copy is left alone.
- Marking: the earliest month holding any match; the edited month if
  there is none.

Propagation covers months strictly after the origin up to and including
the current month. Months missing from the store are not created, and a
month whose category set lacks the category id is skipped.
"""

from typing import Any, Optional

import structlog

from budget_ledger.engine.category_ledger import recompute_spent
from budget_ledger.engine.month_store import UNSET, MonthStore
from budget_ledger.engine.months import first_instant
from budget_ledger.models.ledger import Expense, MonthPeriod

logger = structlog.get_logger(__name__)

RecurrenceKey = tuple[str, str, float]


class PropagationResult:
    """What a flag transition did across months."""

    def __init__(self, origin_month: Optional[str], marked: bool, touched_months: list[str]):
        self.origin_month = origin_month
        self.marked = marked
        self.touched_months = touched_months

    def __repr__(self) -> str:
        return (
            f"PropagationResult(origin_month={self.origin_month!r}, "
            f"marked={self.marked}, touched_months={self.touched_months})"
        )


def _matches(expense: Expense, key: RecurrenceKey) -> bool:
    return expense.recurrence_key == key


class RecurringPropagator:
    """Adds and removes recurring copies across the month range."""

    def __init__(self, store: MonthStore):
        self._store = store

    def find_origin(self, key: RecurrenceKey, recurring_only: bool) -> Optional[MonthPeriod]:
        """Earliest month (oldest first) holding an expense matching `key`."""
        for month in self._store.state.chronological_months():
            for expense in month.expenses:
                if _matches(expense, key) and (expense.is_recurring or not recurring_only):
                    return month
        return None

    def months_after(self, origin_key: str) -> list[MonthPeriod]:
        """Existing months strictly after `origin_key`, up to the current month."""
        current = self._store.current_key()
        return [
            m for m in self._store.state.chronological_months()
            if origin_key < m.month <= current
        ]

    def update_expense(
        self,
        month_key: str,
        expense_id: str,
        **changes: Any,
    ) -> tuple[Expense, Expense, Optional[PropagationResult]]:
        """
        Edit an expense through the month store and, if its recurring flag
        flipped, propagate the change.

        Returns:
            (before, after, propagation) where propagation is None when the
            flag did not change
        """
        month = self._store.require_month(month_key)
        current = self._store.require_expense(month, expense_id)

        # The unmark origin has to be found while the edited copy is still recurring
        unmark_origin = None
        requested = changes.get("is_recurring", UNSET)
        if current.is_recurring and requested is not UNSET and not requested:
            unmark_origin = self.find_origin(current.recurrence_key, recurring_only=True)

        before, after = self._store.update_expense(month_key, expense_id, **changes)

        was_recurring = bool(before.is_recurring)
        now_recurring = bool(after.is_recurring)
        if was_recurring == now_recurring:
            return before, after, None

        if now_recurring:
            result = self.propagate_mark(month_key, after.recurrence_key)
        else:
            origin_key = unmark_origin.month if unmark_origin else month_key
            result = self.propagate_unmark(origin_key, before.recurrence_key)
        return before, after, result

    def propagate_mark(self, edited_month_key: str, key: RecurrenceKey) -> PropagationResult:
        origin = self.find_origin(key, recurring_only=False)
        origin_key = origin.month if origin else edited_month_key
        return self._fill_forward(origin_key, key)

    def propagate_unmark(self, origin_key: str, key: RecurrenceKey) -> PropagationResult:
        touched = []
        for month in self.months_after(origin_key):
            kept = [e for e in month.expenses if not (_matches(e, key) and e.is_recurring)]
            if len(kept) == len(month.expenses):
                continue
            month.expenses = kept
            recompute_spent(month, [key[1]])
            touched.append(month.month)

        logger.info(
            "recurring_unmarked",
            description=key[0],
            origin_month=origin_key,
            touched_months=touched,
        )
        return PropagationResult(origin_key, False, touched)

    def mark_historic_expense(self, month_key: str, expense_id: str) -> tuple[Expense, PropagationResult]:
        """
        Flag an expense in a past month as recurring and fill every later
        month up to the current one, using that month as the origin.
        """
        month = self._store.require_month(month_key)
        expense = self._store.require_expense(month, expense_id)
        expense.is_recurring = True
        return expense.model_copy(), self._fill_forward(month_key, expense.recurrence_key)

    def _fill_forward(self, origin_key: str, key: RecurrenceKey) -> PropagationResult:
        description, category_id, amount = key
        touched = []

        for month in self.months_after(origin_key):
            if month.find_category(category_id) is None:
                logger.warning(
                    "recurring_skipped_missing_category",
                    month=month.month,
                    category_id=category_id,
                )
                continue
            if any(_matches(e, key) for e in month.expenses):
                continue

            month.expenses.append(Expense(
                category_id=category_id,
                amount=amount,
                description=description,
                timestamp=first_instant(month.month),
                is_recurring=True,
            ))
            recompute_spent(month, [category_id])
            touched.append(month.month)

        logger.info(
            "recurring_marked",
            description=description,
            origin_month=origin_key,
            touched_months=touched,
        )
        return PropagationResult(origin_key, True, touched)
