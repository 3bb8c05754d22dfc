"""
Category Ledger

A category's spend is never stored state: it is always
max(0, expenses - reimbursements) over the records of the same month
that reference the category. Every command that touches expenses,
reimbursements or category ids ends with a recompute.

A closed month also stores `total_spent`, the sum of its expense
amounts. The recompute keeps that figure in step, so later edits to an
archive reach the savings waterfall.
"""

from typing import Iterable, Optional

from budget_ledger.models.ledger import Category, Expense, MonthPeriod, Reimbursement


def spent_for(
    category: Category,
    expenses: Iterable[Expense],
    reimbursements: Iterable[Reimbursement],
) -> float:
    """Net spend of `category`, floored at zero."""
    total_expenses = sum(e.amount for e in expenses if e.category_id == category.id)
    total_reimbursed = sum(r.amount for r in reimbursements if r.category_id == category.id)
    return max(0.0, total_expenses - total_reimbursed)


def recompute_spent(month: MonthPeriod, category_ids: Optional[Iterable[str]] = None) -> None:
    """
    Refresh `spent` on the month's categories, and a closed month's
    stored total, in place.

    Args:
        month: The period to refresh
        category_ids: Only refresh these categories; None refreshes all
    """
    wanted = set(category_ids) if category_ids is not None else None
    for category in month.categories:
        if wanted is not None and category.id not in wanted:
            continue
        category.spent = spent_for(category, month.expenses, month.reimbursements)
    refresh_stored_total(month)


def refresh_stored_total(month: MonthPeriod) -> None:
    """Re-sum `total_spent` of a closed month; open months have none."""
    if month.total_spent is not None:
        month.total_spent = sum(e.amount for e in month.expenses)


# =============================================================================
# Budget summary helpers
# =============================================================================

def total_allocated(categories: Iterable[Category]) -> float:
    return sum(c.allocated for c in categories)


def total_spent(categories: Iterable[Category]) -> float:
    return sum(c.spent for c in categories)


def remaining_budget(month: MonthPeriod) -> float:
    """Budget not yet allocated to any category (may be negative)."""
    return month.total_budget - total_allocated(month.categories)


def allocated_percentage(month: MonthPeriod) -> float:
    budget = month.total_budget
    if budget == 0:
        return 0.0
    return total_allocated(month.categories) / budget * 100


def category_spent_percentage(category: Category) -> float:
    if category.allocated == 0:
        return 0.0
    return category.spent / category.allocated * 100
