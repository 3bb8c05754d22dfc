"""
Ledger Engine Package

Pure state-transition logic. Nothing here performs I/O; every function
and handler mutates the LedgerState it is given.
"""

from budget_ledger.engine.archive import ArchiveMerger, ArchiveResult, merge_categories
from budget_ledger.engine.category_ledger import (
    allocated_percentage,
    category_spent_percentage,
    recompute_spent,
    refresh_stored_total,
    remaining_budget,
    spent_for,
    total_allocated,
    total_spent,
)
from budget_ledger.engine.migration import load_ledger_document, migrate_legacy_state
from budget_ledger.engine.month_store import UNSET, MonthStore, swap_with_neighbour
from budget_ledger.engine.months import Clock, add_months, first_instant, month_key
from budget_ledger.engine.recurring import PropagationResult, RecurringPropagator
from budget_ledger.engine.savings import (
    SavingsPlanner,
    WaterfallResult,
    available_pool,
    average_monthly_savings,
    forecast_goal_completion,
    recompute_long_term_funding,
    refresh_monthly_actuals,
)

__all__ = [
    "ArchiveMerger",
    "ArchiveResult",
    "Clock",
    "MonthStore",
    "PropagationResult",
    "RecurringPropagator",
    "SavingsPlanner",
    "UNSET",
    "WaterfallResult",
    "add_months",
    "allocated_percentage",
    "available_pool",
    "average_monthly_savings",
    "category_spent_percentage",
    "first_instant",
    "forecast_goal_completion",
    "load_ledger_document",
    "merge_categories",
    "migrate_legacy_state",
    "month_key",
    "recompute_long_term_funding",
    "recompute_spent",
    "refresh_monthly_actuals",
    "refresh_stored_total",
    "remaining_budget",
    "spent_for",
    "swap_with_neighbour",
    "total_allocated",
    "total_spent",
]
