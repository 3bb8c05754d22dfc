"""
Savings Waterfall Allocator

Long-term goals are funded from a single pool: the money left over in
every past month. Goals are stacked by `order` and funded one at a time:
a goal gets nothing until every goal ahead of it is complete.

DESIGN DECISION: Funding is a pure recompute over the whole ledger, never
an incremental update. Re-running it after any trigger (goal added,
deleted, reordered or re-targeted, savings or archive changes) always
gives the same answer for the same ledger, and reordering goals
re-attributes money to the new priority order immediately.

Monthly savings goals are tracked separately: a user-set target per month
and a derived `actual = max(0, budget - spent)` used for forecasting.
"""

import math
from typing import Any, Optional

import structlog

from budget_ledger.engine.month_store import UNSET, swap_with_neighbour
from budget_ledger.engine.months import add_months
from budget_ledger.errors import NotFoundError, ValidationError
from budget_ledger.models.ledger import (
    LedgerState,
    LongTermGoal,
    MonthlySavingsGoal,
    MonthPeriod,
    ReorderDirection,
)
from budget_ledger.validation import LedgerValidator

logger = structlog.get_logger(__name__)


class WaterfallResult:
    """Pool size and per-goal funding from one allocator pass."""

    def __init__(self, available_pool: float, allocations: dict[str, float]):
        self.available_pool = available_pool
        self.allocations = allocations


def month_savings(month: MonthPeriod) -> float:
    """Money left over in a month, floored at zero."""
    return max(0.0, month.total_budget - month.spent_total)


def available_pool(state: LedgerState, current_key: str) -> float:
    """Sum of leftover money over every month strictly before `current_key`."""
    return sum(month_savings(m) for m in state.months if m.month < current_key)


def recompute_long_term_funding(state: LedgerState, current_key: str) -> WaterfallResult:
    """
    Fund long-term goals in priority order from the past-month pool.

    Each goal is fully funded while the pool covers its target; the first
    goal the pool cannot cover gets whatever is left, and every goal after
    it gets nothing.
    """
    pool = available_pool(state, current_key)
    remaining = pool
    allocations = {}

    for goal in sorted(state.long_term_goals, key=lambda g: g.order):
        if remaining >= goal.target_amount:
            goal.current_amount = goal.target_amount
            remaining -= goal.target_amount
        else:
            goal.current_amount = max(0.0, remaining)
            remaining = 0.0
        allocations[goal.id] = goal.current_amount

    logger.debug("long_term_goals_funded", available_pool=pool, allocations=allocations)
    return WaterfallResult(pool, allocations)


def refresh_monthly_actuals(state: LedgerState) -> None:
    """Recompute `actual` on every monthly savings goal."""
    for saving in state.savings:
        month = state.get_month(saving.month)
        saving.actual = month_savings(month) if month is not None else 0.0


# =============================================================================
# Forecasting
# =============================================================================

def average_monthly_savings(state: LedgerState, current_key: str) -> float:
    """
    Average actual savings of completed months.

    Only past months with a positive actual count. With none yet, the
    average of every goal that has been set is used as an estimate.
    """
    past = [s.actual for s in state.savings if s.month < current_key and s.actual > 0]
    if past:
        return sum(past) / len(past)

    goals = [s.goal for s in state.savings if s.goal > 0]
    if not goals:
        return 0.0
    return sum(goals) / len(goals)


def forecast_goal_completion(
    goal: LongTermGoal,
    average_savings: float,
    current_key: str,
) -> Optional[tuple[int, str]]:
    """
    Estimate when a goal completes at the given monthly savings rate.

    Returns:
        (months_needed, completion_month_key), (0, current_key) for a
        funded goal, or None when nothing is being saved
    """
    remaining = goal.target_amount - goal.current_amount
    if remaining <= 0:
        return 0, current_key
    if average_savings <= 0:
        return None
    months_needed = math.ceil(remaining / average_savings)
    return months_needed, add_months(current_key, months_needed)


# =============================================================================
# Goal commands
# =============================================================================

class SavingsPlanner:
    """Command handlers for monthly and long-term savings goals."""

    def __init__(self, state: LedgerState, validator: LedgerValidator):
        self._state = state
        self._validator = validator

    def set_savings_goal(
        self,
        month_key: str,
        goal: float,
        notes: Optional[str] = None,
    ) -> MonthlySavingsGoal:
        """
        Create or replace the savings goal of a month.

        The goal may not exceed the month's total budget; months that do
        not exist yet are checked against the salary income.
        """
        self._validator.validate_month_key(month_key)
        month = self._state.get_month(month_key)
        budget = month.total_budget if month is not None else self._state.salary_income
        goal = self._validator.validate_savings_goal(goal, budget)
        notes = notes.strip() or None if notes else None

        existing = self.find_savings_goal(month_key)
        if existing is not None:
            existing.goal = goal
            existing.notes = notes
            saving = existing
        else:
            saving = MonthlySavingsGoal(month=month_key, goal=goal, notes=notes)
            self._state.savings.append(saving)
            self._state.savings.sort(key=lambda s: s.month)

        saving.actual = month_savings(month) if month is not None else 0.0
        return saving

    def find_savings_goal(self, month_key: str) -> Optional[MonthlySavingsGoal]:
        return next((s for s in self._state.savings if s.month == month_key), None)

    def delete_savings_goal(self, month_key: str) -> MonthlySavingsGoal:
        saving = self.find_savings_goal(month_key)
        if saving is None:
            raise NotFoundError("MonthlySavingsGoal", month_key)
        self._state.savings = [s for s in self._state.savings if s.month != month_key]
        return saving

    def require_goal(self, goal_id: str) -> LongTermGoal:
        goal = next((g for g in self._state.long_term_goals if g.id == goal_id), None)
        if goal is None:
            raise NotFoundError("LongTermGoal", goal_id)
        return goal

    def add_long_term_goal(
        self,
        name: str,
        target_amount: float,
        notes: Optional[str] = None,
        created_date=None,
    ) -> LongTermGoal:
        name, target_amount = self._validator.validate_long_term_goal(name, target_amount)
        next_order = max((g.order for g in self._state.long_term_goals), default=-1) + 1
        goal = LongTermGoal(
            name=name,
            target_amount=target_amount,
            order=next_order,
            notes=notes.strip() or None if notes else None,
        )
        if created_date is not None:
            goal.created_date = created_date
        self._state.long_term_goals.append(goal)
        return goal

    def update_long_term_goal(
        self,
        goal_id: str,
        name: Any = UNSET,
        target_amount: Any = UNSET,
        notes: Any = UNSET,
        current_amount: Any = UNSET,
    ) -> LongTermGoal:
        """
        Edit a goal. `current_amount` is a manual override that only lasts
        until the next funding recompute.
        """
        goal = self.require_goal(goal_id)
        new_name = goal.name if name is UNSET else name
        new_target = goal.target_amount if target_amount is UNSET else target_amount
        new_name, new_target = self._validator.validate_long_term_goal(new_name, new_target)

        goal.name = new_name
        goal.target_amount = new_target
        if notes is not UNSET:
            goal.notes = notes.strip() or None if notes else None
        if current_amount is not UNSET:
            issues = self._validator.check_amount(
                current_amount, field="current_amount", allow_zero=True,
            )
            if issues:
                raise ValidationError.from_issues(issues)
            goal.current_amount = float(current_amount)
        return goal

    def delete_long_term_goal(self, goal_id: str) -> LongTermGoal:
        """Delete a goal and renumber the remaining goals 0..n-1."""
        goal = self.require_goal(goal_id)
        remaining = sorted(
            (g for g in self._state.long_term_goals if g.id != goal_id),
            key=lambda g: g.order,
        )
        for index, other in enumerate(remaining):
            other.order = index
        self._state.long_term_goals = remaining
        return goal

    def reorder_long_term_goal(self, goal_id: str, direction: ReorderDirection) -> bool:
        self.require_goal(goal_id)
        ordered = sorted(self._state.long_term_goals, key=lambda g: g.order)
        moved = swap_with_neighbour(ordered, goal_id, ReorderDirection(direction))
        if moved:
            for index, goal in enumerate(ordered):
                goal.order = index
            self._state.long_term_goals = ordered
        return moved
