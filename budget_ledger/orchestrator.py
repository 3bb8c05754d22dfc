"""
Ledger Service

This module ties the engine components together behind one owned object.
Callers issue commands; the service applies them and publishes a new
snapshot of the whole ledger.

DESIGN DECISION: Every command is a transaction.
- The command runs against a deep copy of the current ledger
- Derived figures (category spend, monthly savings actuals, long-term
  goal funding) are recomputed on the copy
- Only then does the copy replace the live ledger and listeners hear
  about it
A command that raises leaves the live ledger exactly as it was, and
listeners never see a half-applied state.

DESIGN DECISION: The service does no durable I/O of its own. Persistence
is LedgerSync's job; receipt uploads and deletions are explicit async
calls (`attach_receipt`, `release_receipts`).
"""

from typing import Any, Callable, Optional

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.engine.archive import ArchiveMerger, ArchiveResult
from budget_ledger.engine.category_ledger import (
    allocated_percentage,
    remaining_budget,
    total_allocated,
)
from budget_ledger.engine.month_store import UNSET, MonthStore
from budget_ledger.engine.months import Clock, month_key
from budget_ledger.engine.recurring import PropagationResult, RecurringPropagator
from budget_ledger.engine.savings import (
    SavingsPlanner,
    WaterfallResult,
    average_monthly_savings,
    forecast_goal_completion,
    recompute_long_term_funding,
    refresh_monthly_actuals,
)
from budget_ledger.errors import LedgerError, NonFatalCollaboratorError
from budget_ledger.models.audit import AuditEventBuilder, AuditEventType
from budget_ledger.models.ledger import (
    AdditionalIncome,
    Category,
    CategoryImportItem,
    Expense,
    LedgerState,
    LongTermGoal,
    MonthlySavingsGoal,
    MonthPeriod,
    Reimbursement,
    ReorderDirection,
    utcnow,
)
from budget_ledger.services.receipts import CloudinaryReceiptStorage, ReceiptStorageInterface
from budget_ledger.services.storage import GoogleSheetsAuditStorage, GoogleSheetsClient
from budget_ledger.validation import LedgerValidator

logger = structlog.get_logger(__name__)

# Where a published snapshot came from
ORIGIN_COMMAND = "command"
ORIGIN_LOAD = "load"
ORIGIN_REMOTE = "remote"

SnapshotListener = Callable[[LedgerState, str], None]


class _Transaction:
    """Engine components bound to one working copy of the ledger."""

    def __init__(self, state: LedgerState, validator: LedgerValidator, clock: Clock):
        self.state = state
        self.store = MonthStore(state, validator, clock)
        self.propagator = RecurringPropagator(self.store)
        self.archiver = ArchiveMerger(self.store, clock)
        self.planner = SavingsPlanner(state, validator)
        self.freed_receipts: list[str] = []
        self.recompute_goals = False


class LedgerService:
    """
    The single owner of a user's ledger.

    Read the ledger through `snapshot`; change it only through the command
    methods. Snapshots are never mutated after they are published.
    """

    def __init__(
        self,
        state: Optional[LedgerState] = None,
        clock: Clock = utcnow,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        receipt_storage: Optional[ReceiptStorageInterface] = None,
    ):
        self._state = state or LedgerState()
        self._clock = clock
        self._validator = validator or LedgerValidator()
        self._audit_logger = audit_logger or AuditLogger()
        self._receipt_storage = receipt_storage
        self._listeners: list[SnapshotListener] = []
        self._freed_receipts: list[str] = []

    # -------------------------------------------------------------------------
    # Snapshot access
    # -------------------------------------------------------------------------

    @property
    def snapshot(self) -> LedgerState:
        return self._state

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    @property
    def pending_receipt_deletions(self) -> list[str]:
        return list(self._freed_receipts)

    def current_month_key(self) -> str:
        return month_key(self._clock())

    def get_month(self, key: str) -> Optional[MonthPeriod]:
        return self._state.get_month(key)

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def replace_state(self, state: LedgerState, origin: str = ORIGIN_REMOTE) -> None:
        """
        Adopt a ledger produced elsewhere (a load or a remote update).

        The replacement is wholesale: last writer wins.
        """
        self._state = state
        logger.info(
            "ledger_replaced",
            origin=origin,
            month_count=len(state.months),
            updated_at=state.updated_at.isoformat(),
        )
        event_type = (
            AuditEventType.STATE_LOADED if origin == ORIGIN_LOAD
            else AuditEventType.REMOTE_STATE_APPLIED
        )
        self._audit_logger.log(AuditEventBuilder.ledger_command(
            event_type, "ledger", None, None, f"Ledger replaced from {origin}",
        ))
        self._publish(origin)

    def _publish(self, origin: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state, origin)
            except Exception as e:
                # A broken listener must not undo a committed command
                logger.error("snapshot_listener_failed", error=str(e), origin=origin)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _run(
        self,
        command: str,
        action: Callable[[_Transaction], Any],
        month: Optional[str] = None,
        recompute_goals: Optional[bool] = None,
    ) -> Any:
        """
        Run `action` on a working copy and commit it if it succeeds.

        Long-term goal funding is recomputed when `recompute_goals` is True,
        or, when it is None, when `month` lies before the current month or
        the action itself asked for it.
        """
        tx = _Transaction(self._state.model_copy(deep=True), self._validator, self._clock)
        try:
            result = action(tx)
        except LedgerError as e:
            logger.info("command_rejected", command=command, month=month, reason=str(e))
            self._audit_logger.log(AuditEventBuilder.command_rejected(command, str(e), month))
            raise

        refresh_monthly_actuals(tx.state)
        if recompute_goals is None:
            current = self.current_month_key()
            recompute_goals = tx.recompute_goals or (month is not None and month < current)
        if recompute_goals:
            funding = recompute_long_term_funding(tx.state, self.current_month_key())
            self._log_funding(funding)

        tx.state.updated_at = self._clock()
        self._state = tx.state
        self._freed_receipts.extend(tx.freed_receipts)
        self._publish(ORIGIN_COMMAND)
        return result

    def _log_funding(self, funding: WaterfallResult) -> None:
        if funding.allocations:
            self._audit_logger.log(AuditEventBuilder.goals_recomputed(
                funding.available_pool, funding.allocations,
            ))

    def _audit(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        month: Optional[str],
        description: str,
        details: Optional[dict] = None,
    ) -> None:
        self._audit_logger.log(AuditEventBuilder.ledger_command(
            event_type, entity_type, entity_id, month, description, details,
        ))

    # -------------------------------------------------------------------------
    # Months and salary
    # -------------------------------------------------------------------------

    def set_salary_income(self, amount: float) -> float:
        """Set the salary applied to months created from now on (clamped to >= 0)."""
        def action(tx: _Transaction) -> float:
            tx.state.salary_income = self._validator.validate_salary(amount)
            return tx.state.salary_income

        salary = self._run("set_salary_income", action, recompute_goals=False)
        self._audit(AuditEventType.SALARY_UPDATED, "ledger", None, None,
                    f"Salary income set to {salary:.2f}")
        return salary

    def ensure_current_month(self) -> MonthPeriod:
        """
        Make sure the current calendar month exists, creating it from the
        most recent earlier month when needed.
        """
        existing = self._state.get_month(self.current_month_key())
        if existing is not None:
            return existing

        def action(tx: _Transaction) -> MonthPeriod:
            month, _ = tx.store.ensure_current_month()
            # The month that just ended now counts toward savings
            tx.recompute_goals = True
            return month

        month = self._run("ensure_current_month", action)
        self._audit(AuditEventType.MONTH_CREATED, "month", month.id, month.month,
                    f"Month {month.month} created",
                    {"recurring_count": len(month.expenses)})
        return self._state.get_month(month.month)

    def close_month(
        self,
        target_key: str,
        keep_existing_budget_on_conflict: bool = True,
    ) -> ArchiveResult:
        """Archive the active month under `target_key` and reseed it."""
        def action(tx: _Transaction) -> ArchiveResult:
            return tx.archiver.close_month(target_key, keep_existing_budget_on_conflict)

        result = self._run("close_month", action, month=target_key, recompute_goals=True)
        self._audit_logger.log(AuditEventBuilder.month_closed(
            target_key,
            result.archived_expense_count,
            result.archive.total_spent or 0.0,
            result.merged,
        ))
        return result

    def delete_month(self, key: str) -> MonthPeriod:
        """Remove a whole month, e.g. an unwanted archive."""
        def action(tx: _Transaction) -> MonthPeriod:
            month = tx.store.delete_month(key)
            tx.freed_receipts.extend(_receipts_of(month))
            return month

        month = self._run("delete_month", action, month=key, recompute_goals=True)
        self._audit(AuditEventType.MONTH_DELETED, "month", month.id, key,
                    f"Month {key} deleted",
                    {"expense_count": len(month.expenses)})
        return month

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    def add_category(
        self,
        month: str,
        name: str,
        allocated: float,
        color: Optional[str] = None,
    ) -> Category:
        category = self._run(
            "add_category",
            lambda tx: tx.store.add_category(month, name, allocated, color),
            month=month,
        )
        self._audit(AuditEventType.CATEGORY_ADDED, "category", category.id, month,
                    f"Category added: {category.name}",
                    {"allocated": category.allocated})
        return category

    def import_categories(
        self,
        month: str,
        items: list[CategoryImportItem | dict],
    ) -> list[Category]:
        added = self._run(
            "import_categories",
            lambda tx: tx.store.import_categories(month, items),
            month=month,
        )
        self._audit(AuditEventType.CATEGORIES_IMPORTED, "category", None, month,
                    f"{len(added)} categories imported",
                    {"names": [c.name for c in added]})
        return added

    def update_category(
        self,
        month: str,
        category_id: str,
        name: Any = UNSET,
        allocated: Any = UNSET,
        color: Any = UNSET,
    ) -> Category:
        category = self._run(
            "update_category",
            lambda tx: tx.store.update_category(month, category_id, name, allocated, color),
            month=month,
        )
        self._audit(AuditEventType.CATEGORY_UPDATED, "category", category_id, month,
                    f"Category updated: {category.name}")
        return category

    def delete_category(self, month: str, category_id: str) -> Category:
        """Delete a category together with its expenses and reimbursements."""
        def action(tx: _Transaction) -> Category:
            category, freed = tx.store.delete_category(month, category_id)
            tx.freed_receipts.extend(freed)
            return category

        category = self._run("delete_category", action, month=month)
        self._audit(AuditEventType.CATEGORY_DELETED, "category", category_id, month,
                    f"Category deleted: {category.name}")
        return category

    def reorder_category(self, month: str, category_id: str, direction: ReorderDirection) -> bool:
        moved = self._run(
            "reorder_category",
            lambda tx: tx.store.reorder_category(month, category_id, direction),
            month=month,
        )
        if moved:
            self._audit(AuditEventType.CATEGORY_REORDERED, "category", category_id, month,
                        f"Category moved {ReorderDirection(direction).value}")
        return moved

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def add_expense(
        self,
        month: str,
        category_id: str,
        amount: float,
        description: str,
        receipt: Optional[str] = None,
        is_recurring: bool = False,
    ) -> Expense:
        expense = self._run(
            "add_expense",
            lambda tx: tx.store.add_expense(
                month, category_id, amount, description, receipt, is_recurring,
            ),
            month=month,
        )
        self._audit(AuditEventType.EXPENSE_ADDED, "expense", expense.id, month,
                    f"Expense added: {expense.description} {expense.amount:.2f}",
                    {"category_id": category_id, "amount": expense.amount})
        return expense

    def update_expense(
        self,
        month: str,
        expense_id: str,
        category_id: Any = UNSET,
        amount: Any = UNSET,
        description: Any = UNSET,
        receipt: Any = UNSET,
        is_recurring: Any = UNSET,
    ) -> Expense:
        """
        Edit an expense. Flipping `is_recurring` adds or removes the
        expense's copies in the other months up to the current one.
        """
        changes = {
            "category_id": category_id,
            "amount": amount,
            "description": description,
            "receipt": receipt,
            "is_recurring": is_recurring,
        }
        changes = {k: v for k, v in changes.items() if v is not UNSET}

        def action(tx: _Transaction) -> tuple[Expense, Optional[PropagationResult]]:
            before, after, propagation = tx.propagator.update_expense(month, expense_id, **changes)
            if before.receipt and before.receipt != after.receipt:
                tx.freed_receipts.append(before.receipt)
            if propagation is not None and propagation.touched_months:
                current = self.current_month_key()
                tx.recompute_goals = any(m < current for m in propagation.touched_months)
            return after, propagation

        after, propagation = self._run("update_expense", action, month=month)
        self._audit(AuditEventType.EXPENSE_UPDATED, "expense", expense_id, month,
                    f"Expense updated: {after.description}",
                    {"changed": sorted(changes)})
        if propagation is not None:
            self._audit_logger.log(AuditEventBuilder.recurring_propagated(
                after.description,
                propagation.origin_month,
                propagation.marked,
                propagation.touched_months,
            ))
        return after

    def mark_historic_expense_recurring(
        self,
        month: str,
        expense_id: str,
    ) -> tuple[Expense, PropagationResult]:
        """Flag a past expense as recurring and fill every later month."""
        def action(tx: _Transaction) -> tuple[Expense, PropagationResult]:
            result = tx.propagator.mark_historic_expense(month, expense_id)
            tx.recompute_goals = True
            return result

        expense, propagation = self._run("mark_historic_expense_recurring", action, month=month)
        self._audit_logger.log(AuditEventBuilder.recurring_propagated(
            expense.description,
            propagation.origin_month,
            propagation.marked,
            propagation.touched_months,
        ))
        return expense, propagation

    def delete_expense(self, month: str, expense_id: str) -> Expense:
        def action(tx: _Transaction) -> Expense:
            expense = tx.store.delete_expense(month, expense_id)
            if expense.receipt:
                tx.freed_receipts.append(expense.receipt)
            return expense

        expense = self._run("delete_expense", action, month=month)
        self._audit(AuditEventType.EXPENSE_DELETED, "expense", expense_id, month,
                    f"Expense deleted: {expense.description}")
        return expense

    # -------------------------------------------------------------------------
    # Reimbursements
    # -------------------------------------------------------------------------

    def add_reimbursement(
        self,
        month: str,
        category_id: str,
        amount: float,
        description: str,
        receipt: Optional[str] = None,
    ) -> Reimbursement:
        reimbursement = self._run(
            "add_reimbursement",
            lambda tx: tx.store.add_reimbursement(month, category_id, amount, description, receipt),
            month=month,
        )
        self._audit(AuditEventType.REIMBURSEMENT_ADDED, "reimbursement", reimbursement.id, month,
                    f"Reimbursement added: {reimbursement.description} "
                    f"{reimbursement.amount:.2f}",
                    {"category_id": category_id, "amount": reimbursement.amount})
        return reimbursement

    def update_reimbursement(
        self,
        month: str,
        reimbursement_id: str,
        category_id: Any = UNSET,
        amount: Any = UNSET,
        description: Any = UNSET,
        receipt: Any = UNSET,
    ) -> Reimbursement:
        def action(tx: _Transaction) -> Reimbursement:
            before, after = tx.store.update_reimbursement(
                month, reimbursement_id, category_id, amount, description, receipt,
            )
            if before.receipt and before.receipt != after.receipt:
                tx.freed_receipts.append(before.receipt)
            return after

        after = self._run("update_reimbursement", action, month=month)
        self._audit(AuditEventType.REIMBURSEMENT_UPDATED, "reimbursement", reimbursement_id,
                    month, f"Reimbursement updated: {after.description}")
        return after

    def delete_reimbursement(self, month: str, reimbursement_id: str) -> Reimbursement:
        def action(tx: _Transaction) -> Reimbursement:
            reimbursement = tx.store.delete_reimbursement(month, reimbursement_id)
            if reimbursement.receipt:
                tx.freed_receipts.append(reimbursement.receipt)
            return reimbursement

        reimbursement = self._run("delete_reimbursement", action, month=month)
        self._audit(AuditEventType.REIMBURSEMENT_DELETED, "reimbursement", reimbursement_id,
                    month, f"Reimbursement deleted: {reimbursement.description}")
        return reimbursement

    # -------------------------------------------------------------------------
    # Additional income
    # -------------------------------------------------------------------------

    def add_income(self, month: str, amount: float, description: str) -> AdditionalIncome:
        income = self._run(
            "add_income",
            lambda tx: tx.store.add_income(month, amount, description),
            month=month,
        )
        self._audit(AuditEventType.INCOME_ADDED, "income", income.id, month,
                    f"Income added: {income.description} {income.amount:.2f}")
        return income

    def update_income(
        self,
        month: str,
        income_id: str,
        amount: Any = UNSET,
        description: Any = UNSET,
    ) -> AdditionalIncome:
        income = self._run(
            "update_income",
            lambda tx: tx.store.update_income(month, income_id, amount, description),
            month=month,
        )
        self._audit(AuditEventType.INCOME_UPDATED, "income", income_id, month,
                    f"Income updated: {income.description}")
        return income

    def delete_income(self, month: str, income_id: str) -> AdditionalIncome:
        income = self._run(
            "delete_income",
            lambda tx: tx.store.delete_income(month, income_id),
            month=month,
        )
        self._audit(AuditEventType.INCOME_DELETED, "income", income_id, month,
                    f"Income deleted: {income.description}")
        return income

    # -------------------------------------------------------------------------
    # Savings
    # -------------------------------------------------------------------------

    def set_savings_goal(
        self,
        month: str,
        goal: float,
        notes: Optional[str] = None,
    ) -> MonthlySavingsGoal:
        saving = self._run(
            "set_savings_goal",
            lambda tx: tx.planner.set_savings_goal(month, goal, notes),
            month=month,
            recompute_goals=True,
        )
        self._audit(AuditEventType.SAVINGS_GOAL_SET, "savings_goal", saving.id, month,
                    f"Savings goal for {month} set to {saving.goal:.2f}")
        return saving

    def delete_savings_goal(self, month: str) -> MonthlySavingsGoal:
        saving = self._run(
            "delete_savings_goal",
            lambda tx: tx.planner.delete_savings_goal(month),
            month=month,
            recompute_goals=True,
        )
        self._audit(AuditEventType.SAVINGS_GOAL_DELETED, "savings_goal", saving.id, month,
                    f"Savings goal for {month} deleted")
        return saving

    def add_long_term_goal(
        self,
        name: str,
        target_amount: float,
        notes: Optional[str] = None,
    ) -> LongTermGoal:
        goal = self._run(
            "add_long_term_goal",
            lambda tx: tx.planner.add_long_term_goal(name, target_amount, notes, self._clock()),
            recompute_goals=True,
        )
        goal = self._find_goal(goal.id)
        self._audit(AuditEventType.LONG_TERM_GOAL_ADDED, "long_term_goal", goal.id, None,
                    f"Long-term goal added: {goal.name}",
                    {"target_amount": goal.target_amount, "order": goal.order})
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
        Edit a goal. A manual `current_amount` is kept until the next
        command that re-runs the funding allocator.
        """
        self._run(
            "update_long_term_goal",
            lambda tx: tx.planner.update_long_term_goal(
                goal_id, name, target_amount, notes, current_amount,
            ),
            recompute_goals=current_amount is UNSET,
        )
        goal = self._find_goal(goal_id)
        self._audit(AuditEventType.LONG_TERM_GOAL_UPDATED, "long_term_goal", goal_id, None,
                    f"Long-term goal updated: {goal.name}",
                    {"manual_override": current_amount is not UNSET})
        return goal

    def delete_long_term_goal(self, goal_id: str) -> LongTermGoal:
        goal = self._run(
            "delete_long_term_goal",
            lambda tx: tx.planner.delete_long_term_goal(goal_id),
            recompute_goals=True,
        )
        self._audit(AuditEventType.LONG_TERM_GOAL_DELETED, "long_term_goal", goal_id, None,
                    f"Long-term goal deleted: {goal.name}")
        return goal

    def reorder_long_term_goal(self, goal_id: str, direction: ReorderDirection) -> bool:
        moved = self._run(
            "reorder_long_term_goal",
            lambda tx: tx.planner.reorder_long_term_goal(goal_id, direction),
            recompute_goals=True,
        )
        if moved:
            self._audit(AuditEventType.LONG_TERM_GOAL_REORDERED, "long_term_goal", goal_id, None,
                        f"Long-term goal moved {ReorderDirection(direction).value}")
        return moved

    def recompute_goals(self) -> WaterfallResult:
        """Re-run the funding allocator on its own, dropping manual overrides."""
        funding = self._run(
            "recompute_goals",
            lambda tx: recompute_long_term_funding(tx.state, self.current_month_key()),
            recompute_goals=False,
        )
        self._log_funding(funding)
        return funding

    def _find_goal(self, goal_id: str) -> LongTermGoal:
        return next(g for g in self._state.long_term_goals if g.id == goal_id)

    # -------------------------------------------------------------------------
    # Read-only helpers
    # -------------------------------------------------------------------------

    def budget_summary(self, month: str) -> dict[str, float]:
        """Headline figures for one month."""
        period = self._state.get_month(month)
        if period is None:
            return {
                "total_budget": 0.0,
                "total_allocated": 0.0,
                "total_spent": 0.0,
                "remaining": 0.0,
                "allocated_percentage": 0.0,
            }
        return {
            "total_budget": period.total_budget,
            "total_allocated": total_allocated(period.categories),
            "total_spent": period.spent_total,
            "remaining": remaining_budget(period),
            "allocated_percentage": allocated_percentage(period),
        }

    def forecast_goal(self, goal_id: str) -> Optional[tuple[int, str]]:
        """
        (months_needed, completion_month) for a long-term goal at the
        average monthly savings rate, or None when nothing is being saved.
        """
        goal = self._find_goal(goal_id)
        current = self.current_month_key()
        return forecast_goal_completion(
            goal, average_monthly_savings(self._state, current), current,
        )

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    async def attach_receipt(
        self,
        month: str,
        record_id: str,
        image_bytes: bytes,
        user_key: str,
        reimbursement: bool = False,
    ) -> str:
        """
        Upload a receipt and store its reference on an expense (or, with
        `reimbursement=True`, a reimbursement).

        The record is checked before uploading; if the record disappears
        while the upload is in flight, the new upload is queued for deletion.
        """
        if self._receipt_storage is None:
            raise NonFatalCollaboratorError("No receipt storage configured")

        # Read-only lookups against the live ledger
        store = MonthStore(self._state, self._validator, self._clock)
        period = store.require_month(month)
        if reimbursement:
            store.require_reimbursement(period, record_id)
        else:
            store.require_expense(period, record_id)

        try:
            reference = await self._receipt_storage.store(user_key, record_id, image_bytes)
        except NonFatalCollaboratorError as e:
            self._audit_logger.log_external_service_error("receipt_storage", str(e))
            raise

        try:
            if reimbursement:
                self.update_reimbursement(month, record_id, receipt=reference)
            else:
                self.update_expense(month, record_id, receipt=reference)
        except LedgerError:
            self._freed_receipts.append(reference)
            raise

        self._audit(AuditEventType.RECEIPT_STORED, "receipt", record_id, month,
                    "Receipt attached", {"reference": reference})
        return reference

    async def release_receipts(self) -> int:
        """
        Delete receipts no longer referenced by any record.

        Failures are logged and never raised; a reference still used by
        another record (e.g. an archived copy) is kept.

        Returns:
            Number of receipts deleted
        """
        pending, self._freed_receipts = self._freed_receipts, []
        if self._receipt_storage is None:
            return 0

        in_use = _all_receipts(self._state)
        deleted = 0
        for reference in pending:
            if reference in in_use or not self._receipt_storage.is_managed_reference(reference):
                continue
            try:
                if await self._receipt_storage.delete(reference):
                    deleted += 1
                    self._audit(AuditEventType.RECEIPT_DELETED, "receipt", None, None,
                                "Receipt deleted", {"reference": reference})
            except NonFatalCollaboratorError as e:
                logger.warning("receipt_delete_failed", reference=reference, error=str(e))
                self._audit_logger.log(AuditEventBuilder.receipt_delete_failed(reference, str(e)))
        return deleted


def _receipts_of(month: MonthPeriod) -> list[str]:
    return [
        record.receipt
        for record in [*month.expenses, *month.reimbursements]
        if record.receipt
    ]


def _all_receipts(state: LedgerState) -> set[str]:
    return {ref for month in state.months for ref in _receipts_of(month)}


def create_ledger_service(
    state: Optional[LedgerState] = None,
    use_storage: bool = True,
    clock: Clock = utcnow,
) -> LedgerService:
    """
    Factory function to create a ledger service with its collaborators.

    Args:
        state: Initial ledger (usually replaced by LedgerSync on start)
        use_storage: Whether to initialize the Google Sheets audit log and
                     Cloudinary receipt storage. Set to False for testing.
        clock: Source of the current time
    """
    audit_logger = AuditLogger()  # Local-only logging
    receipt_storage = None

    if use_storage:
        try:
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(GoogleSheetsClient()))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("audit_storage_not_configured", error=str(e))
        try:
            receipt_storage = CloudinaryReceiptStorage()
        except Exception as e:
            logger.warning("receipt_storage_not_configured", error=str(e))

    return LedgerService(
        state=state,
        clock=clock,
        audit_logger=audit_logger,
        receipt_storage=receipt_storage,
    )
