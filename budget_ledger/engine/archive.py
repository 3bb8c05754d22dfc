"""
Archive Merger

Closing a month snapshots the active (current) month under a target
month key and resets the active month to a fresh start.

Two paths:
1. NEW ARCHIVE - the target key has no period yet. The active month's
   categories, expenses, reimbursements and income are copied into a new
   period, with the budget total and expense total stored alongside.
2. MERGE - the target key already has a period (re-archiving into a
   closed month). Record lists are concatenated, category spend is summed,
   and allocations come from the newer active snapshot. The stored budget
   total is only replaced when the caller does not ask to keep it.

Either way the active month is then reseeded: only its recurring expenses
survive (as fresh records), reimbursements and extra income move to the
archive, and category spend is recomputed.
"""

from typing import Optional

import structlog

from budget_ledger.engine.category_ledger import recompute_spent
from budget_ledger.engine.month_store import MonthStore
from budget_ledger.engine.months import Clock
from budget_ledger.errors import ValidationError
from budget_ledger.models.ledger import Category, MonthPeriod, ValidationIssue

logger = structlog.get_logger(__name__)


class ArchiveResult:
    """Outcome of closing a month."""

    def __init__(self, archive: MonthPeriod, merged: bool, archived_expense_count: int):
        self.archive = archive
        self.merged = merged
        self.archived_expense_count = archived_expense_count


class ArchiveMerger:
    """Closes the active month into the month store."""

    def __init__(self, store: MonthStore, clock: Clock):
        self._store = store
        self._clock = clock

    def close_month(
        self,
        target_key: str,
        keep_existing_budget_on_conflict: bool = True,
    ) -> ArchiveResult:
        """
        Archive the active month under `target_key`.

        Args:
            target_key: Month key (YYYY-MM) to archive into
            keep_existing_budget_on_conflict: When merging into an existing
                archive, keep its stored budget total instead of replacing
                it with the active month's current total

        Raises:
            ValidationError: if `target_key` is not a YYYY-MM month or is
                the active month itself
        """
        self._store.validator.validate_month_key(target_key, field="target_month")
        active, _ = self._store.ensure_current_month()
        if target_key == active.month:
            raise ValidationError.from_issues([ValidationIssue(
                field="target_month",
                issue_type="invalid_value",
                message=f"Cannot archive the active month {active.month} into itself",
            )])

        archived_count = len(active.expenses)
        existing = self._store.get_month(target_key)
        if existing is None:
            archive = self._snapshot(active, target_key)
            self._store.state.months.append(archive)
            merged = False
        else:
            archive = existing
            self._merge(archive, active, keep_existing_budget_on_conflict)
            merged = True

        self._reseed(active)

        logger.info(
            "month_closed",
            target_month=target_key,
            active_month=active.month,
            merged=merged,
            expense_count=archived_count,
            total_spent=archive.total_spent,
            budget_total=archive.budget_total,
        )
        return ArchiveResult(archive, merged, archived_count)

    def _snapshot(self, active: MonthPeriod, target_key: str) -> MonthPeriod:
        now = self._clock()
        expenses = [e.model_copy() for e in active.expenses]
        return MonthPeriod(
            month=target_key,
            categories=[c.model_copy() for c in active.sorted_categories()],
            expenses=expenses,
            reimbursements=[r.model_copy() for r in active.reimbursements],
            additional_income=[i.model_copy() for i in active.additional_income],
            salary_income=active.salary_income,
            created_date=now,
            budget_total=active.total_budget,
            total_spent=sum(e.amount for e in expenses),
            archived_at=now,
        )

    def _merge(
        self,
        archive: MonthPeriod,
        active: MonthPeriod,
        keep_existing_budget: bool,
    ) -> None:
        archive.expenses = archive.expenses + [e.model_copy() for e in active.expenses]
        archive.reimbursements = archive.reimbursements + [
            r.model_copy() for r in active.reimbursements
        ]
        archive.additional_income = archive.additional_income + [
            i.model_copy() for i in active.additional_income
        ]
        archive.categories = merge_categories(archive.categories, active.categories)
        archive.total_spent = sum(e.amount for e in archive.expenses)

        if not keep_existing_budget:
            archive.budget_total = active.total_budget
            archive.salary_income = active.salary_income
        elif archive.budget_total is None:
            # Period never closed before (e.g. an auto-created past month)
            archive.budget_total = archive.income_total

        archive.archived_at = self._clock()

    def _reseed(self, active: MonthPeriod) -> None:
        active.expenses = [
            self._store.renew_recurring(e) for e in active.expenses if e.is_recurring
        ]
        active.reimbursements = []
        active.additional_income = []
        recompute_spent(active)


def merge_categories(existing: list[Category], incoming: list[Category]) -> list[Category]:
    """
    Merge an archive's categories with a newer snapshot.

    Categories present in both keep their archive position, take name,
    allocation and colour from the newer snapshot, and sum their spend.
    Categories only in the newer snapshot are appended after the rest.
    """
    incoming_by_id = {c.id: c for c in incoming}
    merged = []
    for category in sorted(existing, key=lambda c: c.order):
        newer: Optional[Category] = incoming_by_id.get(category.id)
        if newer is None:
            merged.append(category.model_copy())
            continue
        merged.append(category.model_copy(update={
            "name": newer.name,
            "allocated": newer.allocated,
            "color": newer.color,
            "spent": category.spent + newer.spent,
        }))

    known = {c.id for c in existing}
    next_order = max((c.order for c in merged), default=-1) + 1
    for newer in sorted(incoming, key=lambda c: c.order):
        if newer.id in known:
            continue
        merged.append(newer.model_copy(update={"order": next_order}))
        next_order += 1
    return merged
