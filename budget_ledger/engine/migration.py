"""
Ledger Document Migration

Stored ledgers exist in two shapes:

1. LEGACY - a single live month at the top level (`categories`,
   `expenses`, `reimbursements`, `additionalIncome`, `totalBudget`) plus a
   `monthlyArchives` list whose entries carry `categorySnapshots`,
   `totalBudget`, `totalSpent` and `archivedDate`.
2. UNIFIED - a `months` list of full month periods, which is what
   LedgerState serializes to.

Both may use camelCase keys. `load_ledger_document` accepts either and
always returns a LedgerState; `migrate_legacy_state` handles shape 1.

Missing `order` values on categories and long-term goals default to the
record's list position.
"""

import re
from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from budget_ledger.engine.archive import merge_categories
from budget_ledger.engine.category_ledger import recompute_spent, refresh_stored_total
from budget_ledger.engine.months import Clock, month_key
from budget_ledger.errors import ValidationError
from budget_ledger.models.ledger import LedgerState, MonthPeriod, utcnow

logger = structlog.get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Legacy field names that do not map by case conversion alone
_RENAMED_FIELDS = {
    "date": "timestamp",
    "receipt_image": "receipt",
    "archived_date": "archived_at",
    "total_budget": "budget_total",
    "category_snapshots": "categories",
}


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {snake_case(k): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def _rename(record: dict, renames: dict[str, str]) -> dict:
    return {renames.get(k, k): v for k, v in record.items()}


def _with_default_order(items: Optional[list[dict]]) -> list[dict]:
    result = []
    for index, item in enumerate(items or []):
        item = dict(item)
        if item.get("order") is None:
            item["order"] = index
        result.append(item)
    return result


def _records(items: Optional[list[dict]]) -> list[dict]:
    return [_rename(item, _RENAMED_FIELDS) for item in items or []]


def _month_from_legacy_archive(archive: dict) -> dict:
    """Legacy archive entry -> MonthPeriod fields."""
    categories = [
        {**snap, "order": index}
        for index, snap in enumerate(archive.get("category_snapshots") or [])
    ]
    period = {
        "month": archive["month"],
        "categories": categories,
        "expenses": _records(archive.get("expenses")),
        "reimbursements": _records(archive.get("reimbursements")),
        "additional_income": _records(archive.get("additional_income")),
        "salary_income": archive.get("salary_income") or 0.0,
        "budget_total": archive.get("total_budget"),
        "total_spent": archive.get("total_spent"),
        "archived_at": archive.get("archived_date"),
    }
    if archive.get("id"):
        period["id"] = archive["id"]
    if archive.get("archived_date"):
        period["created_date"] = archive["archived_date"]
    return period


def migrate_legacy_state(document: dict, clock: Clock = utcnow) -> LedgerState:
    """
    Convert a legacy single-month ledger into a LedgerState.

    The top-level live data becomes the period for the current month.
    When an archive already exists under that key, the live records are
    merged into it rather than creating a second period.

    Raises:
        ValidationError: if the document cannot be read as a ledger
    """
    legacy = _snake_keys(document)
    salary = legacy.get("salary_income") or legacy.get("total_budget") or 0.0

    try:
        months = [
            MonthPeriod.model_validate(_month_from_legacy_archive(archive))
            for archive in legacy.get("monthly_archives") or []
        ]

        if legacy.get("expenses") or legacy.get("categories"):
            live = MonthPeriod.model_validate({
                "month": month_key(clock()),
                "categories": _with_default_order(legacy.get("categories")),
                "expenses": _records(legacy.get("expenses")),
                "reimbursements": _records(legacy.get("reimbursements")),
                "additional_income": _records(legacy.get("additional_income")),
                "salary_income": salary,
                "created_date": clock(),
            })
            recompute_spent(live)
            months = _attach_live_month(months, live)

        state = LedgerState.model_validate({
            "salary_income": salary,
            "months": [m.model_dump() for m in months],
            "savings": legacy.get("savings") or [],
            "long_term_goals": _records(_with_default_order(legacy.get("long_term_goals"))),
        })
    except (KeyError, TypeError, PydanticValidationError) as e:
        raise ValidationError(f"Unreadable legacy ledger: {e}") from e

    logger.info(
        "legacy_ledger_migrated",
        month_count=len(state.months),
        goal_count=len(state.long_term_goals),
    )
    return state


def _attach_live_month(months: list[MonthPeriod], live: MonthPeriod) -> list[MonthPeriod]:
    clash = next((m for m in months if m.month == live.month), None)
    if clash is None:
        return months + [live]

    clash.categories = merge_categories(clash.categories, live.categories)
    clash.expenses = clash.expenses + live.expenses
    clash.reimbursements = clash.reimbursements + live.reimbursements
    clash.additional_income = clash.additional_income + live.additional_income
    refresh_stored_total(clash)
    logger.warning("legacy_live_month_merged_into_archive", month=live.month)
    return months


def load_ledger_document(document: Optional[dict], clock: Clock = utcnow) -> Optional[LedgerState]:
    """
    Read a stored ledger document of either shape.

    Returns None for an empty document.
    """
    if not document:
        return None
    if "months" not in document:
        return migrate_legacy_state(document, clock)

    unified = _snake_keys(document)
    unified["months"] = [
        {
            **month,
            "categories": _with_default_order(month.get("categories")),
            "expenses": _records(month.get("expenses")),
            "reimbursements": _records(month.get("reimbursements")),
        }
        for month in unified.get("months") or []
    ]
    unified["long_term_goals"] = _records(_with_default_order(unified.get("long_term_goals")))
    try:
        return LedgerState.model_validate(unified)
    except PydanticValidationError as e:
        raise ValidationError(f"Unreadable ledger document: {e}") from e
