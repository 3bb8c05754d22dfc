"""
Data Models Package

This package contains all Pydantic models used by the Budget Ledger.
Ledger snapshots handed to storage conform to these schemas.
"""

from budget_ledger.models.ledger import (
    CATEGORY_COLORS,
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
    ValidationIssue,
    color_for_position,
    new_id,
    utcnow,
)
from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CATEGORY_COLORS",
    "AdditionalIncome",
    "Category",
    "CategoryImportItem",
    "Expense",
    "LedgerState",
    "LongTermGoal",
    "MonthlySavingsGoal",
    "MonthPeriod",
    "Reimbursement",
    "ReorderDirection",
    "ValidationIssue",
    "color_for_position",
    "new_id",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
