"""
Audit Models for Budget Ledger

Every ledger command that changes state is recorded as an audit event.
This provides:
1. Traceability of how a month's figures came to be
2. Debugging information when propagation or merges look wrong
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budget_ledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every command on the ledger service has its own event type.
    """
    # Month lifecycle
    MONTH_CREATED = "month_created"
    MONTH_CLOSED = "month_closed"
    MONTH_DELETED = "month_deleted"
    SALARY_UPDATED = "salary_updated"

    # Categories
    CATEGORY_ADDED = "category_added"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    CATEGORY_REORDERED = "category_reordered"
    CATEGORIES_IMPORTED = "categories_imported"

    # Money movements
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    REIMBURSEMENT_ADDED = "reimbursement_added"
    REIMBURSEMENT_UPDATED = "reimbursement_updated"
    REIMBURSEMENT_DELETED = "reimbursement_deleted"
    INCOME_ADDED = "income_added"
    INCOME_UPDATED = "income_updated"
    INCOME_DELETED = "income_deleted"
    RECURRING_PROPAGATED = "recurring_propagated"

    # Savings
    SAVINGS_GOAL_SET = "savings_goal_set"
    SAVINGS_GOAL_DELETED = "savings_goal_deleted"
    LONG_TERM_GOAL_ADDED = "long_term_goal_added"
    LONG_TERM_GOAL_UPDATED = "long_term_goal_updated"
    LONG_TERM_GOAL_DELETED = "long_term_goal_deleted"
    LONG_TERM_GOAL_REORDERED = "long_term_goal_reordered"
    GOALS_RECOMPUTED = "goals_recomputed"

    # Rejections
    COMMAND_REJECTED = "command_rejected"

    # Persistence
    STATE_LOADED = "state_loaded"
    STATE_SAVED = "state_saved"
    REMOTE_STATE_APPLIED = "remote_state_applied"
    SAVE_FAILED = "save_failed"

    # Receipts
    RECEIPT_STORED = "receipt_stored"
    RECEIPT_DELETED = "receipt_deleted"
    RECEIPT_DELETE_FAILED = "receipt_delete_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    One recorded ledger change or failure.
    Commands emit these through AuditEventBuilder.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Which ledger record the event concerns
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'category', 'month')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    month: Optional[str] = Field(
        default=None,
        description="Month key the event applies to"
    )

    # Groups the events of one session or command
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one ledger session)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Set for failures only
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user command?"
    )

    def to_log_dict(self) -> dict:
        """
        Flatten into keyword arguments for structlog.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "month": self.month,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Flatten into one Audit sheet row.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         month, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.month or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Factory methods for the events the ledger service emits.

    Usage:
        event = AuditEventBuilder.ledger_command(
            AuditEventType.EXPENSE_ADDED, "expense", expense.id, "2025-01",
            "Expense added: Groceries 42.10",
        )
        event = AuditEventBuilder.month_closed("2025-01", 3, 300.0, merged=False)
    """

    @staticmethod
    def ledger_command(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        month: Optional[str],
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            month=month,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def command_rejected(
        command: str,
        reason: str,
        month: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="command",
            month=month,
            correlation_id=correlation_id,
            description=f"Command rejected: {command}",
            error_message=reason,
            details={"command": command},
            is_user_action=True,
        )

    @staticmethod
    def month_closed(
        month: str,
        expense_count: int,
        total_spent: float,
        merged: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = "merged into" if merged else "archived as"
        return AuditEvent(
            event_type=AuditEventType.MONTH_CLOSED,
            entity_type="month",
            month=month,
            correlation_id=correlation_id,
            description=f"Active month {verb} {month}",
            details={
                "expense_count": expense_count,
                "total_spent": total_spent,
                "merged": merged,
            },
            is_user_action=True,
        )

    @staticmethod
    def recurring_propagated(
        expense_description: str,
        origin_month: str,
        marked: bool,
        touched_months: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        action = "added to" if marked else "removed from"
        return AuditEvent(
            event_type=AuditEventType.RECURRING_PROPAGATED,
            entity_type="expense",
            month=origin_month,
            correlation_id=correlation_id,
            description=(
                f"Recurring '{expense_description}' {action} "
                f"{len(touched_months)} month(s)"
            ),
            details={
                "origin_month": origin_month,
                "marked": marked,
                "touched_months": touched_months,
            },
        )

    @staticmethod
    def goals_recomputed(
        available_pool: float,
        allocations: dict[str, float],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOALS_RECOMPUTED,
            severity=AuditSeverity.DEBUG,
            entity_type="long_term_goal",
            correlation_id=correlation_id,
            description=f"Long-term goals funded from pool of {available_pool:.2f}",
            details={
                "available_pool": available_pool,
                "allocations": allocations,
            },
        )

    @staticmethod
    def save_failed(
        user_key: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="ledger",
            entity_id=user_key,
            correlation_id=correlation_id,
            description="Ledger save failed; changes kept in memory",
            error_message=error_message,
        )

    @staticmethod
    def receipt_delete_failed(
        reference: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_DELETE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            correlation_id=correlation_id,
            description="Receipt could not be deleted",
            error_message=error_message,
            details={"reference": reference},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
