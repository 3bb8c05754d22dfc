"""
Core Data Models for Budget Ledger

These models define the schemas for all ledger data. They are designed to:
1. Enforce shape and simple value constraints at runtime
2. Be serializable for persistence (one JSON document per user)
3. Keep derived figures clearly marked as derived

DESIGN DECISION: Amounts are plain floats in currency units and are
never rounded on the way in. Rounding is a display concern.

DESIGN DECISION: `Category.spent`, `MonthlySavingsGoal.actual` and
`LongTermGoal.current_amount` are DERIVED. They are stored so a snapshot
is self-describing, but the engine recomputes them after every command
and never reads them as a source of truth.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


MONTH_KEY_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"

# Text limits shared with LedgerValidator
CATEGORY_NAME_MAX_LENGTH = 100
GOAL_NAME_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 500

# Palette assigned to categories by position
CATEGORY_COLORS = (
    "#3B82F6",  # blue
    "#10B981",  # green
    "#F59E0B",  # amber
    "#EF4444",  # red
    "#8B5CF6",  # purple
    "#EC4899",  # pink
    "#06B6D4",  # cyan
    "#F97316",  # orange
    "#6366F1",  # indigo
    "#14B8A6",  # teal
)


def new_id() -> str:
    """Generate a unique record id."""
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def color_for_position(position: int) -> str:
    """Palette colour for the category at `position` in a month."""
    return CATEGORY_COLORS[position % len(CATEGORY_COLORS)]


class ReorderDirection(str, Enum):
    """Direction for swap-and-renumber reordering."""
    UP = "up"
    DOWN = "down"


# =============================================================================
# MONTH CONTENTS
# =============================================================================

class Category(BaseModel):
    """
    A spending category inside one month.

    Categories are owned by a single MonthPeriod. A new month copies the
    previous month's categories (same ids) with spend reset to zero.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(
        ...,
        min_length=1,
        max_length=CATEGORY_NAME_MAX_LENGTH,
        description="Category display name"
    )
    allocated: float = Field(
        default=0.0,
        ge=0,
        description="Amount budgeted for the month"
    )
    spent: float = Field(
        default=0.0,
        ge=0,
        description="Derived: expenses minus reimbursements, floored at zero"
    )
    color: str = Field(
        default=CATEGORY_COLORS[0],
        description="Display colour"
    )
    order: int = Field(
        default=0,
        ge=0,
        description="Dense display rank within the month"
    )


class Expense(BaseModel):
    """
    A single expense entry.

    Recurring expenses are distinct records per month; they are matched
    across months by (description, category_id, amount), never by id.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    category_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, description="Amount in currency units")
    description: str = Field(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    timestamp: datetime = Field(default_factory=utcnow)
    receipt: Optional[str] = Field(
        default=None,
        description="Opaque receipt reference owned by the receipt storage"
    )
    is_recurring: bool = False

    @property
    def recurrence_key(self) -> tuple[str, str, float]:
        """Triple used to recognise the same recurring expense across months."""
        return (self.description, self.category_id, self.amount)


class Reimbursement(BaseModel):
    """Money returned against a category; subtracts from its spend."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    category_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    timestamp: datetime = Field(default_factory=utcnow)
    receipt: Optional[str] = None


class AdditionalIncome(BaseModel):
    """Income received on top of the salary figure for one month."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    timestamp: datetime = Field(default_factory=utcnow)


class MonthPeriod(BaseModel):
    """
    The full ledger of one calendar month, current or archived.

    Invariant: every expense and reimbursement references a category in
    this month's own `categories` list.

    `budget_total`, `total_spent` and `archived_at` are only set once the
    month has been closed through the archive merger.
    """

    id: str = Field(default_factory=new_id)
    month: str = Field(
        ...,
        pattern=MONTH_KEY_PATTERN,
        description="Month key, format YYYY-MM"
    )
    categories: list[Category] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    reimbursements: list[Reimbursement] = Field(default_factory=list)
    additional_income: list[AdditionalIncome] = Field(default_factory=list)
    salary_income: float = Field(default=0.0, ge=0)
    created_date: datetime = Field(default_factory=utcnow)

    # Archive metadata
    budget_total: Optional[float] = Field(default=None, ge=0)
    total_spent: Optional[float] = Field(default=None, ge=0)
    archived_at: Optional[datetime] = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def income_total(self) -> float:
        """Salary plus additional income."""
        return self.salary_income + sum(inc.amount for inc in self.additional_income)

    @property
    def total_budget(self) -> float:
        """Stored budget of a closed month, otherwise live income."""
        if self.budget_total is not None:
            return self.budget_total
        return self.income_total

    @property
    def spent_total(self) -> float:
        """Stored spend of a closed month, otherwise the sum of category spend."""
        if self.total_spent is not None:
            return self.total_spent
        return sum(cat.spent for cat in self.categories)

    def find_category(self, category_id: str) -> Optional[Category]:
        return next((c for c in self.categories if c.id == category_id), None)

    def sorted_categories(self) -> list[Category]:
        return sorted(self.categories, key=lambda c: c.order)


# =============================================================================
# SAVINGS
# =============================================================================

class MonthlySavingsGoal(BaseModel):
    """Savings target for one month; `actual` is derived."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    month: str = Field(..., pattern=MONTH_KEY_PATTERN)
    goal: float = Field(default=0.0, ge=0)
    actual: float = Field(
        default=0.0,
        ge=0,
        description="Derived: budget total minus spend, floored at zero"
    )
    notes: Optional[str] = Field(default=None, max_length=1000)


class LongTermGoal(BaseModel):
    """
    A long-term savings goal funded by the waterfall allocator.

    Goals are stacked: lower `order` is funded first, and a goal only
    receives money once every goal before it is fully funded.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=GOAL_NAME_MAX_LENGTH)
    target_amount: float = Field(..., gt=0)
    current_amount: float = Field(
        default=0.0,
        ge=0,
        description="Derived by the waterfall allocator"
    )
    created_date: datetime = Field(default_factory=utcnow)
    order: int = Field(default=0, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


# =============================================================================
# WHOLE LEDGER
# =============================================================================

class LedgerState(BaseModel):
    """
    Everything the ledger knows about one user.

    This is the unit of persistence: the storage backend writes and
    reads exactly one LedgerState per user key.
    """

    salary_income: float = Field(
        default=0.0,
        ge=0,
        description="Salary applied to newly created months"
    )
    months: list[MonthPeriod] = Field(default_factory=list)
    savings: list[MonthlySavingsGoal] = Field(default_factory=list)
    long_term_goals: list[LongTermGoal] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('months')
    @classmethod
    def one_period_per_month(cls, v: list[MonthPeriod]) -> list[MonthPeriod]:
        """Reject snapshots holding two periods for the same month key."""
        seen = set()
        for period in v:
            if period.month in seen:
                raise ValueError(f"Duplicate month period for {period.month}")
            seen.add(period.month)
        return v

    def get_month(self, month: str) -> Optional[MonthPeriod]:
        return next((m for m in self.months if m.month == month), None)

    def chronological_months(self) -> list[MonthPeriod]:
        """Months oldest first; month keys sort lexicographically."""
        return sorted(self.months, key=lambda m: m.month)

    def same_content(self, other: "LedgerState") -> bool:
        """Compare ledger content, ignoring the `updated_at` stamp."""
        exclude = {"updated_at"}
        return self.model_dump(exclude=exclude) == other.model_dump(exclude=exclude)


class CategoryImportItem(BaseModel):
    """
    One row handed over by the category import collaborator.

    The collaborator parses spreadsheets or pasted text; the engine only
    sees these pairs.
    """
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    allocated_amount: float = Field(..., ge=0, alias="allocatedAmount")


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem found with command input."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unknown_reference')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
        description="Issue severity"
    )
