"""
Command Input Validation

DESIGN DECISION: Every ledger command validates its input BEFORE touching
state. Checks are split the same way for every record type:

FIELD CHECKS:
- Amounts are finite, strictly positive (or non-negative where allowed)
  and below the configured sanity ceiling
- Descriptions and names are non-empty after trimming
- Month keys are real YYYY-MM months

CROSS-RECORD CHECKS:
- Savings goals cannot exceed the month's total budget
- Category references are checked by the month store against the month

IMPORTANT: Validation NEVER silently fixes input. Whitespace trimming is
the only normalisation; everything else is reported back to the caller.
"""

import math
import re
from typing import Optional

from budget_ledger.config import LedgerSettings, get_settings
from budget_ledger.errors import ValidationError
from budget_ledger.models.ledger import (
    CATEGORY_NAME_MAX_LENGTH,
    GOAL_NAME_MAX_LENGTH,
    MONTH_KEY_PATTERN,
    ValidationIssue,
)


class LedgerValidator:
    """
    Validates command input for the ledger engine.

    Each `check_*` method returns a list of issues; each `validate_*`
    method raises ValidationError if any error-level issue was found and
    otherwise returns the normalised values.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    # -------------------------------------------------------------------------
    # Field checks
    # -------------------------------------------------------------------------

    def check_amount(
        self,
        amount: float,
        field: str = "amount",
        allow_zero: bool = False,
    ) -> list[ValidationIssue]:
        issues = []

        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_type",
                message=f"{field} must be a number",
            ))
            return issues

        if not math.isfinite(amount):
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message=f"{field} must be a finite number",
            ))
        elif amount < 0 or (amount == 0 and not allow_zero):
            bound = "zero or more" if allow_zero else "greater than zero"
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message=f"{field} must be {bound}",
            ))
        elif amount > self._settings.max_amount:
            issues.append(ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"{field} exceeds the maximum of {self._settings.max_amount:,.2f}",
            ))

        return issues

    def check_text(
        self,
        value: Optional[str],
        field: str = "description",
        max_length: Optional[int] = None,
    ) -> list[ValidationIssue]:
        limit = max_length or self._settings.max_description_length
        if value is None or not value.strip():
            return [ValidationIssue(
                field=field,
                issue_type="missing",
                message=f"{field} cannot be empty",
            )]
        if len(value.strip()) > limit:
            return [ValidationIssue(
                field=field,
                issue_type="too_long",
                message=f"{field} is longer than {limit} characters",
            )]
        return []

    def check_month_key(self, key: str, field: str = "month") -> list[ValidationIssue]:
        if isinstance(key, str) and re.match(MONTH_KEY_PATTERN, key):
            return []
        return [ValidationIssue(
            field=field,
            issue_type="invalid_format",
            message=f"{field} must be a month in YYYY-MM format, got {key!r}",
        )]

    # -------------------------------------------------------------------------
    # Record validation
    # -------------------------------------------------------------------------

    def validate_month_key(self, key: str, field: str = "month") -> str:
        self._raise_on_errors(self.check_month_key(key, field))
        return key

    def validate_money_record(self, amount: float, description: str) -> tuple[float, str]:
        """
        Validate an expense, reimbursement or income entry.

        Returns (amount, trimmed_description). The amount is not rounded.
        """
        issues = self.check_amount(amount) + self.check_text(description)
        self._raise_on_errors(issues)
        return float(amount), description.strip()

    def validate_category(self, name: str, allocated: float) -> tuple[str, float]:
        issues = (
            self.check_text(name, field="name", max_length=CATEGORY_NAME_MAX_LENGTH)
            + self.check_amount(allocated, field="allocated", allow_zero=True)
        )
        self._raise_on_errors(issues)
        return name.strip(), float(allocated)

    def validate_savings_goal(self, goal: float, budget_total: float) -> float:
        issues = self.check_amount(goal, field="goal", allow_zero=True)
        if not issues and goal > budget_total:
            issues.append(ValidationIssue(
                field="goal",
                issue_type="exceeds_budget",
                message=(
                    f"Savings goal {goal:,.2f} cannot exceed the monthly "
                    f"budget of {budget_total:,.2f}"
                ),
            ))
        self._raise_on_errors(issues)
        return float(goal)

    def validate_long_term_goal(self, name: str, target_amount: float) -> tuple[str, float]:
        issues = (
            self.check_text(name, field="name", max_length=GOAL_NAME_MAX_LENGTH)
            + self.check_amount(target_amount, field="target_amount")
        )
        self._raise_on_errors(issues)
        return name.strip(), float(target_amount)

    def validate_salary(self, amount: float) -> float:
        """Salary must be a finite number; negative values are clamped to zero."""
        if isinstance(amount, (int, float)) and not isinstance(amount, bool) and amount < 0:
            amount = 0.0
        self._raise_on_errors(self.check_amount(amount, field="salary_income", allow_zero=True))
        return float(amount)

    def _raise_on_errors(self, issues: list[ValidationIssue]) -> None:
        if any(issue.severity == "error" for issue in issues):
            raise ValidationError.from_issues(issues)

    def get_user_friendly_summary(self, error: ValidationError) -> str:
        """
        Generate a user-friendly summary of a rejected command.

        Written for non-technical users.
        """
        if not error.issues:
            return str(error)

        lines = ["Please fix the following:"]
        for issue in error.issues:
            lines.append(f"  • {issue.message}")
        return "\n".join(lines)
