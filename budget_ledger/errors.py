"""
Ledger Exceptions

DESIGN DECISION: No ledger condition is fatal to the process.
- ValidationError / NotFoundError: the command is rejected, nothing changes.
- PersistenceError: a warning; in-memory state remains the source of truth.
- NonFatalCollaboratorError: logged; the ledger mutation still stands.
"""

from typing import Optional

from budget_ledger.models.ledger import ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Command input was rejected; the caller must re-prompt."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ValidationError":
        message = "; ".join(issue.message for issue in issues)
        return cls(message, issues)


class NotFoundError(LedgerError):
    """A month, category, record or goal id does not exist."""

    def __init__(self, entity_type: str, entity_id: str, month: Optional[str] = None):
        where = f" in {month}" if month else ""
        super().__init__(f"{entity_type} not found{where}: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.month = month


class UnknownCategoryError(ValidationError, NotFoundError):
    """A record references a category id the month does not have."""

    def __init__(self, category_id: str, month: str):
        issue = ValidationIssue(
            field="category_id",
            issue_type="unknown_reference",
            message=f"Category {category_id} does not exist in {month}",
        )
        ValidationError.__init__(self, issue.message, [issue])
        self.entity_type = "Category"
        self.entity_id = category_id
        self.month = month


class PersistenceError(LedgerError):
    """Durable read or write failed."""
    pass


class NonFatalCollaboratorError(LedgerError):
    """A collaborator (e.g. receipt storage) failed without affecting the ledger."""
    pass
