"""Command input validation package."""

from budget_ledger.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
