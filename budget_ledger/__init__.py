"""
Budget Ledger - Source Package

A personal budgeting ledger engine: monthly categories, expenses,
reimbursements, income, archived months and savings goals.

DESIGN PRINCIPLES:
1. Spend figures are derived, never trusted as stored state
2. Every command is all-or-nothing
3. One owner mutates the ledger; everyone else reads snapshots
4. Every state change is auditable
5. Storage and receipt backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Ledger Team"
