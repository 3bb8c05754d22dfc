"""
Shared fixtures for the Budget Ledger tests.

Test strategy:
1. Unit tests for the engine components (pure, in-memory)
2. Service and sync tests against in-memory backends
3. No real API calls in tests (Sheets and Cloudinary are mocked)
"""

from datetime import datetime, timezone

import pytest

from budget_ledger.audit import AuditLogger
from budget_ledger.config import LedgerSettings
from budget_ledger.engine.month_store import MonthStore
from budget_ledger.models.ledger import LedgerState
from budget_ledger.orchestrator import LedgerService
from budget_ledger.services.receipts import InMemoryReceiptStorage
from budget_ledger.services.storage import InMemoryAuditStorage
from budget_ledger.validation import LedgerValidator


class FixedClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, year: int, month: int, day: int = 15) -> None:
        self.now = datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FixedClock:
    """Current month is 2025-02."""
    return FixedClock(datetime(2025, 2, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def validator() -> LedgerValidator:
    return LedgerValidator(LedgerSettings())


@pytest.fixture
def state() -> LedgerState:
    return LedgerState(salary_income=1000.0)


@pytest.fixture
def store(state, validator, clock) -> MonthStore:
    return MonthStore(state, validator, clock)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def receipts() -> InMemoryReceiptStorage:
    return InMemoryReceiptStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def service(clock, validator, audit_logger, receipts) -> LedgerService:
    return LedgerService(
        state=LedgerState(salary_income=1000.0),
        clock=clock,
        validator=validator,
        audit_logger=audit_logger,
        receipt_storage=receipts,
    )
