"""
Tests for ledger persistence backends.

Google Sheets is never contacted: the client is a MagicMock handing out
a small in-memory worksheet.
"""

import asyncio
import json
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from budget_ledger.models.audit import AuditEventBuilder, AuditEventType
from budget_ledger.models.ledger import (
    Category,
    Expense,
    LedgerState,
    LongTermGoal,
    MonthPeriod,
)
from budget_ledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsPersistence,
    InMemoryAuditStorage,
    InMemoryPersistence,
    StorageError,
    serialize_state,
    strip_unset,
)
from budget_ledger.services.storage.google_sheets import LEDGER_COLUMNS, split_document


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the storage classes."""

    def __init__(self, header: list[str]):
        self.rows = [list(header)]
        self.updates = []

    def get_all_values(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update(self, range_name, values, value_input_option=None):
        self.updates.append(range_name)
        row_number = int(range_name.split(":")[0][1:])
        self.rows[row_number - 1] = [str(v) for v in values[0]]


def _ledger() -> LedgerState:
    return LedgerState(
        salary_income=1000,
        months=[MonthPeriod(
            month="2025-02",
            categories=[Category(id="food", name="Food", allocated=300)],
            expenses=[Expense(category_id="food", amount=12.5, description="Lunch")],
        )],
        long_term_goals=[LongTermGoal(name="Car", target_amount=5000)],
    )


class TestSerialization:
    """Unset optional fields never reach storage."""

    def test_strip_unset_is_recursive(self):
        document = {"a": None, "b": {"c": None, "d": 1}, "e": [{"f": None, "g": 2}], "h": 0}
        assert strip_unset(document) == {"b": {"d": 1}, "e": [{"g": 2}], "h": 0}

    def test_serialize_state_drops_nulls(self):
        document = serialize_state(_ledger())
        expense = document["months"][0]["expenses"][0]
        assert "receipt" not in expense
        assert "budget_total" not in document["months"][0]
        assert "notes" not in document["long_term_goals"][0]
        assert json.dumps(document)

    def test_serialized_document_loads_back(self):
        state = _ledger()
        restored = LedgerState.model_validate(serialize_state(state))
        assert restored.same_content(state)


class TestInMemoryPersistence:
    def test_save_and_load(self):
        persistence = InMemoryPersistence()
        state = _ledger()

        assert asyncio.run(persistence.save("u1", state))
        loaded = asyncio.run(persistence.load("u1"))

        assert loaded is not state
        assert loaded.same_content(state)
        assert persistence.save_count == 1
        assert asyncio.run(persistence.load("nobody")) is None

    def test_failing_save(self):
        persistence = InMemoryPersistence()
        persistence.fail_saves = True
        with pytest.raises(StorageError):
            asyncio.run(persistence.save("u1", _ledger()))
        assert persistence.document("u1") is None

    def test_subscribers_notified(self):
        persistence = InMemoryPersistence()
        seen = []
        unsubscribe = persistence.subscribe("u1", seen.append)

        persistence.put_remote("u1", _ledger())
        unsubscribe()
        persistence.put_remote("u1", LedgerState())

        assert len(seen) == 1
        assert seen[0].salary_income == 1000

    def test_legacy_document_is_migrated_on_load(self):
        persistence = InMemoryPersistence()
        persistence.put_document("u1", {"totalBudget": 800, "categories": [], "expenses": []})
        loaded = asyncio.run(persistence.load("u1"))
        assert loaded.salary_income == 800


class TestInMemoryAuditStorage:
    def test_queries(self):
        storage = InMemoryAuditStorage()
        correlation_id = uuid4()
        event = AuditEventBuilder.month_closed("2025-01", 1, 10.0, False, correlation_id)
        other = AuditEventBuilder.month_closed("2024-12", 1, 10.0, False)
        asyncio.run(storage.append_event(event))
        asyncio.run(storage.append_event(other))

        assert asyncio.run(storage.get_events_by_correlation_id(correlation_id)) == [event]
        assert len(asyncio.run(storage.get_recent_events(limit=1))) == 1


class TestGoogleSheetsPersistence:
    """Tests for the row layout of the Sheets backend."""

    @pytest.fixture
    def sheet(self) -> FakeWorksheet:
        return FakeWorksheet(LEDGER_COLUMNS)

    @pytest.fixture
    def persistence(self, sheet) -> GoogleSheetsPersistence:
        client = MagicMock()
        client.get_ledger_sheet.return_value = sheet
        return GoogleSheetsPersistence(client=client, poll_interval=0.01)

    def test_save_appends_then_updates(self, sheet, persistence):
        state = _ledger()
        asyncio.run(persistence.save("u1", state))
        asyncio.run(persistence.save("u2", LedgerState()))

        assert [row[0] for row in sheet.rows[1:]] == ["u1", "u2"]
        assert sheet.rows[1][2] == "1"

        state.salary_income = 2000
        asyncio.run(persistence.save("u1", state))

        assert sheet.updates == ["A2:D2"]
        loaded = asyncio.run(persistence.load("u1"))
        assert loaded.salary_income == 2000
        assert loaded.same_content(state)

    def test_load_missing_user(self, persistence):
        assert asyncio.run(persistence.load("nobody")) is None

    def test_load_chunked_row(self, sheet, persistence):
        state = _ledger()
        document = json.dumps(serialize_state(state))
        chunks = split_document(document, 40)
        sheet.rows.append(["u1", state.updated_at.isoformat(), str(len(chunks)), *chunks])

        loaded = asyncio.run(persistence.load("u1"))

        assert len(chunks) > 1
        assert loaded.same_content(state)

    def test_corrupt_row(self, sheet, persistence):
        sheet.rows.append(["u1", "", "1", "{not json"])
        with pytest.raises(StorageError):
            asyncio.run(persistence.load("u1"))

    def test_malformed_row(self, sheet, persistence):
        sheet.rows.append(["u1", ""])
        with pytest.raises(StorageError):
            asyncio.run(persistence.load("u1"))

    def test_subscribe_reports_changes(self, sheet, persistence):
        async def scenario():
            seen = []
            await persistence.save("u1", _ledger())
            unsubscribe = persistence.subscribe("u1", seen.append)
            await asyncio.sleep(0.05)
            unsubscribe()
            return seen

        seen = asyncio.run(scenario())
        assert len(seen) == 1


class TestSplitDocument:
    def test_split(self):
        assert split_document("abcdefg", 3) == ["abc", "def", "g"]
        assert split_document("", 3) == [""]
        assert "".join(split_document("x" * 100_000)) == "x" * 100_000


class TestGoogleSheetsAuditStorage:
    def test_append_and_read_back(self):
        sheet = FakeWorksheet(["event_id"])
        client = MagicMock()
        client.get_audit_sheet.return_value = sheet
        storage = GoogleSheetsAuditStorage(client=client)
        correlation_id = uuid4()
        event = AuditEventBuilder.recurring_propagated(
            "Netflix", "2024-11", True, ["2024-12"], correlation_id,
        )

        assert asyncio.run(storage.append_event(event))
        sheet.rows.append(["not-a-uuid", "x"])

        events = asyncio.run(storage.get_events_by_correlation_id(correlation_id))
        assert len(events) == 1
        restored = events[0]
        assert restored.event_type == AuditEventType.RECURRING_PROPAGATED
        assert restored.month == "2024-11"
        assert restored.details["touched_months"] == ["2024-12"]

    def test_append_failure_returns_false(self):
        client = MagicMock()
        client.get_audit_sheet.side_effect = RuntimeError("quota")
        storage = GoogleSheetsAuditStorage(client=client)
        event = AuditEventBuilder.system_error("x", "y")
        assert asyncio.run(storage.append_event(event)) is False
