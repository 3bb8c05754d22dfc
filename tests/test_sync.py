"""
Tests for debounced persistence and remote update handling.

Each test drives one event loop through `asyncio.run` against the
in-memory backend, with a short debounce window.
"""

import asyncio

from budget_ledger.errors import PersistenceError
from budget_ledger.models.ledger import LedgerState, MonthPeriod
from budget_ledger.orchestrator import ORIGIN_REMOTE
from budget_ledger.services.storage import InMemoryPersistence, StorageError
from budget_ledger.sync import LedgerSync

DEBOUNCE = 0.05
SETTLE = 0.2


class UnreadablePersistence(InMemoryPersistence):
    async def load(self, user_key):
        raise StorageError("backend offline")


def _sync(service, persistence, **kwargs) -> LedgerSync:
    return LedgerSync(service, persistence, user_key="u1", debounce_seconds=DEBOUNCE, **kwargs)


class TestStartup:
    """Tests for loading and the first save."""

    def test_start_creates_and_saves_current_month(self, service):
        persistence = InMemoryPersistence()

        async def scenario():
            sync = _sync(service, persistence)
            snapshot = await sync.start()
            await asyncio.sleep(SETTLE)
            await sync.stop()
            return snapshot

        snapshot = asyncio.run(scenario())

        assert snapshot.get_month("2025-02") is not None
        assert persistence.save_count == 1
        assert persistence.document("u1")["months"][0]["month"] == "2025-02"

    def test_start_loads_stored_ledger(self, service):
        persistence = InMemoryPersistence()
        persistence.put_remote("u1", LedgerState(
            salary_income=3000,
            months=[MonthPeriod(month="2025-02", salary_income=3000)],
        ))

        async def scenario():
            sync = _sync(service, persistence)
            await sync.start()
            await asyncio.sleep(SETTLE)
            await sync.stop()

        asyncio.run(scenario())

        assert service.snapshot.salary_income == 3000
        assert persistence.save_count == 0

    def test_start_migrates_legacy_document(self, service):
        persistence = InMemoryPersistence()
        persistence.put_document("u1", {
            "totalBudget": 1800,
            "categories": [{"id": "food", "name": "Food", "allocated": 200, "spent": 0}],
            "expenses": [],
        })

        async def scenario():
            sync = _sync(service, persistence)
            await sync.start()
            await sync.stop()

        asyncio.run(scenario())

        migrated = [m for m in service.snapshot.months if m.find_category("food")]
        assert len(migrated) == 1
        assert migrated[0].find_category("food").allocated == 200
        assert service.snapshot.salary_income == 1800

    def test_load_failure_is_a_warning(self, service):
        warnings = []

        async def scenario():
            sync = _sync(service, UnreadablePersistence(), on_warning=warnings.append)
            await sync.start()
            await sync.stop()
            return sync

        sync = asyncio.run(scenario())

        assert isinstance(warnings[0], PersistenceError)
        assert isinstance(sync.last_error, PersistenceError)
        assert service.get_month("2025-02") is not None


class TestOutbound:
    """Tests for debounced, coalesced saves."""

    def test_burst_of_edits_is_one_write(self, service):
        persistence = InMemoryPersistence()

        async def scenario():
            sync = _sync(service, persistence)
            await sync.start()
            await asyncio.sleep(SETTLE)
            for name in ("A", "B", "C", "D", "E"):
                service.add_category("2025-02", name, 10)
            assert persistence.save_count == 1
            await asyncio.sleep(SETTLE)
            await sync.stop()
            return sync

        sync = asyncio.run(scenario())

        assert persistence.save_count == 2
        assert sync.save_count == 2
        stored = persistence.document("u1")["months"][0]["categories"]
        assert [c["name"] for c in stored] == ["A", "B", "C", "D", "E"]

    def test_stop_flushes_pending_edits(self, service):
        persistence = InMemoryPersistence()

        async def scenario():
            sync = _sync(service, persistence)
            await sync.start()
            service.add_category("2025-02", "Late", 10)
            await sync.stop()
            return sync

        sync = asyncio.run(scenario())

        assert not sync.has_unsaved_changes
        stored = persistence.document("u1")["months"][0]["categories"]
        assert [c["name"] for c in stored] == ["Late"]

    def test_failed_save_keeps_memory_and_retries(self, service, audit_logger, audit_storage):
        persistence = InMemoryPersistence()
        warnings = []

        async def scenario():
            sync = _sync(service, persistence, on_warning=warnings.append, audit_logger=audit_logger)
            await sync.start()
            await asyncio.sleep(SETTLE)

            persistence.fail_saves = True
            service.add_category("2025-02", "Food", 10)
            await asyncio.sleep(SETTLE)
            failed = (sync.has_unsaved_changes, sync.last_error)

            persistence.fail_saves = False
            retried = await sync.retry()
            await sync.stop()
            return failed, retried, sync

        (unsaved, error), retried, sync = asyncio.run(scenario())

        assert unsaved
        assert isinstance(error, StorageError)
        assert len(warnings) == 1
        assert retried
        assert sync.last_error is None
        assert not sync.has_unsaved_changes
        stored = persistence.document("u1")["months"][0]["categories"]
        assert [c["name"] for c in stored] == ["Food"]
        assert "save_failed" in [e.event_type.value for e in audit_storage.events]

    def test_service_audit_log_flushed_by_default(self, service, audit_logger, audit_storage):
        persistence = InMemoryPersistence()

        async def scenario():
            sync = _sync(service, persistence)
            await sync.start()
            service.add_category("2025-02", "Food", 10)
            await sync.stop()

        asyncio.run(scenario())

        assert audit_logger.pending == []
        stored = [e.event_type.value for e in audit_storage.events]
        assert "month_created" in stored
        assert "category_added" in stored

    def test_successful_save_flushes_audit_log(self, service, audit_logger, audit_storage):
        persistence = InMemoryPersistence()

        async def scenario():
            sync = _sync(service, persistence, audit_logger=audit_logger)
            await sync.start()
            await asyncio.sleep(SETTLE)
            await sync.stop()

        asyncio.run(scenario())

        assert audit_logger.pending == []
        assert "month_created" in [e.event_type.value for e in audit_storage.events]


class TestInbound:
    """Tests for echo suppression and remote updates."""

    def test_own_writes_are_not_reapplied(self, service):
        persistence = InMemoryPersistence()
        origins = []
        service.add_listener(lambda snap, origin: origins.append(origin))

        async def scenario():
            sync = _sync(service, persistence)
            await sync.start()
            service.add_category("2025-02", "Food", 10)
            await asyncio.sleep(SETTLE)
            await sync.stop()

        asyncio.run(scenario())

        assert persistence.save_count == 1
        assert ORIGIN_REMOTE not in origins

    def test_remote_update_replaces_state_without_write_back(self, service):
        persistence = InMemoryPersistence()
        origins = []
        service.add_listener(lambda snap, origin: origins.append(origin))

        async def scenario():
            sync = _sync(service, persistence)
            await sync.start()
            await asyncio.sleep(SETTLE)
            remote = LedgerState(
                salary_income=4200,
                months=[MonthPeriod(month="2025-02", salary_income=4200)],
            )
            persistence.put_remote("u1", remote)
            await asyncio.sleep(SETTLE)
            await sync.stop()

        asyncio.run(scenario())

        assert service.snapshot.salary_income == 4200
        assert origins[-1] == ORIGIN_REMOTE
        assert persistence.save_count == 1

    def test_unchanged_remote_is_ignored(self, service):
        persistence = InMemoryPersistence()
        origins = []

        async def scenario():
            sync = _sync(service, persistence)
            await sync.start()
            await asyncio.sleep(SETTLE)
            service.add_listener(lambda snap, origin: origins.append(origin))
            persistence.put_remote("u1", service.snapshot)
            await sync.stop()

        asyncio.run(scenario())

        assert origins == []

    def test_remote_update_discards_unsaved_local_edits(self, service):
        persistence = InMemoryPersistence()
        warnings = []

        async def scenario():
            sync = _sync(service, persistence, on_warning=warnings.append)
            await sync.start()
            await asyncio.sleep(SETTLE)

            service.set_salary_income(2000)
            persistence.put_remote("u1", LedgerState(
                salary_income=4321,
                months=[MonthPeriod(month="2025-02", salary_income=4321)],
            ))
            unsaved = sync.has_unsaved_changes
            await asyncio.sleep(SETTLE)
            await sync.stop()
            return unsaved

        unsaved = asyncio.run(scenario())

        assert not unsaved
        assert service.snapshot.salary_income == 4321
        assert persistence.document("u1")["salary_income"] == 4321
        assert persistence.save_count == 1
        assert warnings == []
