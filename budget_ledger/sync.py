"""
Ledger Sync

Keeps a LedgerService and a persistence backend in step.

OUTBOUND: every committed snapshot marks the ledger dirty. A single
background task waits until no new snapshot has arrived for the debounce
window, then writes the newest one. A burst of edits becomes one write.

INBOUND: the backend reports every stored change, including the ones
this process wrote. A remote update is an echo, and ignored, when it
arrives while a save is in flight or equals the last snapshot written.
Anything else replaces the service's ledger wholesale (last writer wins)
and is not written back. Local edits not yet saved when such an update
arrives are discarded with it, so the device and the store agree.

AUDIT: after each successful save the service's audit queue is flushed,
unless another AuditLogger is passed in.

FAILURE: a failed save is a warning, not an error. The in-memory ledger
stays authoritative; the write is retried on the next edit or `retry()`.
"""

import asyncio
from typing import Callable, Optional

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.config import get_settings
from budget_ledger.errors import PersistenceError
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.models.ledger import LedgerState
from budget_ledger.orchestrator import ORIGIN_COMMAND, ORIGIN_LOAD, ORIGIN_REMOTE, LedgerService
from budget_ledger.services.storage import PersistenceInterface

logger = structlog.get_logger(__name__)

WarningCallback = Callable[[Exception], None]


class LedgerSync:
    """
    Debounced, coalesced persistence for one user's ledger.

    Usage:
        sync = LedgerSync(service, GoogleSheetsPersistence(), user_key="alice")
        await sync.start()
        ...                 # issue commands on the service
        await sync.stop()   # flushes the last edits
    """

    def __init__(
        self,
        service: LedgerService,
        persistence: PersistenceInterface,
        user_key: Optional[str] = None,
        debounce_seconds: Optional[float] = None,
        on_warning: Optional[WarningCallback] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        settings = get_settings().ledger
        self._service = service
        self._persistence = persistence
        self._user_key = user_key or settings.default_user_key
        self._debounce = (
            settings.save_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._on_warning = on_warning
        self._audit_logger = audit_logger or service.audit_logger

        self._pending: Optional[LedgerState] = None
        self._failed: Optional[LedgerState] = None
        self._last_saved: Optional[LedgerState] = None
        self._wake: Optional[asyncio.Event] = None
        self._save_lock: Optional[asyncio.Lock] = None
        self._worker: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

        self.saving = False
        self.save_count = 0
        self.last_error: Optional[Exception] = None

    @property
    def user_key(self) -> str:
        return self._user_key

    @property
    def has_unsaved_changes(self) -> bool:
        return self._pending is not None or self._failed is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> LedgerState:
        """
        Load the stored ledger, start watching for remote changes, and make
        sure the current month exists.

        A failed load is reported as a warning; the service then keeps the
        ledger it already had.

        Returns:
            The service snapshot after start-up
        """
        self._wake = asyncio.Event()
        self._save_lock = asyncio.Lock()

        try:
            loaded = await self._persistence.load(self._user_key)
        except PersistenceError as e:
            self._warn("ledger_load_failed", e)
            loaded = None

        if loaded is not None:
            self._last_saved = loaded
            self._service.replace_state(loaded, ORIGIN_LOAD)

        self._service.add_listener(self._on_snapshot)
        self._unsubscribe = self._persistence.subscribe(
            self._user_key, self._on_remote, self._on_remote_error,
        )
        self._worker = asyncio.create_task(self._run())

        self._service.ensure_current_month()
        logger.info("ledger_sync_started", user_key=self._user_key, loaded=loaded is not None)
        return self._service.snapshot

    async def stop(self) -> None:
        """Flush outstanding edits, then stop watching and writing."""
        await self.flush()
        self._service.remove_listener(self._on_snapshot)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.info("ledger_sync_stopped", user_key=self._user_key)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def _on_snapshot(self, state: LedgerState, origin: str) -> None:
        if origin != ORIGIN_COMMAND:
            return
        self._pending = state
        self._failed = None
        if self._wake is not None:
            self._wake.set()

    async def _run(self) -> None:
        while True:
            await self._wake.wait()
            # Each new snapshot restarts the quiet period
            while True:
                self._wake.clear()
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self._debounce)
                except asyncio.TimeoutError:
                    break
            await self._write_pending()

    async def _write_pending(self) -> bool:
        async with self._save_lock:
            state, self._pending = self._pending, None
            if state is None:
                return True
            return await self._save(state)

    async def _save(self, state: LedgerState) -> bool:
        self.saving = True
        try:
            await self._persistence.save(self._user_key, state)
        except PersistenceError as e:
            self._failed = state
            self._warn("ledger_save_failed", e)
            self._audit_logger.log(AuditEventBuilder.save_failed(self._user_key, str(e)))
            return False
        finally:
            self.saving = False

        self._last_saved = state
        self.save_count += 1
        self.last_error = None
        logger.debug("ledger_saved", user_key=self._user_key, updated_at=state.updated_at.isoformat())

        await self._audit_logger.flush()
        return True

    async def flush(self) -> bool:
        """
        Write any unsaved edits now, skipping the debounce window.

        Returns:
            True if nothing is left unsaved
        """
        if self._save_lock is None:
            return True
        if self._pending is None and self._failed is not None:
            self._pending, self._failed = self._failed, None
        return await self._write_pending()

    async def retry(self) -> bool:
        """Retry a failed save with the current ledger."""
        if self._failed is None:
            return True
        self._failed = None
        self._pending = self._service.snapshot
        return await self._write_pending()

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def _on_remote(self, state: LedgerState) -> None:
        if self.saving:
            logger.debug("remote_echo_ignored", reason="save_in_flight")
            return
        if self._last_saved is not None and state.same_content(self._last_saved):
            logger.debug("remote_echo_ignored", reason="matches_last_save")
            return
        if state.same_content(self._service.snapshot):
            return

        if self._pending is not None or self._failed is not None:
            logger.warning("local_edits_superseded", user_key=self._user_key)
            self._pending = None
            self._failed = None
        logger.info("remote_update_applied", user_key=self._user_key)
        self._last_saved = state
        self._service.replace_state(state, ORIGIN_REMOTE)

    def _on_remote_error(self, error: Exception) -> None:
        self._warn("remote_subscription_failed", error)

    def _warn(self, event: str, error: Exception) -> None:
        self.last_error = error
        logger.warning(event, user_key=self._user_key, error=str(error))
        if self._on_warning is not None:
            self._on_warning(error)
