# engine.py
# Description: The host-facing bridge to the sync engine.
#
# `SyncEngine` wires the outbox, processor, status reporter, shutdown coordinator and
# scheduler together for one local store and one remote endpoint. Every collaborator is
# created here or passed in; nothing lives at module level, so tests can run several
# independent engines side by side.
#
# Imports
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
#
# 3rd-party Libraries
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from ..config import (
    get_client_id,
    get_default_sync_preferences,
    get_local_store_db_path,
    get_sync_api_settings,
    get_sync_engine_settings,
)
from ..DB.Local_Store_DB import LocalStoreDatabase
from ..DB.Records_Repository import RecordRepository
from ..sync_api.client import SyncAPIClient
from .connectivity import ConnectivityMonitor
from .models import (
    DEFAULT_RETRY_CEILING,
    ConflictDecision,
    EngineStatus,
    EntityKind,
    ManualSyncResult,
    OutboxEntry,
    OutboxOperation,
    RetryConnectionResult,
    ShutdownResult,
    SyncConfiguration,
    describe_changes,
)
from .outbox import OutboxStore
from .processor import LocalRecordSink, SyncProcessor
from .remote import RemoteEndpoint
from .scheduler import SyncScheduler
from .settings_store import SyncSettingsStore
from .shutdown import ProgressCallback, ShutdownCoordinator
from .status import StatusReporter
#
########################################################################################################################
#
# Functions:

class SyncEngine:
    def __init__(self, db: LocalStoreDatabase, remote: RemoteEndpoint, *,
                 outbox: Optional[OutboxStore] = None,
                 settings_store: Optional[SyncSettingsStore] = None,
                 sink: Optional[LocalRecordSink] = None,
                 default_config: Optional[SyncConfiguration] = None,
                 retry_ceiling: int = DEFAULT_RETRY_CEILING,
                 batch_size: int = 50,
                 retry_base_delay: float = 60.0,
                 push_timeout: float = 30.0,
                 probe_timeout: float = 10.0,
                 shutdown_timeout: float = 120.0,
                 purge_synced_after_days: int = 7,
                 pull_remote_changes: bool = True,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.remote = remote
        self.outbox = outbox or OutboxStore(db, retry_ceiling=retry_ceiling, clock=clock)
        self.settings_store = settings_store or SyncSettingsStore(db, defaults=default_config)
        self.records = RecordRepository(db, self.outbox)
        self.sink = sink or self.records
        self.connectivity = ConnectivityMonitor(remote, probe_timeout=probe_timeout, clock=clock)
        self.processor = SyncProcessor(
            self.outbox, remote, self.settings_store, self.sink, self.connectivity,
            push_timeout=push_timeout, retry_base_delay=retry_base_delay, batch_size=batch_size,
            purge_synced_after_days=purge_synced_after_days, pull_remote_changes=pull_remote_changes,
            clock=clock,
        )
        self.reporter = StatusReporter(self.outbox, self.processor, self.connectivity, self.settings_store)
        self.shutdown_coordinator = ShutdownCoordinator(
            self.processor, self.reporter, self.connectivity, self.settings_store, timeout_seconds=shutdown_timeout)
        self.scheduler = SyncScheduler(self.settings_store, self._scheduled_drain, self.processor.cancel_current)
        self._manual_sync_active = False

    # --- Bridge operations ---
    def enqueue(self, entity_kind: Union[str, EntityKind], entity_id: int,
                operation: Union[str, OutboxOperation], payload: Optional[Dict[str, Any]] = None) -> int:
        """Called by entity repositories inside their own mutation transaction."""
        return self.outbox.enqueue(entity_kind, entity_id, operation, payload)

    def get_status(self) -> EngineStatus:
        return self.reporter.get_status()

    async def trigger_manual_sync(self) -> ManualSyncResult:
        if self._manual_sync_active or self.processor.sync_in_progress:
            logger.info("Manual sync requested while a sync is running; nothing to do.")
            return ManualSyncResult(success=False, message="Sync already in progress")
        self._manual_sync_active = True
        try:
            if not await self.connectivity.probe():
                return ManualSyncResult(
                    success=False, message=f"Sync service unreachable: {self.connectivity.last_error}")
            result = await self.processor.drain(ignore_backoff=True)
        finally:
            self._manual_sync_active = False

        if result.skipped:
            return ManualSyncResult(success=False, message="Sync already in progress")
        success = result.failed_count == 0 and not result.cancelled
        if success:
            message = f"Synced {describe_changes(result.synced_count)}"
        else:
            message = f"Synced {describe_changes(result.synced_count)}, {result.failed_count} failed"
        if result.conflict_count:
            message += f", {result.conflict_count} conflict(s)"
        return ManualSyncResult(success=success, synced_count=result.synced_count,
                                failed_count=result.failed_count, message=message)

    async def perform_shutdown_sync(self, on_progress: Optional[ProgressCallback] = None) -> ShutdownResult:
        return await self.shutdown_coordinator.perform_shutdown_sync(on_progress)

    def update_sync_config(self, **changes: Any) -> SyncConfiguration:
        """Persists a partial settings change; the scheduler picks it up on its next loop."""
        updated = self.settings_store.update(**changes)
        if self.scheduler.running:
            self.scheduler.notify_config_changed()
        return updated

    async def retry_connection(self) -> RetryConnectionResult:
        if not await self.connectivity.probe():
            return RetryConnectionResult(
                success=False, message=f"Sync service still unreachable: {self.connectivity.last_error}")
        result = await self.processor.drain(ignore_backoff=True)
        if result.skipped:
            return RetryConnectionResult(success=True, message="Connected. A sync is already in progress.")
        message = f"Connected. Synced {describe_changes(result.synced_count)}"
        if result.failed_count:
            message += f", {result.failed_count} failed"
        return RetryConnectionResult(success=True, message=message + ".")

    # --- Manual recovery ---
    async def resolve_conflict(self, entry_id: int, decision: Union[str, ConflictDecision]) -> None:
        await self.processor.apply_user_decision(entry_id, decision)
        if ConflictDecision(decision) == ConflictDecision.ACCEPT_LOCAL and self.scheduler.running:
            self.scheduler.request_sync()

    def reset_failed(self, entry_id: Optional[int] = None) -> int:
        reset_count = self.outbox.reset_failed(entry_id)
        if reset_count and self.scheduler.running:
            self.scheduler.request_sync()
        return reset_count

    def discard_entry(self, entry_id: int) -> None:
        self.outbox.discard_entry(entry_id)

    def list_conflicts(self) -> List[OutboxEntry]:
        return self.outbox.list_awaiting_decision()

    def list_failed(self) -> List[OutboxEntry]:
        return self.outbox.list_failed()

    # --- Lifecycle ---
    async def start(self, initial_sync: bool = True) -> None:
        """Probes the remote, starts the periodic scheduler and queues a startup sync if possible."""
        reachable = await self.connectivity.probe()
        self.scheduler.start()
        config = self.settings_store.load()
        if initial_sync and reachable and config.auto_sync_enabled:
            pending = self.reporter.pending_count()
            if pending:
                logger.info(f"Startup: {pending} pending entries from a previous session; syncing now.")
            self.scheduler.request_sync()

    async def stop(self) -> None:
        await self.scheduler.stop()

    async def close(self) -> None:
        await self.stop()
        await self.remote.close()
        self.db.close_connection()

    async def _scheduled_drain(self):
        if not await self.connectivity.probe():
            logger.info("Skipping scheduled sync; sync service unreachable.")
            return None
        return await self.processor.drain()


def create_sync_engine(db_path: Optional[Union[str, Path]] = None,
                       remote: Optional[RemoteEndpoint] = None) -> SyncEngine:
    """Builds an engine from the TOML configuration (see `config.py`)."""
    db = LocalStoreDatabase(db_path or get_local_store_db_path(), client_id=get_client_id())
    if remote is None:
        api_settings = get_sync_api_settings()
        remote = SyncAPIClient(api_settings["base_url"], token=api_settings["token"],
                               timeout=api_settings["timeout"], api_path=api_settings["api_path"])
    try:
        defaults = SyncConfiguration(**get_default_sync_preferences())
    except ValidationError as e:
        logger.warning(f"Invalid default sync preferences in config ({e.error_count()} errors); using built-ins.")
        defaults = SyncConfiguration()
    return SyncEngine(db, remote, default_config=defaults, **get_sync_engine_settings())

#
# End of engine.py
########################################################################################################################
