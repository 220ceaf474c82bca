# processor.py
# Description: Drains the outbox against the remote endpoint.
#
# One drain at a time: `drain()` holds an asyncio.Lock for the length of a batch and
# returns a skipped result straight away if another drain already holds it. Entries are
# pushed in enqueue order; once an entry of an entity cannot go through, every later
# entry of that entity waits for the next drain.
#
# Imports
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Set, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from ..DB.Local_Store_DB import InputError, parse_utc_timestamp, utc_timestamp_str
from ..sync_api.exceptions import APIConnectionError
from . import conflict_policy
from .connectivity import ConnectivityMonitor
from .models import (
    ConflictDecision,
    DrainResult,
    EntityKind,
    EntryStatus,
    InvalidEntryStateError,
    OutboxEntry,
    OutboxEntryNotFoundError,
    SyncConfiguration,
)
from .outbox import EntityKey, OutboxStore
from .remote import (
    PushAccepted,
    PushConflict,
    PushRejected,
    PushRequest,
    PushResult,
    RemoteEndpoint,
    TransientRemoteError,
)
from .settings_store import SyncSettingsStore
#
########################################################################################################################
#
# Functions:

class LocalRecordSink(Protocol):
    """Writes the remote's copy of a record into the local store without queueing a push."""

    def apply_remote_record(self, entity_kind: Union[str, EntityKind], entity_id: int,
                            payload: Optional[Dict[str, Any]], deleted: bool = False) -> None:
        ...


class SyncProcessor:
    def __init__(self, outbox: OutboxStore, remote: RemoteEndpoint, settings_store: SyncSettingsStore,
                 sink: LocalRecordSink, connectivity: ConnectivityMonitor, *,
                 push_timeout: float = 30.0, retry_base_delay: float = 60.0, batch_size: int = 50,
                 purge_synced_after_days: int = 7, pull_remote_changes: bool = True,
                 clock: Optional[Callable[[], datetime]] = None):
        self.outbox = outbox
        self.remote = remote
        self.settings_store = settings_store
        self.sink = sink
        self.connectivity = connectivity
        self.push_timeout = push_timeout
        self.retry_base_delay = retry_base_delay
        self.batch_size = batch_size
        self.purge_synced_after_days = purge_synced_after_days
        self.pull_remote_changes = pull_remote_changes
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self._cancel_event: Optional[asyncio.Event] = None
        self._consume_retry_budget = True

    @property
    def sync_in_progress(self) -> bool:
        return self._lock.locked()

    def cancel_current(self) -> bool:
        """Asks the running drain to stop before its next entry. Returns False when nothing is running."""
        if self._cancel_event is None:
            return False
        self._cancel_event.set()
        logger.info("Cancellation requested for the running sync drain.")
        return True

    async def wait_idle(self) -> None:
        async with self._lock:
            pass

    async def drain(self, *, ignore_backoff: bool = False, cancel_event: Optional[asyncio.Event] = None,
                    batch_size: Optional[int] = None, consume_retry_budget: bool = True) -> DrainResult:
        """
        Pushes one batch of pending outbox entries.

        Args:
            ignore_backoff: Push entries even if their retry delay has not elapsed (manual and
                shutdown drains).
            cancel_event: Checked between entries; setting it stops the drain after the
                in-flight push completes.
            batch_size: Overrides the configured batch size for this drain.
            consume_retry_budget: When False, transient failures leave the entry exactly as it
                was (no retry count, error or attempt time recorded). The shutdown drain uses
                this so an aborted exit never moves entries towards `failed`.

        Returns:
            DrainResult: counts for this drain, with `skipped=True` if another drain was running.
        """
        if self._lock.locked():
            logger.info("Sync drain already in progress; ignoring duplicate request.")
            return DrainResult(skipped=True)
        async with self._lock:
            self._cancel_event = cancel_event or asyncio.Event()
            self._consume_retry_budget = consume_retry_budget
            try:
                return await self._drain_locked(ignore_backoff, self._cancel_event, batch_size or self.batch_size)
            finally:
                self._cancel_event = None
                self._consume_retry_budget = True

    async def _drain_locked(self, ignore_backoff: bool, cancel_event: asyncio.Event, batch_size: int) -> DrainResult:
        config = self.settings_store.load()
        result = DrainResult()
        entries = self.outbox.list_pending(limit=batch_size)
        blocking = self.outbox.blocking_entries()
        blocked: Set[EntityKey] = set()
        # entities whose queued entries were all superseded by the remote copy during this drain
        retired: Set[EntityKey] = set()
        now = self._clock()
        logger.info(f"Sync drain started: {len(entries)} pending entries in batch "
                    f"(conflicts: {config.conflict_resolution.value}).")

        for entry in entries:
            if cancel_event.is_set():
                result.cancelled = True
                logger.info("Sync drain cancelled between entries.")
                break
            key = entry.entity_key
            if key in retired:
                continue
            first_blocked = blocking.get(key)
            if key in blocked or (first_blocked is not None and first_blocked < entry.id):
                result.deferred_count += 1
                blocked.add(key)
                continue
            if not ignore_backoff and self._in_backoff(entry, now):
                result.deferred_count += 1
                blocked.add(key)
                continue
            superseded_before = result.superseded_count
            if not await self._process_entry(entry, config, result):
                blocked.add(key)
            if result.superseded_count > superseded_before:
                retired.add(key)

        if self.pull_remote_changes and not result.cancelled and not result.connectivity_error:
            await self._pull_remote_changes(result, cancel_event)

        if result.fully_successful:
            self.outbox.purge_synced(self.purge_synced_after_days)
            self.settings_store.set_last_sync_time(utc_timestamp_str(self._clock()))

        logger.info(f"Sync drain finished: synced={result.synced_count} failed={result.failed_count} "
                    f"conflicts={result.conflict_count} superseded={result.superseded_count} "
                    f"deferred={result.deferred_count} pulled={result.pulled_count} cancelled={result.cancelled}")
        return result

    def _in_backoff(self, entry: OutboxEntry, now: datetime) -> bool:
        if entry.retry_count == 0 or not entry.last_attempt_at:
            return False
        last_attempt = parse_utc_timestamp(entry.last_attempt_at)
        return now - last_attempt < timedelta(seconds=entry.retry_count * self.retry_base_delay)

    async def _push(self, entry: OutboxEntry, base_version: int) -> PushResult:
        request = PushRequest(
            entity_kind=entry.entity_kind.value,
            entity_id=entry.entity_id,
            operation=entry.operation.value,
            payload=entry.payload,
            base_version=base_version,
        )
        return await asyncio.wait_for(self.remote.push(request), timeout=self.push_timeout)

    async def _process_entry(self, entry: OutboxEntry, config: SyncConfiguration, result: DrainResult) -> bool:
        """Pushes one entry. Returns True when later entries of the same entity may follow in this drain."""
        base_version = self.outbox.get_remote_version(entry.entity_kind, entry.entity_id)
        try:
            outcome = await self._push(entry, base_version)
        except (TransientRemoteError, asyncio.TimeoutError) as e:
            self._record_transient_failure(entry, e, result)
            return False

        if isinstance(outcome, PushAccepted):
            self._record_accepted(entry, outcome, result)
            return True
        if isinstance(outcome, PushRejected):
            self._record_permanent_failure(entry, outcome, result)
            return False

        result.conflict_count += 1
        decision = conflict_policy.resolve(config.conflict_resolution, entry, outcome)
        logger.info(f"Conflict on {entry.entity_kind.value}/{entry.entity_id} (local base v{base_version}, "
                    f"remote v{outcome.remote_version}): {decision.value}")
        if decision == ConflictDecision.ACCEPT_LOCAL:
            return await self._force_push(entry, outcome, result)
        if decision == ConflictDecision.ACCEPT_REMOTE:
            result.superseded_count += self._adopt_remote(entry.entity_kind, entry.entity_id, outcome.remote_version,
                                                          outcome.remote_payload, outcome.remote_deleted)
            return False
        self.outbox.mark_awaiting_decision(
            entry.id, outcome.remote_version, None if outcome.remote_deleted else outcome.remote_payload)
        return False

    async def _force_push(self, entry: OutboxEntry, conflict: PushConflict, result: DrainResult) -> bool:
        try:
            outcome = await self._push(entry, conflict.remote_version)
        except (TransientRemoteError, asyncio.TimeoutError) as e:
            self._record_transient_failure(entry, e, result)
            return False
        if isinstance(outcome, PushAccepted):
            self._record_accepted(entry, outcome, result)
            return True
        if isinstance(outcome, PushRejected):
            self._record_permanent_failure(entry, outcome, result)
            return False
        message = f"Remote changed again during forced overwrite (now v{outcome.remote_version})"
        self._count_transient_failure(entry, message, result)
        return False

    def _adopt_remote(self, entity_kind: EntityKind, entity_id: int, remote_version: int,
                      remote_payload: Optional[Dict[str, Any]], remote_deleted: bool) -> int:
        """Overwrites the local record with the remote copy and retires the entity's unsynced entries, atomically."""
        with self.outbox.db.transaction():
            self.sink.apply_remote_record(entity_kind, entity_id, remote_payload, deleted=remote_deleted)
            return self.outbox.supersede_entity(entity_kind, entity_id, remote_version)

    def _record_accepted(self, entry: OutboxEntry, outcome: PushAccepted, result: DrainResult) -> None:
        self.outbox.mark_synced(entry.id, outcome.new_version)
        self.connectivity.mark_reachable()
        result.synced_count += 1

    def _record_permanent_failure(self, entry: OutboxEntry, outcome: PushRejected, result: DrainResult) -> None:
        self.outbox.mark_failed(entry.id, outcome.reason, permanent=True)
        result.failed_count += 1
        result.permanent_failure_count += 1
        result.errors.append(f"{entry.entity_kind.value}/{entry.entity_id}: {outcome.reason}")

    def _record_transient_failure(self, entry: OutboxEntry, error: BaseException, result: DrainResult) -> None:
        if isinstance(error, asyncio.TimeoutError):
            message = f"Push timed out after {self.push_timeout}s"
        else:
            message = str(error) or type(error).__name__
        self._count_transient_failure(entry, message, result)
        if isinstance(error, (APIConnectionError, asyncio.TimeoutError)):
            result.connectivity_error = True
            self.connectivity.mark_unreachable(message)

    def _count_transient_failure(self, entry: OutboxEntry, message: str, result: DrainResult) -> None:
        if self._consume_retry_budget:
            self.outbox.mark_failed(entry.id, message, permanent=False)
        else:
            logger.debug(f"Leaving outbox entry {entry.id} untouched after transient failure: {message}")
        result.failed_count += 1
        result.transient_failure_count += 1
        result.errors.append(f"{entry.entity_kind.value}/{entry.entity_id}: {message}")

    async def _pull_remote_changes(self, result: DrainResult, cancel_event: asyncio.Event) -> None:
        since = self.settings_store.get_last_pull_time()
        pull_started_at = utc_timestamp_str(self._clock())
        for kind in EntityKind:
            if cancel_event.is_set():
                result.cancelled = True
                return
            try:
                records = await asyncio.wait_for(self.remote.fetch_changes(kind.value, since),
                                                 timeout=self.push_timeout)
            except (TransientRemoteError, asyncio.TimeoutError) as e:
                message = str(e) or f"Pull timed out after {self.push_timeout}s"
                logger.warning(f"Pulling remote {kind.value} changes failed: {message}")
                result.errors.append(f"pull {kind.value}: {message}")
                return
            for record in records:
                if self.outbox.has_unsynced(kind, record.entity_id):
                    logger.debug(f"Skipping remote {kind.value}/{record.entity_id}: local changes still queued.")
                    continue
                if record.version <= self.outbox.get_remote_version(kind, record.entity_id):
                    continue
                with self.outbox.db.transaction():
                    self.sink.apply_remote_record(kind, record.entity_id, record.payload, deleted=record.deleted)
                    self.outbox.set_remote_version(kind, record.entity_id, record.version)
                result.pulled_count += 1
        self.settings_store.set_last_pull_time(pull_started_at)

    async def apply_user_decision(self, entry_id: int, decision: Union[str, ConflictDecision]) -> None:
        """
        Settles an entry that is awaiting a conflict decision.

        ACCEPT_LOCAL re-queues the entry so its next push overwrites the remote;
        ACCEPT_REMOTE adopts the remote copy and supersedes the entity's queued entries.
        Waits for a running drain to finish first.
        """
        if not conflict_policy.is_user_decision(decision):
            raise InputError(f"'{decision}' is not a conflict decision a user can make.")
        decision = ConflictDecision(decision)
        async with self._lock:
            entry = self.outbox.get_entry(entry_id)
            if entry is None:
                raise OutboxEntryNotFoundError(entry_id)
            if entry.status != EntryStatus.AWAITING_DECISION:
                raise InvalidEntryStateError(entry_id, entry.status, "'awaiting_decision'")
            remote_version = entry.conflict_remote_version or 0
            if decision == ConflictDecision.ACCEPT_LOCAL:
                self.outbox.requeue_for_forced_push(entry_id, remote_version)
            else:
                remote_payload = entry.conflict_remote_payload
                self._adopt_remote(entry.entity_kind, entry.entity_id, remote_version,
                                   remote_payload, remote_deleted=remote_payload is None)
        logger.info(f"User resolved conflict on outbox entry {entry_id}: {decision.value}")

#
# End of processor.py
########################################################################################################################
