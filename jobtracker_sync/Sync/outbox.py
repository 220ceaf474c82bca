# outbox.py
# Description: Durable, ordered log of local mutations waiting to be pushed to the remote service.
#
# Every read or write of an outbox row goes through `OutboxStore`, which keeps the
# ordering, terminal-state and retry-ceiling rules in one place.
#
# Imports
import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from ..DB.Local_Store_DB import (
    DatabaseError,
    InputError,
    LocalStoreDatabase,
    parse_utc_timestamp,
    utc_timestamp_str,
)
from .models import (
    CONFLICT_ERROR_MESSAGE,
    DEFAULT_RETRY_CEILING,
    EntityKind,
    EntryStatus,
    ErrorKind,
    InvalidEntryStateError,
    OutboxEntry,
    OutboxEntryNotFoundError,
    OutboxOperation,
)
#
########################################################################################################################
#
# Functions:

EntityKey = Tuple[EntityKind, int]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_entity_kind(entity_kind: Union[str, EntityKind]) -> EntityKind:
    try:
        return EntityKind(entity_kind)
    except ValueError as e:
        raise InputError(f"Unknown entity kind: {entity_kind!r}") from e


def coerce_operation(operation: Union[str, OutboxOperation]) -> OutboxOperation:
    try:
        return OutboxOperation(operation)
    except ValueError as e:
        raise InputError(f"Unknown outbox operation: {operation!r}") from e


class OutboxStore:
    """
    Persistence API for the `sync_outbox` table.

    Entity repositories call `enqueue` inside their own mutation transaction. Everything
    else is used by the sync processor and by manual recovery actions.
    """

    def __init__(self, db: LocalStoreDatabase, retry_ceiling: int = DEFAULT_RETRY_CEILING,
                 clock: Optional[Callable[[], datetime]] = None):
        if retry_ceiling < 1:
            raise ValueError("retry_ceiling must be at least 1.")
        self.db = db
        self.retry_ceiling = retry_ceiling
        self._clock = clock or _utc_now

    def _now_str(self) -> str:
        return utc_timestamp_str(self._clock())

    # --- Writers used by entity repositories ---
    def enqueue(self, entity_kind: Union[str, EntityKind], entity_id: int,
                operation: Union[str, OutboxOperation], payload: Optional[Dict[str, Any]] = None) -> int:
        """
        Appends one outbox entry and returns its id.

        Joins the caller's open transaction when there is one, so the entry commits or
        rolls back together with the mutation that produced it. Raises `InputError` on
        invalid arguments, which aborts that enclosing transaction.
        """
        kind = coerce_entity_kind(entity_kind)
        op = coerce_operation(operation)
        if not isinstance(entity_id, int) or isinstance(entity_id, bool) or entity_id < 0:
            raise InputError(f"entity_id must be a non-negative integer, got {entity_id!r}")
        if op != OutboxOperation.DELETE and payload is None:
            raise InputError(f"A payload is required for '{op.value}' operations.")
        try:
            payload_json = json.dumps(payload, separators=(',', ':')) if payload is not None else None
        except (TypeError, ValueError) as e:
            raise InputError(f"Payload for {kind.value}/{entity_id} is not JSON serializable: {e}") from e

        try:
            with self.db.transaction() as conn:
                enqueued_at = self._next_enqueued_at(conn)
                base_version = self._remote_version(conn, kind, entity_id)
                cursor = conn.execute("""
                    INSERT INTO sync_outbox (entity_kind, entity_id, operation, payload, base_version,
                                             enqueued_at, status, client_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (kind.value, entity_id, op.value, payload_json, base_version, enqueued_at,
                      EntryStatus.PENDING.value, self.db.client_id))
                entry_id = cursor.lastrowid
        except sqlite3.Error as e:
            logger.error(f"Failed to enqueue {op.value} for {kind.value}/{entity_id}: {e}")
            raise DatabaseError(f"Failed to enqueue outbox entry: {e}") from e
        logger.debug(f"Enqueued outbox entry {entry_id}: {op.value} {kind.value}/{entity_id} (base v{base_version})")
        return entry_id

    def _next_enqueued_at(self, conn: sqlite3.Connection) -> str:
        candidate = self._clock()
        row = conn.execute("SELECT MAX(enqueued_at) AS last_enqueued FROM sync_outbox").fetchone()
        last_enqueued = parse_utc_timestamp(row['last_enqueued']) if row else None
        if last_enqueued is not None and candidate <= last_enqueued:
            candidate = last_enqueued + timedelta(microseconds=1)
        return utc_timestamp_str(candidate)

    # --- Queries ---
    def list_pending(self, limit: Optional[int] = None) -> List[OutboxEntry]:
        query = """
            SELECT * FROM sync_outbox
            WHERE status = ? AND synced_at IS NULL AND retry_count < ?
            ORDER BY enqueued_at ASC, id ASC
        """
        params: tuple = (EntryStatus.PENDING.value, self.retry_ceiling)
        if limit is not None:
            if limit < 1:
                return []
            query += " LIMIT ?"
            params += (limit,)
        return [OutboxEntry.from_row(row) for row in self.db.fetch_all(query, params)]

    def list_failed(self) -> List[OutboxEntry]:
        rows = self.db.fetch_all("""
            SELECT * FROM sync_outbox
            WHERE synced_at IS NULL AND (status = ? OR (status = ? AND retry_count >= ?))
            ORDER BY id ASC
        """, (EntryStatus.FAILED.value, EntryStatus.PENDING.value, self.retry_ceiling))
        return [OutboxEntry.from_row(row) for row in rows]

    def list_awaiting_decision(self) -> List[OutboxEntry]:
        rows = self.db.fetch_all("SELECT * FROM sync_outbox WHERE status = ? ORDER BY id ASC",
                                 (EntryStatus.AWAITING_DECISION.value,))
        return [OutboxEntry.from_row(row) for row in rows]

    def list_entries(self, include_terminal: bool = True) -> List[OutboxEntry]:
        query = "SELECT * FROM sync_outbox"
        if not include_terminal:
            query += " WHERE synced_at IS NULL"
        return [OutboxEntry.from_row(row) for row in self.db.fetch_all(query + " ORDER BY id ASC")]

    def get_entry(self, entry_id: int) -> Optional[OutboxEntry]:
        row = self.db.fetch_one("SELECT * FROM sync_outbox WHERE id = ?", (entry_id,))
        return OutboxEntry.from_row(row) if row else None

    def count_by_state(self) -> Dict[str, int]:
        row = self.db.fetch_one("""
            SELECT
                COALESCE(SUM(CASE WHEN status = 'pending' AND retry_count < ? THEN 1 ELSE 0 END), 0) AS pending,
                COALESCE(SUM(CASE WHEN status = 'failed' OR (status = 'pending' AND retry_count >= ?)
                                  THEN 1 ELSE 0 END), 0) AS failed,
                COALESCE(SUM(CASE WHEN status = 'awaiting_decision' THEN 1 ELSE 0 END), 0) AS awaiting_decision
            FROM sync_outbox
            WHERE synced_at IS NULL
        """, (self.retry_ceiling, self.retry_ceiling))
        return {
            "pending": row['pending'],
            "failed": row['failed'],
            "awaiting_decision": row['awaiting_decision'],
        }

    def blocking_entries(self) -> Dict[EntityKey, int]:
        """Maps each entity to the id of its earliest unsynced entry that cannot be pushed automatically."""
        rows = self.db.fetch_all("""
            SELECT entity_kind, entity_id, MIN(id) AS first_blocked
            FROM sync_outbox
            WHERE synced_at IS NULL AND (status != 'pending' OR retry_count >= ?)
            GROUP BY entity_kind, entity_id
        """, (self.retry_ceiling,))
        return {(EntityKind(row['entity_kind']), row['entity_id']): row['first_blocked'] for row in rows}

    def has_unsynced(self, entity_kind: Union[str, EntityKind], entity_id: int) -> bool:
        kind = coerce_entity_kind(entity_kind)
        row = self.db.fetch_one(
            "SELECT 1 FROM sync_outbox WHERE entity_kind = ? AND entity_id = ? AND synced_at IS NULL LIMIT 1",
            (kind.value, entity_id))
        return row is not None

    def get_remote_version(self, entity_kind: Union[str, EntityKind], entity_id: int) -> int:
        kind = coerce_entity_kind(entity_kind)
        return self._remote_version(self.db.get_connection(), kind, entity_id)

    @staticmethod
    def _remote_version(conn: sqlite3.Connection, kind: EntityKind, entity_id: int) -> int:
        row = conn.execute(
            "SELECT remote_version FROM sync_record_versions WHERE entity_kind = ? AND entity_id = ?",
            (kind.value, entity_id)).fetchone()
        return row['remote_version'] if row else 0

    def set_remote_version(self, entity_kind: Union[str, EntityKind], entity_id: int, version: int) -> None:
        kind = coerce_entity_kind(entity_kind)
        with self.db.transaction() as conn:
            self._store_remote_version(conn, kind, entity_id, version)

    def _store_remote_version(self, conn: sqlite3.Connection, kind: EntityKind, entity_id: int, version: int):
        conn.execute("""
            INSERT INTO sync_record_versions (entity_kind, entity_id, remote_version, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(entity_kind, entity_id) DO UPDATE SET
                remote_version = excluded.remote_version, updated_at = excluded.updated_at
        """, (kind.value, entity_id, version, self._now_str()))

    def _require_entry(self, conn: sqlite3.Connection, entry_id: int) -> OutboxEntry:
        row = conn.execute("SELECT * FROM sync_outbox WHERE id = ?", (entry_id,)).fetchone()
        if row is None:
            raise OutboxEntryNotFoundError(entry_id)
        return OutboxEntry.from_row(row)

    # --- Writers used by the sync processor ---
    def mark_synced(self, entry_id: int, new_version: Optional[int] = None) -> None:
        with self.db.transaction() as conn:
            entry = self._require_entry(conn, entry_id)
            if entry.synced_at is not None:
                raise InvalidEntryStateError(entry_id, entry.status, "an unsynced entry")
            now = self._now_str()
            conn.execute("""
                UPDATE sync_outbox
                SET status = ?, synced_at = ?, last_attempt_at = ?, last_error = NULL, error_kind = NULL,
                    conflict_remote_version = NULL, conflict_remote_payload = NULL
                WHERE id = ?
            """, (EntryStatus.SYNCED.value, now, now, entry_id))
            if new_version is not None:
                self._store_remote_version(conn, entry.entity_kind, entry.entity_id, new_version)
        logger.debug(f"Outbox entry {entry_id} synced (remote v{new_version}).")

    def mark_failed(self, entry_id: int, error: str, permanent: bool = False) -> EntryStatus:
        """
        Records a failed push attempt and returns the entry's new status.

        Transient failures count towards the retry ceiling; a permanent failure jumps
        straight to it so the entry is never retried automatically.
        """
        with self.db.transaction() as conn:
            entry = self._require_entry(conn, entry_id)
            if entry.synced_at is not None:
                raise InvalidEntryStateError(entry_id, entry.status, "an unsynced entry")
            if permanent:
                retry_count = max(entry.retry_count, self.retry_ceiling)
                error_kind = ErrorKind.PERMANENT
            else:
                retry_count = entry.retry_count + 1
                error_kind = ErrorKind.TRANSIENT
            new_status = EntryStatus.FAILED if retry_count >= self.retry_ceiling else EntryStatus.PENDING
            conn.execute("""
                UPDATE sync_outbox
                SET status = ?, retry_count = ?, last_error = ?, error_kind = ?, last_attempt_at = ?
                WHERE id = ?
            """, (new_status.value, retry_count, error, error_kind.value, self._now_str(), entry_id))
        if new_status == EntryStatus.FAILED:
            logger.warning(f"Outbox entry {entry_id} failed ({error_kind.value}, attempts={retry_count}): {error}")
        else:
            logger.info(f"Outbox entry {entry_id} will be retried (attempt {retry_count}/{self.retry_ceiling}): {error}")
        return new_status

    def mark_awaiting_decision(self, entry_id: int, remote_version: int,
                               remote_payload: Optional[Dict[str, Any]]) -> None:
        with self.db.transaction() as conn:
            entry = self._require_entry(conn, entry_id)
            if entry.synced_at is not None:
                raise InvalidEntryStateError(entry_id, entry.status, "an unsynced entry")
            conn.execute("""
                UPDATE sync_outbox
                SET status = ?, last_error = ?, error_kind = ?, last_attempt_at = ?,
                    conflict_remote_version = ?, conflict_remote_payload = ?
                WHERE id = ?
            """, (EntryStatus.AWAITING_DECISION.value, CONFLICT_ERROR_MESSAGE, ErrorKind.CONFLICT.value,
                  self._now_str(), remote_version,
                  json.dumps(remote_payload, separators=(',', ':')) if remote_payload is not None else None,
                  entry_id))
        logger.info(f"Outbox entry {entry_id} is awaiting a conflict decision (remote v{remote_version}).")

    def supersede_entity(self, entity_kind: Union[str, EntityKind], entity_id: int, remote_version: int) -> int:
        """Marks every unsynced entry of one entity as synced-as-superseded and adopts the remote version."""
        kind = coerce_entity_kind(entity_kind)
        with self.db.transaction() as conn:
            now = self._now_str()
            cursor = conn.execute("""
                UPDATE sync_outbox
                SET status = ?, synced_at = ?, last_attempt_at = ?, last_error = NULL, error_kind = NULL,
                    conflict_remote_version = NULL, conflict_remote_payload = NULL
                WHERE entity_kind = ? AND entity_id = ? AND synced_at IS NULL
            """, (EntryStatus.SUPERSEDED.value, now, now, kind.value, entity_id))
            self._store_remote_version(conn, kind, entity_id, remote_version)
            superseded = cursor.rowcount
        logger.info(f"Superseded {superseded} local entries for {kind.value}/{entity_id} with remote v{remote_version}.")
        return superseded

    def requeue_for_forced_push(self, entry_id: int, remote_version: int) -> None:
        """Returns a conflicted entry to the queue so its next push overwrites `remote_version`."""
        with self.db.transaction() as conn:
            entry = self._require_entry(conn, entry_id)
            if entry.status != EntryStatus.AWAITING_DECISION:
                raise InvalidEntryStateError(entry_id, entry.status, "'awaiting_decision'")
            conn.execute("""
                UPDATE sync_outbox
                SET status = ?, retry_count = 0, last_error = NULL, error_kind = NULL,
                    conflict_remote_version = NULL, conflict_remote_payload = NULL
                WHERE id = ?
            """, (EntryStatus.PENDING.value, entry_id))
            self._store_remote_version(conn, entry.entity_kind, entry.entity_id, remote_version)
        logger.info(f"Outbox entry {entry_id} re-queued to overwrite remote v{remote_version}.")

    # --- Manual recovery ---
    def reset_failed(self, entry_id: Optional[int] = None) -> int:
        """Returns failed entries (all, or one) to the automatic retry queue with a fresh retry budget."""
        with self.db.transaction() as conn:
            if entry_id is not None:
                entry = self._require_entry(conn, entry_id)
                is_failed = entry.synced_at is None and (
                    entry.status == EntryStatus.FAILED
                    or (entry.status == EntryStatus.PENDING and entry.retry_count >= self.retry_ceiling))
                if not is_failed:
                    raise InvalidEntryStateError(entry_id, entry.status, "'failed'")
                where, params = "id = ?", (entry_id,)
            else:
                where, params = ("synced_at IS NULL AND (status = 'failed' OR (status = 'pending' AND retry_count >= ?))",
                                 (self.retry_ceiling,))
            cursor = conn.execute(f"""
                UPDATE sync_outbox
                SET status = 'pending', retry_count = 0, last_error = NULL, error_kind = NULL, last_attempt_at = NULL
                WHERE {where}
            """, params)
            reset_count = cursor.rowcount
        logger.info(f"Reset {reset_count} failed outbox entries for retry.")
        return reset_count

    def discard_entry(self, entry_id: int) -> None:
        """Gives up on a failed or conflicted entry without pushing it."""
        with self.db.transaction() as conn:
            entry = self._require_entry(conn, entry_id)
            if entry.status not in (EntryStatus.FAILED, EntryStatus.AWAITING_DECISION):
                raise InvalidEntryStateError(entry_id, entry.status, "'failed' or 'awaiting_decision'")
            conn.execute("""
                UPDATE sync_outbox
                SET status = ?, synced_at = ?, conflict_remote_version = NULL, conflict_remote_payload = NULL
                WHERE id = ?
            """, (EntryStatus.DISCARDED.value, self._now_str(), entry_id))
        logger.warning(f"Outbox entry {entry_id} ({entry.operation.value} {entry.entity_kind.value}/"
                       f"{entry.entity_id}) discarded by user.")

    def purge_synced(self, older_than_days: int = 7) -> int:
        cutoff = utc_timestamp_str(self._clock() - timedelta(days=older_than_days))
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_outbox WHERE synced_at IS NOT NULL AND synced_at < ?", (cutoff,))
            purged = cursor.rowcount
        if purged:
            logger.info(f"Purged {purged} synced outbox entries older than {older_than_days} days.")
        return purged

#
# End of outbox.py
########################################################################################################################
