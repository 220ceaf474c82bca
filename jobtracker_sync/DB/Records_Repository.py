# Records_Repository.py
#########################################
# Records_Repository Library
# Generic storage for remote-tracked records (applications, companies, contacts, reminders, files).
#
# Each mutating call writes the record row and appends the matching outbox entry inside one
# transaction, so the local store and the outbox either both change or neither does.
# `apply_remote_record` is the write path for data coming *from* the remote and never enqueues.
####
import json
import sqlite3
from typing import Any, Dict, List, Optional, Union

# --- Logging Setup ---
import logging

logger = logging.getLogger(__name__)

from .Local_Store_DB import DatabaseError, InputError, LocalStoreDatabase, RecordNotFoundError
from ..Sync.models import EntityKind, OutboxOperation
from ..Sync.outbox import OutboxStore, coerce_entity_kind


class RecordRepository:
    def __init__(self, db: LocalStoreDatabase, outbox: OutboxStore):
        self.db = db
        self.outbox = outbox

    @staticmethod
    def _validate_payload(payload: Dict[str, Any]) -> str:
        if not isinstance(payload, dict):
            raise InputError(f"Record payload must be a dict, got {type(payload).__name__}")
        try:
            return json.dumps(payload, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            raise InputError(f"Record payload is not JSON serializable: {e}") from e

    # --- Local mutations (enqueue for sync) ---
    def create_record(self, entity_kind: Union[str, EntityKind], payload: Dict[str, Any]) -> int:
        kind = coerce_entity_kind(entity_kind)
        payload_json = self._validate_payload(payload)
        try:
            with self.db.transaction() as conn:
                row = conn.execute("SELECT COALESCE(MAX(entity_id), 0) + 1 AS next_id FROM tracked_records "
                                   "WHERE entity_kind = ?", (kind.value,)).fetchone()
                entity_id = row['next_id']
                conn.execute("""
                    INSERT INTO tracked_records (entity_kind, entity_id, payload, deleted, last_modified)
                    VALUES (?, ?, ?, 0, ?)
                """, (kind.value, entity_id, payload_json, self.db._get_current_utc_timestamp_str()))
                self.outbox.enqueue(kind, entity_id, OutboxOperation.CREATE, payload)
        except sqlite3.Error as e:
            logger.error(f"Failed to create {kind.value} record: {e}", exc_info=True)
            raise DatabaseError(f"Failed to create {kind.value} record: {e}") from e
        logger.info(f"Created {kind.value} record {entity_id}.")
        return entity_id

    def update_record(self, entity_kind: Union[str, EntityKind], entity_id: int, payload: Dict[str, Any]) -> None:
        kind = coerce_entity_kind(entity_kind)
        payload_json = self._validate_payload(payload)
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute("""
                    UPDATE tracked_records SET payload = ?, last_modified = ?
                    WHERE entity_kind = ? AND entity_id = ? AND deleted = 0
                """, (payload_json, self.db._get_current_utc_timestamp_str(), kind.value, entity_id))
                if cursor.rowcount == 0:
                    raise RecordNotFoundError(entity=kind.value, identifier=entity_id)
                self.outbox.enqueue(kind, entity_id, OutboxOperation.UPDATE, payload)
        except sqlite3.Error as e:
            logger.error(f"Failed to update {kind.value} record {entity_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to update {kind.value} record {entity_id}: {e}") from e
        logger.info(f"Updated {kind.value} record {entity_id}.")

    def delete_record(self, entity_kind: Union[str, EntityKind], entity_id: int) -> None:
        """Soft-deletes a record and queues the delete for the remote."""
        kind = coerce_entity_kind(entity_kind)
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute("""
                    UPDATE tracked_records SET deleted = 1, last_modified = ?
                    WHERE entity_kind = ? AND entity_id = ? AND deleted = 0
                """, (self.db._get_current_utc_timestamp_str(), kind.value, entity_id))
                if cursor.rowcount == 0:
                    raise RecordNotFoundError(entity=kind.value, identifier=entity_id)
                self.outbox.enqueue(kind, entity_id, OutboxOperation.DELETE, None)
        except sqlite3.Error as e:
            logger.error(f"Failed to delete {kind.value} record {entity_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to delete {kind.value} record {entity_id}: {e}") from e
        logger.info(f"Deleted {kind.value} record {entity_id}.")

    # --- Remote writes (no enqueue) ---
    def apply_remote_record(self, entity_kind: Union[str, EntityKind], entity_id: int,
                            payload: Optional[Dict[str, Any]], deleted: bool = False) -> None:
        """Overwrites local state with the remote's copy of a record."""
        kind = coerce_entity_kind(entity_kind)
        payload_json = json.dumps(payload, separators=(',', ':')) if payload is not None else None
        try:
            with self.db.transaction() as conn:
                conn.execute("""
                    INSERT INTO tracked_records (entity_kind, entity_id, payload, deleted, last_modified)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(entity_kind, entity_id) DO UPDATE SET
                        payload = COALESCE(excluded.payload, tracked_records.payload),
                        deleted = excluded.deleted,
                        last_modified = excluded.last_modified
                """, (kind.value, entity_id, payload_json, 1 if deleted else 0,
                      self.db._get_current_utc_timestamp_str()))
        except sqlite3.Error as e:
            logger.error(f"Failed to apply remote {kind.value} record {entity_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to apply remote {kind.value} record {entity_id}: {e}") from e
        logger.debug(f"Applied remote copy of {kind.value}/{entity_id} (deleted={deleted}).")

    # --- Reads ---
    def get_record(self, entity_kind: Union[str, EntityKind], entity_id: int,
                   include_deleted: bool = False) -> Optional[Dict[str, Any]]:
        kind = coerce_entity_kind(entity_kind)
        query = "SELECT * FROM tracked_records WHERE entity_kind = ? AND entity_id = ?"
        if not include_deleted:
            query += " AND deleted = 0"
        row = self.db.fetch_one(query, (kind.value, entity_id))
        if row is None:
            return None
        return {
            "entity_kind": row['entity_kind'],
            "entity_id": row['entity_id'],
            "payload": json.loads(row['payload']) if row['payload'] else None,
            "deleted": bool(row['deleted']),
            "last_modified": row['last_modified'],
        }

    def list_records(self, entity_kind: Union[str, EntityKind], include_deleted: bool = False) -> List[Dict[str, Any]]:
        kind = coerce_entity_kind(entity_kind)
        query = "SELECT entity_id FROM tracked_records WHERE entity_kind = ?"
        if not include_deleted:
            query += " AND deleted = 0"
        rows = self.db.fetch_all(query + " ORDER BY entity_id", (kind.value,))
        return [self.get_record(kind, row['entity_id'], include_deleted=include_deleted) for row in rows]

#
# End of Records_Repository.py
#######################################################################################################################
