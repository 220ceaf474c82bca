# models.py
# Description: Domain types shared by the sync engine components.
#
# Imports
import json
import sqlite3
from enum import Enum
from typing import Any, Dict, List, Optional
#
# 3rd-party Libraries
from loguru import logger
from pydantic import BaseModel, Field, field_validator
#
# Local Imports
from ..DB.Local_Store_DB import DatabaseError
#
########################################################################################################################
#
# Constants:

DEFAULT_RETRY_CEILING = 3
MIN_SYNC_INTERVAL_SECONDS = 30
DEFAULT_SYNC_INTERVAL_SECONDS = 300
SYNC_SETTINGS_KEY = "sync_settings"
LAST_SYNC_TIME_KEY = "sync_last_sync_time"
LAST_PULL_TIME_KEY = "sync_last_pull_time"
SYNC_SETTINGS_CATEGORY = "sync"
CONFLICT_ERROR_MESSAGE = "conflict"


def describe_changes(count: int) -> str:
    return f"{count} change" if count == 1 else f"{count} changes"

#
# Enums:

class EntityKind(str, Enum):
    """Remote-tracked entity kinds. Values double as remote collection names."""
    APPLICATIONS = "applications"
    COMPANIES = "companies"
    CONTACTS = "contacts"
    REMINDERS = "reminders"
    FILES = "files"


class OutboxOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntryStatus(str, Enum):
    PENDING = "pending"
    FAILED = "failed"
    AWAITING_DECISION = "awaiting_decision"
    SYNCED = "synced"
    SUPERSEDED = "superseded"
    DISCARDED = "discarded"


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CONFLICT = "conflict"


class ConflictResolution(str, Enum):
    ASK = "ask"
    PREFER_LOCAL = "prefer_local"
    PREFER_REMOTE = "prefer_remote"


class ConflictDecision(str, Enum):
    """Outcome of the conflict policy for one rejected push."""
    ACCEPT_LOCAL = "accept_local"
    ACCEPT_REMOTE = "accept_remote"
    DEFER_TO_USER = "defer_to_user"

#
# Exceptions:

class OutboxEntryNotFoundError(DatabaseError):
    """Raised when a manual operation names an outbox entry that does not exist."""
    def __init__(self, entry_id: int):
        super().__init__(f"Outbox entry {entry_id} not found.")
        self.entry_id = entry_id


class InvalidEntryStateError(DatabaseError):
    """Raised when a manual operation targets an entry in the wrong state."""
    def __init__(self, entry_id: int, status: "EntryStatus", expected: str):
        super().__init__(f"Outbox entry {entry_id} is '{status.value}', expected {expected}.")
        self.entry_id = entry_id
        self.status = status

#
# Models:

class OutboxEntry(BaseModel):
    id: int
    entity_kind: EntityKind
    entity_id: int
    operation: OutboxOperation
    payload: Optional[Dict[str, Any]] = None
    base_version: int = 0
    enqueued_at: str
    synced_at: Optional[str] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[str] = None
    status: EntryStatus = EntryStatus.PENDING
    error_kind: Optional[ErrorKind] = None
    conflict_remote_version: Optional[int] = None
    conflict_remote_payload: Optional[Dict[str, Any]] = None

    @property
    def entity_key(self) -> tuple:
        return (self.entity_kind, self.entity_id)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "OutboxEntry":
        data = dict(row)
        data.pop("client_id", None)
        for field_name in ("payload", "conflict_remote_payload"):
            raw = data.get(field_name)
            data[field_name] = json.loads(raw) if raw else None
        return cls(**data)


class SyncConfiguration(BaseModel):
    """User-controlled sync policy, persisted under the `sync_settings` key."""
    auto_sync_enabled: bool = True
    sync_interval_seconds: int = DEFAULT_SYNC_INTERVAL_SECONDS
    conflict_resolution: ConflictResolution = ConflictResolution.ASK

    @field_validator("sync_interval_seconds")
    @classmethod
    def _enforce_min_interval(cls, value: int) -> int:
        if value < MIN_SYNC_INTERVAL_SECONDS:
            logger.warning(f"Sync interval {value}s is below the minimum; using {MIN_SYNC_INTERVAL_SECONDS}s.")
            return MIN_SYNC_INTERVAL_SECONDS
        return value


class EngineStatus(BaseModel):
    last_sync_at: Optional[str] = None
    pending_count: int = 0
    failed_count: int = 0
    awaiting_decision_count: int = 0
    sync_in_progress: bool = False
    remote_reachable: bool = False
    last_probe_at: Optional[str] = None


class DrainResult(BaseModel):
    skipped: bool = False
    cancelled: bool = False
    synced_count: int = 0
    failed_count: int = 0
    permanent_failure_count: int = 0
    transient_failure_count: int = 0
    conflict_count: int = 0
    superseded_count: int = 0
    deferred_count: int = 0
    pulled_count: int = 0
    connectivity_error: bool = False
    errors: List[str] = Field(default_factory=list)

    @property
    def made_progress(self) -> bool:
        return (self.synced_count + self.superseded_count) > 0

    @property
    def fully_successful(self) -> bool:
        return not (self.skipped or self.cancelled or self.failed_count or self.connectivity_error or self.errors)


class ManualSyncResult(BaseModel):
    success: bool
    synced_count: int = 0
    failed_count: int = 0
    message: str = ""


class RetryConnectionResult(BaseModel):
    success: bool
    message: str


class ShutdownOutcome(str, Enum):
    READY_TO_QUIT = "ready_to_quit"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ShutdownChoice(str, Enum):
    CLOSE_ANYWAY = "close_anyway"
    CANCEL_QUIT = "cancel_quit"


class ShutdownResult(BaseModel):
    outcome: ShutdownOutcome
    message: str = ""
    remaining_count: int = 0
    synced_count: int = 0

    @property
    def success(self) -> bool:
        return self.outcome == ShutdownOutcome.READY_TO_QUIT

#
# End of models.py
########################################################################################################################
