# Local_Store_DB.py
#########################################
# Local_Store_DB Library
# Manages the local SQLite store used by the sync engine.
#
# This library provides a `LocalStoreDatabase` class that owns one SQLite database file
# (or ':memory:'). It handles connection management (thread-locally), schema
# initialization and versioning, and a nestable transaction context manager so that
# entity mutations and their outbox entries can be committed atomically.
#
# Key Features:
# - Instance-based: Each `LocalStoreDatabase` object connects to a specific DB file.
# - Client ID Tracking: Requires a `client_id` identifying this local instance.
# - Schema Versioning: Checks and applies schema updates upon initialization.
# - Thread-Safety: Uses thread-local storage for database connections.
# - Transaction Management: `transaction()` joins an already-open transaction instead of
#   starting a new one, so callers can wrap several writes in one unit.
# - Settings Storage: A generic key/value `user_settings` table holding JSON values.
####
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Any, Optional, Union

# --- Logging Setup ---
import logging

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class DatabaseError(Exception):
    """Base exception for database related errors."""
    pass


class SchemaError(DatabaseError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class RecordNotFoundError(DatabaseError):
    """Raised when a record that must exist cannot be found."""

    def __init__(self, message="Record not found.", entity=None, identifier=None):
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.identifier is not None:
            details.append(f"ID: {self.identifier}")
        return f"{base} ({', '.join(details)})" if details else base


def utc_timestamp_str(moment: Optional[datetime] = None) -> str:
    """Formats a UTC timestamp with microsecond precision so that string order matches time order."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def parse_utc_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# --- Database Class ---
class LocalStoreDatabase:
    _CURRENT_SCHEMA_VERSION = 1

    _TABLES_SQL_V1 = """
    PRAGMA foreign_keys = ON;

    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY NOT NULL
    );
    INSERT OR IGNORE INTO schema_version (version) VALUES (0);

    CREATE TABLE IF NOT EXISTS sync_outbox (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_kind TEXT NOT NULL,
        entity_id INTEGER NOT NULL,
        operation TEXT NOT NULL CHECK(operation IN ('create', 'update', 'delete')),
        payload TEXT,
        base_version INTEGER NOT NULL DEFAULT 0,
        enqueued_at TEXT NOT NULL,
        synced_at TEXT,
        retry_count INTEGER NOT NULL DEFAULT 0 CHECK(retry_count >= 0),
        last_error TEXT,
        last_attempt_at TEXT,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK(status IN ('pending', 'failed', 'awaiting_decision', 'synced', 'superseded', 'discarded')),
        error_kind TEXT CHECK(error_kind IS NULL OR error_kind IN ('transient', 'permanent', 'conflict')),
        conflict_remote_version INTEGER,
        conflict_remote_payload TEXT,
        client_id TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS sync_record_versions (
        entity_kind TEXT NOT NULL,
        entity_id INTEGER NOT NULL,
        remote_version INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (entity_kind, entity_id)
    );

    CREATE TABLE IF NOT EXISTS user_settings (
        key TEXT PRIMARY KEY NOT NULL,
        value TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'general',
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS tracked_records (
        entity_kind TEXT NOT NULL,
        entity_id INTEGER NOT NULL,
        payload TEXT,
        deleted BOOLEAN NOT NULL DEFAULT 0,
        last_modified TEXT NOT NULL,
        PRIMARY KEY (entity_kind, entity_id)
    );
    """

    _INDICES_SQL_V1 = """
    CREATE INDEX IF NOT EXISTS idx_sync_outbox_status_id ON sync_outbox(status, id);
    CREATE INDEX IF NOT EXISTS idx_sync_outbox_entity ON sync_outbox(entity_kind, entity_id, id);
    CREATE INDEX IF NOT EXISTS idx_sync_outbox_synced_at ON sync_outbox(synced_at);
    CREATE INDEX IF NOT EXISTS idx_user_settings_category ON user_settings(category);
    """

    _SCHEMA_UPDATE_VERSION_SQL_V1 = "UPDATE schema_version SET version = 1 WHERE version = 0;"

    def __init__(self, db_path: Union[str, Path], client_id: str):
        """
        Initializes the LocalStoreDatabase instance and ensures the schema is in place.

        Args:
            db_path (Union[str, Path]): The path to the SQLite database file or ':memory:'.
            client_id (str): A unique identifier for this local instance.

        Raises:
            ValueError: If client_id is empty or None.
            DatabaseError: If database initialization or schema setup fails.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            if not self.is_memory_db:
                self.db_path = Path(db_path).resolve()
            else:
                self.db_path = Path(":memory:")

        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DatabaseError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing LocalStoreDatabase for path: {self.db_path_str} [Client ID: {self.client_id}]")

        self._local = threading.local()

        try:
            self._initialize_schema()
        except (DatabaseError, sqlite3.Error) as e:
            logger.critical(f"FATAL: Local store initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            raise DatabaseError(f"Local store initialization failed: {e}") from e
        logger.debug(f"LocalStoreDatabase initialization completed for {self.db_path_str}")

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        is_closed = True
        if conn:
            try:
                conn.execute("SELECT 1")
                is_closed = False
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection to {self.db_path_str} was closed. Reopening.")
                self._local.conn = None

        if is_closed:
            try:
                conn = sqlite3.connect(
                    self.db_path_str,
                    check_same_thread=False,  # Required for threading.local
                    timeout=10  # seconds
                )
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA foreign_keys = ON;")
                self._local.conn = conn
                logger.debug(
                    f"Opened SQLite connection to {self.db_path_str} [Thread: {threading.current_thread().name}]")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database at {self.db_path_str}: {e}", exc_info=True)
                self._local.conn = None
                raise DatabaseError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._local.conn = None
        try:
            conn.close()
            logger.debug(f"Closed connection for thread {threading.current_thread().name}.")
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection: {e}")

    # --- Query Execution ---
    def execute_query(self, query: str, params: tuple = None, *, commit: bool = False) -> sqlite3.Cursor:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            logger.debug(f"Executing Query: {query[:200]}... Params: {str(params)[:100]}...")
            cursor.execute(query, params or ())
            if commit:
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.error(f"Integrity error: {query[:200]}... Error: {e}", exc_info=True)
            raise DatabaseError(f"Integrity constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query failed: {query[:200]}... Error: {e}", exc_info=True)
            raise DatabaseError(f"Query execution failed: {e}") from e

    def fetch_one(self, query: str, params: tuple = None) -> Optional[sqlite3.Row]:
        return self.execute_query(query, params).fetchone()

    def fetch_all(self, query: str, params: tuple = None) -> List[sqlite3.Row]:
        return self.execute_query(query, params).fetchall()

    # --- Transaction Context ---
    @contextmanager
    def transaction(self):
        """
        Opens a transaction, or joins the one already open on this thread's connection.

        Only the outermost block commits or rolls back, so a write made by a nested
        caller (e.g. an outbox enqueue) shares the fate of the enclosing mutation.
        """
        conn = self.get_connection()
        in_outer = conn.in_transaction
        try:
            if not in_outer:
                conn.execute("BEGIN")
                logger.debug("Started transaction.")
            yield conn
            if not in_outer:
                conn.commit()
                logger.debug("Committed transaction.")
        except Exception as e:
            if not in_outer:
                logger.error(f"Transaction failed, rolling back: {type(e).__name__} - {e}")
                try:
                    conn.rollback()
                    logger.debug("Rollback successful.")
                except sqlite3.Error as rb_err:
                    logger.error(f"Rollback FAILED: {rb_err}", exc_info=True)
            raise

    # --- Schema Initialization and Migration ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table: schema_version" in str(e).lower():
                return 0
            raise DatabaseError(f"Could not determine schema version: {e}") from e

    def _apply_schema_v1(self, conn: sqlite3.Connection):
        logger.info(f"Applying initial schema (Version 1) to DB: {self.db_path_str}...")
        try:
            conn.executescript(f"""
                BEGIN;
                {self._TABLES_SQL_V1}
                {self._INDICES_SQL_V1}
                {self._SCHEMA_UPDATE_VERSION_SQL_V1}
                COMMIT;
            """)
            cursor = conn.execute("PRAGMA table_info(sync_outbox)")
            columns = {row['name'] for row in cursor.fetchall()}
            expected_cols = {'id', 'entity_kind', 'entity_id', 'operation', 'payload', 'base_version',
                             'enqueued_at', 'synced_at', 'retry_count', 'last_error', 'last_attempt_at',
                             'status', 'error_kind', 'conflict_remote_version', 'conflict_remote_payload'}
            if not expected_cols.issubset(columns):
                raise SchemaError(f"Validation Error: sync_outbox table missing columns: {expected_cols - columns}")
            logger.info(f"[Schema V1] Applied and committed for DB: {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.error(f"[Schema V1] Application failed: {e}", exc_info=True)
            if conn.in_transaction:
                conn.rollback()
            raise DatabaseError(f"DB schema V1 setup failed: {e}") from e

    def _initialize_schema(self):
        conn = self.get_connection()
        current_db_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.info(f"Checking DB schema. Current: {current_db_version}, Code supports: {target_version}")

        if current_db_version == target_version:
            logger.debug("Database schema is up to date.")
            return
        if current_db_version > target_version:
            raise SchemaError(
                f"DB schema version ({current_db_version}) is newer than supported ({target_version}).")
        if current_db_version == 0:
            self._apply_schema_v1(conn)
            final_db_version = self._get_db_version(conn)
            if final_db_version != target_version:
                raise SchemaError(
                    f"Schema migration applied, but final DB version is {final_db_version}, expected {target_version}.")
            logger.info(f"Database schema initialized to version {target_version}.")
        else:
            raise SchemaError(
                f"Migration needed from {current_db_version} to {target_version}, but no path defined.")

    # --- Internal Helpers ---
    def _get_current_utc_timestamp_str(self) -> str:
        return utc_timestamp_str()

    # --- Settings Storage ---
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Returns the JSON-decoded value stored under `key`, or `default` when absent or unreadable."""
        row = self.fetch_one("SELECT value FROM user_settings WHERE key = ?", (key,))
        if row is None:
            return default
        try:
            return json.loads(row['value'])
        except (TypeError, ValueError) as e:
            logger.warning(f"Stored setting '{key}' is not valid JSON ({e}); using default.")
            return default

    def set_setting(self, key: str, value: Any, category: str = 'general') -> None:
        if not key:
            raise InputError("Setting key cannot be empty.")
        try:
            value_json = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise InputError(f"Setting '{key}' is not JSON serializable: {e}") from e
        with self.transaction() as conn:
            conn.execute("""
                INSERT INTO user_settings (key, value, category, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, category = excluded.category,
                                               updated_at = excluded.updated_at
            """, (key, value_json, category, self._get_current_utc_timestamp_str()))
        logger.debug(f"Stored setting '{key}' in category '{category}'.")

    def get_settings_by_category(self, category: str) -> Dict[str, Any]:
        rows = self.fetch_all("SELECT key, value FROM user_settings WHERE category = ? ORDER BY key", (category,))
        settings: Dict[str, Any] = {}
        for row in rows:
            try:
                settings[row['key']] = json.loads(row['value'])
            except (TypeError, ValueError):
                logger.warning(f"Skipping unreadable setting '{row['key']}' in category '{category}'.")
        return settings

#
# End of Local_Store_DB.py
#######################################################################################################################
