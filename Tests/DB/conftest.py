# Tests/DB/conftest.py
import shutil
import tempfile
from pathlib import Path

import pytest

from jobtracker_sync.DB.Local_Store_DB import LocalStoreDatabase
from jobtracker_sync.DB.Records_Repository import RecordRepository
from jobtracker_sync.Sync.outbox import OutboxStore


# --- Database Fixtures ---

@pytest.fixture(scope="function")
def temp_db_path():
    """Creates a temporary directory and returns a unique DB path within it."""
    temp_dir = tempfile.mkdtemp()
    db_file = Path(temp_dir) / "test_local_store.sqlite"
    yield str(db_file)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope="function")
def memory_db_factory():
    """Factory fixture to create in-memory LocalStoreDatabase instances."""
    created_dbs = []

    def _create_db(client_id="test_client"):
        db = LocalStoreDatabase(db_path=":memory:", client_id=client_id)
        created_dbs.append(db)
        return db

    yield _create_db
    for db in created_dbs:
        db.close_connection()


@pytest.fixture(scope="function")
def file_db(temp_db_path):
    db = LocalStoreDatabase(db_path=temp_db_path, client_id="file_client")
    yield db
    db.close_connection()


@pytest.fixture(scope="function")
def store(memory_db_factory):
    """An in-memory store with its outbox and record repository."""
    db = memory_db_factory()
    outbox = OutboxStore(db)
    return db, outbox, RecordRepository(db, outbox)
