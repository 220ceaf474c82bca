# Tests/Sync/conftest.py
#
# Shared fixtures for the sync engine tests: a temporary local store and an in-memory
# fake of the remote sync service.
#
# Imports
#
# 3rd-party Libraries
import pytest
import pytest_asyncio
#
# Local Imports
from jobtracker_sync.DB.Local_Store_DB import LocalStoreDatabase
from jobtracker_sync.DB.Records_Repository import RecordRepository
from jobtracker_sync.Sync.engine import SyncEngine
from jobtracker_sync.Sync.outbox import OutboxStore
from jobtracker_sync.Sync.settings_store import SyncSettingsStore

from sync_fakes import FakeRemote
#
########################################################################################################################
#
# Fixtures

@pytest.fixture
def db(tmp_path):
    """A fresh local store in a temporary directory."""
    database = LocalStoreDatabase(tmp_path / "sync_test_store.db", client_id="test_client")
    yield database
    database.close_connection()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def outbox(db):
    return OutboxStore(db, retry_ceiling=3)


@pytest.fixture
def repo(db, outbox):
    return RecordRepository(db, outbox)


@pytest.fixture
def settings_store(db):
    return SyncSettingsStore(db)


@pytest_asyncio.fixture
async def engine(db, remote):
    """Engine with short timeouts and the pull phase off, so tests only see their own pushes."""
    sync_engine = SyncEngine(
        db, remote,
        retry_ceiling=3,
        push_timeout=0.05,
        probe_timeout=0.05,
        shutdown_timeout=2.0,
        retry_base_delay=60.0,
        pull_remote_changes=False,
    )
    yield sync_engine
    await sync_engine.stop()

#
# End of conftest.py
########################################################################################################################
