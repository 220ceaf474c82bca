# test_engine.py
# Description: Tests for the SyncEngine bridge operations and engine construction from config.
#
# Imports
import asyncio
#
# 3rd-party Libraries
import pytest
#
# Local Imports
from jobtracker_sync import config
from jobtracker_sync.DB.Local_Store_DB import InputError
from jobtracker_sync.Sync.engine import SyncEngine, create_sync_engine
from jobtracker_sync.Sync.models import ConflictResolution, EntryStatus, SyncConfiguration
from jobtracker_sync.Sync.settings_store import SyncSettingsStore
from jobtracker_sync.sync_api.client import SyncAPIClient
from jobtracker_sync.sync_api.schemas import PushRejected

from sync_fakes import FakeRemote
#
########################################################################################################################
#
# Tests:

pytestmark = pytest.mark.asyncio


async def wait_until(predicate, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestManualSync:
    async def test_manual_sync_pushes_pending(self, engine, remote):
        engine.enqueue("applications", 1, "create", {"title": "Engineer"})
        engine.enqueue("applications", 2, "create", {"title": "Analyst"})

        result = await engine.trigger_manual_sync()

        assert result.success
        assert result.synced_count == 2
        assert result.message == "Synced 2 changes"
        assert engine.connectivity.remote_reachable

    async def test_concurrent_manual_syncs_run_one_drain(self, engine, remote):
        engine.enqueue("applications", 1, "create", {"title": "Engineer"})
        remote.gate = asyncio.Event()

        first = asyncio.create_task(engine.trigger_manual_sync())
        await remote.push_started.wait()
        second = await engine.trigger_manual_sync()

        assert not second.success
        assert second.message == "Sync already in progress"
        remote.gate.set()
        result = await first
        assert result.success
        assert len(remote.pushes) == 1
        assert remote.max_active_pushes == 1

    async def test_simultaneous_requests_before_any_push(self, engine, remote):
        engine.enqueue("applications", 1, "create", {"title": "Engineer"})

        results = await asyncio.gather(engine.trigger_manual_sync(), engine.trigger_manual_sync())

        assert sorted(r.message for r in results) == ["Sync already in progress", "Synced 1 change"]
        assert remote.health_checks == 1
        assert len(remote.pushes) == 1

    async def test_manual_sync_offline_leaves_entries_alone(self, engine, remote):
        entry_id = engine.enqueue("applications", 1, "create", {"title": "Engineer"})
        remote.mode = "offline"

        result = await engine.trigger_manual_sync()

        assert not result.success
        assert result.message.startswith("Sync service unreachable")
        assert engine.outbox.get_entry(entry_id).retry_count == 0
        assert remote.pushes == []

    async def test_manual_sync_reports_failures(self, engine, remote):
        engine.enqueue("applications", 1, "create", {"title": "Engineer"})
        remote.scripted.append(PushRejected(reason="invalid", status_code=422))

        result = await engine.trigger_manual_sync()

        assert not result.success
        assert result.failed_count == 1
        assert result.message == "Synced 0 changes, 1 failed"


class TestConnectionAndStatus:
    async def test_retry_connection(self, engine, remote):
        engine.enqueue("companies", 1, "create", {"name": "Acme"})
        remote.mode = "offline"
        result = await engine.retry_connection()
        assert not result.success
        assert "unreachable" in result.message
        assert not engine.get_status().remote_reachable

        remote.mode = "online"
        result = await engine.retry_connection()
        assert result.success
        assert result.message == "Connected. Synced 1 change."
        assert engine.get_status().remote_reachable

    async def test_get_status_counts(self, engine, remote):
        engine.enqueue("companies", 1, "create", {"name": "Acme"})
        failed_id = engine.enqueue("companies", 2, "create", {"name": "Globex"})
        engine.outbox.mark_failed(failed_id, "invalid", permanent=True)

        status = engine.get_status()

        assert status.pending_count == 1
        assert status.failed_count == 1
        assert status.awaiting_decision_count == 0
        assert status.sync_in_progress is False
        assert status.last_sync_at is None
        assert [entry.id for entry in engine.list_failed()] == [failed_id]


class TestSyncConfig:
    async def test_update_persists_partial_changes(self, engine, db):
        updated = engine.update_sync_config(auto_sync_enabled=False)
        assert updated.auto_sync_enabled is False
        assert updated.conflict_resolution == ConflictResolution.ASK

        engine.update_sync_config(conflict_resolution="prefer_remote", sync_interval_seconds=None)
        reloaded = SyncSettingsStore(db).load()
        assert reloaded.auto_sync_enabled is False
        assert reloaded.conflict_resolution == ConflictResolution.PREFER_REMOTE
        assert reloaded.sync_interval_seconds == 300

    async def test_interval_is_clamped_to_minimum(self, engine):
        assert engine.update_sync_config(sync_interval_seconds=5).sync_interval_seconds == 30

    async def test_invalid_changes_are_rejected(self, engine):
        with pytest.raises(InputError):
            engine.update_sync_config(conflict_resolution="newest_wins")
        with pytest.raises(InputError):
            engine.update_sync_config(sync_everything=True)
        assert engine.settings_store.load() == SyncConfiguration()

    async def test_malformed_stored_settings_fall_back(self, engine, db):
        db.set_setting("sync_settings", {"conflict_resolution": 42}, category="sync")
        assert engine.settings_store.load() == SyncConfiguration()


class TestLifecycle:
    async def test_start_syncs_leftovers_and_stop(self, engine, remote):
        engine.enqueue("reminders", 1, "create", {"text": "follow up"})

        await engine.start()
        assert engine.scheduler.running
        await wait_until(lambda: engine.get_status().pending_count == 0)

        await engine.stop()
        assert not engine.scheduler.running

    async def test_start_offline_does_not_sync(self, engine, remote):
        engine.enqueue("reminders", 1, "create", {"text": "follow up"})
        remote.mode = "offline"

        await engine.start()
        await asyncio.sleep(0.05)

        assert engine.get_status().pending_count == 1
        assert remote.pushes == []
        await engine.stop()

    async def test_reset_failed_requests_sync_when_running(self, engine, remote):
        entry_id = engine.enqueue("reminders", 1, "create", {"text": "follow up"})
        engine.outbox.mark_failed(entry_id, "invalid", permanent=True)
        await engine.start(initial_sync=False)

        assert engine.reset_failed() == 1
        await wait_until(lambda: engine.outbox.get_entry(entry_id).status == EntryStatus.SYNCED)

    async def test_close_releases_remote(self, engine, remote):
        await engine.close()
        assert remote.closed


class TestCreateFromConfig:
    @pytest.fixture
    def config_cache(self, monkeypatch):
        def _apply(overrides):
            merged = config.deep_merge_dicts(config.DEFAULT_CONFIG_FROM_TOML, overrides)
            monkeypatch.setattr(config, "_CONFIG_CACHE", merged)
        return _apply

    async def test_engine_uses_config_values(self, tmp_path, config_cache):
        config_cache({"sync": {"batch_size": 7, "retry_ceiling": 5,
                               "default_conflict_resolution": "prefer_remote"}})
        engine = create_sync_engine(tmp_path / "store.db", remote=FakeRemote())

        assert isinstance(engine, SyncEngine)
        assert engine.processor.batch_size == 7
        assert engine.outbox.retry_ceiling == 5
        assert engine.settings_store.load().conflict_resolution == ConflictResolution.PREFER_REMOTE
        await engine.close()

    async def test_invalid_default_preferences_fall_back(self, tmp_path, config_cache):
        config_cache({"sync": {"default_conflict_resolution": "newest_wins"}})
        engine = create_sync_engine(tmp_path / "store.db", remote=FakeRemote())
        assert engine.settings_store.load() == SyncConfiguration()
        await engine.close()

    async def test_default_remote_is_http_client(self, tmp_path, config_cache):
        config_cache({"sync_api": {"base_url": "http://sync.example.test", "api_token": "secret"}})
        engine = create_sync_engine(tmp_path / "store.db")
        assert isinstance(engine.remote, SyncAPIClient)
        assert engine.remote.base_url == "http://sync.example.test"
        assert engine.remote.token == "secret"
        await engine.close()

#
# End of test_engine.py
########################################################################################################################
