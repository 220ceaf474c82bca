import logging
from pathlib import Path

import pytest
import toml

from jobtracker_sync import config
from jobtracker_sync.Logging_Config import configure_logging


# Helper to create a dummy config file for testing
def create_dummy_config(config_path: Path, content: dict):
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        toml.dump(content, f)


@pytest.fixture
def temp_config_path(tmp_path: Path) -> Path:
    """Provides a temporary path for config.toml."""
    return tmp_path / "config" / "config.toml"


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, temp_config_path: Path):
    """Points the default config path at a temp file and clears the settings cache around each test."""
    monkeypatch.setattr(config, "DEFAULT_CONFIG_PATH", temp_config_path)
    monkeypatch.setattr(config, "_CONFIG_CACHE", None)


def test_missing_file_is_created_with_defaults(temp_config_path):
    settings = config.load_settings(force_reload=True)
    assert temp_config_path.exists()
    assert settings["sync"]["retry_ceiling"] == 3
    assert settings["sync_api"]["api_path"] == "/api/synchronizeJobManager"


def test_user_values_override_defaults(temp_config_path):
    create_dummy_config(temp_config_path, {"sync": {"batch_size": 10}, "sync_api": {"base_url": "https://sync.example"}})
    settings = config.load_settings(force_reload=True)
    assert settings["sync"]["batch_size"] == 10
    assert settings["sync"]["retry_ceiling"] == 3
    assert config.get_sync_api_settings()["base_url"] == "https://sync.example"


def test_settings_are_cached_until_forced(temp_config_path):
    create_dummy_config(temp_config_path, {"sync": {"batch_size": 10}})
    assert config.load_settings(force_reload=True)["sync"]["batch_size"] == 10
    create_dummy_config(temp_config_path, {"sync": {"batch_size": 20}})
    assert config.load_settings()["sync"]["batch_size"] == 10
    assert config.load_settings(force_reload=True)["sync"]["batch_size"] == 20


def test_explicit_config_path(tmp_path):
    other_path = tmp_path / "elsewhere.toml"
    create_dummy_config(other_path, {"general": {"client_id": "laptop-1"}})
    config.load_settings(force_reload=True, config_path=other_path)
    assert config.get_client_id() == "laptop-1"


def test_invalid_toml_falls_back_to_defaults(temp_config_path):
    temp_config_path.parent.mkdir(parents=True, exist_ok=True)
    temp_config_path.write_text("[sync\nbatch_size = ")
    settings = config.load_settings(force_reload=True)
    assert settings["sync"]["batch_size"] == 50


def test_typed_getters_convert_and_fall_back(temp_config_path):
    create_dummy_config(temp_config_path, {"sync": {
        "push_timeout_seconds": "12.5",
        "retry_ceiling": "not a number",
        "pull_remote_changes": "no",
    }})
    config.load_settings(force_reload=True)
    engine_settings = config.get_sync_engine_settings()
    assert engine_settings["push_timeout"] == 12.5
    assert engine_settings["retry_ceiling"] == 3
    assert engine_settings["pull_remote_changes"] is False


def test_default_sync_preferences(temp_config_path):
    create_dummy_config(temp_config_path, {"sync": {"default_auto_sync_enabled": False,
                                                    "default_conflict_resolution": "prefer_local"}})
    config.load_settings(force_reload=True)
    assert config.get_default_sync_preferences() == {
        "auto_sync_enabled": False,
        "sync_interval_seconds": 300,
        "conflict_resolution": "prefer_local",
    }


def test_empty_token_means_no_token(temp_config_path):
    create_dummy_config(temp_config_path, {"sync_api": {"api_token": ""}})
    config.load_settings(force_reload=True)
    assert config.get_sync_api_settings()["token"] is None


def test_paths_expand_user_and_hold_log_file(temp_config_path, tmp_path):
    db_path = tmp_path / "data" / "store.db"
    create_dummy_config(temp_config_path, {"database": {"local_store_db_path": str(db_path)},
                                           "logging": {"log_filename": "sync.log"}})
    config.load_settings(force_reload=True)
    assert config.get_local_store_db_path() == db_path.resolve()
    assert config.get_cli_log_file_path() == db_path.resolve().parent / "sync.log"


def test_deep_merge_does_not_mutate_base():
    base = {"a": {"b": 1, "c": 2}}
    merged = config.deep_merge_dicts(base, {"a": {"b": 5}, "d": 1})
    assert merged == {"a": {"b": 5, "c": 2}, "d": 1}
    assert base == {"a": {"b": 1, "c": 2}}


def test_configure_logging_writes_rotating_file(temp_config_path, tmp_path):
    create_dummy_config(temp_config_path, {"general": {"log_level": "DEBUG"}})
    app_config = config.load_settings(force_reload=True)
    log_file = tmp_path / "logs" / "sync.log"
    root_logger = logging.getLogger()
    saved_handlers, saved_level = root_logger.handlers[:], root_logger.level
    try:
        configure_logging(app_config, log_file_path=log_file, use_textual_handler=False)
        logging.getLogger("jobtracker_sync.test").warning("outbox check")
        for handler in root_logger.handlers:
            handler.flush()
        assert root_logger.level == logging.DEBUG
        assert "outbox check" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(saved_level)
