# config.py
# Description: TOML configuration for the sync engine: defaults, user overrides and typed getters.
#
# Imports
import copy
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

CLI_APP_CLIENT_ID = "jobtracker_sync_local_instance_v1"

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "jobtracker_sync" / "config.toml"
BASE_DATA_DIR = Path.home() / ".local" / "share" / "jobtracker_sync"

CONFIG_TOML_CONTENT = """
# Configuration for the job tracker sync engine
# This file is created with default values on first start; edit it to override them.

[general]
log_level = "INFO"              # DEBUG, INFO, WARNING, ERROR, CRITICAL
client_id = "jobtracker_sync_local_instance_v1"

[logging]
log_filename = "jobtracker_sync.log"
file_log_level = "INFO"
log_max_bytes = 10485760        # 10 MB
log_backup_count = 5

[database]
local_store_db_path = "~/.local/share/jobtracker_sync/jobtracker_local.db"

[sync]
batch_size = 50
retry_ceiling = 3               # Failed attempts before an entry needs a manual reset
retry_base_delay_seconds = 60   # Backoff is retry_count * this value
push_timeout_seconds = 30
probe_timeout_seconds = 10
shutdown_timeout_seconds = 120
purge_synced_after_days = 7
pull_remote_changes = true
# Defaults used until the user saves their own sync preferences
default_auto_sync_enabled = true
default_sync_interval_seconds = 300
default_conflict_resolution = "ask"   # ask, prefer_local, prefer_remote

[sync_api]
base_url = "http://localhost:3000"
api_path = "/api/synchronizeJobManager"
api_token = ""
timeout = 30
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal default CONFIG_TOML_CONTENT: {e}")
    DEFAULT_CONFIG_FROM_TOML = {}


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges `update` into a copy of `base`; values from `update` win."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False, config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Loads settings from ~/.config/jobtracker_sync/config.toml on top of the built-in defaults.
    If the file doesn't exist, it's created with default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    config_path = config_path or DEFAULT_CONFIG_PATH
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}. Creating with default values.")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {config_path}")
        except OSError as e:
            logger.error(f"Could not create default config file {config_path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {config_path}")
        try:
            with open(config_path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {config_path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {config_path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {config_path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = loaded_config
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def get_cli_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def _get_typed_setting(section: str, key: str, target_type: type) -> Any:
    default = DEFAULT_CONFIG_FROM_TOML.get(section, {}).get(key)
    value = get_cli_setting(section, key, default)
    try:
        if target_type is bool and isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return target_type(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid value {value!r} for [{section}] {key}; using default {default!r}.")
        return default


# --- Path Getters ---
def get_local_store_db_path() -> Path:
    default_db_path_str = DEFAULT_CONFIG_FROM_TOML.get("database", {}).get(
        "local_store_db_path", str(BASE_DATA_DIR / "jobtracker_local.db"))
    db_path_str = get_cli_setting("database", "local_store_db_path", default_db_path_str)
    return Path(db_path_str).expanduser().resolve()


def get_cli_log_file_path() -> Path:
    default_log_filename = DEFAULT_CONFIG_FROM_TOML.get("logging", {}).get("log_filename", "jobtracker_sync.log")
    log_filename = get_cli_setting("logging", "log_filename", default_log_filename)
    log_file_path = get_local_store_db_path().parent / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}")
    return log_file_path


# --- Section Getters ---
def get_client_id() -> str:
    return get_cli_setting("general", "client_id", CLI_APP_CLIENT_ID) or CLI_APP_CLIENT_ID


def get_sync_engine_settings() -> Dict[str, Any]:
    """Tuning values for the sync engine, converted to the types the engine expects."""
    return {
        "batch_size": _get_typed_setting("sync", "batch_size", int),
        "retry_ceiling": _get_typed_setting("sync", "retry_ceiling", int),
        "retry_base_delay": _get_typed_setting("sync", "retry_base_delay_seconds", float),
        "push_timeout": _get_typed_setting("sync", "push_timeout_seconds", float),
        "probe_timeout": _get_typed_setting("sync", "probe_timeout_seconds", float),
        "shutdown_timeout": _get_typed_setting("sync", "shutdown_timeout_seconds", float),
        "purge_synced_after_days": _get_typed_setting("sync", "purge_synced_after_days", int),
        "pull_remote_changes": _get_typed_setting("sync", "pull_remote_changes", bool),
    }


def get_default_sync_preferences() -> Dict[str, Any]:
    return {
        "auto_sync_enabled": _get_typed_setting("sync", "default_auto_sync_enabled", bool),
        "sync_interval_seconds": _get_typed_setting("sync", "default_sync_interval_seconds", int),
        "conflict_resolution": _get_typed_setting("sync", "default_conflict_resolution", str),
    }


def get_sync_api_settings() -> Dict[str, Any]:
    token = get_cli_setting("sync_api", "api_token", "") or None
    return {
        "base_url": _get_typed_setting("sync_api", "base_url", str),
        "api_path": _get_typed_setting("sync_api", "api_path", str),
        "token": token,
        "timeout": _get_typed_setting("sync_api", "timeout", float),
    }

#
# End of config.py
#######################################################################################################################
