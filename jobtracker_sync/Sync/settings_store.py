# settings_store.py
# Description: Reads and writes the user's sync preferences and sync bookkeeping in the `user_settings` table.
#
# Imports
from typing import Any, Dict, Optional
#
# 3rd-party Libraries
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from ..DB.Local_Store_DB import InputError, LocalStoreDatabase
from .models import (
    LAST_PULL_TIME_KEY,
    LAST_SYNC_TIME_KEY,
    SYNC_SETTINGS_CATEGORY,
    SYNC_SETTINGS_KEY,
    SyncConfiguration,
)
#
########################################################################################################################
#
# Functions:

class SyncSettingsStore:
    """
    Owner of the persisted `SyncConfiguration`.

    `load()` always reads the table, so a change written by the settings screen is
    seen by the next caller without any cache invalidation.
    """

    def __init__(self, db: LocalStoreDatabase, defaults: Optional[SyncConfiguration] = None):
        self.db = db
        self.defaults = defaults or SyncConfiguration()

    def load(self) -> SyncConfiguration:
        stored = self.db.get_setting(SYNC_SETTINGS_KEY)
        if stored is None:
            return self.defaults.model_copy()
        if not isinstance(stored, dict):
            logger.warning(f"Ignoring malformed sync settings of type {type(stored).__name__}; using defaults.")
            return self.defaults.model_copy()
        merged = {**self.defaults.model_dump(), **stored}
        try:
            return SyncConfiguration(**merged)
        except ValidationError as e:
            logger.warning(f"Stored sync settings are invalid ({e.error_count()} errors); using defaults.")
            return self.defaults.model_copy()

    def save(self, config: SyncConfiguration) -> None:
        self.db.set_setting(SYNC_SETTINGS_KEY, config.model_dump(mode="json"), category=SYNC_SETTINGS_CATEGORY)
        logger.info(f"Saved sync settings: {config.model_dump(mode='json')}")

    def update(self, **changes: Any) -> SyncConfiguration:
        """Applies a partial update on top of the stored configuration and persists the result."""
        unknown = set(changes) - set(SyncConfiguration.model_fields)
        if unknown:
            raise InputError(f"Unknown sync settings: {', '.join(sorted(unknown))}")
        current: Dict[str, Any] = self.load().model_dump()
        current.update({key: value for key, value in changes.items() if value is not None})
        try:
            updated = SyncConfiguration(**current)
        except ValidationError as e:
            raise InputError(f"Invalid sync settings: {e}") from e
        self.save(updated)
        return updated

    def get_last_sync_time(self) -> Optional[str]:
        return self.db.get_setting(LAST_SYNC_TIME_KEY)

    def set_last_sync_time(self, timestamp: str) -> None:
        self.db.set_setting(LAST_SYNC_TIME_KEY, timestamp, category=SYNC_SETTINGS_CATEGORY)

    def get_last_pull_time(self) -> Optional[str]:
        return self.db.get_setting(LAST_PULL_TIME_KEY)

    def set_last_pull_time(self, timestamp: str) -> None:
        self.db.set_setting(LAST_PULL_TIME_KEY, timestamp, category=SYNC_SETTINGS_CATEGORY)

#
# End of settings_store.py
########################################################################################################################
