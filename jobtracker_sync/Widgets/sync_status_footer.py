# jobtracker_sync/Widgets/sync_status_footer.py
#
# Imports
from typing import Callable, Optional
#
# 3rd-party Libraries
from loguru import logger
from textual.timer import Timer
from textual.widgets import Static
#
# Local Imports
from ..DB.Local_Store_DB import parse_utc_timestamp
from ..Sync.models import EngineStatus
#
########################################################################################################################
#
# SyncStatusFooter

def format_last_sync(last_sync_at: Optional[str]) -> str:
    if not last_sync_at:
        return "never"
    try:
        moment = parse_utc_timestamp(last_sync_at)
    except ValueError:
        return last_sync_at
    return moment.astimezone().strftime("%Y-%m-%d %H:%M")


def format_status_line(status: EngineStatus) -> str:
    if status.sync_in_progress:
        state = "Syncing..."
    elif status.remote_reachable:
        state = "Online"
    else:
        state = "Offline"
    parts = [state, f"{status.pending_count} pending"]
    if status.failed_count:
        parts.append(f"{status.failed_count} failed")
    if status.awaiting_decision_count:
        parts.append(f"{status.awaiting_decision_count} conflicts")
    parts.append(f"last sync: {format_last_sync(status.last_sync_at)}")
    return " | ".join(parts)


class SyncStatusFooter(Static):
    """Footer line with the outbox counts and connectivity, refreshed from `status_provider`."""

    DEFAULT_CSS = """
    SyncStatusFooter { height: 1; width: 100%; padding: 0 1; color: $text-muted; }
    SyncStatusFooter.-offline { color: $warning; }
    SyncStatusFooter.-attention { color: $error; }
    """

    def __init__(self, status_provider: Callable[[], EngineStatus], refresh_interval: float = 5.0, **kwargs) -> None:
        super().__init__("", **kwargs)
        self.status_provider = status_provider
        self.refresh_interval = refresh_interval
        self.status_text = ""
        self._refresh_timer: Optional[Timer] = None

    def on_mount(self) -> None:
        self.refresh_status()
        self._refresh_timer = self.set_interval(self.refresh_interval, self.refresh_status)

    def refresh_status(self) -> None:
        try:
            status = self.status_provider()
        except Exception as e:
            # The store may already be closed while the app is shutting down
            logger.debug(f"SyncStatusFooter: could not read sync status: {e}")
            return
        self.update_status(status)

    def update_status(self, status: EngineStatus) -> None:
        self.status_text = format_status_line(status)
        self.set_class(not status.remote_reachable, "-offline")
        self.set_class(bool(status.failed_count or status.awaiting_decision_count), "-attention")
        self.update(self.status_text)

#
# End of sync_status_footer.py
########################################################################################################################
