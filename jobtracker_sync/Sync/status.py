# status.py
# Description: Builds the current EngineStatus on demand for the footer widget and the shutdown coordinator.
#
# Imports
#
# Local Imports
from .connectivity import ConnectivityMonitor
from .models import EngineStatus
from .outbox import OutboxStore
from .processor import SyncProcessor
from .settings_store import SyncSettingsStore
#
########################################################################################################################
#
# Functions:

class StatusReporter:
    """Read-only view over the engine. Every call queries the outbox; nothing is cached."""

    def __init__(self, outbox: OutboxStore, processor: SyncProcessor, connectivity: ConnectivityMonitor,
                 settings_store: SyncSettingsStore):
        self.outbox = outbox
        self.processor = processor
        self.connectivity = connectivity
        self.settings_store = settings_store

    def get_status(self) -> EngineStatus:
        counts = self.outbox.count_by_state()
        return EngineStatus(
            last_sync_at=self.settings_store.get_last_sync_time(),
            pending_count=counts["pending"],
            failed_count=counts["failed"],
            awaiting_decision_count=counts["awaiting_decision"],
            sync_in_progress=self.processor.sync_in_progress,
            remote_reachable=self.connectivity.remote_reachable,
            last_probe_at=self.connectivity.last_probe_at,
        )

    def pending_count(self) -> int:
        return self.outbox.count_by_state()["pending"]

#
# End of status.py
########################################################################################################################
