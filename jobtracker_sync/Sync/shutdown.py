# shutdown.py
# Description: Runs the final, user-visible sync before the application is allowed to exit.
#
# Imports
import asyncio
from typing import Awaitable, Callable, Optional, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from .connectivity import ConnectivityMonitor
from .models import EngineStatus, ShutdownChoice, ShutdownOutcome, ShutdownResult, describe_changes
from .processor import SyncProcessor
from .settings_store import SyncSettingsStore
from .status import StatusReporter
#
########################################################################################################################
#
# Functions:

ProgressCallback = Callable[[str], None]
ChoiceCallback = Callable[[ShutdownResult], Awaitable[ShutdownChoice]]


def _leftover_note(status: EngineStatus) -> str:
    if not (status.failed_count or status.awaiting_decision_count):
        return ""
    return (f" {status.failed_count} failed and {status.awaiting_decision_count} awaiting a conflict decision "
            f"remain for next startup.")


class ShutdownCoordinator:
    """
    Drains the outbox to empty (or to a state the user accepts) on exit intent.

    The drain re-checks the auto-sync setting and connectivity before every batch and
    stops on the first fatal condition: remote unreachable (at the probe or mid-batch),
    a batch that syncs nothing, or the overall timeout. Transient push failures never
    touch the entry's retry count here. Entries that end up rejected or awaiting a
    conflict decision during the exit are reported as a failure so the user sees them.
    Cancelling is cooperative and lands between entries.
    """

    def __init__(self, processor: SyncProcessor, reporter: StatusReporter, connectivity: ConnectivityMonitor,
                 settings_store: SyncSettingsStore, timeout_seconds: float = 120.0):
        self.processor = processor
        self.reporter = reporter
        self.connectivity = connectivity
        self.settings_store = settings_store
        self.timeout_seconds = timeout_seconds
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def in_progress(self) -> bool:
        return self._cancel_event is not None

    def cancel(self) -> bool:
        """User cancel. Takes effect once the push in flight (if any) has completed."""
        if self._cancel_event is None:
            return False
        logger.info("Shutdown sync cancelled by user.")
        self._cancel_event.set()
        self.processor.cancel_current()
        return True

    async def perform_shutdown_sync(self, on_progress: Optional[ProgressCallback] = None) -> ShutdownResult:
        progress = on_progress or (lambda message: None)

        initial_status = self.reporter.get_status()
        initial_pending = initial_status.pending_count
        if initial_pending == 0:
            message = "No changes to sync." + _leftover_note(initial_status)
            logger.info(f"Shutdown sync: no pending changes, ready to quit. {message}")
            progress(message)
            return ShutdownResult(outcome=ShutdownOutcome.READY_TO_QUIT, message=message)

        cancel_event = asyncio.Event()
        self._cancel_event = cancel_event
        timed_out = False

        def _on_deadline():
            nonlocal timed_out
            timed_out = True
            logger.warning(f"Shutdown sync exceeded {self.timeout_seconds}s; stopping after the current push.")
            cancel_event.set()
            self.processor.cancel_current()

        deadline = asyncio.get_running_loop().call_later(self.timeout_seconds, _on_deadline)
        logger.info(f"Shutdown sync started with {initial_pending} pending entries.")
        progress(f"Syncing {describe_changes(initial_pending)} before closing...")
        synced_total = 0
        try:
            while True:
                if cancel_event.is_set():
                    return self._stopped(timed_out, synced_total, progress)

                config = self.settings_store.load()
                if not config.auto_sync_enabled:
                    remaining = self.reporter.pending_count()
                    message = f"Sync is disabled. {describe_changes(remaining)} will be synced on next startup."
                    progress(message)
                    return ShutdownResult(outcome=ShutdownOutcome.READY_TO_QUIT, message=message,
                                          remaining_count=remaining, synced_count=synced_total)

                progress("Checking connection to the sync service...")
                if not await self.connectivity.probe():
                    reason = self.connectivity.last_error or "the sync service did not respond"
                    return self._failed(f"Cannot reach the sync service ({reason}).", synced_total, progress)
                if cancel_event.is_set():
                    continue

                # Transient failures must not eat into the retry budget here: a failed exit
                # leaves every unsynced entry as it was for the next startup.
                result = await self.processor.drain(ignore_backoff=True, cancel_event=cancel_event,
                                                    consume_retry_budget=False)
                if result.skipped:
                    progress("Waiting for the sync already in progress...")
                    await self.processor.wait_idle()
                    continue

                synced_total += result.synced_count + result.superseded_count
                remaining = self.reporter.pending_count()
                progress(f"Synced {describe_changes(synced_total)}, {remaining} remaining.")
                if result.connectivity_error:
                    detail = result.errors[-1] if result.errors else "connection lost"
                    return self._failed(f"Lost the connection to the sync service ({detail}).", synced_total, progress)
                if remaining == 0:
                    return self._finished(initial_status, synced_total, progress)
                if result.cancelled:
                    continue
                if not result.made_progress:
                    detail = result.errors[-1] if result.errors else "no entry could be pushed"
                    return self._failed(f"Could not sync {describe_changes(remaining)}: {detail}", synced_total, progress)
        finally:
            deadline.cancel()
            self._cancel_event = None

    def _finished(self, initial_status: EngineStatus, synced_total: int, progress: ProgressCallback) -> ShutdownResult:
        status = self.reporter.get_status()
        new_failed = max(status.failed_count - initial_status.failed_count, 0)
        new_conflicts = max(status.awaiting_decision_count - initial_status.awaiting_decision_count, 0)
        if new_failed or new_conflicts:
            message = (f"Every queued change was sent, but {new_failed} rejected by the sync service and "
                       f"{new_conflicts} awaiting a conflict decision need attention. Close anyway to review them "
                       f"on next startup, or cancel to keep working.")
            logger.warning(f"Shutdown sync finished with entries needing attention: {message}")
            progress(message)
            return ShutdownResult(outcome=ShutdownOutcome.FAILED, message=message, synced_count=synced_total)
        message = "All changes synced." + _leftover_note(status)
        logger.info(f"Shutdown sync finished: {message}")
        progress(message)
        return ShutdownResult(outcome=ShutdownOutcome.READY_TO_QUIT, message=message, synced_count=synced_total)

    def _failed(self, reason: str, synced_total: int, progress: ProgressCallback) -> ShutdownResult:
        remaining = self.reporter.pending_count()
        message = f"{reason} Close anyway to sync {describe_changes(remaining)} on next startup, or cancel to keep working."
        logger.warning(f"Shutdown sync failed: {reason}")
        progress(message)
        return ShutdownResult(outcome=ShutdownOutcome.FAILED, message=message,
                              remaining_count=remaining, synced_count=synced_total)

    def _stopped(self, timed_out: bool, synced_total: int, progress: ProgressCallback) -> ShutdownResult:
        if timed_out:
            return self._failed(f"Sync did not finish within {self.timeout_seconds:g} seconds.", synced_total, progress)
        remaining = self.reporter.pending_count()
        message = f"Sync cancelled. {describe_changes(remaining)} still queued."
        progress(message)
        return ShutdownResult(outcome=ShutdownOutcome.CANCELLED, message=message,
                              remaining_count=remaining, synced_count=synced_total)

    def resolve_choice(self, result: ShutdownResult, choice: Union[str, ShutdownChoice]) -> bool:
        """Applies the user's answer to a failed or cancelled shutdown sync. Returns True to let the app exit."""
        choice = ShutdownChoice(choice)
        if choice == ShutdownChoice.CLOSE_ANYWAY:
            logger.warning(f"Closing with {result.remaining_count} unsynced entries; they will be retried on next startup.")
            return True
        logger.info("Quit cancelled by user; pending entries kept.")
        return False

    async def request_exit(self, on_progress: Optional[ProgressCallback], choose: ChoiceCallback) -> bool:
        """Full exit flow. `choose` is only asked when the final sync did not succeed."""
        result = await self.perform_shutdown_sync(on_progress)
        if result.success:
            return True
        return self.resolve_choice(result, await choose(result))

#
# End of shutdown.py
########################################################################################################################
