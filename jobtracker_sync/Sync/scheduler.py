# scheduler.py
# Description: Background task that triggers periodic drains and services manual sync/cancel commands.
#
# Imports
import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from .models import DrainResult
from .settings_store import SyncSettingsStore
#
########################################################################################################################
#
# Functions:

class SchedulerCommand(str, Enum):
    SYNC_NOW = "sync_now"
    CANCEL = "cancel"
    RECONFIGURE = "reconfigure"
    STOP = "stop"


DrainCallable = Callable[[], Awaitable[Optional[DrainResult]]]


class SyncScheduler:
    """
    Owns the periodic timer as a single asyncio task fed by a command queue.

    The interval and the auto-sync switch are re-read from the settings store every
    loop, so a settings change applies on the next tick. Drains run in their own task
    so that CANCEL is handled while one is in flight.
    """

    def __init__(self, settings_store: SyncSettingsStore, run_drain: DrainCallable,
                 cancel_drain: Callable[[], bool]):
        self.settings_store = settings_store
        self._run_drain = run_drain
        self._cancel_drain = cancel_drain
        self._commands: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="SyncScheduler")
        logger.info("Sync scheduler started.")

    def send(self, command: SchedulerCommand) -> None:
        self._commands.put_nowait(SchedulerCommand(command))

    def request_sync(self) -> None:
        self.send(SchedulerCommand.SYNC_NOW)

    def cancel_current(self) -> None:
        self.send(SchedulerCommand.CANCEL)

    def notify_config_changed(self) -> None:
        self.send(SchedulerCommand.RECONFIGURE)

    async def stop(self) -> None:
        if not self.running:
            return
        self.send(SchedulerCommand.STOP)
        await self._task
        self._task = None
        logger.info("Sync scheduler stopped.")

    async def _next_command(self) -> Optional[SchedulerCommand]:
        """Waits for a command; returns None when the sync interval elapses first."""
        config = self.settings_store.load()
        if not config.auto_sync_enabled:
            return await self._commands.get()
        try:
            return await asyncio.wait_for(self._commands.get(), timeout=config.sync_interval_seconds)
        except asyncio.TimeoutError:
            return None

    async def _run(self) -> None:
        while True:
            command = await self._next_command()
            if command is None:
                self.ticks += 1
                logger.debug(f"Sync scheduler tick #{self.ticks}.")
                self._spawn_drain()
            elif command == SchedulerCommand.SYNC_NOW:
                self._spawn_drain()
            elif command == SchedulerCommand.CANCEL:
                self._cancel_drain()
            elif command == SchedulerCommand.RECONFIGURE:
                logger.debug("Sync scheduler reloading settings.")
            elif command == SchedulerCommand.STOP:
                await self._finish_running_drain()
                return

    def _spawn_drain(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            logger.debug("Skipping scheduled drain; previous drain still running.")
            return
        self._drain_task = asyncio.create_task(self._drain_and_log(), name="SyncDrain")

    async def _drain_and_log(self) -> None:
        try:
            await self._run_drain()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Scheduled sync drain failed unexpectedly: {e}")

    async def _finish_running_drain(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            return
        self._cancel_drain()
        await self._drain_task

#
# End of scheduler.py
########################################################################################################################
