# shutdown_sync_screen.py
#
# Description: Modal shown on quit while the final sync runs.
#
# Imports
from typing import Optional
#
# 3rd-party Libraries
from loguru import logger
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Label, Static
#
# Local Imports
from ..Sync.models import ShutdownChoice, ShutdownResult
from ..Sync.shutdown import ShutdownCoordinator
#
########################################################################################################################
#
# Classes:

class ShutdownSyncScreen(ModalScreen[bool]):
    """
    Runs the shutdown sync and dismisses with True when the app may exit.

    While the drain runs only Cancel is offered. When the sync fails or is cancelled the
    user picks between "Close Anyway" (exit, entries stay queued) and "Return to App".
    """

    BINDINGS = [Binding("escape", "cancel_sync", "Cancel")]
    CSS = """
    ShutdownSyncScreen { align: center middle; }
    #shutdown-sync-dialog { width: 70; height: auto; border: thick $primary-background-lighten-2; background: $surface; padding: 1 2; }
    #shutdown-sync-title { text-style: bold; margin-bottom: 1; }
    #shutdown-sync-status { height: auto; min-height: 2; margin-bottom: 1; }
    #shutdown-sync-buttons { height: auto; width: 100%; align: right middle; }
    #shutdown-sync-buttons Button { margin-left: 1; }
    """

    def __init__(self, coordinator: ShutdownCoordinator, name: str | None = None, id: str | None = None,
                 classes: str | None = None) -> None:
        super().__init__(name, id, classes)
        self.coordinator = coordinator
        self.result: Optional[ShutdownResult] = None
        self.status_text = ""

    def compose(self) -> ComposeResult:
        with Vertical(id="shutdown-sync-dialog"):
            yield Label("Syncing changes before closing", id="shutdown-sync-title")
            yield Static("Preparing sync...", id="shutdown-sync-status")
            with Horizontal(id="shutdown-sync-buttons"):
                yield Button("Cancel", variant="warning", id="shutdown-sync-cancel")
                yield Button("Close Anyway", variant="error", id="shutdown-sync-close-anyway")
                yield Button("Return to App", variant="primary", id="shutdown-sync-return")

    def on_mount(self) -> None:
        self.query_one("#shutdown-sync-close-anyway", Button).display = False
        self.query_one("#shutdown-sync-return", Button).display = False
        self.run_worker(self._run_shutdown_sync(), exclusive=True, group="shutdown-sync")

    def _set_status(self, message: str) -> None:
        self.status_text = message
        self.query_one("#shutdown-sync-status", Static).update(message)

    async def _run_shutdown_sync(self) -> None:
        try:
            result = await self.coordinator.perform_shutdown_sync(self._set_status)
        except Exception as e:
            logger.exception("Shutdown sync raised an unexpected error")
            self._set_status(f"Sync failed unexpectedly: {e}")
            self._show_choices()
            return
        self.result = result
        if result.success:
            self.dismiss(True)
            return
        self._set_status(result.message)
        self._show_choices()

    def _show_choices(self) -> None:
        self.query_one("#shutdown-sync-cancel", Button).display = False
        self.query_one("#shutdown-sync-close-anyway", Button).display = True
        return_button = self.query_one("#shutdown-sync-return", Button)
        return_button.display = True
        return_button.focus()

    def _choose(self, choice: ShutdownChoice) -> None:
        if self.result is not None:
            allow_exit = self.coordinator.resolve_choice(self.result, choice)
        else:
            allow_exit = choice == ShutdownChoice.CLOSE_ANYWAY
        self.dismiss(allow_exit)

    def action_cancel_sync(self) -> None:
        if self.coordinator.in_progress:
            self._set_status("Cancelling after the current change...")
            self.coordinator.cancel()
        elif self.query_one("#shutdown-sync-return", Button).display:
            self._choose(ShutdownChoice.CANCEL_QUIT)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        button_id = event.button.id
        if button_id == "shutdown-sync-cancel":
            self.action_cancel_sync()
        elif button_id == "shutdown-sync-close-anyway":
            self._choose(ShutdownChoice.CLOSE_ANYWAY)
        elif button_id == "shutdown-sync-return":
            self._choose(ShutdownChoice.CANCEL_QUIT)

#
# End of shutdown_sync_screen.py
########################################################################################################################
