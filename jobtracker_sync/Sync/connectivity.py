# connectivity.py
# Description: Tracks whether the remote sync service is reachable.
#
# Imports
import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from ..DB.Local_Store_DB import utc_timestamp_str
from .remote import RemoteEndpoint, TransientRemoteError
#
########################################################################################################################
#
# Functions:

class ConnectivityMonitor:
    def __init__(self, remote: RemoteEndpoint, probe_timeout: float = 10.0,
                 clock: Optional[Callable[[], datetime]] = None):
        self.remote = remote
        self.probe_timeout = probe_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.remote_reachable = False
        self.last_probe_at: Optional[str] = None
        self.last_error: Optional[str] = None

    async def probe(self) -> bool:
        """Asks the remote for its health and records the answer. Never raises for remote failures."""
        try:
            reachable = bool(await asyncio.wait_for(self.remote.check_health(), timeout=self.probe_timeout))
            error = None if reachable else "Remote health check failed"
        except asyncio.TimeoutError:
            reachable, error = False, f"Health check timed out after {self.probe_timeout}s"
        except TransientRemoteError as e:
            reachable, error = False, str(e)
        self.last_probe_at = utc_timestamp_str(self._clock())
        self._set_state(reachable, error)
        return reachable

    def mark_reachable(self) -> None:
        self._set_state(True, None)

    def mark_unreachable(self, reason: str) -> None:
        self._set_state(False, reason)

    def _set_state(self, reachable: bool, error: Optional[str]) -> None:
        if reachable != self.remote_reachable:
            if reachable:
                logger.info("Remote sync service is reachable.")
            else:
                logger.warning(f"Remote sync service is unreachable: {error}")
        self.remote_reachable = reachable
        self.last_error = error

#
# End of connectivity.py
########################################################################################################################
