# remote.py
# Description: The contract between the sync processor and whatever remote service it pushes to.
#
# Imports
from typing import List, Optional, Protocol, runtime_checkable
#
# Local Imports
from ..sync_api.exceptions import SyncAPIError
from ..sync_api.schemas import (
    PushAccepted,
    PushConflict,
    PushRejected,
    PushRequest,
    PushResult,
    RemoteRecord,
)
#
########################################################################################################################
#
# Functions:

# Raised by endpoints for every failure worth retrying (timeouts, 5xx, connectivity loss).
TransientRemoteError = SyncAPIError


@runtime_checkable
class RemoteEndpoint(Protocol):
    """
    What the engine needs from a remote service.

    `push` returns `PushAccepted`, `PushConflict` or `PushRejected` and raises a
    `SyncAPIError` subclass for transient failures. `SyncAPIClient` is the HTTP
    implementation.
    """

    async def push(self, request: PushRequest) -> PushResult:
        ...

    async def check_health(self) -> bool:
        ...

    async def fetch_changes(self, entity_kind: str, since: Optional[str] = None) -> List[RemoteRecord]:
        ...

    async def close(self) -> None:
        ...


__all__ = [
    "RemoteEndpoint", "TransientRemoteError",
    "PushRequest", "PushAccepted", "PushConflict", "PushRejected", "PushResult", "RemoteRecord",
]

#
# End of remote.py
########################################################################################################################
