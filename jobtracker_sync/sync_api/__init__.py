# jobtracker_sync/sync_api/__init__.py
from .client import SyncAPIClient
from .exceptions import (
    SyncAPIError, APIConnectionError, APITimeoutError, APIRequestError,
    APIResponseError, AuthenticationError
)
from .schemas import (
    PushRequest, PushAccepted, PushConflict, PushRejected, PushResult,
    RemoteRecord, RemoteChangesResponse,
    EntityKindName, OperationName # Export Literals
)

__all__ = [
    "SyncAPIClient",
    "SyncAPIError", "APIConnectionError", "APITimeoutError", "APIRequestError",
    "APIResponseError", "AuthenticationError",
    "PushRequest", "PushAccepted", "PushConflict", "PushRejected", "PushResult",
    "RemoteRecord", "RemoteChangesResponse",
    "EntityKindName", "OperationName"
]
