# jobtracker_sync/sync_api/schemas.py
from typing import List, Optional, Dict, Any, Literal, Union
from pydantic import BaseModel, Field

# Enum-like Literals from the remote API
EntityKindName = Literal['applications', 'companies', 'contacts', 'reminders', 'files']
OperationName = Literal['create', 'update', 'delete']


# --- Push ---
class PushRequest(BaseModel):
    entity_kind: EntityKindName
    entity_id: int
    operation: OperationName
    payload: Optional[Dict[str, Any]] = None
    base_version: int = 0 # The remote version this write was based on; 0 for records the remote has never seen


class PushAccepted(BaseModel):
    kind: Literal['accepted'] = 'accepted'
    new_version: int


class PushConflict(BaseModel):
    kind: Literal['conflict'] = 'conflict'
    remote_version: int
    remote_payload: Optional[Dict[str, Any]] = None
    remote_deleted: bool = False


class PushRejected(BaseModel):
    kind: Literal['rejected'] = 'rejected'
    reason: str
    status_code: Optional[int] = None


PushResult = Union[PushAccepted, PushConflict, PushRejected]


# --- Pull ---
class RemoteRecord(BaseModel):
    entity_id: int
    version: int
    payload: Optional[Dict[str, Any]] = None
    deleted: bool = False
    updated_at: Optional[str] = None


class RemoteChangesResponse(BaseModel):
    records: List[RemoteRecord] = Field(default_factory=list)

#
# End of jobtracker_sync/sync_api/schemas.py
########################################################################################################################
