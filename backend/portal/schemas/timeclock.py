from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from portal.services.shift_state import ClockAction


class ValidateCodeRequest(BaseModel):
    code: str


class ActionRequest(BaseModel):
    code: str
    action: ClockAction
    timestamp: Optional[datetime] = None  # offline kiosks send the original tap time
    signature: Optional[str] = None
    event_id: Optional[int] = None
    note: Optional[str] = None


class ActionResponse(BaseModel):
    success: bool
    action: str
    timestamp: datetime
    entry_id: int
    state: str
    auto_ended_meal: bool = False


class QueuedAction(BaseModel):
    id: str  # client-side queue id, echoed back per result
    code: str
    action: str  # checked per item so one bad entry does not fail the batch
    timestamp: str  # parsed per item; an unreadable value fails only that item
    signature: Optional[str] = None
    event_id: Optional[int] = None


class SyncRequest(BaseModel):
    actions: List[QueuedAction] = Field(default_factory=list)


class SyncItemResult(BaseModel):
    id: str
    success: bool
    error: Optional[str] = None
    kind: Optional[str] = None


class SyncResponse(BaseModel):
    synced: int
    failed: int
    results: List[SyncItemResult]


class HeartbeatRequest(BaseModel):
    event_id: Optional[int] = None
