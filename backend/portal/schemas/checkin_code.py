from pydantic import BaseModel
from typing import List, Literal, Optional
from datetime import datetime


class GeneratePersonalCodes(BaseModel):
    audience: Literal["one", "all"] = "all"
    recipient_user_id: Optional[int] = None
    label: Optional[str] = None


class CheckinCodeOut(BaseModel):
    id: int
    code: str
    target_user_id: Optional[int] = None
    created_by: Optional[int] = None
    label: Optional[str] = None
    expires_at: datetime
    is_active: bool

    class Config:
        from_attributes = True


class CheckinLogOut(BaseModel):
    id: int
    code_id: Optional[int] = None
    user_id: Optional[int] = None
    name: Optional[str] = None
    checked_in_at: Optional[datetime] = None


class CheckinCodeWithCheckins(CheckinCodeOut):
    checkins: List[CheckinLogOut] = []
