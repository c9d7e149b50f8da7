from pydantic import BaseModel
from typing import Any, List, Optional
from datetime import date, datetime


class SignatureCreate(BaseModel):
    form_id: str
    form_type: str
    user_id: Optional[int] = None  # defaults to the caller
    signature_role: str  # employee, employer
    signature_data: str
    signature_type: str  # typed, drawn
    form_data: Any
    employer_title: Optional[str] = None
    employer_organization: Optional[str] = None
    documents_examined: Optional[List[Any]] = None
    examination_date: Optional[date] = None


class SignatureVerify(BaseModel):
    signature_id: int
    current_form_data: Any


class SignatureOut(BaseModel):
    id: int
    form_id: str
    form_type: str
    user_id: int
    signature_role: str
    signature_type: str
    form_data_hash: str
    binding_hash: str
    ip_address: str
    signed_at: datetime
    is_valid: Optional[bool] = None
    verification_attempts: Optional[int] = None
    last_verified_at: Optional[datetime] = None
    employer_title: Optional[str] = None
    employer_organization: Optional[str] = None

    class Config:
        from_attributes = True
