import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.core.exceptions import SignatureError, SignatureNotFound
from portal.core.security import get_current_user
from portal.models.user import MANAGER_ROLES, User
from portal.schemas.signature import SignatureCreate, SignatureOut, SignatureVerify
from portal.services import form_signature

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/form-signature", tags=["form-signature"])


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")


def _is_manager(user: User) -> bool:
    return (user.role or "").lower() in MANAGER_ROLES


@router.post("/create")
def create_signature(
    payload: SignatureCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Sign a form and bind the signature to the form data hash."""
    signer_id = payload.user_id or current_user.id
    if signer_id != current_user.id and not _is_manager(current_user):
        raise HTTPException(status_code=403, detail="Cannot sign on behalf of another user")

    try:
        signature = form_signature.create_signature(
            db,
            form_id=payload.form_id,
            form_type=payload.form_type,
            user_id=signer_id,
            signature_role=payload.signature_role,
            signature_data=payload.signature_data,
            signature_type=payload.signature_type,
            form_data=payload.form_data,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent") or "unknown",
            session_id=request.cookies.get("session"),
            employer_title=payload.employer_title,
            employer_organization=payload.employer_organization,
            documents_examined=payload.documents_examined,
            examination_date=payload.examination_date,
        )
    except SignatureError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "signature_id": signature.id,
        "binding_hash": signature.binding_hash,
        "form_data_hash": signature.form_data_hash,
        "signed_at": signature.signed_at.isoformat(),
        "message": "Signature created and cryptographically bound to form data",
    }


@router.get("/")
def list_signatures(
    form_id: str,
    signature_role: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = form_signature.list_signatures(db, form_id, signature_role)
    if not _is_manager(current_user):
        rows = [r for r in rows if r.user_id == current_user.id]
    return {
        "success": True,
        "signatures": [SignatureOut.model_validate(r) for r in rows],
        "count": len(rows),
    }


@router.post("/verify")
def verify_signature(
    payload: SignatureVerify,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return form_signature.verify_signature(
            db,
            payload.signature_id,
            payload.current_form_data,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent") or "unknown",
        )
    except SignatureNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
