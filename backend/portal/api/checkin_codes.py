import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.core.security import require_manager
from portal.models.user import User
from portal.schemas.checkin_code import CheckinCodeOut, CheckinCodeWithCheckins, GeneratePersonalCodes
from portal.services.checkin_codes import active_codes_with_checkins, issue_personal_codes

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/checkin-codes", tags=["checkin-codes"])


@router.post("/generate-personal")
def generate_personal_codes(
    payload: GeneratePersonalCodes,
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Issue a fresh personal code to one worker or to every active user."""
    label = payload.label.strip() if payload.label and payload.label.strip() else None

    if payload.audience == "one":
        if payload.recipient_user_id is None:
            raise HTTPException(status_code=400, detail="recipient_user_id is required for audience=one")
        recipient = db.query(User).filter(User.id == payload.recipient_user_id).first()
        if not recipient or not recipient.is_active:
            raise HTTPException(status_code=404, detail="Recipient not found")
        candidates = [recipient]
    else:
        candidates = db.query(User).filter(User.is_active == True).order_by(User.email.asc()).all()

    recipients = [u for u in candidates if u.email]
    skipped = len(candidates) - len(recipients)
    if not recipients:
        raise HTTPException(status_code=400, detail="No recipients found")

    try:
        rows = issue_personal_codes(db, recipients, created_by=current_user.id, label=label)
    except ValueError as e:
        db.rollback()
        logger.error(f"Personal code generation failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "generated_count": len(rows),
        "skipped_count": skipped,
        "codes": [CheckinCodeOut.model_validate(r) for r in rows],
    }


@router.get("/", response_model=List[CheckinCodeWithCheckins])
def list_active_codes(
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Active codes with the check-ins recorded against each."""
    return active_codes_with_checkins(db)
