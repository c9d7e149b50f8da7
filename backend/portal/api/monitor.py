"""Admin check-in monitor: kiosk heartbeats, live dashboard data and PDF export."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.core.security import get_current_user, require_manager
from portal.models.user import User
from portal.schemas.timeclock import HeartbeatRequest
from portal.services.monitor import build_monitor_snapshot, record_heartbeat
from portal.services.monitor_pdf import generate_monitor_pdf

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/check-in-monitor", tags=["check-in-monitor"])


@router.post("")
def kiosk_heartbeat(
    request: Request,
    payload: Optional[HeartbeatRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Record that a kiosk page is open. Never fails the kiosk."""
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = (
        forwarded.split(",")[0].strip() if forwarded
        else request.headers.get("x-real-ip") or "unknown"
    )
    try:
        record_heartbeat(
            db,
            current_user.id,
            payload.event_id if payload else None,
            ip_address,
            request.headers.get("user-agent") or "unknown",
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Heartbeat error: {e}")
    return {"ok": True}


@router.get("")
def monitor_dashboard(
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return build_monitor_snapshot(db)


@router.get("/export")
def export_monitor_pdf(
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    snapshot = build_monitor_snapshot(db, include_signatures=True)
    pdf_bytes = generate_monitor_pdf(snapshot)
    date_part = snapshot["timestamp"][:10]
    logger.info(f"Check-in monitor PDF exported by user {current_user.id}")
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="check-in-monitor-{date_part}.pdf"'},
    )
