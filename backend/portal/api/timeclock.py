"""Kiosk check-in API: code lookup, clock actions, offline sync, shift summary.

Every clock action goes through ``ShiftStateValidator``; a refused action
answers 400/404/409 with ``detail = {"message", "kind"}`` and writes nothing.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.core.exceptions import ActionRejected, CheckinCodeError, RejectionKind
from portal.core.security import get_current_user
from portal.core.timeutils import to_naive_utc
from portal.models.checkin import CheckinCode, CheckinLog
from portal.models.user import User
from portal.schemas.timeclock import (
    ActionRequest,
    ActionResponse,
    SyncItemResult,
    SyncRequest,
    SyncResponse,
    ValidateCodeRequest,
)
from portal.services.checkin_codes import resolve_code
from portal.services.events import recent_activity
from portal.services.shift_state import ClockAction, build_validator
from portal.services.timesheet import shift_summary as build_shift_summary
from portal.services.timesheet import worker_status

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/check-in", tags=["check-in"])

# Sync item kind for codes that do not resolve to a worker
INVALID_CODE_KIND = "invalid-code"


def _resolve(db: Session, raw_code: str) -> CheckinCode:
    try:
        return resolve_code(db, raw_code)
    except CheckinCodeError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


def _checkin_log(code: CheckinCode, action) -> Optional[Callable]:
    """Companion rows for a clock_in: the code's check-in log, same transaction."""
    if action != ClockAction.CLOCK_IN.value:
        return None

    def rows(entries):
        return [CheckinLog(
            code_id=code.id,
            user_id=code.target_user_id,
            checked_in_at=entries[-1].timestamp,
        )]

    return rows


def _parse_queued_timestamp(raw: str) -> datetime:
    value = (raw or "").strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


# ── Code lookup ──────────────────────────────────────────────────────

@router.post("/validate")
def validate_code(
    payload: ValidateCodeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Resolve a kiosk code to its worker and report their clock status."""
    code = _resolve(db, payload.code)

    worker = db.query(User).filter(User.id == code.target_user_id).first()
    if not worker or not worker.is_active:
        raise HTTPException(status_code=404, detail="Worker not found")

    current = worker_status(db, worker.id)
    return {
        "valid": True,
        "name": worker.display_name,
        "worker_id": worker.id,
        "code_id": code.id,
        "status": current["status"],
        "clocked_in_at": current["clocked_in_at"],
    }


# ── Clock actions ────────────────────────────────────────────────────

@router.post("/action", response_model=ActionResponse, status_code=status.HTTP_201_CREATED)
def perform_action(
    payload: ActionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    code = _resolve(db, payload.code)
    validator = build_validator(db)

    try:
        result = validator.perform_action(
            code.target_user_id,
            payload.action,
            timestamp=payload.timestamp,
            signature=payload.signature,
            event_id=payload.event_id,
            note=payload.note,
            companions=_checkin_log(code, payload.action.value),
        )
    except ActionRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    logger.info(
        f"Kiosk operator {current_user.id} recorded {result.action.value} "
        f"for worker {code.target_user_id}"
    )

    return ActionResponse(
        success=True,
        action=result.action.value,
        timestamp=result.timestamp,
        entry_id=result.entry_id,
        state=result.state.value,
        auto_ended_meal=result.auto_ended_meal,
    )


@router.post("/sync", response_model=SyncResponse)
def sync_offline_actions(
    payload: SyncRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Replay a kiosk's offline queue in original-timestamp order.

    Each item is validated like a live tap. Failures are reported per item
    and do not stop the rest of the batch.
    """
    if not payload.actions:
        raise HTTPException(status_code=400, detail="No actions to sync")

    results = []
    ready = []
    for item in payload.actions:
        try:
            ready.append((_parse_queued_timestamp(item.timestamp), item))
        except ValueError:
            results.append(SyncItemResult(
                id=item.id,
                success=False,
                error=f"Invalid timestamp: {item.timestamp}",
                kind=RejectionKind.INVALID_TIMESTAMP.value,
            ))

    ready.sort(key=lambda pair: to_naive_utc(pair[0]))

    validator = build_validator(db)
    for tapped_at, item in ready:
        try:
            code = resolve_code(db, item.code)
            validator.perform_action(
                code.target_user_id,
                item.action,
                timestamp=tapped_at,
                signature=item.signature,
                event_id=item.event_id,
                note=f"Offline kiosk sync (original: {item.timestamp})",
                companions=_checkin_log(code, item.action.strip()),
            )
        except CheckinCodeError as e:
            results.append(SyncItemResult(
                id=item.id, success=False, error=e.message, kind=INVALID_CODE_KIND,
            ))
            continue
        except ActionRejected as e:
            results.append(SyncItemResult(
                id=item.id, success=False, error=e.message, kind=e.kind.value,
            ))
            continue

        results.append(SyncItemResult(id=item.id, success=True))

    synced = sum(1 for r in results if r.success)
    failed = len(results) - synced
    logger.info(f"Offline sync from operator {current_user.id}: {synced} synced, {failed} failed")
    return SyncResponse(synced=synced, failed=failed, results=results)


# ── Read views ───────────────────────────────────────────────────────

@router.get("/shift-summary")
def get_shift_summary(
    worker_id: int = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return build_shift_summary(db, worker_id)


@router.get("/recent")
def get_recent_activity(
    event_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return recent_activity(db, event_id)
