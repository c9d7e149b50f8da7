"""Admin check-in monitor: live kiosks, events, who is on the clock, attestations."""
import logging
from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.timeutils import iso, to_naive_utc, utcnow
from portal.models.audit import AuditLog
from portal.models.signature import FormSignature
from portal.models.timeclock import TimeEntry
from portal.services.audit import record_audit
from portal.services.events import candidate_events, display_names, local_today
from portal.services.timesheet import CLOCK_VALUES, last_clock_status

logger = logging.getLogger(__name__)

HEARTBEAT_ACTION = "kiosk.heartbeat"


def record_heartbeat(
    db: Session,
    user_id: int,
    event_id: Optional[int],
    ip_address: str,
    user_agent: str,
) -> None:
    record_audit(
        db,
        HEARTBEAT_ACTION,
        user_id=user_id,
        resource_type="kiosk",
        resource_id=event_id,
        ip_address=ip_address,
        user_agent=(user_agent or "unknown")[:500],
        details={"event_id": event_id},
    )


def _local_midnight_utc(day) -> datetime:
    tz = ZoneInfo(settings.EVENT_TIMEZONE)
    return to_naive_utc(datetime.combine(day, time.min).replace(tzinfo=tz))


def build_monitor_snapshot(db: Session, now: Optional[datetime] = None, include_signatures: bool = False) -> dict:
    now = now or utcnow()
    heartbeat_since = now - timedelta(seconds=settings.KIOSK_HEARTBEAT_WINDOW_SECONDS)
    attestation_since = now - timedelta(hours=settings.ATTESTATION_LOOKBACK_HOURS)
    yesterday = local_today(now) - timedelta(days=1)

    heartbeats = (
        db.query(AuditLog)
        .filter(AuditLog.action == HEARTBEAT_ACTION, AuditLog.created_at >= heartbeat_since)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(200)
        .all()
    )
    events = candidate_events(db, now)
    clock_rows = (
        db.query(TimeEntry)
        .filter(
            TimeEntry.action.in_(CLOCK_VALUES),
            TimeEntry.timestamp >= _local_midnight_utc(yesterday),
        )
        .order_by(TimeEntry.timestamp.asc(), TimeEntry.id.asc())
        .limit(settings.ROSTER_QUERY_LIMIT)
        .all()
    )
    attestations = (
        db.query(FormSignature)
        .filter(
            FormSignature.form_type == settings.ATTESTATION_FORM_TYPE,
            FormSignature.signed_at >= attestation_since,
        )
        .order_by(FormSignature.signed_at.desc())
        .limit(200)
        .all()
    )

    names = display_names(
        db,
        [h.user_id for h in heartbeats]
        + [e.user_id for e in clock_rows]
        + [a.user_id for a in attestations],
    )

    def name_of(uid):
        return names.get(uid, "Unknown")

    # One kiosk per IP; rows are newest first so the first one wins
    kiosks = {}
    for hb in heartbeats:
        ip = hb.ip_address or "unknown"
        if ip in kiosks:
            continue
        kiosks[ip] = {
            "ip_address": ip,
            "user_agent": hb.user_agent or "",
            "operator_user_id": hb.user_id,
            "operator_name": name_of(hb.user_id),
            "event_id": int(hb.resource_id) if hb.resource_id and hb.resource_id.isdigit() else None,
            "last_seen": iso(hb.created_at),
        }

    events_by_id = {
        e.id: {
            "id": e.id,
            "name": e.event_name,
            "venue": e.venue,
            "city": e.city,
            "state": e.state,
            "date": iso(e.event_date),
            "start_time": iso(e.start_time),
            "end_time": iso(e.end_time),
            "checked_in_count": 0,
            "checked_in_users": [],
        }
        for e in events
    }

    checked_in = []
    for uid, entry in last_clock_status(clock_rows).items():
        if entry.action != "clock_in":
            continue
        event = events_by_id.get(entry.event_id)
        checked_in.append({
            "user_id": uid,
            "name": name_of(uid),
            "event_id": entry.event_id,
            "event_name": event["name"] if event else None,
            "venue": event["venue"] if event else None,
            "clocked_in_at": iso(entry.timestamp),
            "division": entry.division or "",
        })
        if event:
            event["checked_in_count"] += 1
            event["checked_in_users"].append({
                "user_id": uid,
                "name": name_of(uid),
                "clocked_in_at": iso(entry.timestamp),
                "division": entry.division or "",
            })

    attestation_rows = [
        {
            "id": a.id,
            "user_id": a.user_id,
            "name": name_of(a.user_id),
            "signed_at": iso(a.signed_at),
            "ip_address": a.ip_address,
            "is_valid": a.is_valid,
            "form_id": a.form_id,
        }
        for a in attestations
    ]
    if include_signatures:
        for row, a in zip(attestation_rows, attestations):
            row["signature_data"] = a.signature_data
            row["signature_type"] = a.signature_type

    logger.debug(
        f"Monitor snapshot: {len(kiosks)} kiosks, {len(checked_in)} clocked in, "
        f"{len(attestation_rows)} attestations"
    )

    return {
        "timestamp": iso(now),
        "active_kiosks": list(kiosks.values()),
        "active_events": list(events_by_id.values()),
        "checked_in_users": checked_in,
        "attestations": attestation_rows,
        "summary": {
            "total_active_kiosks": len(kiosks),
            "total_checked_in": len(checked_in),
            "total_attestations_today": len(attestation_rows),
            "total_active_events": len(events_by_id),
        },
    }
