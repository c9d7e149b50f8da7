"""Event windows and the kiosk's recent-activity feed."""
import logging
from datetime import datetime, date, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.timeutils import iso, to_naive_utc, utcnow
from portal.models.event import Event
from portal.models.timeclock import TimeEntry
from portal.models.user import User
from portal.services.timesheet import ACTION_LABELS, CLOCK_VALUES, checked_in_roster

logger = logging.getLogger(__name__)

OFFLINE_SYNC_MARKER = "offline kiosk sync"


def _event_tz() -> ZoneInfo:
    return ZoneInfo(settings.EVENT_TIMEZONE)


def compute_event_window(event: Event) -> Optional[Tuple[datetime, datetime]]:
    """(start, end) of an event as naive UTC, or None when dates/times are missing.

    Overnight events either set ``ends_next_day`` or have an end time at or
    before the start time; both roll the end into the next day.
    """
    if not event or not event.event_date or not event.start_time or not event.end_time:
        return None

    tz = _event_tz()
    start = datetime.combine(event.event_date, event.start_time).replace(tzinfo=tz)
    end = datetime.combine(event.event_date, event.end_time).replace(tzinfo=tz)
    if event.ends_next_day or end <= start:
        end += timedelta(days=1)

    return to_naive_utc(start), to_naive_utc(end)


def local_today(now: datetime) -> date:
    """Calendar date of a naive-UTC instant in the event timezone."""
    return now.replace(tzinfo=ZoneInfo("UTC")).astimezone(_event_tz()).date()


def candidate_events(db: Session, now: datetime) -> List[Event]:
    """Active events dated today or yesterday (overnight events)."""
    today = local_today(now)
    return db.query(Event).filter(
        Event.is_active == True,
        Event.event_date.in_([today, today - timedelta(days=1)]),
    ).all()


def pick_active_event(db: Session, now: datetime) -> Optional[Event]:
    """Most recently started event whose window contains ``now``."""
    live = []
    for event in candidate_events(db, now):
        window = compute_event_window(event)
        if window and window[0] <= now <= window[1]:
            live.append((window[0], event))
    if not live:
        return None
    live.sort(key=lambda pair: pair[0], reverse=True)
    return live[0][1]


def display_names(db: Session, user_ids) -> dict:
    ids = list({uid for uid in user_ids if uid is not None})
    if not ids:
        return {}
    users = db.query(User).filter(User.id.in_(ids)).all()
    return {u.id: u.display_name for u in users}


def _window_query(db: Session, start: datetime, end: datetime, event_id: Optional[int], actions=None):
    query = db.query(TimeEntry).filter(
        TimeEntry.timestamp >= start,
        TimeEntry.timestamp <= end,
    )
    if event_id is not None:
        query = query.filter(TimeEntry.event_id == event_id)
    if actions:
        query = query.filter(TimeEntry.action.in_(actions))
    return query


def recent_activity(db: Session, event_id: Optional[int] = None, now: Optional[datetime] = None) -> dict:
    """Recent clock actions for the live event; empty once the event is over."""
    now = now or utcnow()
    empty = {"event": None, "entries": [], "checked_in_users": []}

    if event_id is not None:
        event = db.query(Event).filter(Event.id == event_id).first()
    else:
        event = pick_active_event(db, now)

    if not event:
        return empty

    window = compute_event_window(event)
    if not window:
        return empty

    start, end = window
    if end < now:
        return empty

    feed_start = start - timedelta(hours=settings.EVENT_PREROLL_HOURS)

    # Prefer rows tagged with the event; fall back to the time window for untagged data
    entries = (
        _window_query(db, feed_start, end, event.id)
        .order_by(TimeEntry.timestamp.desc(), TimeEntry.id.desc())
        .limit(settings.RECENT_ACTIVITY_LIMIT)
        .all()
    )
    if not entries:
        logger.debug(f"No entries tagged with event {event.id}; using the time window")
        entries = (
            _window_query(db, feed_start, end, None)
            .order_by(TimeEntry.timestamp.desc(), TimeEntry.id.desc())
            .limit(settings.RECENT_ACTIVITY_LIMIT)
            .all()
        )

    clock_rows = (
        _window_query(db, feed_start, end, event.id, CLOCK_VALUES)
        .order_by(TimeEntry.timestamp.asc(), TimeEntry.id.asc())
        .limit(settings.ROSTER_QUERY_LIMIT)
        .all()
    )
    if not clock_rows:
        clock_rows = (
            _window_query(db, feed_start, end, None, CLOCK_VALUES)
            .order_by(TimeEntry.timestamp.asc(), TimeEntry.id.asc())
            .limit(settings.ROSTER_QUERY_LIMIT)
            .all()
        )

    names = display_names(db, [e.user_id for e in entries] + [e.user_id for e in clock_rows])

    feed = [
        {
            "user_id": e.user_id,
            "name": names.get(e.user_id, "User"),
            "action": ACTION_LABELS.get(e.action, e.action),
            "timestamp": iso(e.timestamp),
            "offline": OFFLINE_SYNC_MARKER in (e.notes or "").lower(),
        }
        for e in entries
    ]

    roster = [
        {
            **row,
            "first_clock_in_at": iso(row["first_clock_in_at"]),
            "last_clock_at": iso(row["last_clock_at"]),
        }
        for row in checked_in_roster(clock_rows, names)
    ]

    return {
        "event": {
            "id": event.id,
            "name": event.event_name,
            "start": iso(start),
            "end": iso(end),
        },
        "entries": feed,
        "checked_in_users": roster,
    }
