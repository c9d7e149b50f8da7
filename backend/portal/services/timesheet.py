"""Read-side projections over the time-entry log.

Everything here folds entries chronologically; the last action wins for
status. The fold helpers take any objects with ``action`` / ``timestamp``
(and ``user_id`` for the roster) so they work on ORM rows and plain records.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from portal.core.timeutils import iso, utcnow
from portal.models.timeclock import TimeEntry
from portal.services.shift_state import (
    CLOCK_ACTIONS,
    MEAL_ACTIONS,
    ClockAction,
    ShiftState,
    derive_state,
    parse_action,
    transition,
)

CLOCK_VALUES = tuple(a.value for a in CLOCK_ACTIONS)
MEAL_VALUES = tuple(a.value for a in MEAL_ACTIONS)

ACTION_LABELS = {
    "clock_in": "Checked In",
    "clock_out": "Clocked Out",
    "meal_start": "Meal Started",
    "meal_end": "Meal Ended",
}

STATUS_LABELS = {
    ShiftState.OUT: "not_clocked_in",
    ShiftState.IN: "clocked_in",
    ShiftState.ON_MEAL: "on_meal",
}


def _chronological(entries: Iterable) -> List:
    return sorted(entries, key=lambda e: (e.timestamp, getattr(e, "id", 0) or 0))


def replay_state(actions: Iterable, start: ShiftState = ShiftState.OUT) -> ShiftState:
    """Run actions through the transition table; an illegal step raises ActionRejected."""
    state = start
    for action in actions:
        state, _ = transition(state, parse_action(action))
    return state


def fold_status(entries: Iterable) -> ShiftState:
    last_action = None
    last_clock_action = None
    for entry in _chronological(entries):
        last_action = entry.action
        if entry.action in CLOCK_VALUES:
            last_clock_action = entry.action
    return derive_state(last_action, last_clock_action)


def meal_duration(entries: Iterable, now: datetime) -> float:
    """Seconds spent on meal breaks; an open break counts up to ``now``."""
    total = 0.0
    open_start: Optional[datetime] = None

    for entry in _chronological(entries):
        if entry.timestamp is None:
            continue
        if entry.action == ClockAction.MEAL_START.value:
            if open_start is None:
                open_start = entry.timestamp
            continue
        if entry.action == ClockAction.MEAL_END.value:
            if open_start is None:
                continue
            if entry.timestamp >= open_start:
                total += (entry.timestamp - open_start).total_seconds()
            open_start = None

    if open_start is not None:
        total += max(0.0, (now - open_start).total_seconds())

    return max(0.0, total)


def checked_in_roster(clock_entries: Iterable, names: Optional[Dict[int, str]] = None) -> List[dict]:
    """Who clocked in during a window, ordered by first clock-in."""
    names = names or {}
    by_user: Dict[int, dict] = {}

    for entry in _chronological(clock_entries):
        if entry.user_id is None or entry.action not in CLOCK_VALUES:
            continue
        current = by_user.setdefault(
            entry.user_id,
            {"first_clock_in_at": None, "last_clock_action": None, "last_clock_at": None},
        )
        if entry.action == ClockAction.CLOCK_IN.value and current["first_clock_in_at"] is None:
            current["first_clock_in_at"] = entry.timestamp
        current["last_clock_action"] = entry.action
        current["last_clock_at"] = entry.timestamp

    roster = [
        {
            "user_id": uid,
            "name": names.get(uid, "User"),
            "first_clock_in_at": v["first_clock_in_at"],
            "is_clocked_in": v["last_clock_action"] == ClockAction.CLOCK_IN.value,
            "last_clock_at": v["last_clock_at"],
        }
        for uid, v in by_user.items()
        if v["first_clock_in_at"] is not None
    ]
    roster.sort(key=lambda r: r["first_clock_in_at"])
    return roster


def last_clock_status(clock_entries: Iterable) -> Dict[int, TimeEntry]:
    """Latest clock-type entry per worker."""
    latest: Dict[int, TimeEntry] = {}
    for entry in _chronological(clock_entries):
        if entry.user_id is not None and entry.action in CLOCK_VALUES:
            latest[entry.user_id] = entry
    return latest


# ── DB-backed views ─────────────────────────────────────────────────

def _latest(db: Session, worker_id: int, actions=None) -> Optional[TimeEntry]:
    query = db.query(TimeEntry).filter(TimeEntry.user_id == worker_id)
    if actions:
        query = query.filter(TimeEntry.action.in_(actions))
    return query.order_by(TimeEntry.timestamp.desc(), TimeEntry.id.desc()).first()


def worker_status(db: Session, worker_id: int) -> dict:
    last = _latest(db, worker_id)
    last_clock = _latest(db, worker_id, CLOCK_VALUES)
    state = derive_state(
        last.action if last else None,
        last_clock.action if last_clock else None,
    )
    clocked_in_at = last_clock.timestamp if state != ShiftState.OUT else None
    return {
        "state": state,
        "status": STATUS_LABELS[state],
        "clocked_in_at": iso(clocked_in_at),
    }


def shift_summary(db: Session, worker_id: int, now: Optional[datetime] = None) -> dict:
    """Current shift (since the last clock_in) with meal time so far."""
    now = now or utcnow()
    last_clock = _latest(db, worker_id, CLOCK_VALUES)
    if not last_clock or last_clock.action != ClockAction.CLOCK_IN.value:
        return {"active": False}

    meal_rows = (
        db.query(TimeEntry)
        .filter(
            TimeEntry.user_id == worker_id,
            TimeEntry.action.in_(MEAL_VALUES),
            TimeEntry.timestamp >= last_clock.timestamp,
        )
        .order_by(TimeEntry.timestamp.asc(), TimeEntry.id.asc())
        .limit(500)
        .all()
    )

    meal_seconds = meal_duration(meal_rows, now)
    on_meal = fold_status([last_clock] + meal_rows) == ShiftState.ON_MEAL

    return {
        "active": True,
        "clock_in_at": iso(last_clock.timestamp),
        "meal_ms": int(round(meal_seconds * 1000)),
        "on_meal": on_meal,
        "server_now": iso(now),
    }
