"""Shift state machine behind the kiosk clock actions.

States::

    OUT     --clock_in-->   IN
    IN      --clock_out-->  OUT
    IN      --meal_start--> ON_MEAL
    ON_MEAL --meal_end-->   IN
    ON_MEAL --clock_out-->  OUT   (writes a synthetic meal_end first)

Every other (state, action) pair is refused before anything is written.
The only state is the worker's time-entry log; the validator reads the
latest entry (and the latest clock-type entry) and appends through a
version-guarded write so two racing requests cannot both land.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.exceptions import (
    ActionRejected,
    RejectionKind,
    StaleVersionError,
    WorkerLookupError,
)
from portal.core.timeutils import to_naive_utc, utcnow
from portal.models.user import User
from portal.services.time_entry_store import SqlTimeEntryStore, TimeEntryStore

logger = logging.getLogger(__name__)


class ClockAction(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"
    MEAL_START = "meal_start"
    MEAL_END = "meal_end"


CLOCK_ACTIONS = (ClockAction.CLOCK_IN, ClockAction.CLOCK_OUT)
MEAL_ACTIONS = (ClockAction.MEAL_START, ClockAction.MEAL_END)


class ShiftState(str, enum.Enum):
    OUT = "out"
    IN = "in"
    ON_MEAL = "on_meal"


TRANSITIONS: Dict[Tuple[ShiftState, ClockAction], ShiftState] = {
    (ShiftState.OUT, ClockAction.CLOCK_IN): ShiftState.IN,
    (ShiftState.IN, ClockAction.CLOCK_OUT): ShiftState.OUT,
    (ShiftState.IN, ClockAction.MEAL_START): ShiftState.ON_MEAL,
    (ShiftState.ON_MEAL, ClockAction.MEAL_END): ShiftState.IN,
    (ShiftState.ON_MEAL, ClockAction.CLOCK_OUT): ShiftState.OUT,
}

# Entries written ahead of the requested one
CASCADES: Dict[Tuple[ShiftState, ClockAction], Tuple[ClockAction, ...]] = {
    (ShiftState.ON_MEAL, ClockAction.CLOCK_OUT): (ClockAction.MEAL_END,),
}

ALREADY_CLOCKED_IN = "Worker is already clocked in"
ALREADY_ON_MEAL = "Worker is already on a meal break"
NOT_CLOCKED_IN = "Worker is not clocked in"
MUST_CLOCK_IN_FOR_MEAL = "Worker must be clocked in to start a meal"
NOT_ON_MEAL = "Worker is not on a meal break"

REJECTIONS: Dict[Tuple[ShiftState, ClockAction], Tuple[RejectionKind, str]] = {
    (ShiftState.IN, ClockAction.CLOCK_IN): (RejectionKind.ALREADY_IN_STATE, ALREADY_CLOCKED_IN),
    (ShiftState.ON_MEAL, ClockAction.CLOCK_IN): (RejectionKind.ALREADY_IN_STATE, ALREADY_CLOCKED_IN),
    (ShiftState.ON_MEAL, ClockAction.MEAL_START): (RejectionKind.ALREADY_IN_STATE, ALREADY_ON_MEAL),
    (ShiftState.OUT, ClockAction.CLOCK_OUT): (RejectionKind.NOT_IN_REQUIRED_STATE, NOT_CLOCKED_IN),
    (ShiftState.OUT, ClockAction.MEAL_START): (RejectionKind.NOT_IN_REQUIRED_STATE, MUST_CLOCK_IN_FOR_MEAL),
    (ShiftState.OUT, ClockAction.MEAL_END): (RejectionKind.NOT_IN_REQUIRED_STATE, NOT_ON_MEAL),
    (ShiftState.IN, ClockAction.MEAL_END): (RejectionKind.NOT_IN_REQUIRED_STATE, NOT_ON_MEAL),
}

AUTO_MEAL_END_NOTE = "Auto-ended on clock out"
SIGNED_CLOCK_OUT_NOTE = "Signed clock-out via kiosk"
KIOSK_NOTE = "Kiosk check-in"


def parse_action(value) -> ClockAction:
    if isinstance(value, ClockAction):
        return value
    try:
        return ClockAction(str(value).strip())
    except ValueError:
        raise ActionRejected(
            RejectionKind.INVALID_ACTION,
            "Invalid action. Must be one of: clock_in, clock_out, meal_start, meal_end",
        )


def derive_state(last_action: Optional[str], last_clock_action: Optional[str]) -> ShiftState:
    """State from the latest entry overall and the latest clock-type entry."""
    if last_clock_action != ClockAction.CLOCK_IN.value:
        return ShiftState.OUT
    if last_action == ClockAction.MEAL_START.value:
        return ShiftState.ON_MEAL
    return ShiftState.IN


def transition(state: ShiftState, action: ClockAction) -> Tuple[ShiftState, Tuple[ClockAction, ...]]:
    """Target state and cascaded actions, or ActionRejected for an illegal pair."""
    key = (state, action)
    if key in TRANSITIONS:
        return TRANSITIONS[key], CASCADES.get(key, ())
    kind, message = REJECTIONS[key]
    raise ActionRejected(kind, message)


@dataclass
class ActionResult:
    entry_id: int
    timestamp: datetime
    action: ClockAction
    state: ShiftState
    entries: List = field(default_factory=list)

    @property
    def auto_ended_meal(self) -> bool:
        return len(self.entries) > 1


class DivisionLookup(Protocol):
    def get_division(self, worker_id: int) -> str:
        raise NotImplementedError


class SqlDivisionLookup:
    def __init__(self, db: Session):
        self.db = db

    def get_division(self, worker_id: int) -> str:
        user = self.db.query(User).filter(User.id == worker_id).first()
        if not user or not user.is_active:
            raise WorkerLookupError(f"Worker {worker_id} not found")
        return user.division or settings.DEFAULT_DIVISION


class ShiftStateValidator:
    """Decides whether a worker's clock action is legal and records it."""

    def __init__(
        self,
        store: TimeEntryStore,
        divisions: DivisionLookup,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: Optional[int] = None,
        max_future_skew: Optional[timedelta] = None,
    ):
        self._store = store
        self._divisions = divisions
        self._clock = clock
        self._max_attempts = max(1, int(max_attempts or settings.TIMECLOCK_MAX_ATTEMPTS))
        if max_future_skew is None:
            max_future_skew = timedelta(seconds=settings.OFFLINE_MAX_FUTURE_SKEW_SECONDS)
        self._max_future_skew = max_future_skew

    def current_state(self, worker_id: int) -> ShiftState:
        last = self._store.latest_entry(worker_id)
        last_clock = self._store.latest_clock_entry(worker_id)
        return derive_state(
            last.action if last else None,
            last_clock.action if last_clock else None,
        )

    def perform_action(
        self,
        worker_id: int,
        action,
        *,
        timestamp: Optional[datetime] = None,
        signature: Optional[str] = None,
        event_id: Optional[int] = None,
        note: Optional[str] = None,
        companions: Optional[Callable[[List], List]] = None,
    ) -> ActionResult:
        """Record ``action`` for the worker or raise ActionRejected.

        ``companions`` receives the written entries and returns extra rows
        to commit in the same transaction (e.g. the kiosk check-in log).
        """
        clock_action = parse_action(action)

        try:
            division = self._divisions.get_division(worker_id)
        except WorkerLookupError as e:
            raise ActionRejected(RejectionKind.LOOKUP_FAILED, str(e)) from e

        now = self._clock()
        requested_at = None
        if timestamp is not None:
            requested_at = to_naive_utc(timestamp)
            if requested_at > now + self._max_future_skew:
                raise ActionRejected(
                    RejectionKind.INVALID_TIMESTAMP,
                    f"Timestamp {requested_at.isoformat()} is in the future",
                )

        for attempt in range(1, self._max_attempts + 1):
            # Version first: any write after this read makes the append stale
            version = self._store.version(worker_id)
            last = self._store.latest_entry(worker_id)
            last_clock = self._store.latest_clock_entry(worker_id)
            state = derive_state(
                last.action if last else None,
                last_clock.action if last_clock else None,
            )

            # State conflicts outrank ordering problems in what the caller is told
            try:
                target, cascade = transition(state, clock_action)
            except ActionRejected as rejection:
                logger.info(
                    f"Rejected {clock_action.value} for worker {worker_id} "
                    f"in state {state.value}: {rejection.kind.value}"
                )
                raise

            entry_time = requested_at or now
            if last is not None and entry_time < last.timestamp:
                if requested_at is not None:
                    raise ActionRejected(
                        RejectionKind.INVALID_TIMESTAMP,
                        f"Timestamp {requested_at.isoformat()} is older than the "
                        f"worker's last entry ({last.timestamp.isoformat()})",
                    )
                # Server clock behind a replayed entry: keep the log ordered
                entry_time = last.timestamp

            rows = self._build_rows(
                clock_action, cascade, entry_time, division, signature, event_id, note,
            )

            try:
                written = self._store.append(worker_id, rows, version, companions)
            except StaleVersionError as e:
                logger.warning(
                    f"Lost write race for worker {worker_id} "
                    f"(attempt {attempt}/{self._max_attempts}): {e}"
                )
                continue

            primary = written[-1]
            logger.info(
                f"Worker {worker_id} {clock_action.value} at {entry_time.isoformat()} "
                f"({state.value} -> {target.value}, entry {primary.id})"
                + (" with auto meal end" if cascade else "")
            )
            return ActionResult(
                entry_id=primary.id,
                timestamp=primary.timestamp,
                action=clock_action,
                state=target,
                entries=written,
            )

        raise ActionRejected(
            RejectionKind.CONCURRENT_MODIFICATION,
            "Another action for this worker was recorded at the same time. Please retry.",
        )

    def _build_rows(self, action, cascade, at, division, signature, event_id, note) -> List[dict]:
        rows = [
            {
                "action": extra.value,
                "timestamp": at,
                "division": division,
                "notes": AUTO_MEAL_END_NOTE,
                "event_id": event_id,
            }
            for extra in cascade
        ]

        row = {
            "action": action.value,
            "timestamp": at,
            "division": division,
            "notes": note or KIOSK_NOTE,
            "event_id": event_id,
        }
        if action == ClockAction.CLOCK_OUT and signature:
            row["notes"] = f"{note} (signed)" if note else SIGNED_CLOCK_OUT_NOTE
            row["signature"] = signature
        rows.append(row)
        return rows


def build_validator(db: Session, **kwargs) -> ShiftStateValidator:
    return ShiftStateValidator(SqlTimeEntryStore(db), SqlDivisionLookup(db), **kwargs)
