"""Storage seam for the time-entry log.

The validator only needs four things from storage: the worker's guard
version, the latest entry, the latest clock-type entry and an atomic
conditional append. ``SqlTimeEntryStore`` provides them over SQLAlchemy.
"""
from typing import Callable, List, Optional, Protocol, Sequence

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.exceptions import StaleVersionError
from portal.models.timeclock import TimeEntry, WorkerClockState


CLOCK_ACTION_VALUES = ("clock_in", "clock_out")


class TimeEntryStore(Protocol):
    def version(self, worker_id: int) -> int:
        raise NotImplementedError

    def latest_entry(self, worker_id: int) -> Optional[TimeEntry]:
        raise NotImplementedError

    def latest_clock_entry(self, worker_id: int) -> Optional[TimeEntry]:
        raise NotImplementedError

    def append(
        self,
        worker_id: int,
        rows: Sequence[dict],
        expected_version: int,
        companions: Optional[Callable[[List[TimeEntry]], list]] = None,
    ) -> List[TimeEntry]:
        """Write all rows (and their companions) or none.

        Raises StaleVersionError if the version moved.
        """
        raise NotImplementedError


class SqlTimeEntryStore:
    def __init__(self, db: Session):
        self.db = db

    def version(self, worker_id: int) -> int:
        current = self.db.execute(
            select(WorkerClockState.version).where(WorkerClockState.user_id == worker_id)
        ).scalar()
        return current or 0

    def latest_entry(self, worker_id: int) -> Optional[TimeEntry]:
        return self._latest(worker_id)

    def latest_clock_entry(self, worker_id: int) -> Optional[TimeEntry]:
        return self._latest(worker_id, CLOCK_ACTION_VALUES)

    def _latest(self, worker_id: int, actions: Optional[Sequence[str]] = None) -> Optional[TimeEntry]:
        query = self.db.query(TimeEntry).filter(TimeEntry.user_id == worker_id)
        if actions:
            query = query.filter(TimeEntry.action.in_(actions))
        # id breaks ties between entries replayed with the same client clock value
        return query.order_by(TimeEntry.timestamp.desc(), TimeEntry.id.desc()).first()

    def append(
        self,
        worker_id: int,
        rows: Sequence[dict],
        expected_version: int,
        companions: Optional[Callable[[List[TimeEntry]], list]] = None,
    ) -> List[TimeEntry]:
        if not rows:
            return []
        try:
            self._claim_version(worker_id, expected_version)

            entries = [self._new_entry(worker_id, row) for row in rows]
            self.db.add_all(entries)
            self.db.flush()

            if companions:
                self.db.add_all(companions(entries))

            self.db.execute(
                update(WorkerClockState)
                .where(WorkerClockState.user_id == worker_id)
                .values(last_entry_id=entries[-1].id)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return entries

    def _claim_version(self, worker_id: int, expected_version: int) -> None:
        if expected_version == 0:
            # First write for this worker: the primary key rejects a concurrent twin
            try:
                self.db.execute(insert(WorkerClockState).values(user_id=worker_id, version=1))
            except IntegrityError as e:
                raise StaleVersionError(f"worker {worker_id} guard row already exists") from e
            return

        result = self.db.execute(
            update(WorkerClockState)
            .where(
                WorkerClockState.user_id == worker_id,
                WorkerClockState.version == expected_version,
            )
            .values(version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleVersionError(
                f"worker {worker_id} moved past version {expected_version}"
            )

    def _new_entry(self, worker_id: int, row: dict) -> TimeEntry:
        return TimeEntry(
            user_id=worker_id,
            action=row["action"],
            timestamp=row["timestamp"],
            division=row.get("division"),
            notes=row.get("notes"),
            signature=row.get("signature"),
            event_id=row.get("event_id"),
        )
