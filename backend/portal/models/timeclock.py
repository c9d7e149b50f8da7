"""Time clock models.

``time_entries`` is an append-only log: one row per clock_in / clock_out /
meal_start / meal_end. Nothing updates or deletes rows once written.

``worker_clock_states`` holds one guard row per worker whose ``version`` is
bumped by every append. Writers do a conditional update on the version they
read, so two requests racing on the same worker cannot both succeed.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from portal.core.database import Base


class TimeEntry(Base):
    """One recorded clock action."""
    __tablename__ = "time_entries"

    # Autoincrement id doubles as the insertion sequence (tie-break on equal timestamps)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    action = Column(String, nullable=False)  # clock_in, clock_out, meal_start, meal_end
    timestamp = Column(DateTime, nullable=False)  # naive UTC

    division = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    # Only set on signed clock-outs
    signature = Column(Text, nullable=True)

    # Advisory link for attendance rosters, not enforced
    event_id = Column(Integer, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", foreign_keys=[user_id], backref="time_entries")

    __table_args__ = (
        Index("ix_time_entries_user_ts", "user_id", "timestamp", "id"),
    )


class WorkerClockState(Base):
    """Per-worker concurrency guard for the time-entry log."""
    __tablename__ = "worker_clock_states"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    last_entry_id = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
