from portal.models.user import User, UserRole
from portal.models.timeclock import TimeEntry, WorkerClockState
from portal.models.event import Event
from portal.models.checkin import CheckinCode, CheckinLog
from portal.models.signature import FormSignature
from portal.models.audit import AuditLog

__all__ = [
    "User",
    "UserRole",
    "TimeEntry",
    "WorkerClockState",
    "Event",
    "CheckinCode",
    "CheckinLog",
    "FormSignature",
    "AuditLog",
]
