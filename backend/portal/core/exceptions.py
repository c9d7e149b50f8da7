import enum


class RejectionKind(str, enum.Enum):
    """Why a time-clock action was refused.

    Input errors (``invalid-*``) mean the request itself is malformed.
    State conflicts mean the request is well-formed but not allowed in the
    worker's current state.
    """
    INVALID_ACTION = "invalid-action"
    INVALID_TIMESTAMP = "invalid-timestamp"
    ALREADY_IN_STATE = "already-in-state"
    NOT_IN_REQUIRED_STATE = "not-in-required-state"
    LOOKUP_FAILED = "lookup-failed"
    CONCURRENT_MODIFICATION = "concurrent-modification"


# HTTP status the API layer answers with for each rejection
REJECTION_STATUS = {
    RejectionKind.INVALID_ACTION: 400,
    RejectionKind.INVALID_TIMESTAMP: 400,
    RejectionKind.ALREADY_IN_STATE: 409,
    RejectionKind.NOT_IN_REQUIRED_STATE: 409,
    RejectionKind.LOOKUP_FAILED: 404,
    RejectionKind.CONCURRENT_MODIFICATION: 409,
}


class DomainError(Exception):
    """Base exception for business rule violations."""


class TimeClockError(DomainError):
    """Base for time-clock failures."""


class ActionRejected(TimeClockError):
    """A clock action was refused before anything was written."""

    def __init__(self, kind: RejectionKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return REJECTION_STATUS[self.kind]

    def to_detail(self) -> dict:
        return {"message": self.message, "kind": self.kind.value}


class StaleVersionError(TimeClockError):
    """The worker's log moved on between the read and the conditional write."""


class WorkerLookupError(TimeClockError):
    """Worker id does not resolve to an active user."""


class CheckinCodeError(DomainError):
    """Kiosk code is malformed, unknown, expired or unassigned."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SignatureError(DomainError):
    """Form signature request failed validation."""


class SignatureNotFound(SignatureError):
    """No signature row with the given id."""
