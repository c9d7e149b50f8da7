"""Personal kiosk codes: two initials plus four digits, e.g. ``JD4821``."""
import logging
import random
import re
import unicodedata
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.exceptions import CheckinCodeError
from portal.core.timeutils import utcnow
from portal.models.checkin import CheckinCode, CheckinLog
from portal.models.user import User
from portal.services.events import display_names

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z]{2}\d{4}$")
ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
MAX_ATTEMPTS_PER_RECIPIENT = 10000

_rng = random.SystemRandom()


def _letters(value) -> str:
    decomposed = unicodedata.normalize("NFD", str(value or ""))
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"[^A-Z]", "", stripped.upper())


def normalize_code(value) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"[^A-Z0-9]", "", value.strip().upper())


def is_valid_code(value) -> bool:
    return bool(CODE_PATTERN.match(normalize_code(value)))


def sanitize_initials(initials: Optional[str], rng=None) -> str:
    rng = rng or _rng
    clean = _letters(initials)
    if len(clean) >= 2:
        return clean[:2]
    if len(clean) == 1:
        return f"{clean}X"
    return rng.choice(ALPHABET) + rng.choice(ALPHABET)


def _two_from(value: str) -> Optional[str]:
    if len(value) >= 2:
        return value[:2]
    if len(value) == 1:
        return f"{value}X"
    return None


def derive_initials(first_name=None, last_name=None, email=None, fallback=None) -> str:
    """Initials from the name, then the e-mail local part, then the fallback."""
    first = _letters(first_name)
    last = _letters(last_name)

    if first and last:
        return f"{first[0]}{last[0]}"
    if len(first) >= 2:
        return first[:2]
    if len(last) >= 2:
        return last[:2]

    local = _letters(str(email or "").split("@")[0])
    return _two_from(local) or _two_from(_letters(fallback)) or "XX"


def generate_code(initials: Optional[str], rng=None) -> str:
    rng = rng or _rng
    return f"{sanitize_initials(initials, rng)}{rng.randrange(10000):04d}"


def generate_unique_codes(recipients: Sequence[User], existing: Iterable[str], rng=None) -> List[str]:
    """One code per recipient, distinct from each other and from ``existing``."""
    taken: Set[str] = set(existing)
    codes = []

    for recipient in recipients:
        initials = derive_initials(
            recipient.first_name,
            recipient.last_name,
            recipient.email,
            str(recipient.id),
        )
        for _ in range(MAX_ATTEMPTS_PER_RECIPIENT):
            code = generate_code(initials, rng)
            if code not in taken:
                break
        else:
            raise ValueError("Failed to generate unique codes")

        taken.add(code)
        codes.append(code)

    return codes


def resolve_code(db: Session, raw, now: Optional[datetime] = None) -> CheckinCode:
    """Active, unexpired code bound to a worker."""
    now = now or utcnow()
    code = normalize_code(raw)
    if not CODE_PATTERN.match(code):
        raise CheckinCodeError("Invalid code format", status_code=400)

    row = (
        db.query(CheckinCode)
        .filter(
            CheckinCode.code == code,
            CheckinCode.is_active == True,
            CheckinCode.expires_at > now,
        )
        .order_by(CheckinCode.id.desc())
        .first()
    )
    if not row:
        raise CheckinCodeError("Invalid or expired code", status_code=404)
    if row.target_user_id is None:
        raise CheckinCodeError("This code is not assigned to a worker", status_code=400)
    return row


def issue_personal_codes(
    db: Session,
    recipients: Sequence[User],
    created_by: int,
    label: Optional[str] = None,
    rng=None,
) -> List[CheckinCode]:
    """Replace each recipient's active personal code with a fresh one."""
    if not recipients:
        return []

    recipient_ids = [r.id for r in recipients]
    # One active personal code per worker
    db.query(CheckinCode).filter(
        CheckinCode.target_user_id.in_(recipient_ids),
        CheckinCode.is_active == True,
    ).update({CheckinCode.is_active: False}, synchronize_session=False)

    existing = [
        c for (c,) in db.query(CheckinCode.code).filter(CheckinCode.is_active == True).all()
    ]
    codes = generate_unique_codes(recipients, existing, rng)

    expires_at = utcnow() + timedelta(hours=settings.CHECKIN_CODE_TTL_HOURS)
    rows = [
        CheckinCode(
            code=code,
            target_user_id=recipient.id,
            created_by=created_by,
            label=label,
            expires_at=expires_at,
            is_active=True,
        )
        for recipient, code in zip(recipients, codes)
    ]
    db.add_all(rows)
    db.commit()
    for row in rows:
        db.refresh(row)

    logger.info(f"Issued {len(rows)} personal check-in codes (by user {created_by})")
    return rows


def active_codes_with_checkins(db: Session, now: Optional[datetime] = None, limit: int = 500) -> List[dict]:
    """Active codes, newest first, each with its check-in log (newest first)."""
    now = now or utcnow()
    codes = (
        db.query(CheckinCode)
        .filter(CheckinCode.is_active == True, CheckinCode.expires_at > now)
        .order_by(CheckinCode.created_at.desc(), CheckinCode.id.desc())
        .limit(limit)
        .all()
    )
    if not codes:
        return []

    logs = (
        db.query(CheckinLog)
        .filter(CheckinLog.code_id.in_([c.id for c in codes]))
        .order_by(CheckinLog.checked_in_at.desc(), CheckinLog.id.desc())
        .all()
    )
    names = display_names(db, [log.user_id for log in logs])

    checkins = defaultdict(list)
    for log in logs:
        checkins[log.code_id].append({
            "id": log.id,
            "code_id": log.code_id,
            "user_id": log.user_id,
            "name": names.get(log.user_id),
            "checked_in_at": log.checked_in_at,
        })

    return [
        {
            "id": c.id,
            "code": c.code,
            "target_user_id": c.target_user_id,
            "created_by": c.created_by,
            "label": c.label,
            "expires_at": c.expires_at,
            "is_active": c.is_active,
            "checkins": checkins[c.id],
        }
        for c in codes
    ]
