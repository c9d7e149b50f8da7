"""Cryptographic binding of a signature to the form data it was applied to.

A signature row stores three SHA-256 digests:

- ``form_data_hash``: the compact JSON of the form at signing time
- ``signature_hash``: signature payload + signing instant + signer + IP
- ``binding_hash``: both of the above + instant + signer + IP + session

Verification recomputes the form hash from the caller's current data and,
separately, the binding from the stored columns, so either a changed form or
an edited signature row shows up as invalid.
"""
import hashlib
import json
import logging
from datetime import date, datetime
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from portal.core.exceptions import SignatureError, SignatureNotFound
from portal.core.timeutils import utcnow
from portal.models.signature import FormSignature
from portal.services.audit import record_audit

logger = logging.getLogger(__name__)

SIGNATURE_ROLES = ("employee", "employer")
SIGNATURE_TYPES = ("typed", "drawn")


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_form_data(form_data: Any) -> str:
    # Key order is preserved; only whitespace is normalised
    return _sha256(json.dumps(form_data, separators=(",", ":"), ensure_ascii=False))


def format_signed_at(signed_at: datetime) -> str:
    """Millisecond ISO-8601 in UTC with a ``Z`` suffix."""
    return signed_at.strftime("%Y-%m-%dT%H:%M:%S.") + f"{signed_at.microsecond // 1000:03d}Z"


def signature_hash(signature_data: str, signed_at: datetime, user_id, ip_address: str) -> str:
    return _sha256(f"{signature_data}-{format_signed_at(signed_at)}-{user_id}-{ip_address}")


def binding_hash(form_hash: str, sig_hash: str, signed_at: datetime, user_id, ip_address: str, session_id: str) -> str:
    return _sha256(
        f"{form_hash}-{sig_hash}-{format_signed_at(signed_at)}-{user_id}-{ip_address}-{session_id}"
    )


def device_fingerprint(user_agent: str, ip_address: str, on: date) -> str:
    return _sha256(f"{user_agent}-{ip_address}-{on.strftime('%a %b %d %Y')}")


def expected_binding(signature: FormSignature) -> str:
    sig_hash = signature_hash(
        signature.signature_data, signature.signed_at, signature.user_id, signature.ip_address,
    )
    return binding_hash(
        signature.form_data_hash,
        sig_hash,
        signature.signed_at,
        signature.user_id,
        signature.ip_address,
        signature.session_id,
    )


def create_signature(
    db: Session,
    *,
    form_id: str,
    form_type: str,
    user_id: int,
    signature_role: str,
    signature_data: str,
    signature_type: str,
    form_data: Any,
    ip_address: str = "unknown",
    user_agent: str = "unknown",
    session_id: Optional[str] = None,
    employer_title: Optional[str] = None,
    employer_organization: Optional[str] = None,
    documents_examined: Optional[list] = None,
    examination_date: Optional[date] = None,
    signed_at: Optional[datetime] = None,
) -> FormSignature:
    if not form_id or not form_type or not signature_data or form_data is None:
        raise SignatureError("Missing required fields")
    if signature_role not in SIGNATURE_ROLES:
        raise SignatureError('Invalid signature role. Must be "employee" or "employer"')
    if signature_type not in SIGNATURE_TYPES:
        raise SignatureError('Invalid signature type. Must be "typed" or "drawn"')

    signed_at = signed_at or utcnow()
    # Stored precision must match the hashed string
    signed_at = signed_at.replace(microsecond=(signed_at.microsecond // 1000) * 1000)
    session_id = session_id or f"session-{int(signed_at.timestamp() * 1000)}"

    form_hash = hash_form_data(form_data)
    sig_hash = signature_hash(signature_data, signed_at, user_id, ip_address)
    bind = binding_hash(form_hash, sig_hash, signed_at, user_id, ip_address, session_id)

    signature = FormSignature(
        form_id=form_id,
        form_type=form_type,
        user_id=user_id,
        signature_role=signature_role,
        signature_data=signature_data,
        signature_type=signature_type,
        form_data_hash=form_hash,
        signature_hash=sig_hash,
        binding_hash=bind,
        ip_address=ip_address,
        user_agent=user_agent,
        device_fingerprint=device_fingerprint(user_agent, ip_address, signed_at.date()),
        session_id=session_id,
        signed_at=signed_at,
        is_valid=True,
        verification_attempts=0,
        employer_title=employer_title,
        employer_organization=employer_organization,
        documents_examined=documents_examined,
        examination_date=examination_date,
    )
    db.add(signature)
    db.flush()

    record_audit(
        db,
        "signed",
        user_id=user_id,
        resource_type=form_type,
        resource_id=form_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={
            "signature_id": signature.id,
            "signature_role": signature_role,
            "signature_type": signature_type,
            "binding_hash": bind[:16] + "...",
        },
        commit=False,
    )
    db.commit()
    db.refresh(signature)

    logger.info(f"Signature {signature.id} created for form {form_id} ({signature_role}), binding {bind[:16]}...")
    return signature


def list_signatures(db: Session, form_id: str, signature_role: Optional[str] = None) -> List[FormSignature]:
    query = db.query(FormSignature).filter(FormSignature.form_id == form_id)
    if signature_role:
        query = query.filter(FormSignature.signature_role == signature_role)
    return query.order_by(FormSignature.signed_at.desc(), FormSignature.id.desc()).all()


def verify_signature(
    db: Session,
    signature_id: int,
    current_form_data: Any,
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> dict:
    signature = db.query(FormSignature).filter(FormSignature.id == signature_id).first()
    if not signature:
        raise SignatureNotFound("Signature not found")

    form_intact = hash_form_data(current_form_data) == signature.form_data_hash
    record_intact = expected_binding(signature) == signature.binding_hash
    is_valid = form_intact and record_intact

    now = utcnow()
    signature.verification_attempts = (signature.verification_attempts or 0) + 1
    signature.last_verified_at = now
    signature.is_valid = is_valid

    record_audit(
        db,
        "verified",
        user_id=signature.user_id,
        resource_type=signature.form_type,
        resource_id=signature.form_id,
        ip_address=ip_address,
        user_agent=user_agent,
        details={
            "signature_id": signature.id,
            "is_valid": is_valid,
            "verification_attempt": signature.verification_attempts,
        },
        success=is_valid,
        commit=False,
    )
    db.commit()

    if not form_intact:
        message = "Form data has been modified since signature was applied"
    elif not record_intact:
        message = "Signature record does not match its binding hash"
    else:
        message = "Signature is valid and form data is intact"

    logger.info(f"Verified signature {signature.id}: valid={is_valid}")
    return {
        "success": is_valid,
        "valid": is_valid,
        "message": message,
        "details": {
            "signature_id": signature.id,
            "signed_at": signature.signed_at.isoformat(),
            "signature_role": signature.signature_role,
            "last_verified_at": now.isoformat(),
            "verification_attempts": signature.verification_attempts,
        },
    }
