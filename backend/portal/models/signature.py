"""Signed forms (W-4, I-9, clock-out attestations) with their binding hashes."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Text, Date, JSON
from sqlalchemy.sql import func
from portal.core.database import Base


class FormSignature(Base):
    __tablename__ = "form_signatures"

    id = Column(Integer, primary_key=True, index=True)
    form_id = Column(String, nullable=False, index=True)  # "fw4", "i9", "clock-out-2026-10-18"
    form_type = Column(String, nullable=False, index=True)  # "w4", "i9", "clock_out_attestation"
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    signature_role = Column(String, nullable=False)  # employee, employer
    signature_data = Column(Text, nullable=False)  # typed name or data:image/png;base64,...
    signature_type = Column(String, nullable=False)  # typed, drawn

    # Binding
    form_data_hash = Column(String, nullable=False)
    signature_hash = Column(String, nullable=False)
    binding_hash = Column(String, nullable=False, unique=True, index=True)

    # Context captured at signing
    ip_address = Column(String, nullable=False)
    user_agent = Column(String, nullable=True)
    device_fingerprint = Column(String, nullable=True)
    session_id = Column(String, nullable=True)

    signed_at = Column(DateTime, nullable=False, index=True)  # naive UTC
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Verification
    is_valid = Column(Boolean, default=True)
    verification_attempts = Column(Integer, default=0)
    last_verified_at = Column(DateTime, nullable=True)

    # Employer certification (I-9 section 2)
    employer_title = Column(String, nullable=True)
    employer_organization = Column(String, nullable=True)
    documents_examined = Column(JSON, nullable=True)
    examination_date = Column(Date, nullable=True)
