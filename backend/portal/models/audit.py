from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Text, JSON
from sqlalchemy.sql import func
from portal.core.database import Base


class AuditLog(Base):
    """Kiosk heartbeats and form signing / verification trail."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    action = Column(String, nullable=False, index=True)  # kiosk.heartbeat, form.signed, form.verified
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)

    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    details = Column("metadata", JSON, nullable=True)

    success = Column(Boolean, default=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, index=True)  # naive UTC, set by writer
