"""Personal kiosk check-in codes and the log of who used them."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from portal.core.database import Base


class CheckinCode(Base):
    __tablename__ = "checkin_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, nullable=False, index=True)  # e.g. "JD4821"

    # Worker the code acts on; kiosks refuse codes without one
    target_user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    label = Column(String, nullable=True)

    expires_at = Column(DateTime, nullable=False)  # naive UTC
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    target_user = relationship("User", foreign_keys=[target_user_id])


class CheckinLog(Base):
    __tablename__ = "checkin_logs"

    id = Column(Integer, primary_key=True, index=True)
    code_id = Column(Integer, ForeignKey("checkin_codes.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    checked_in_at = Column(DateTime(timezone=True), server_default=func.now())
