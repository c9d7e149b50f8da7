from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from portal.core.database import Base
import enum


class UserRole(str, enum.Enum):
    WORKER = "worker"
    MANAGER = "manager"
    HR = "hr"
    EXEC = "exec"
    FINANCE = "finance"
    ADMIN = "admin"


# Roles allowed to run kiosks, issue codes and read the monitor
MANAGER_ROLES = ("admin", "exec", "hr", "manager")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    full_name = Column(String, nullable=True)

    role = Column(String, default="worker", nullable=False)
    division = Column(String, default="vendor", nullable=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def display_name(self) -> str:
        parts = [p.strip() for p in (self.first_name, self.last_name) if p and p.strip()]
        if parts:
            return " ".join(parts)
        return self.full_name or "User"
