import logging
from typing import Optional

from sqlalchemy.orm import Session

from portal.core.timeutils import utcnow
from portal.models.audit import AuditLog

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    action: str,
    *,
    user_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    resource_id=None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    details: Optional[dict] = None,
    success: bool = True,
    error_message: Optional[str] = None,
    commit: bool = True,
) -> AuditLog:
    """Add an audit row. With ``commit=False`` it rides on the caller's transaction."""
    row = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        ip_address=ip_address,
        user_agent=user_agent,
        details=details,
        success=success,
        error_message=error_message,
        created_at=utcnow(),
    )
    db.add(row)
    if commit:
        db.commit()
    logger.debug(f"Audit {action} {resource_type}:{resource_id} user={user_id}")
    return row
