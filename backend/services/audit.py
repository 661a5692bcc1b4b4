import logging
from typing import Optional

from sqlmodel import Session

from models.audit_log import AuditAction, AuditLog

logger = logging.getLogger(__name__)


def log_action(
    session: Session,
    performed_by: Optional[int],
    action: AuditAction,
    details: Optional[str] = None,
    commit: bool = False,
) -> AuditLog:
    """Add an audit row to the session; committed with the caller's unit of work unless ``commit``."""
    audit = AuditLog(action=action.value, details=details, user_id=performed_by)
    session.add(audit)
    if commit:
        session.commit()
    logger.debug("audit user=%s action=%s details=%s", performed_by, action.value, details)
    return audit
