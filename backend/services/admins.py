import logging
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, col, select

from core.database import commit_or_rollback
from models.audit_log import AuditAction, AuditLog
from models.user import Admin, User, UserRole
from schemas.admins import AdminCreate, AdminRead, AdminUpdate
from services.audit import log_action
from services.auth import create_user
from utils.errors import NotFoundError, ValidationError
from utils.pagination import PageParams
from utils.timeutils import utc_now

logger = logging.getLogger(__name__)


def _to_read(admin: Admin, user: User) -> AdminRead:
    return AdminRead(
        id=admin.id,
        user_id=user.id,
        name=admin.name,
        email=user.email,
        phone=user.phone,
        department=admin.department,
        bio=admin.bio,
        is_active=admin.is_active,
        last_login=user.last_login,
        created_at=admin.created_at,
    )


def get_admin_or_404(session: Session, admin_id: int) -> Admin:
    admin = session.get(Admin, admin_id)
    if not admin:
        raise NotFoundError("Admin not found")
    return admin


def list_admins(session: Session) -> List[AdminRead]:
    rows = session.exec(select(Admin, User).join(User, User.id == Admin.user_id).order_by(Admin.id)).all()
    return [_to_read(admin, user) for admin, user in rows]


def get_admin(session: Session, admin_id: int) -> AdminRead:
    admin = get_admin_or_404(session, admin_id)
    return _to_read(admin, session.get(User, admin.user_id))


def create_admin(session: Session, payload: AdminCreate, performed_by: Optional[int] = None) -> AdminRead:
    name = (payload.name or "").strip()
    if not name:
        raise ValidationError("Name is required")

    user = create_user(session, payload.email, payload.password, UserRole.admin, name=name, phone=payload.phone)
    admin = Admin(user_id=user.id, name=name, department=payload.department)
    session.add(admin)
    session.flush()

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.ADDED_ADMIN,
        details=f"Admin {admin.id} ({user.email}) added",
    )
    commit_or_rollback(session, "create admin")
    session.refresh(admin)
    session.refresh(user)

    logger.info("Admin %s created for user %s", admin.id, user.id)
    return _to_read(admin, user)


def update_admin(session: Session, admin_id: int, payload: AdminUpdate, performed_by: Optional[int] = None) -> AdminRead:
    admin = get_admin_or_404(session, admin_id)
    user = session.get(User, admin.user_id)
    now = utc_now()

    if payload.name is not None:
        if not payload.name.strip():
            raise ValidationError("Name cannot be empty")
        admin.name = payload.name.strip()
        user.name = admin.name
    if payload.department is not None:
        admin.department = payload.department
    if payload.bio is not None:
        admin.bio = payload.bio
    if payload.phone is not None:
        user.phone = payload.phone.strip() or None

    admin.updated_at = now
    user.updated_at = now
    session.add(admin)
    session.add(user)

    log_action(session, performed_by=performed_by, action=AuditAction.UPDATED_ADMIN, details=f"Admin {admin_id} updated")
    commit_or_rollback(session, "update admin")
    session.refresh(admin)
    session.refresh(user)
    return _to_read(admin, user)


def delete_admin(session: Session, admin_id: int, performed_by: Optional[int] = None) -> None:
    """Drop the admin profile; the account stays but loses admin rights."""
    admin = get_admin_or_404(session, admin_id)
    if performed_by is not None and admin.user_id == performed_by:
        raise ValidationError("You cannot remove your own admin profile")

    user = session.get(User, admin.user_id)
    if user:
        user.role = UserRole.resident
        user.updated_at = utc_now()
        session.add(user)
    session.delete(admin)

    log_action(session, performed_by=performed_by, action=AuditAction.REMOVED_ADMIN, details=f"Admin {admin_id} removed")
    commit_or_rollback(session, "delete admin")
    logger.info("Admin %s deleted", admin_id)


def list_audit_logs(session: Session, params: PageParams, action: Optional[str] = None) -> dict:
    conditions = []
    if action:
        conditions.append(AuditLog.action == action.strip().lower())

    total = session.exec(select(func.count(AuditLog.id)).where(*conditions)).one()
    logs = session.exec(
        select(AuditLog)
        .where(*conditions)
        .order_by(col(AuditLog.created_at).desc(), col(AuditLog.id).desc())
        .offset(params.offset)
        .limit(params.limit)
    ).all()
    return {"logs": logs, "pagination": params.meta(total)}
