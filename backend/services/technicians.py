"""Technician directory: profiles, workload stats and account maintenance."""
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, col, select

from core.database import commit_or_rollback
from models.audit_log import AuditAction
from models.complaints import ACTIVE_STATUSES, Complaint, ComplaintStatus
from models.task import Task, Technician, TechnicianStatus
from models.user import User, UserRole
from schemas.technicians import TechnicianCreate, TechnicianRead, TechnicianUpdate
from services.audit import log_action
from services.auth import create_user, validate_password
from utils.errors import ConflictError, NotFoundError, ValidationError
from utils.pagination import PageParams
from utils.security import hash_password
from utils.timeutils import as_utc, utc_now

logger = logging.getLogger(__name__)


def parse_technician_status(value: str) -> TechnicianStatus:
    try:
        return TechnicianStatus(value.strip().upper())
    except ValueError:
        valid = ", ".join(s.value for s in TechnicianStatus)
        raise ValidationError(f"Invalid technician status: {value}. Valid values: {valid}")


def get_technician_or_404(session: Session, technician_id: int) -> Technician:
    technician = session.get(Technician, technician_id)
    if not technician:
        raise NotFoundError(f"Technician with ID {technician_id} not found")
    return technician


def _task_complaints(session: Session, technician_ids: List[int]) -> Dict[int, List[Complaint]]:
    """Complaints behind each technician's tasks, keyed by technician id."""
    by_technician = defaultdict(list)
    if not technician_ids:
        return by_technician
    rows = session.exec(
        select(Task.technician_id, Complaint)
        .join(Complaint, Complaint.id == Task.complaint_id)
        .where(col(Task.technician_id).in_(technician_ids))
    ).all()
    for technician_id, complaint in rows:
        by_technician[technician_id].append(complaint)
    return by_technician


def _stats(complaints: List[Complaint]) -> dict:
    completed = sum(1 for c in complaints if c.status == ComplaintStatus.resolved)
    active = sum(1 for c in complaints if c.status in ACTIVE_STATUSES)
    efficiency = round(completed / len(complaints) * 100) if complaints else 0
    return {
        "total_tasks": len(complaints),
        "completed_tasks": completed,
        "active_tasks": active,
        "efficiency": efficiency,
    }


def _to_read(technician: Technician, user: User, complaints: Optional[List[Complaint]] = None) -> TechnicianRead:
    return TechnicianRead(
        id=technician.id,
        user_id=technician.user_id,
        speciality=technician.speciality,
        status=technician.status,
        created_at=technician.created_at,
        updated_at=technician.updated_at,
        user={
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "phone": user.phone,
            "last_login": user.last_login,
            "created_at": user.created_at,
        },
        stats=_stats(complaints) if complaints is not None else None,
    )


def _read_many(session: Session, rows) -> List[TechnicianRead]:
    rows = list(rows)
    complaints = _task_complaints(session, [technician.id for technician, _ in rows])
    return [_to_read(technician, user, complaints[technician.id]) for technician, user in rows]


def list_technicians(session: Session, params: PageParams, status: Optional[str] = None) -> dict:
    conditions = []
    if status:
        conditions.append(Technician.status == parse_technician_status(status))

    total = session.exec(select(func.count(Technician.id)).where(*conditions)).one()
    rows = session.exec(
        select(Technician, User)
        .join(User, User.id == Technician.user_id)
        .where(*conditions)
        .order_by(User.name, Technician.id)
        .offset(params.offset)
        .limit(params.limit)
    ).all()
    return {"technicians": _read_many(session, rows), "pagination": params.meta(total)}


def available_technicians(session: Session) -> List[TechnicianRead]:
    rows = session.exec(
        select(Technician, User)
        .join(User, User.id == Technician.user_id)
        .where(Technician.status == TechnicianStatus.active)
        .order_by(User.name, Technician.id)
    ).all()
    return _read_many(session, rows)


def technician_performance(session: Session) -> List[dict]:
    rows = session.exec(
        select(Technician, User).join(User, User.id == Technician.user_id).order_by(Technician.id)
    ).all()
    complaints = _task_complaints(session, [technician.id for technician, _ in rows])

    performance = []
    for technician, user in rows:
        tasks = complaints[technician.id]
        resolved = [c for c in tasks if c.status == ComplaintStatus.resolved]
        hours = [
            (as_utc(c.resolved_at) - as_utc(c.created_at)).total_seconds() / 3600
            for c in resolved
            if c.resolved_at and c.created_at
        ]
        performance.append(
            {
                "id": technician.id,
                "name": user.name,
                "email": user.email,
                "speciality": technician.speciality,
                "status": technician.status,
                "total_tasks": len(tasks),
                "completed_tasks": len(resolved),
                "efficiency": len(resolved) / len(tasks) * 100 if tasks else 0.0,
                "avg_resolution_hours": round(sum(hours) / len(resolved), 2) if resolved else 0.0,
            }
        )
    return performance


def get_technician(session: Session, technician_id: int) -> TechnicianRead:
    technician = get_technician_or_404(session, technician_id)
    user = session.get(User, technician.user_id)
    return _to_read(technician, user, _task_complaints(session, [technician.id])[technician.id])


def create_technician(session: Session, payload: TechnicianCreate, performed_by: Optional[int] = None) -> TechnicianRead:
    if not payload.name or not payload.name.strip():
        raise ValidationError("Name is required")

    user = create_user(
        session, payload.email, payload.password, UserRole.technician, name=payload.name, phone=payload.phone
    )
    technician = Technician(user_id=user.id, speciality=payload.speciality, status=payload.status)
    session.add(technician)
    session.flush()

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.ADDED_TECHNICIAN,
        details=f"Technician {technician.id} ({user.email}) added",
    )
    commit_or_rollback(session, "create technician")
    session.refresh(technician)
    session.refresh(user)

    logger.info("Technician %s created for user %s", technician.id, user.id)
    return _to_read(technician, user, [])


def update_technician(
    session: Session, technician_id: int, payload: TechnicianUpdate, performed_by: Optional[int] = None
) -> TechnicianRead:
    technician = get_technician_or_404(session, technician_id)

    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if field == "status" and value is None:
            raise ValidationError("Status cannot be empty")
        setattr(technician, field, value)
    technician.updated_at = utc_now()
    session.add(technician)

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.UPDATED_TECHNICIAN,
        details=f"Technician {technician_id} updated: {', '.join(sorted(changes)) or 'no changes'}",
    )
    commit_or_rollback(session, "update technician")
    session.refresh(technician)
    return get_technician(session, technician_id)


def delete_technician(session: Session, technician_id: int, performed_by: Optional[int] = None) -> None:
    """Remove the technician profile and demote the account back to a resident."""
    technician = get_technician_or_404(session, technician_id)

    active_tasks = session.exec(
        select(func.count(Task.id))
        .join(Complaint, Complaint.id == Task.complaint_id)
        .where(Task.technician_id == technician_id, col(Complaint.status).in_(list(ACTIVE_STATUSES)))
    ).one()
    if active_tasks:
        raise ConflictError("Cannot delete technician with active tasks. Reassign tasks first.")

    # finished tasks keep their notes and dates, detached from the profile
    history = session.exec(select(Task).where(Task.technician_id == technician_id)).all()
    for task in history:
        task.technician_id = None
        task.updated_at = utc_now()
        session.add(task)
    session.flush()

    user = session.get(User, technician.user_id)
    if user:
        user.role = UserRole.resident
        user.updated_at = utc_now()
        session.add(user)
    session.delete(technician)

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.REMOVED_TECHNICIAN,
        details=(
            f"Technician {technician_id} removed; user {technician.user_id} demoted to resident; "
            f"{len(history)} finished tasks kept"
        ),
    )
    commit_or_rollback(session, "delete technician")
    logger.info("Technician %s deleted", technician_id)


def reset_technician_password(
    session: Session, technician_id: int, new_password: str, performed_by: Optional[int] = None
) -> dict:
    technician = get_technician_or_404(session, technician_id)
    validate_password(new_password)

    user = session.get(User, technician.user_id)
    user.password_hash = hash_password(new_password)
    user.login_attempts = 0
    user.last_login_attempt = None
    user.updated_at = utc_now()
    session.add(user)

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.RESET_TECHNICIAN_PASSWORD,
        details=f"Password reset for technician {technician_id}",
    )
    commit_or_rollback(session, "reset technician password")
    return {"message": "Password reset successfully"}
