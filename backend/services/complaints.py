"""Complaint lifecycle: creation, assignment, status transitions, deletion and reads."""
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, col, select

from core.config import ENFORCE_FORWARD_TRANSITIONS
from core.database import commit_or_rollback
from models.audit_log import AuditAction
from models.complaints import (
    ASSIGNED_OR_LATER,
    TERMINAL_STATUSES,
    Complaint,
    ComplaintCategory,
    ComplaintStatus,
    ComplaintUrgency,
)
from models.task import Task, Technician, TechnicianStatus
from models.user import User
from schemas.complaints import ComplaintCreate, ComplaintRead, ResidentSummary, TaskSummary
from services.audit import log_action
from services.realtime import ConnectionRegistry
from utils.errors import InvalidStateError, NotFoundError, ValidationError
from utils.pagination import PageParams
from utils.timeutils import start_of_day, utc_now

logger = logging.getLogger(__name__)

# Forward moves of the state machine, skips included; staying put is always allowed.
ALLOWED_TRANSITIONS: Dict[ComplaintStatus, set] = {
    ComplaintStatus.submitted: {
        ComplaintStatus.assigned,
        ComplaintStatus.in_progress,
        ComplaintStatus.resolved,
        ComplaintStatus.rejected,
    },
    ComplaintStatus.assigned: {ComplaintStatus.in_progress, ComplaintStatus.resolved, ComplaintStatus.rejected},
    ComplaintStatus.in_progress: {ComplaintStatus.resolved, ComplaintStatus.rejected},
    ComplaintStatus.resolved: set(),
    ComplaintStatus.rejected: set(),
}


# --- input parsing ---

def _parse_enum(enum_cls, value, label: str):
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} is required")
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label.lower()}: {value}. Valid values: {valid}")


def parse_category(value) -> ComplaintCategory:
    return _parse_enum(ComplaintCategory, value, "Category")


def parse_urgency(value) -> ComplaintUrgency:
    if value is None or not str(value).strip():
        return ComplaintUrgency.medium
    return _parse_enum(ComplaintUrgency, value, "Urgency")


def parse_status(value) -> ComplaintStatus:
    return _parse_enum(ComplaintStatus, value, "Status")


def get_complaint_or_404(session: Session, complaint_id: int) -> Complaint:
    complaint = session.get(Complaint, complaint_id)
    if not complaint:
        raise NotFoundError(f"Complaint with ID {complaint_id} not found")
    return complaint


# --- state machine ---

def check_transition(current: ComplaintStatus, new: ComplaintStatus) -> None:
    if not ENFORCE_FORWARD_TRANSITIONS or current == new:
        return
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateError(f"Cannot move complaint from {current.value} to {new.value}")


def apply_status(complaint: Complaint, new_status: ComplaintStatus, notes: Optional[str] = None) -> Complaint:
    """Set ``new_status`` on ``complaint`` keeping the timestamp invariants."""
    check_transition(complaint.status, new_status)
    now = utc_now()

    complaint.status = new_status
    complaint.updated_at = now
    # resolved_at tracks the RESOLVED state exactly, including backward moves
    complaint.resolved_at = now if new_status == ComplaintStatus.resolved else None
    if new_status in ASSIGNED_OR_LATER and complaint.assigned_at is None:
        complaint.assigned_at = now

    if notes and notes.strip():
        note = notes.strip()
        complaint.admin_notes = f"{complaint.admin_notes}\n{note}" if complaint.admin_notes else note
    return complaint


# --- mutations ---

def create_complaint(session: Session, user_id: int, payload: ComplaintCreate) -> Complaint:
    resident = session.get(User, user_id)
    if not resident:
        raise NotFoundError(f"User with ID {user_id} not found")

    title = (payload.title or "").strip()
    description = (payload.description or "").strip()
    if not title:
        raise ValidationError("Title is required")
    if not description:
        raise ValidationError("Description is required")
    category = parse_category(payload.category)
    urgency = parse_urgency(payload.urgency)

    location = None
    if payload.location_data:
        location = payload.location_data.model_dump()

    photos = [photo for photo in (payload.photos or []) if photo and photo.strip()]

    complaint = Complaint(
        user_id=user_id,
        title=title,
        description=description,
        category=category,
        urgency=urgency,
        location=location,
        photos=photos,
        status=ComplaintStatus.submitted,
    )
    session.add(complaint)
    session.flush()
    log_action(
        session,
        performed_by=user_id,
        action=AuditAction.CREATED_COMPLAINT,
        details=f"Complaint {complaint.id} '{title}' filed ({category.value}, {urgency.value})",
    )
    commit_or_rollback(session, "create complaint")
    session.refresh(complaint)

    logger.info("Complaint %s created for user %s", complaint.id, user_id)
    return complaint


def assign_technician(
    session: Session, complaint_id: int, technician_id: int, performed_by: Optional[int] = None
) -> Tuple[Complaint, Task, Technician]:
    complaint = get_complaint_or_404(session, complaint_id)

    technician = session.get(Technician, technician_id)
    if not technician:
        raise NotFoundError(f"Technician with ID {technician_id} not found")
    if technician.status != TechnicianStatus.active:
        raise InvalidStateError(f"Technician with ID {technician_id} is not active")
    if ENFORCE_FORWARD_TRANSITIONS and complaint.status in TERMINAL_STATUSES:
        raise InvalidStateError(f"Complaint {complaint_id} is already {complaint.status.value}")

    now = utc_now()
    complaint.status = ComplaintStatus.assigned
    complaint.assigned_at = now
    complaint.resolved_at = None
    complaint.updated_at = now
    session.add(complaint)

    task = session.exec(select(Task).where(Task.complaint_id == complaint_id)).first()
    if task:
        # re-assignment rewrites the existing task instead of adding another row
        task.technician_id = technician_id
        task.assigned_at = now
        task.updated_at = now
    else:
        task = Task(complaint_id=complaint_id, technician_id=technician_id, assigned_at=now, updated_at=now)
    session.add(task)

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.ASSIGNED_TECHNICIAN,
        details=f"Complaint {complaint_id} assigned to technician {technician_id}",
    )
    commit_or_rollback(session, "assign technician")
    session.refresh(complaint)
    session.refresh(task)

    logger.info("Complaint %s assigned to technician %s", complaint_id, technician_id)
    return complaint, task, technician


def update_status(
    session: Session,
    complaint_id: int,
    new_status: ComplaintStatus,
    notes: Optional[str] = None,
    performed_by: Optional[int] = None,
) -> Complaint:
    complaint = get_complaint_or_404(session, complaint_id)
    previous = complaint.status
    apply_status(complaint, new_status, notes)
    session.add(complaint)

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.UPDATED_COMPLAINT_STATUS,
        details=f"Complaint {complaint_id} moved from {previous.value} to {new_status.value}",
    )
    commit_or_rollback(session, "update complaint status")
    session.refresh(complaint)

    logger.info("Complaint %s status %s -> %s", complaint_id, previous.value, new_status.value)
    return complaint


def get_technician_for_user(session: Session, user_id: int) -> Technician:
    technician = session.exec(select(Technician).where(Technician.user_id == user_id)).first()
    if not technician:
        raise NotFoundError("Technician profile not found")
    return technician


def update_task_status(
    session: Session,
    technician_user_id: int,
    complaint_id: int,
    new_status: ComplaintStatus,
    note: Optional[str] = None,
) -> Complaint:
    """Status change made by the technician holding the complaint's task."""
    technician = get_technician_for_user(session, technician_user_id)
    task = session.exec(
        select(Task).where(Task.complaint_id == complaint_id, Task.technician_id == technician.id)
    ).first()
    if not task:
        raise NotFoundError(f"Task for complaint {complaint_id} not found or you don't have access")

    complaint = get_complaint_or_404(session, complaint_id)
    previous = complaint.status
    apply_status(complaint, new_status)
    session.add(complaint)

    if note is not None:
        task.resolution_notes = note
    task.updated_at = utc_now()
    session.add(task)

    log_action(
        session,
        performed_by=technician_user_id,
        action=AuditAction.UPDATED_TASK_STATUS,
        details=f"Technician {technician.id} moved complaint {complaint_id} from {previous.value} to {new_status.value}",
    )
    commit_or_rollback(session, "update task status")
    session.refresh(complaint)
    return complaint


def delete_complaint(session: Session, complaint_id: int, performed_by: Optional[int] = None) -> None:
    complaint = get_complaint_or_404(session, complaint_id)

    # the task references the complaint, so it has to go first
    for task in session.exec(select(Task).where(Task.complaint_id == complaint_id)).all():
        session.delete(task)
    session.flush()
    session.delete(complaint)

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.DELETED_COMPLAINT,
        details=f"Complaint {complaint_id} '{complaint.title}' deleted",
    )
    commit_or_rollback(session, "delete complaint")
    logger.info("Complaint %s deleted", complaint_id)


def add_photo(session: Session, complaint: Complaint, photo_ref: str, performed_by: Optional[int] = None) -> Complaint:
    # JSON columns are not mutation-tracked; assign a new list
    complaint.photos = [*(complaint.photos or []), photo_ref]
    complaint.updated_at = utc_now()
    session.add(complaint)
    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.UPLOADED_PHOTO,
        details=f"Photo {photo_ref} added to complaint {complaint.id}",
    )
    commit_or_rollback(session, "attach photo")
    session.refresh(complaint)
    return complaint


# --- reads ---

def build_complaint_reads(session: Session, complaints: Iterable[Complaint]) -> List[ComplaintRead]:
    """Flatten complaints with their resident and task/technician summaries."""
    complaints = list(complaints)
    if not complaints:
        return []

    complaint_ids = [c.id for c in complaints]
    tasks = {
        t.complaint_id: t
        for t in session.exec(select(Task).where(col(Task.complaint_id).in_(complaint_ids))).all()
    }
    technician_ids = {t.technician_id for t in tasks.values() if t.technician_id is not None}
    technicians = {}
    if technician_ids:
        technicians = {
            t.id: t for t in session.exec(select(Technician).where(col(Technician.id).in_(technician_ids))).all()
        }
    user_ids = {c.user_id for c in complaints} | {t.user_id for t in technicians.values()}
    users = {u.id: u for u in session.exec(select(User).where(col(User.id).in_(user_ids))).all()}

    reads = []
    for complaint in complaints:
        data = complaint.model_dump()
        data["photos"] = data.get("photos") or []

        resident = users.get(complaint.user_id)
        if resident:
            data["resident"] = ResidentSummary(id=resident.id, name=resident.name, email=resident.email)

        task = tasks.get(complaint.id)
        technician = technicians.get(task.technician_id) if task else None
        tech_user = users.get(technician.user_id) if technician else None
        if task:
            data["task"] = TaskSummary(
                id=task.id,
                technician_id=technician.id if technician else None,
                technician_user_id=tech_user.id if tech_user else None,
                technician_name=tech_user.name if tech_user else None,
                technician_email=tech_user.email if tech_user else None,
                assigned_at=task.assigned_at,
                resolution_notes=task.resolution_notes,
            )
        reads.append(ComplaintRead(**data))
    return reads


def build_complaint_read(session: Session, complaint: Complaint) -> ComplaintRead:
    return build_complaint_reads(session, [complaint])[0]


def _paginate(session: Session, conditions: list, params: PageParams, join_technician: bool = False):
    query = select(Complaint)
    count_query = select(func.count(Complaint.id))
    if join_technician:
        query = query.join(Task, Task.complaint_id == Complaint.id).join(Technician, Technician.id == Task.technician_id)
        count_query = count_query.join(Task, Task.complaint_id == Complaint.id).join(
            Technician, Technician.id == Task.technician_id
        )
    if conditions:
        query = query.where(*conditions)
        count_query = count_query.where(*conditions)

    total = session.exec(count_query).one()
    complaints = session.exec(
        query.order_by(col(Complaint.created_at).desc(), col(Complaint.id).desc())
        .offset(params.offset)
        .limit(params.limit)
    ).all()
    return {"complaints": build_complaint_reads(session, complaints), "pagination": params.meta(total)}


def list_complaints(
    session: Session,
    params: PageParams,
    status: Optional[str] = None,
    category: Optional[str] = None,
    urgency: Optional[str] = None,
    technician_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> dict:
    conditions = []
    if status:
        conditions.append(Complaint.status == parse_status(status))
    if category:
        conditions.append(Complaint.category == parse_category(category))
    if urgency:
        conditions.append(Complaint.urgency == _parse_enum(ComplaintUrgency, urgency, "Urgency"))
    if start_date and end_date and end_date < start_date:
        raise ValidationError("End date cannot be before start date")
    if start_date:
        conditions.append(Complaint.created_at >= start_of_day(start_date))
    if end_date:
        # inclusive of the whole end day
        conditions.append(Complaint.created_at < start_of_day(end_date + timedelta(days=1)))
    if technician_id is not None:
        conditions.append(Task.technician_id == technician_id)

    return _paginate(session, conditions, params, join_technician=technician_id is not None)


def list_for_resident(session: Session, user_id: int, params: PageParams) -> dict:
    return _paginate(session, [Complaint.user_id == user_id], params)


def list_for_technician(session: Session, technician_user_id: int, params: PageParams) -> dict:
    return _paginate(session, [Technician.user_id == technician_user_id], params, join_technician=True)


def complaint_stats(session: Session) -> dict:
    rows = session.exec(select(Complaint.status, func.count(Complaint.id)).group_by(Complaint.status)).all()
    counts = {status: count for status, count in rows}
    by_status = {status.value.lower(): counts.get(status, 0) for status in ComplaintStatus}
    recent_count = session.exec(
        select(func.count(Complaint.id)).where(Complaint.created_at >= utc_now() - timedelta(days=7))
    ).one()
    return {"total": sum(by_status.values()), "by_status": by_status, "recent_count": recent_count}


# --- real-time side effects (scheduled after the commit, never raise) ---

async def announce_created(registry: ConnectionRegistry, complaint: ComplaintRead) -> None:
    await registry.notify_admins("complaint-created", complaint)


async def announce_assigned(registry: ConnectionRegistry, complaint: ComplaintRead) -> None:
    if complaint.task and complaint.task.technician_user_id is not None:
        await registry.send_to_user(complaint.task.technician_user_id, "task-assigned", complaint)
    await registry.send_to_user(complaint.user_id, "complaint-status-updated", complaint)
    await registry.notify_admins("complaint-assigned", complaint)


async def announce_status_change(registry: ConnectionRegistry, complaint: ComplaintRead) -> None:
    await registry.send_to_user(complaint.user_id, "complaint-status-updated", complaint)
    await registry.notify_admins("complaint-status-updated", complaint)
