import logging
import os
import uuid
from datetime import date
from typing import Optional

import aiofiles
from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile
from sqlmodel import Session

from core.config import UPLOAD_DIR
from core.database import get_session
from models.user import UserRole
from schemas.complaints import (
    AssignTechnicianRequest,
    ComplaintCreate,
    ComplaintPage,
    ComplaintRead,
    ComplaintStats,
    ComplaintStatusUpdate,
)
from services import complaints as lifecycle
from services.realtime import ConnectionRegistry, get_connection_registry
from utils.errors import ForbiddenError, ValidationError
from utils.pagination import PageParams, page_params
from utils.security import CurrentUser, RoleGuard, admin_required, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Complaints"])

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif"}
COMPLAINT_UPLOAD_DIR = os.path.join(UPLOAD_DIR, "complaints")

residents_or_admins = RoleGuard({UserRole.resident, UserRole.admin})
staff_required = RoleGuard({UserRole.admin, UserRole.technician})


def _require_account(current_user: CurrentUser) -> int:
    if current_user.id is None:
        raise ForbiddenError("This action needs a user account, not the admin API key")
    return current_user.id


def _ensure_can_view(current_user: CurrentUser, complaint: ComplaintRead) -> None:
    if current_user.is_admin or complaint.user_id == current_user.id:
        return
    raise ForbiddenError("You can only access your own complaints")


@router.get("/", response_model=ComplaintPage, dependencies=[Depends(admin_required)])
def list_complaints(
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    urgency: Optional[str] = Query(None),
    technician_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    params: PageParams = Depends(page_params),
    session: Session = Depends(get_session),
):
    return lifecycle.list_complaints(
        session,
        params,
        status=status,
        category=category,
        urgency=urgency,
        technician_id=technician_id,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/stats", response_model=ComplaintStats, dependencies=[Depends(admin_required)])
def complaint_stats(session: Session = Depends(get_session)):
    return lifecycle.complaint_stats(session)


@router.post("/", response_model=ComplaintRead, status_code=201)
def create_complaint(
    payload: ComplaintCreate,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(residents_or_admins),
    session: Session = Depends(get_session),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    user_id = _require_account(current_user)
    complaint = lifecycle.create_complaint(session, user_id, payload)
    read = lifecycle.build_complaint_read(session, complaint)
    background_tasks.add_task(lifecycle.announce_created, registry, read)
    return read


# Fixed paths go before /{complaint_id}
@router.get("/my-complaints", response_model=ComplaintPage)
def my_complaints(
    params: PageParams = Depends(page_params),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return lifecycle.list_for_resident(session, _require_account(current_user), params)


@router.get("/technician/assigned", response_model=ComplaintPage)
def assigned_complaints(
    params: PageParams = Depends(page_params),
    current_user: CurrentUser = Depends(RoleGuard({UserRole.technician})),
    session: Session = Depends(get_session),
):
    return lifecycle.list_for_technician(session, current_user.id, params)


@router.get("/{complaint_id}", response_model=ComplaintRead)
def get_complaint(
    complaint_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    complaint = lifecycle.get_complaint_or_404(session, complaint_id)
    read = lifecycle.build_complaint_read(session, complaint)
    _ensure_can_view(current_user, read)
    return read


@router.put("/{complaint_id}/status", response_model=ComplaintRead)
def update_complaint_status(
    complaint_id: int,
    payload: ComplaintStatusUpdate,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(staff_required),
    session: Session = Depends(get_session),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    new_status = lifecycle.parse_status(payload.status)
    if current_user.role == UserRole.technician:
        # technicians may only move complaints they hold the task for
        complaint = lifecycle.update_task_status(
            session, current_user.id, complaint_id, new_status, note=payload.admin_notes
        )
    else:
        complaint = lifecycle.update_status(
            session, complaint_id, new_status, notes=payload.admin_notes, performed_by=current_user.id
        )
    read = lifecycle.build_complaint_read(session, complaint)
    background_tasks.add_task(lifecycle.announce_status_change, registry, read)
    return read


@router.put("/{complaint_id}/assign", response_model=ComplaintRead)
def assign_technician(
    complaint_id: int,
    payload: AssignTechnicianRequest,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    complaint, _, _ = lifecycle.assign_technician(
        session, complaint_id, payload.technician_id, performed_by=current_user.id
    )
    read = lifecycle.build_complaint_read(session, complaint)
    background_tasks.add_task(lifecycle.announce_assigned, registry, read)
    return read


@router.delete("/{complaint_id}")
def delete_complaint(
    complaint_id: int,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    lifecycle.delete_complaint(session, complaint_id, performed_by=current_user.id)
    return {"message": "Complaint deleted successfully"}


@router.post("/{complaint_id}/photos", response_model=ComplaintRead)
async def upload_photo(
    complaint_id: int,
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    complaint = lifecycle.get_complaint_or_404(session, complaint_id)
    if not current_user.is_admin and complaint.user_id != current_user.id:
        raise ForbiddenError("You can only add photos to your own complaints")

    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"Invalid file type: {file.content_type}. Only images are allowed.")

    os.makedirs(COMPLAINT_UPLOAD_DIR, exist_ok=True)
    file_ext = os.path.splitext(file.filename or "")[1].lower()
    saved_filename = f"{uuid.uuid4()}{file_ext}"
    file_path = os.path.join(COMPLAINT_UPLOAD_DIR, saved_filename)

    try:
        async with aiofiles.open(file_path, "wb") as out_file:
            content = await file.read()
            await out_file.write(content)
    except OSError as e:
        logger.exception("Failed to save upload for complaint %s", complaint_id)
        raise HTTPException(status_code=500, detail=f"Failed to save file: {str(e)}")

    photo_ref = f"complaints/{saved_filename}"
    complaint = lifecycle.add_photo(session, complaint, photo_ref, performed_by=current_user.id)
    return lifecycle.build_complaint_read(session, complaint)
