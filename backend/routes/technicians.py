from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlmodel import Session

from core.database import get_session
from schemas.complaints import ComplaintPage, ComplaintRead, TaskStatusUpdate
from schemas.technicians import (
    PasswordReset,
    TechnicianCreate,
    TechnicianPage,
    TechnicianPerformance,
    TechnicianRead,
    TechnicianUpdate,
)
from services import complaints as lifecycle
from services import technicians as directory
from services.realtime import ConnectionRegistry, get_connection_registry
from utils.pagination import PageParams, page_params
from utils.security import CurrentUser, admin_required, technician_required

router = APIRouter(tags=["Technicians"])


@router.get("/", response_model=TechnicianPage, dependencies=[Depends(admin_required)])
def list_technicians(
    status: Optional[str] = Query(None),
    params: PageParams = Depends(page_params),
    session: Session = Depends(get_session),
):
    return directory.list_technicians(session, params, status=status)


@router.get("/available", response_model=List[TechnicianRead], dependencies=[Depends(admin_required)])
def available_technicians(session: Session = Depends(get_session)):
    return directory.available_technicians(session)


@router.get("/stats", response_model=List[TechnicianPerformance], dependencies=[Depends(admin_required)])
def technician_stats(session: Session = Depends(get_session)):
    return directory.technician_performance(session)


# Self-service for the signed-in technician
@router.get("/me/tasks", response_model=ComplaintPage)
def my_tasks(
    params: PageParams = Depends(page_params),
    current_user: CurrentUser = Depends(technician_required),
    session: Session = Depends(get_session),
):
    return lifecycle.list_for_technician(session, current_user.id, params)


@router.put("/me/tasks/{complaint_id}/status", response_model=ComplaintRead)
def update_my_task_status(
    complaint_id: int,
    payload: TaskStatusUpdate,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(technician_required),
    session: Session = Depends(get_session),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    new_status = lifecycle.parse_status(payload.status)
    complaint = lifecycle.update_task_status(session, current_user.id, complaint_id, new_status, note=payload.note)
    read = lifecycle.build_complaint_read(session, complaint)
    background_tasks.add_task(lifecycle.announce_status_change, registry, read)
    return read


@router.get("/{technician_id}", response_model=TechnicianRead, dependencies=[Depends(admin_required)])
def get_technician(technician_id: int, session: Session = Depends(get_session)):
    return directory.get_technician(session, technician_id)


@router.post("/", response_model=TechnicianRead, status_code=201)
def create_technician(
    payload: TechnicianCreate,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    return directory.create_technician(session, payload, performed_by=current_user.id)


@router.put("/{technician_id}", response_model=TechnicianRead)
def update_technician(
    technician_id: int,
    payload: TechnicianUpdate,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    return directory.update_technician(session, technician_id, payload, performed_by=current_user.id)


@router.delete("/{technician_id}")
def delete_technician(
    technician_id: int,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    directory.delete_technician(session, technician_id, performed_by=current_user.id)
    return {"message": "Technician deleted successfully"}


@router.post("/{technician_id}/reset-password")
def reset_technician_password(
    technician_id: int,
    payload: PasswordReset,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    return directory.reset_technician_password(
        session, technician_id, payload.new_password, performed_by=current_user.id
    )
