from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from core.database import get_session
from schemas.admins import AdminCreate, AdminRead, AdminUpdate, AuditLogPage
from services import admins as admin_service
from utils.pagination import PageParams, page_params
from utils.security import CurrentUser, admin_required

router = APIRouter(tags=["Admin"])
audit_router = APIRouter(tags=["Audit"], dependencies=[Depends(admin_required)])


@router.get("/", response_model=List[AdminRead], dependencies=[Depends(admin_required)])
def list_admins(session: Session = Depends(get_session)):
    return admin_service.list_admins(session)


@router.get("/{admin_id}", response_model=AdminRead, dependencies=[Depends(admin_required)])
def get_admin(admin_id: int, session: Session = Depends(get_session)):
    return admin_service.get_admin(session, admin_id)


@router.post("/", response_model=AdminRead, status_code=201)
def create_admin(
    payload: AdminCreate,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    return admin_service.create_admin(session, payload, performed_by=current_user.id)


@router.patch("/{admin_id}", response_model=AdminRead)
def update_admin(
    admin_id: int,
    payload: AdminUpdate,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    return admin_service.update_admin(session, admin_id, payload, performed_by=current_user.id)


@router.delete("/{admin_id}")
def delete_admin(
    admin_id: int,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    admin_service.delete_admin(session, admin_id, performed_by=current_user.id)
    return {"message": "Admin deleted successfully"}


@audit_router.get("/", response_model=AuditLogPage)
def list_audit_logs(
    action: Optional[str] = Query(None),
    params: PageParams = Depends(page_params),
    session: Session = Depends(get_session),
):
    return admin_service.list_audit_logs(session, params, action=action)
