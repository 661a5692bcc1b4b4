from typing import List

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from core.database import get_session
from schemas.notifications import (
    MyNotificationPage,
    NotificationCreate,
    NotificationPage,
    NotificationRead,
    NotificationSendResult,
    NotificationStats,
    NotificationUpdate,
    RecipientRead,
)
from services import notifications as notification_service
from services.realtime import ConnectionRegistry, get_connection_registry
from utils.errors import ForbiddenError
from utils.pagination import PageParams, page_params
from utils.security import CurrentUser, admin_required, get_current_user

router = APIRouter(tags=["Notifications"])


def recipient_required(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    # receipts belong to user accounts; the API key principal has none
    if current_user.id is None:
        raise ForbiddenError("Notifications are only available to user accounts")
    return current_user


@router.post("/", response_model=NotificationSendResult, status_code=201)
async def create_notification(
    payload: NotificationCreate,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    return await notification_service.dispatch_notification(
        session, registry, payload, created_by=current_user.id
    )


@router.get("/", response_model=NotificationPage, dependencies=[Depends(admin_required)])
def list_notifications(params: PageParams = Depends(page_params), session: Session = Depends(get_session)):
    return notification_service.list_notifications(session, params)


@router.get("/users", response_model=List[RecipientRead], dependencies=[Depends(admin_required)])
def list_recipients(session: Session = Depends(get_session)):
    return notification_service.list_recipients(session)


@router.get("/stats", response_model=NotificationStats, dependencies=[Depends(admin_required)])
def notification_stats(session: Session = Depends(get_session)):
    return notification_service.notification_stats(session)


@router.get("/my-notifications", response_model=MyNotificationPage)
def my_notifications(
    unread_only: bool = Query(False),
    params: PageParams = Depends(page_params),
    current_user: CurrentUser = Depends(recipient_required),
    session: Session = Depends(get_session),
):
    return notification_service.my_notifications(session, current_user.id, params, unread_only=unread_only)


@router.get("/unread-count")
def unread_count(
    current_user: CurrentUser = Depends(recipient_required),
    session: Session = Depends(get_session),
):
    return {"count": notification_service.unread_count(session, current_user.id)}


@router.patch("/mark-read/{notification_id}")
def mark_as_read(
    notification_id: int,
    current_user: CurrentUser = Depends(recipient_required),
    session: Session = Depends(get_session),
):
    receipt = notification_service.mark_as_read(session, current_user.id, notification_id)
    return {"notification_id": notification_id, "status": receipt.status, "read_at": receipt.read_at}


@router.patch("/mark-all-read")
def mark_all_as_read(
    current_user: CurrentUser = Depends(recipient_required),
    session: Session = Depends(get_session),
):
    return {"updated": notification_service.mark_all_as_read(session, current_user.id)}


@router.patch("/{notification_id}", response_model=NotificationRead)
def update_notification(
    notification_id: int,
    payload: NotificationUpdate,
    current_user: CurrentUser = Depends(admin_required),
    session: Session = Depends(get_session),
):
    return notification_service.update_notification(
        session,
        notification_id,
        title=payload.title,
        message=payload.message,
        type=payload.type,
        performed_by=current_user.id,
    )
