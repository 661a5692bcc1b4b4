"""Persistent notifications: audience resolution, receipts and recipient queries.

Live delivery goes through :class:`services.realtime.ConnectionRegistry`; the
receipts written here are what a recipient sees regardless of whether they
were connected when the notification went out.
"""
import logging
from typing import List, Optional, Sequence, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func
from sqlmodel import Session, col, select

from core.database import commit_or_rollback
from models.audit_log import AuditAction
from models.notification import Audience, Notification, NotificationReceipt, NotificationType, ReceiptStatus
from models.user import User, UserRole
from schemas.notifications import NotificationCreate, NotificationRead
from services.audit import log_action
from services.realtime import ConnectionRegistry, TransportHandle
from utils.errors import NotFoundError, ValidationError
from utils.pagination import PageParams
from utils.timeutils import start_of_day, utc_now

logger = logging.getLogger(__name__)

RECIPIENT_ROLES = (UserRole.resident, UserRole.technician)


def resolve_audience(session: Session, audience: Audience, target_user_ids: Optional[Sequence[int]] = None) -> List[int]:
    """Turn an audience selector into concrete recipient user ids."""
    if audience == Audience.specific:
        ids = list(dict.fromkeys(target_user_ids or []))
        if not ids:
            raise ValidationError("Specific audience needs at least one target user")
        found = set(session.exec(select(User.id).where(col(User.id).in_(ids))).all())
        missing = [user_id for user_id in ids if user_id not in found]
        if missing:
            raise NotFoundError(f"Users not found: {', '.join(str(m) for m in missing)}")
        return ids

    if audience == Audience.all:
        roles = RECIPIENT_ROLES
    else:
        roles = (UserRole(audience.value),)
    return list(session.exec(select(User.id).where(col(User.role).in_(roles)).order_by(User.id)).all())


def create_notification(
    session: Session,
    title: str,
    message: str,
    type: NotificationType = NotificationType.general,
    audience: Audience = Audience.all,
    target_user_ids: Optional[Sequence[int]] = None,
    created_by: Optional[int] = None,
) -> Tuple[Notification, List[int]]:
    """Store the notification and one UNREAD receipt per target in a single commit."""
    title = (title or "").strip()
    message = (message or "").strip()
    if not title or not message:
        raise ValidationError("Title and message are required")

    targets = resolve_audience(session, audience, target_user_ids)

    notification = Notification(
        title=title,
        message=message,
        type=type,
        audience=audience,
        created_by_id=created_by,
    )
    session.add(notification)
    session.flush()

    for user_id in targets:
        session.add(NotificationReceipt(notification_id=notification.id, user_id=user_id))

    log_action(
        session,
        performed_by=created_by,
        action=AuditAction.SENT_NOTIFICATION,
        details=f"Notification {notification.id} '{title}' to {audience.value} ({len(targets)} recipients)",
    )
    commit_or_rollback(session, "create notification")
    session.refresh(notification)

    logger.info("Notification %s stored for %d recipients", notification.id, len(targets))
    return notification, targets


def get_notification_or_404(session: Session, notification_id: int) -> Notification:
    notification = session.get(Notification, notification_id)
    if not notification:
        raise NotFoundError(f"Notification with ID {notification_id} not found")
    return notification


def list_notifications(session: Session, params: PageParams) -> dict:
    total = session.exec(select(func.count(Notification.id))).one()
    notifications = session.exec(
        select(Notification)
        .order_by(col(Notification.created_at).desc(), col(Notification.id).desc())
        .offset(params.offset)
        .limit(params.limit)
    ).all()
    return {"notifications": notifications, "pagination": params.meta(total)}


def list_recipients(session: Session) -> List[dict]:
    users = session.exec(select(User).where(col(User.role).in_(RECIPIENT_ROLES)).order_by(User.name, User.id)).all()
    return [{"id": u.id, "email": u.email, "name": u.name, "role": u.role.value} for u in users]


def notification_stats(session: Session) -> dict:
    def count(query):
        return session.exec(query).one()

    today = start_of_day(utc_now().date())
    return {
        "total_notifications": count(select(func.count(Notification.id))),
        "sent_today": count(select(func.count(Notification.id)).where(Notification.created_at >= today)),
        "total_receipts": count(select(func.count(NotificationReceipt.id))),
        "read_receipts": count(
            select(func.count(NotificationReceipt.id)).where(NotificationReceipt.status == ReceiptStatus.read)
        ),
        "unread_receipts": count(
            select(func.count(NotificationReceipt.id)).where(NotificationReceipt.status == ReceiptStatus.unread)
        ),
        "residents": count(select(func.count(User.id)).where(User.role == UserRole.resident)),
        "technicians": count(select(func.count(User.id)).where(User.role == UserRole.technician)),
    }


def my_notifications(session: Session, user_id: int, params: PageParams, unread_only: bool = False) -> dict:
    conditions = [NotificationReceipt.user_id == user_id]
    if unread_only:
        conditions.append(NotificationReceipt.status == ReceiptStatus.unread)

    total = session.exec(select(func.count(NotificationReceipt.id)).where(*conditions)).one()
    rows = session.exec(
        select(NotificationReceipt, Notification)
        .join(Notification, Notification.id == NotificationReceipt.notification_id)
        .where(*conditions)
        .order_by(col(Notification.created_at).desc(), col(Notification.id).desc())
        .offset(params.offset)
        .limit(params.limit)
    ).all()

    items = [
        {
            "receipt_id": receipt.id,
            "status": receipt.status,
            "read_at": receipt.read_at,
            "notification": notification,
        }
        for receipt, notification in rows
    ]
    return {"notifications": items, "pagination": params.meta(total)}


def unread_count(session: Session, user_id: int) -> int:
    return session.exec(
        select(func.count(NotificationReceipt.id)).where(
            NotificationReceipt.user_id == user_id,
            NotificationReceipt.status == ReceiptStatus.unread,
        )
    ).one()


def mark_as_read(session: Session, user_id: int, notification_id: int) -> NotificationReceipt:
    # only the recipient's own receipt; anything else looks like it doesn't exist
    receipt = session.exec(
        select(NotificationReceipt).where(
            NotificationReceipt.notification_id == notification_id,
            NotificationReceipt.user_id == user_id,
        )
    ).first()
    if not receipt:
        raise NotFoundError("Notification not found")

    if receipt.status != ReceiptStatus.read:
        now = utc_now()
        receipt.status = ReceiptStatus.read
        receipt.read_at = now
        receipt.updated_at = now
        session.add(receipt)
        commit_or_rollback(session, "mark notification as read")
        session.refresh(receipt)
    return receipt


def mark_all_as_read(session: Session, user_id: int) -> int:
    receipts = session.exec(
        select(NotificationReceipt).where(
            NotificationReceipt.user_id == user_id,
            NotificationReceipt.status == ReceiptStatus.unread,
        )
    ).all()
    now = utc_now()
    for receipt in receipts:
        receipt.status = ReceiptStatus.read
        receipt.read_at = now
        receipt.updated_at = now
        session.add(receipt)
    commit_or_rollback(session, "mark notifications as read")
    return len(receipts)


def update_notification(
    session: Session,
    notification_id: int,
    title: Optional[str] = None,
    message: Optional[str] = None,
    type: Optional[NotificationType] = None,
    performed_by: Optional[int] = None,
) -> Notification:
    notification = get_notification_or_404(session, notification_id)

    if title is not None:
        if not title.strip():
            raise ValidationError("Title cannot be empty")
        notification.title = title.strip()
    if message is not None:
        if not message.strip():
            raise ValidationError("Message cannot be empty")
        notification.message = message.strip()
    if type is not None:
        notification.type = type
    notification.updated_at = utc_now()
    session.add(notification)

    log_action(
        session,
        performed_by=performed_by,
        action=AuditAction.UPDATED_NOTIFICATION,
        details=f"Notification {notification_id} updated",
    )
    commit_or_rollback(session, "update notification")
    session.refresh(notification)
    return notification


def _persist_notification(
    session: Session, payload: NotificationCreate, created_by: Optional[int]
) -> Tuple[NotificationRead, List[int]]:
    notification, targets = create_notification(
        session,
        payload.title,
        payload.message,
        type=payload.type,
        audience=payload.audience,
        target_user_ids=payload.target_user_ids,
        created_by=created_by,
    )
    return NotificationRead.model_validate(notification), targets


async def dispatch_notification(
    session: Session,
    registry: ConnectionRegistry,
    payload: NotificationCreate,
    created_by: Optional[int] = None,
    sender: Optional[TransportHandle] = None,
) -> dict:
    """Persist in the thread pool, push to connected recipients, then tell the other admins."""
    data, targets = await run_in_threadpool(_persist_notification, session, payload, created_by)
    sent_count = await registry.broadcast(data, targets)
    await registry.notify_admins(
        "admin-notification",
        {**data.model_dump(), "sent_count": sent_count, "total_targets": len(targets)},
        exclude=sender,
    )
    return {"notification": data, "sent_count": sent_count, "total_targets": len(targets)}
