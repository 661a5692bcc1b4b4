from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel
from models.notification import Audience, NotificationType, ReceiptStatus
from schemas.complaints import PaginationMeta


class NotificationCreate(BaseModel):
    title: str
    message: str
    type: NotificationType = NotificationType.general
    audience: Audience = Audience.all
    target_user_ids: Optional[List[int]] = None


class NotificationUpdate(BaseModel):
    title: Optional[str] = None
    message: Optional[str] = None
    type: Optional[NotificationType] = None


class NotificationRead(BaseModel):
    id: int
    title: str
    message: str
    type: NotificationType
    audience: Audience
    created_by_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class NotificationSendResult(BaseModel):
    notification: NotificationRead
    sent_count: int
    total_targets: int


# A recipient's view: the notification plus the state of their own receipt
class MyNotificationRead(BaseModel):
    receipt_id: int
    status: ReceiptStatus
    read_at: Optional[datetime]
    notification: NotificationRead


class RecipientRead(BaseModel):
    id: int
    email: str
    name: Optional[str]
    role: str


class NotificationPage(BaseModel):
    notifications: List[NotificationRead]
    pagination: PaginationMeta


class MyNotificationPage(BaseModel):
    notifications: List[MyNotificationRead]
    pagination: PaginationMeta


class NotificationStats(BaseModel):
    total_notifications: int
    sent_today: int
    total_receipts: int
    read_receipts: int
    unread_receipts: int
    residents: int
    technicians: int
