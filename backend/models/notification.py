from datetime import datetime
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field
import enum

from utils.timeutils import utc_now


class NotificationType(str, enum.Enum):
    general = "GENERAL"
    system = "SYSTEM"
    alert = "ALERT"
    update = "UPDATE"
    report = "REPORT"


class Audience(str, enum.Enum):
    all = "ALL"
    resident = "RESIDENT"
    technician = "TECHNICIAN"
    specific = "SPECIFIC"


class ReceiptStatus(str, enum.Enum):
    unread = "UNREAD"
    read = "READ"


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    message: str
    type: NotificationType = Field(default=NotificationType.general)
    audience: Audience = Field(default=Audience.all)
    created_by_id: Optional[int] = Field(default=None, foreign_key="user.id")  # None when sent with the API key
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class NotificationReceipt(SQLModel, table=True):
    __tablename__ = "notification_receipts"
    __table_args__ = (UniqueConstraint("notification_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    notification_id: int = Field(foreign_key="notification.id", index=True, nullable=False)
    user_id: int = Field(foreign_key="user.id", index=True, nullable=False)
    status: ReceiptStatus = Field(default=ReceiptStatus.unread, nullable=False)
    read_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)
