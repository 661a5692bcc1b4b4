from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field
import enum

from utils.timeutils import utc_now


class AuditAction(str, enum.Enum):
    # Complaint lifecycle
    CREATED_COMPLAINT = "created_complaint"
    ASSIGNED_TECHNICIAN = "assigned_technician"
    UPDATED_COMPLAINT_STATUS = "updated_complaint_status"
    UPDATED_TASK_STATUS = "updated_task_status"
    DELETED_COMPLAINT = "deleted_complaint"
    UPLOADED_PHOTO = "uploaded_photo"

    # Directory
    ADDED_TECHNICIAN = "added_technician"
    UPDATED_TECHNICIAN = "updated_technician"
    REMOVED_TECHNICIAN = "removed_technician"
    RESET_TECHNICIAN_PASSWORD = "reset_technician_password"
    ADDED_ADMIN = "added_admin"
    UPDATED_ADMIN = "updated_admin"
    REMOVED_ADMIN = "removed_admin"

    # Notifications
    SENT_NOTIFICATION = "sent_notification"
    UPDATED_NOTIFICATION = "updated_notification"


class AuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    action: str  # one of AuditAction
    details: Optional[str] = None

    user_id: Optional[int] = Field(default=None, foreign_key="user.id")  # who did the action; None for API-key admins
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
