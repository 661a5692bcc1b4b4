from datetime import datetime
from typing import List, Optional
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field
import enum

from utils.timeutils import utc_now


class ComplaintCategory(str, enum.Enum):
    water_leak = "WATER_LEAK"
    no_water = "NO_WATER"
    dirty_water = "DIRTY_WATER"
    sanitation = "SANITATION"
    pipe_burst = "PIPE_BURST"
    drainage = "DRAINAGE"


class ComplaintUrgency(str, enum.Enum):
    low = "LOW"
    medium = "MEDIUM"
    high = "HIGH"
    emergency = "EMERGENCY"


class ComplaintStatus(str, enum.Enum):
    submitted = "SUBMITTED"       # Filed by a resident, nobody assigned yet
    assigned = "ASSIGNED"         # Technician attached through a Task
    in_progress = "IN_PROGRESS"   # Technician is working on it
    resolved = "RESOLVED"         # Terminal
    rejected = "REJECTED"         # Terminal


# Statuses from which a complaint counts as having been assigned
ASSIGNED_OR_LATER = {ComplaintStatus.assigned, ComplaintStatus.in_progress, ComplaintStatus.resolved}
TERMINAL_STATUSES = {ComplaintStatus.resolved, ComplaintStatus.rejected}
ACTIVE_STATUSES = {ComplaintStatus.assigned, ComplaintStatus.in_progress}


class Complaint(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, nullable=False)  # resident who filed it
    title: str
    description: str
    category: ComplaintCategory
    urgency: ComplaintUrgency = Field(default=ComplaintUrgency.medium)
    status: ComplaintStatus = Field(default=ComplaintStatus.submitted, index=True)
    # {"latitude", "longitude", "address", "accuracy"}
    location: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    photos: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    admin_notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)
    assigned_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
