from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field
import enum

from utils.timeutils import utc_now


class Speciality(str, enum.Enum):
    plumbing = "PLUMBING"
    electrical = "ELECTRICAL"
    cleaning = "CLEANING"
    security = "SECURITY"
    general = "GENERAL"
    other = "OTHER"


class TechnicianStatus(str, enum.Enum):
    active = "ACTIVE"
    inactive = "INACTIVE"
    on_leave = "ON_LEAVE"


class Technician(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True, nullable=False)
    speciality: Optional[Speciality] = None
    status: TechnicianStatus = Field(default=TechnicianStatus.active, nullable=False)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    # one task per complaint; re-assignment rewrites technician_id
    complaint_id: int = Field(foreign_key="complaint.id", unique=True, nullable=False)
    # cleared when the technician profile is deleted; finished work stays on record
    technician_id: Optional[int] = Field(default=None, foreign_key="technician.id", index=True)
    assigned_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)
    resolution_notes: Optional[str] = None
