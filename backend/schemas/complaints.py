from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel
from models.complaints import ComplaintCategory, ComplaintStatus, ComplaintUrgency


class LocationData(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None
    accuracy: Optional[float] = None


# Request schema for creating a complaint. Enum fields arrive as strings and are
# checked by the lifecycle service so bad values surface as 400s with the valid choices.
class ComplaintCreate(BaseModel):
    title: str
    description: str
    category: str
    urgency: Optional[str] = None
    location_data: Optional[LocationData] = None
    photos: Optional[List[str]] = None


class ComplaintStatusUpdate(BaseModel):
    status: str
    admin_notes: Optional[str] = None


class TaskStatusUpdate(BaseModel):
    status: str
    note: Optional[str] = None


class AssignTechnicianRequest(BaseModel):
    technician_id: int


class ResidentSummary(BaseModel):
    id: int
    name: Optional[str]
    email: str


class TaskSummary(BaseModel):
    id: int
    technician_id: Optional[int]
    technician_user_id: Optional[int]
    technician_name: Optional[str]
    technician_email: Optional[str]
    assigned_at: datetime
    resolution_notes: Optional[str]


# Response schema
class ComplaintRead(BaseModel):
    id: int
    user_id: int
    title: str
    description: str
    category: ComplaintCategory
    urgency: ComplaintUrgency
    status: ComplaintStatus
    location: Optional[dict]
    photos: List[str]
    admin_notes: Optional[str]
    created_at: datetime
    updated_at: datetime
    assigned_at: Optional[datetime]
    resolved_at: Optional[datetime]
    resident: Optional[ResidentSummary] = None
    task: Optional[TaskSummary] = None

    class Config:
        from_attributes = True  # allows reading from ORM objects


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ComplaintPage(BaseModel):
    complaints: List[ComplaintRead]
    pagination: PaginationMeta


class ComplaintStats(BaseModel):
    total: int
    by_status: dict
    recent_count: int
