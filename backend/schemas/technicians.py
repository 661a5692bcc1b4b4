from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel
from models.task import Speciality, TechnicianStatus
from schemas.complaints import PaginationMeta


class TechnicianCreate(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None
    speciality: Optional[Speciality] = None
    status: TechnicianStatus = TechnicianStatus.active


class TechnicianUpdate(BaseModel):
    speciality: Optional[Speciality] = None
    status: Optional[TechnicianStatus] = None


class PasswordReset(BaseModel):
    new_password: str


class TechnicianUserRead(BaseModel):
    id: int
    name: Optional[str]
    email: str
    phone: Optional[str]
    last_login: Optional[datetime]
    created_at: datetime


class TechnicianTaskStats(BaseModel):
    total_tasks: int
    completed_tasks: int
    active_tasks: int
    efficiency: int


class TechnicianRead(BaseModel):
    id: int
    user_id: int
    speciality: Optional[Speciality]
    status: TechnicianStatus
    created_at: datetime
    updated_at: datetime
    user: TechnicianUserRead
    stats: Optional[TechnicianTaskStats] = None

    class Config:
        from_attributes = True


class TechnicianPage(BaseModel):
    technicians: List[TechnicianRead]
    pagination: PaginationMeta


class TechnicianPerformance(BaseModel):
    id: int
    name: Optional[str]
    email: str
    speciality: Optional[Speciality]
    status: TechnicianStatus
    total_tasks: int
    completed_tasks: int
    efficiency: float
    avg_resolution_hours: float
