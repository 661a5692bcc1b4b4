from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel
from schemas.complaints import PaginationMeta


class AdminCreate(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None
    department: Optional[str] = None


class AdminUpdate(BaseModel):
    name: Optional[str] = None
    department: Optional[str] = None
    bio: Optional[str] = None
    phone: Optional[str] = None


class AdminRead(BaseModel):
    id: int
    user_id: int
    name: str
    email: str
    phone: Optional[str]
    department: Optional[str]
    bio: Optional[str]
    is_active: bool
    last_login: Optional[datetime]
    created_at: datetime


class AuditLogRead(BaseModel):
    id: int
    action: str
    details: Optional[str]
    user_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogPage(BaseModel):
    logs: List[AuditLogRead]
    pagination: PaginationMeta
