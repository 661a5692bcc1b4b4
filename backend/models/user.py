from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field
import enum

from utils.timeutils import utc_now


class UserRole(str, enum.Enum):
    resident = "RESIDENT"
    technician = "TECHNICIAN"
    admin = "ADMIN"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, nullable=False)
    password_hash: str = Field(nullable=False)
    role: UserRole = Field(default=UserRole.resident, nullable=False)
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None

    # lockout bookkeeping
    login_attempts: int = Field(default=0, nullable=False)
    last_login_attempt: Optional[datetime] = None
    last_login: Optional[datetime] = None

    reset_token: Optional[str] = None
    reset_token_expiry: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class Admin(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True, nullable=False)
    name: str
    department: Optional[str] = None
    bio: Optional[str] = None
    is_active: bool = Field(default=True, nullable=False)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class PasswordResetAttempt(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True)
    ip_address: str = "unknown"
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
