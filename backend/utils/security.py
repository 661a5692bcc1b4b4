import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional

import jwt
from fastapi import Depends
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlmodel import Session

from core.config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ADMIN_API_KEY,
    BCRYPT_ROUNDS,
    JWT_ALGORITHM,
    JWT_SECRET,
    RESET_TOKEN_EXPIRE_MINUTES,
)
from core.database import get_session
from models.user import User, UserRole
from utils.errors import ForbiddenError, UnauthorizedError
from utils.timeutils import utc_now

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

bearer_scheme = HTTPBearer(auto_error=False)
admin_key_header = APIKeyHeader(name="x-admin-api-key", auto_error=False)

RESET_TOKEN_TYPE = "password_reset"


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated principal attached to a request."""

    id: Optional[int]
    email: str
    role: UserRole
    via_api_key: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


API_KEY_ADMIN = CurrentUser(id=None, email="admin-api-key@local", role=UserRole.admin, via_api_key=True)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def is_admin_api_key(candidate: Optional[str]) -> bool:
    if not ADMIN_API_KEY or not candidate:
        return False
    return secrets.compare_digest(candidate, ADMIN_API_KEY)


def create_access_token(user: User) -> str:
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "exp": utc_now() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_reset_token(user: User) -> str:
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "type": RESET_TOKEN_TYPE,
        "exp": utc_now() + timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def user_from_token(token: str, session: Session) -> User:
    """Resolve a bearer token to the stored user it was issued for."""
    payload = decode_token(token)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid token subject")

    user = session.get(User, user_id)
    if not user:
        raise UnauthorizedError("User not found")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    api_key: Optional[str] = Depends(admin_key_header),
    session: Session = Depends(get_session),
) -> CurrentUser:
    # API key bypasses token verification entirely
    if is_admin_api_key(api_key):
        return API_KEY_ADMIN

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedError("Missing bearer token")

    user = user_from_token(credentials.credentials, session)
    return CurrentUser(id=user.id, email=user.email, role=user.role)


class RoleGuard:
    """Dependency allowing only principals whose role is in ``allowed``."""

    def __init__(self, allowed: Iterable[UserRole]):
        self.allowed = frozenset(allowed)

    def __call__(self, current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in self.allowed:
            raise ForbiddenError("You do not have access to this resource")
        return current_user


admin_required = RoleGuard({UserRole.admin})
technician_required = RoleGuard({UserRole.technician})
