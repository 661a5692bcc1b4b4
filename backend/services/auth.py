import logging
import math
import re
from datetime import timedelta
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from core.config import (
    LOGIN_LOCKOUT_MINUTES,
    MAX_LOGIN_ATTEMPTS,
    MAX_RESET_REQUESTS_PER_HOUR,
    PASSWORD_MIN_LENGTH,
    RESET_TOKEN_EXPIRE_MINUTES,
)
from core.database import commit_or_rollback
from models.user import PasswordResetAttempt, User, UserRole
from utils.email import EmailDeliveryError, send_password_reset_email
from utils.errors import ConflictError, UnauthorizedError, ValidationError
from utils.security import (
    RESET_TOKEN_TYPE,
    create_access_token,
    create_reset_token,
    decode_token,
    hash_password,
    verify_password,
)
from utils.timeutils import as_utc, utc_now

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
COMMON_PASSWORDS = {"password", "12345678", "qwerty", "123456789", "password1", "qwerty123"}
INVALID_CREDENTIALS = "Invalid credentials"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_password(password: str) -> None:
    if len(password or "") < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if password.lower() in COMMON_PASSWORDS:
        raise ValidationError("Password is too common")


def validate_email(email: str) -> str:
    normalized = normalize_email(email)
    if not EMAIL_RE.match(normalized):
        raise ValidationError("Invalid email format")
    return normalized


def find_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == normalize_email(email))).first()


def create_user(
    session: Session,
    email: str,
    password: str,
    role: UserRole,
    name: Optional[str] = None,
    phone: Optional[str] = None,
) -> User:
    """Validate and add a user to the session; the caller commits."""
    validate_password(password)
    normalized = validate_email(email)
    if find_user_by_email(session, normalized):
        raise ConflictError("Email already exists")

    user = User(
        email=normalized,
        password_hash=hash_password(password),
        role=role,
        name=name.strip() if name else None,
        phone=phone.strip() if phone else None,
    )
    session.add(user)
    session.flush()
    return user


def token_response(user: User) -> dict:
    return {
        "access_token": create_access_token(user),
        "token_type": "bearer",
        "user": {"id": user.id, "email": user.email, "role": user.role, "name": user.name},
    }


def signup(session: Session, email: str, password: str, name: Optional[str] = None, phone: Optional[str] = None) -> dict:
    user = create_user(session, email, password, UserRole.resident, name=name, phone=phone)
    commit_or_rollback(session, "create account")
    session.refresh(user)
    logger.info("Resident %s signed up", user.id)
    return token_response(user)


def _record_failed_login(session: Session, user: User) -> None:
    user.login_attempts = (user.login_attempts or 0) + 1
    user.last_login_attempt = utc_now()
    session.add(user)
    commit_or_rollback(session, "record login attempt")


def _reset_login_attempts(user: User) -> None:
    user.login_attempts = 0
    user.last_login_attempt = None


def login(session: Session, email: str, password: str) -> dict:
    if not email or not password:
        raise ValidationError("Email and password are required")

    user = find_user_by_email(session, email)
    if not user:
        # same answer as a wrong password
        raise UnauthorizedError(INVALID_CREDENTIALS)

    if user.login_attempts >= MAX_LOGIN_ATTEMPTS and user.last_login_attempt:
        elapsed = utc_now() - as_utc(user.last_login_attempt)
        lockout = timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        if elapsed < lockout:
            remaining = math.ceil((lockout - elapsed).total_seconds() / 60)
            logger.warning("Locked account %s attempted to log in", user.id)
            raise UnauthorizedError(f"Account temporarily locked. Try again in {remaining} minutes")
        _reset_login_attempts(user)

    if not verify_password(password, user.password_hash):
        _record_failed_login(session, user)
        raise UnauthorizedError(INVALID_CREDENTIALS)

    _reset_login_attempts(user)
    user.last_login = utc_now()
    session.add(user)
    commit_or_rollback(session, "log in")
    session.refresh(user)
    return token_response(user)


def forgot_password(session: Session, email: str, ip_address: str = "unknown") -> None:
    """Issue a reset token by email. Silent for unknown or rate-limited addresses."""
    normalized = normalize_email(email)
    recent = session.exec(
        select(func.count(PasswordResetAttempt.id)).where(
            PasswordResetAttempt.email == normalized,
            PasswordResetAttempt.created_at >= utc_now() - timedelta(hours=1),
        )
    ).one()
    if recent >= MAX_RESET_REQUESTS_PER_HOUR:
        logger.info("Too many reset requests for %s", normalized)
        return

    user = find_user_by_email(session, normalized)
    session.add(PasswordResetAttempt(email=normalized, ip_address=ip_address, user_id=user.id if user else None))

    if not user:
        commit_or_rollback(session, "record reset request")
        logger.info("Password reset requested for unknown email")
        return

    user.reset_token = create_reset_token(user)
    user.reset_token_expiry = utc_now() + timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES)
    session.add(user)
    commit_or_rollback(session, "store reset token")

    try:
        send_password_reset_email(user.email, user.reset_token, user.name)
    except EmailDeliveryError as exc:
        logger.error("Reset email to user %s failed: %s", user.id, exc)


def reset_password(session: Session, token: str, new_password: str) -> dict:
    validate_password(new_password)

    payload = decode_token(token)
    if payload.get("type") != RESET_TOKEN_TYPE:
        raise UnauthorizedError("Invalid token type")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid or expired reset token")

    user = session.get(User, user_id)
    if (
        not user
        or user.reset_token != token
        or not user.reset_token_expiry
        or as_utc(user.reset_token_expiry) <= utc_now()
    ):
        raise UnauthorizedError("Invalid or expired reset token")

    if verify_password(new_password, user.password_hash):
        raise ValidationError("New password must be different from current password")

    user.password_hash = hash_password(new_password)
    user.reset_token = None
    user.reset_token_expiry = None
    _reset_login_attempts(user)
    user.updated_at = utc_now()
    session.add(user)
    commit_or_rollback(session, "reset password")
    logger.info("Password reset for user %s", user.id)
    return {"message": "Password reset successfully"}


def verify(session: Session, token: str) -> dict:
    payload = decode_token(token)
    try:
        user = session.get(User, int(payload.get("sub")))
    except (TypeError, ValueError):
        user = None
    if not user:
        raise UnauthorizedError("Invalid or expired token")
    return {**payload, "role": user.role.value}
