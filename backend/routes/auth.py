from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from core.database import get_session
from schemas.auth import ForgotPasswordRequest, LoginRequest, ResetPasswordRequest, SignupRequest, VerifyRequest
from services import auth as auth_service

router = APIRouter(tags=["Auth"])


@router.post("/signup", status_code=201)
def signup(payload: SignupRequest, session: Session = Depends(get_session)):
    return auth_service.signup(session, payload.email, payload.password, name=payload.name, phone=payload.phone)


@router.post("/login")
def login(payload: LoginRequest, session: Session = Depends(get_session)):
    return auth_service.login(session, payload.email, payload.password)


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, request: Request, session: Session = Depends(get_session)):
    ip_address = request.client.host if request.client else "unknown"
    auth_service.forgot_password(session, payload.email, ip_address=ip_address)
    # identical answer whether or not the address is registered
    return {"message": "If an account with that email exists, a password reset link has been sent"}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, session: Session = Depends(get_session)):
    return auth_service.reset_password(session, payload.token, payload.new_password)


@router.post("/verify")
def verify(payload: VerifyRequest, session: Session = Depends(get_session)):
    return auth_service.verify(session, payload.token)
