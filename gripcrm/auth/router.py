from fastapi import APIRouter, Depends, status

from ..models.models import User
from ..routes.deps import get_auth_service
from ..schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
)
from ..schemas.common import MessageResponse
from ..services.auth import AuthService
from .security import get_current_user


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, svc: AuthService = Depends(get_auth_service)):
    user, token = svc.register(payload.email, payload.name, payload.password)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, svc: AuthService = Depends(get_auth_service)):
    user, token = svc.login(payload.email, payload.password)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.get("/verify/{token}", response_model=MessageResponse)
def verify_email(token: str, svc: AuthService = Depends(get_auth_service)):
    svc.verify_email(token)
    return MessageResponse(message="Email verified successfully")


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(payload: ForgotPasswordRequest, svc: AuthService = Depends(get_auth_service)):
    svc.request_password_reset(payload.email)
    # Same answer whether or not the account exists
    return MessageResponse(message="If an account with that email exists, a password reset link has been sent")


@router.post("/reset-password/{token}", response_model=MessageResponse)
def reset_password(token: str, payload: ResetPasswordRequest, svc: AuthService = Depends(get_auth_service)):
    svc.reset_password(token, payload.password)
    return MessageResponse(message="Password reset successfully")


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return user
