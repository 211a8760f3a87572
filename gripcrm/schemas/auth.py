import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class RegisterRequest(BaseModel):
    email: EmailStr
    name: str
    password: str = Field(min_length=6)

    @field_validator("name")
    @classmethod
    def name_min_length(cls, v):
        v = (v or "").strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(min_length=6)


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    is_verified: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class DeleteAccountRequest(BaseModel):
    password: str
