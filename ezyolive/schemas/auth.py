from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime

from ..core.security import UserRole

def _check_password_strength(value: str) -> str:
    if not any(c.isupper() for c in value) or not any(c.isdigit() for c in value):
        raise ValueError("Password must contain an uppercase letter and a digit")
    return value

class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: UserRole = UserRole.PATIENT
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = None
    specialization: Optional[str] = Field(None, max_length=120)
    license_number: Optional[str] = Field(None, max_length=80)

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)

    @field_validator("role")
    @classmethod
    def no_admin_signup(cls, value: UserRole) -> UserRole:
        if value == UserRole.ADMIN:
            raise ValueError("Administrator accounts cannot be self-registered")
        return value

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    role: UserRole
    first_name: str
    last_name: str
    specialization: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class ChangePassword(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)
