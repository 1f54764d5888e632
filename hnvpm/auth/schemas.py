"""Auth request/response schemas."""
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, EmailStr, Field, field_validator

from hnvpm.utils.payload import PHONE_RE


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    organization_name: Optional[str] = Field(None, max_length=100)

    @field_validator("phone")
    @classmethod
    def _phone(cls, v):
        if v and not PHONE_RE.match(v):
            raise ValueError("Please enter a valid phone number")
        return v


class PasswordUpdate(BaseModel):
    current_password: str
    password: str = Field(..., min_length=6)
    password_confirm: str


class UserResponse(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    full_name: str
    phone: Optional[str] = None
    role: str
    status: str
    is_email_verified: bool = False
    organization_id: Optional[int] = None
    managed_property_ids: List[int] = []
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("managed_property_ids", mode="before")
    @classmethod
    def _ids(cls, v):
        return v or []


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
