"""Authentication schemas."""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime
from uuid import UUID


class LoginRequest(BaseModel):
    """Login request."""
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "user@example.com",
                "password": "SecurePassword123!"
            }
        }


class RegisterRequest(BaseModel):
    """Organization signup: creates the organization and its owner."""
    email: EmailStr = Field(..., description="Owner email address")
    password: str = Field(..., min_length=8, description="Strong password")
    name: str = Field(..., min_length=1, max_length=255, description="Owner full name")
    organization_name: str = Field(..., min_length=2, max_length=255, description="Organization name")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "owner@example.com",
                "password": "SecurePassword123!",
                "name": "Jane Doe",
                "organization_name": "Acme Video"
            }
        }


class UserResponse(BaseModel):
    """User information response."""
    id: UUID
    email: str
    name: str
    role: str
    organization_id: UUID
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrganizationSummary(BaseModel):
    """Organization fields returned with auth responses."""
    id: UUID
    name: str
    email: str
    plan: str
    status: str

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    """Login response."""
    message: str
    token: str
    token_type: str = "bearer"
    user: UserResponse
    organization: OrganizationSummary


class RegisterResponse(AuthResponse):
    """Signup response. ``api_key`` is the raw default key, shown only once."""
    api_key: str


class MeResponse(BaseModel):
    """Current user and organization."""
    user: UserResponse
    organization: OrganizationSummary
