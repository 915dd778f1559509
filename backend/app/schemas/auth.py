"""Authentication schemas."""
from pydantic import EmailStr, Field

from app.schemas.common import CamelModel


class UserRegister(CamelModel):
    """User registration request."""

    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str | None = Field(None, max_length=100)


class UserLogin(CamelModel):
    """User login request."""

    email: EmailStr
    password: str


class UserResponse(CamelModel):
    """User info response."""

    id: str
    email: str
    name: str | None = None
    email_verified_at: str | None = None
    two_factor_enabled: bool = False
    created_at: str


class RegisterResponse(CamelModel):
    user: UserResponse
    verification_required: bool = True


class LoginResponse(CamelModel):
    """Either a session was started or a second factor is required."""

    success: bool = True
    two_factor_required: bool = False
    two_factor_token: str | None = None
    email_verified: bool = False
    user: UserResponse | None = None


class SessionValidation(CamelModel):
    valid: bool
    reason: str | None = None
    should_logout: bool = False
