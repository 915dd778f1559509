"""Email verification and password reset schemas."""
from pydantic import EmailStr, Field

from app.schemas.common import CamelModel


class VerificationIssued(CamelModel):
    success: bool = True
    token: str
    attempts_used: int
    max_attempts: int
    redirect_url: str


class CodeConfirm(CamelModel):
    token: str
    code: str = Field(..., max_length=12)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetTokenCheck(CamelModel):
    token: str


class ResetTokenStatus(CamelModel):
    valid: bool = True
    email: str


class ResetConfirm(CamelModel):
    token: str
    code: str = Field(..., max_length=12)
    password: str = Field(..., min_length=8)


class ChangePasswordRequest(CamelModel):
    current_password: str
    password: str = Field(..., min_length=8)


class SecuritySettings(CamelModel):
    two_factor_enabled: bool
    last_password_update: str | None = None
    email_verified: bool
    backup_codes_remaining: int
