"""Two-factor schemas."""
from pydantic import Field

from app.schemas.common import CamelModel


class TwoFactorSetupResponse(CamelModel):
    secret: str
    qr_code_url: str
    manual_entry_key: str
    backup_codes: list[str]


class VerifySetupRequest(CamelModel):
    token: str = Field(..., description="Code from the authenticator app")
    secret: str


class VerifySetupResponse(CamelModel):
    success: bool = True
    backup_codes: list[str]


class TwoFactorVerifyRequest(CamelModel):
    token: str = Field(..., description="Pending two-factor handle from login")
    code: str
    is_backup_code: bool = False
