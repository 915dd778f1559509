"""Two-factor authentication endpoints."""
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.api.auth import login_response
from app.api.deps import get_current_user, get_db, get_request_ip
from app.errors import AttemptsExceeded, InvalidCode
from app.models.user import User
from app.schemas.auth import LoginResponse
from app.schemas.common import MessageResponse
from app.schemas.two_factor import (
    TwoFactorSetupResponse,
    TwoFactorVerifyRequest,
    VerifySetupRequest,
    VerifySetupResponse,
)
from app.services.login import complete_two_factor
from app.services.totp import generate_setup
from app.services.two_factor import disable_two_factor, enable_two_factor

router = APIRouter(prefix="/auth/2fa", tags=["two-factor"])


@router.post("/setup", response_model=TwoFactorSetupResponse)
def setup(current_user: User = Depends(get_current_user)):
    """Generate a secret and QR code. Nothing is stored until verify-setup."""
    setup_data = generate_setup(current_user.email)
    return TwoFactorSetupResponse(
        secret=setup_data.secret,
        qr_code_url=setup_data.qr_code_url,
        manual_entry_key=setup_data.manual_entry_key,
        backup_codes=setup_data.backup_codes,
    )


@router.post("/verify-setup", response_model=VerifySetupResponse)
def verify_setup(
    payload: VerifySetupRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Enable 2FA once the authenticator produces a valid code.

    The returned backup codes are the ones stored; show them to the user now.
    """
    backup_codes = enable_two_factor(db, current_user, payload.secret, payload.token)
    db.commit()
    return VerifySetupResponse(backup_codes=backup_codes)


@router.post("/disable", response_model=MessageResponse)
def disable(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Turn 2FA off and drop any pending two-factor logins."""
    disable_two_factor(db, current_user)
    db.commit()
    return MessageResponse(message="Two-factor authentication disabled")


@router.post("/verify", response_model=LoginResponse)
def verify(
    payload: TwoFactorVerifyRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """Finish a login with a TOTP or backup code and start the session."""
    try:
        result = complete_two_factor(
            db,
            payload.token,
            payload.code,
            payload.is_backup_code,
            ip_address=get_request_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except (InvalidCode, AttemptsExceeded):
        # Keep the failed-attempt count.
        db.commit()
        raise
    db.commit()
    return login_response(result, response)
