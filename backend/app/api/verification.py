"""Email verification and password reset endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_session, get_db
from app.errors import InvalidCode, InvalidOrExpiredToken
from app.models.session import DeviceSession
from app.schemas.common import MessageResponse
from app.schemas.verification import (
    CodeConfirm,
    ForgotPasswordRequest,
    ResetConfirm,
    ResetTokenCheck,
    ResetTokenStatus,
    VerificationIssued,
)
from app.services.email import send_password_reset_email, send_verification_email
from app.services.verification import (
    CodeCheck,
    check_reset_token,
    confirm_email,
    confirm_password_reset,
    request_email_verification,
    request_password_reset,
)

router = APIRouter(prefix="/auth", tags=["verification"])


def raise_for_failed_check(check: CodeCheck) -> None:
    """Turn a failed code check into the matching structured error."""
    if not check.token_found:
        raise InvalidOrExpiredToken("Invalid or expired code")
    raise InvalidCode(
        attemptsUsed=check.attempts_used,
        maxAttempts=check.max_attempts,
        requestNewCode=check.exhausted,
    )


@router.post("/verify-email/request", response_model=VerificationIssued)
def request_verification(
    db: Session = Depends(get_db),
    current_session: DeviceSession = Depends(get_current_session),
):
    """Send a verification code to the signed-in user's own address."""
    email = current_session.user.email

    issued = request_email_verification(db, email)
    db.commit()
    send_verification_email(email, issued.token, issued.code)

    return VerificationIssued(
        token=issued.token,
        attempts_used=issued.attempts_used,
        max_attempts=issued.max_attempts,
        redirect_url=f"/auth/verify-email/{issued.token}",
    )


@router.post("/verify-email/confirm", response_model=MessageResponse)
def confirm_verification(payload: CodeConfirm, db: Session = Depends(get_db)):
    """Check the emailed code and mark the address verified."""
    check = confirm_email(db, payload.token, payload.code)
    db.commit()
    if not check.valid:
        raise_for_failed_check(check)
    return MessageResponse(message="Email verified")


@router.post("/forgot-password/request", response_model=MessageResponse)
def forgot_password(payload: ForgotPasswordRequest, db: Session = Depends(get_db)):
    """Email a reset link and code. The response never reveals whether the account exists."""
    issued = request_password_reset(db, payload.email)
    db.commit()
    if issued is not None:
        user, code = issued
        send_password_reset_email(user.email, code.token, code.code)
    return MessageResponse(message="If an account exists for this email, a reset link has been sent")


@router.post("/forgot-password/verify", response_model=ResetTokenStatus)
def verify_reset_link(payload: ResetTokenCheck, db: Session = Depends(get_db)):
    """Check that a reset link is still usable."""
    user = check_reset_token(db, payload.token)
    return ResetTokenStatus(email=user.email)


@router.post("/forgot-password/confirm", response_model=MessageResponse)
def reset_password(payload: ResetConfirm, db: Session = Depends(get_db)):
    """Set a new password using the emailed code."""
    check = confirm_password_reset(db, payload.token, payload.code, payload.password)
    db.commit()
    if not check.valid:
        raise_for_failed_check(check)
    return MessageResponse(message="Password has been reset")
