"""User account endpoints."""
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.api.deps import clear_session_cookies, get_current_user, get_db
from app.models.user import User
from app.schemas.common import MessageResponse
from app.schemas.verification import ChangePasswordRequest, SecuritySettings
from app.services.backup_codes import load_hashes
from app.services.users import change_password, delete_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/security-settings", response_model=SecuritySettings)
def get_security_settings(current_user: User = Depends(get_current_user)):
    """2FA and password status for the profile page."""
    return SecuritySettings(
        two_factor_enabled=bool(current_user.two_factor_enabled),
        last_password_update=current_user.last_password_update,
        email_verified=bool(current_user.email_verified_at),
        backup_codes_remaining=len(load_hashes(current_user)),
    )


@router.patch("/password", response_model=MessageResponse)
def update_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Change the password of the signed-in user."""
    change_password(db, current_user, payload.current_password, payload.password)
    db.commit()
    return MessageResponse(message="Password updated")


@router.delete("/me", response_model=MessageResponse)
def delete_account(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Delete the account along with every session and token."""
    delete_user(db, current_user)
    db.commit()
    clear_session_cookies(response, request.url.hostname)
    return MessageResponse(message="Account deleted")
