"""Authentication API endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import (
    clear_session_cookies,
    get_db,
    get_optional_session,
    get_request_ip,
    read_session_token,
    set_session_cookie,
)
from app.models.session import DeviceSession
from app.schemas.auth import (
    LoginResponse,
    RegisterResponse,
    SessionValidation,
    UserLogin,
    UserRegister,
    UserResponse,
)
from app.schemas.common import MessageResponse
from app.services.login import LoginResult, authenticate
from app.services.sessions import EXPIRED_OR_REVOKED, end_session, resolve_session, touch_session
from app.services.users import create_user, get_user_by_email

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def login_response(result: LoginResult, response: Response) -> LoginResponse:
    """Set the cookie when a session was started and describe the outcome."""
    if result.two_factor_required:
        return LoginResponse(
            two_factor_required=True,
            two_factor_token=result.two_factor_token,
            email_verified=bool(result.user.email_verified_at),
        )

    set_session_cookie(response, result.session, result.session_token)
    return LoginResponse(
        email_verified=bool(result.user.email_verified_at),
        user=UserResponse.model_validate(result.user),
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(user_data: UserRegister, db: Session = Depends(get_db)):
    """Register a new user. The email must be verified separately."""
    if get_user_by_email(db, user_data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = create_user(db, user_data.email, user_data.password, user_data.name)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered user {user.id}")

    return RegisterResponse(user=UserResponse.model_validate(user))


@router.post("/login", response_model=LoginResponse)
def login(
    user_data: UserLogin,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """Password login: a session cookie, or a pending two-factor handle."""
    result = authenticate(
        db,
        user_data.email,
        user_data.password,
        ip_address=get_request_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    db.commit()
    return login_response(result, response)


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current_session: DeviceSession | None = Depends(get_optional_session),
):
    """End the current session and clear its cookies."""
    if current_session is not None:
        end_session(db, current_session)
        db.commit()
    clear_session_cookies(response, request.url.hostname)
    return MessageResponse(message="Successfully logged out")


@router.get("/validate-session", response_model=SessionValidation, response_model_exclude_none=True)
def validate_session(request: Request, db: Session = Depends(get_db)):
    """Polling endpoint: is the presented session still active?"""
    decoded = read_session_token(request)
    session = resolve_session(db, decoded[1]) if decoded else None
    if session is None or session.user_id != decoded[0]:
        return SessionValidation(valid=False, reason=EXPIRED_OR_REVOKED, should_logout=True)

    if touch_session(db, session):
        db.commit()
    return SessionValidation(valid=True)


@router.post("/clear-session-cookie", response_model=MessageResponse)
def clear_session_cookie(request: Request, response: Response):
    """Expire session cookies for the host and its dot-prefixed variant."""
    clear_session_cookies(response, request.url.hostname)
    return MessageResponse(message="Session cookies cleared")
