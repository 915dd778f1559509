"""Device session management endpoints."""
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.api.deps import (
    get_current_session,
    get_db,
    get_optional_session,
    get_request_ip,
    set_session_cookie,
)
from app.errors import NoCurrentSession, Unauthorized
from app.models.session import DeviceSession
from app.schemas.common import MessageResponse
from app.schemas.sessions import RevokeAllResponse, RevokeRequest, SessionInfo
from app.services.sessions import (
    EXPIRED_OR_REVOKED,
    list_sessions,
    revoke_other_sessions,
    revoke_session,
    rotate_session,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionInfo])
def get_sessions(
    db: Session = Depends(get_db),
    current_session: DeviceSession = Depends(get_current_session),
):
    """List the caller's active sessions, most recently active first."""
    return [
        SessionInfo(
            id=s.id,
            device_name=s.device_name,
            location=s.location,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            last_active=s.last_active_at,
            created_at=s.created_at,
            is_current=s.id == current_session.id,
        )
        for s in list_sessions(db, current_session.user_id)
    ]


@router.get("/check", response_model=MessageResponse)
def check_session(current_session: DeviceSession | None = Depends(get_optional_session)):
    """200 while the presented session is active, structured 401 otherwise."""
    if current_session is None:
        raise Unauthorized("Session expired or not found", detail=EXPIRED_OR_REVOKED, shouldLogout=True)
    return MessageResponse(message="Session valid")


@router.post("/revoke-all", response_model=RevokeAllResponse)
def revoke_all(
    payload: RevokeRequest | None = None,
    db: Session = Depends(get_db),
    current_session: DeviceSession | None = Depends(get_optional_session),
):
    """Revoke every session except the one making this request."""
    if current_session is None:
        raise NoCurrentSession()
    expire_now = payload.expire_now if payload else False
    count = revoke_other_sessions(db, current_session.user_id, current_session, expire_now)
    db.commit()
    return RevokeAllResponse(count=count)


@router.post("/refresh", response_model=MessageResponse)
def refresh(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current_session: DeviceSession = Depends(get_current_session),
):
    """Rotate the current session to a fresh token and expiry."""
    new_session, raw_token = rotate_session(
        db,
        current_session,
        get_request_ip(request),
        request.headers.get("user-agent"),
    )
    db.commit()
    set_session_cookie(response, new_session, raw_token)
    return MessageResponse(message="Session refreshed")


@router.delete("/{session_id}", response_model=MessageResponse)
def revoke(
    session_id: str,
    payload: RevokeRequest | None = None,
    db: Session = Depends(get_db),
    current_session: DeviceSession = Depends(get_current_session),
):
    """Revoke another of the caller's sessions."""
    expire_now = payload.expire_now if payload else False
    revoke_session(db, session_id, current_session.user_id, current_session, expire_now)
    db.commit()
    return MessageResponse(
        message="Session revoked successfully. The device will be signed out on its next check.",
    )
