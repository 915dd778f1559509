"""Shared API dependencies: database, caller identity and session cookies."""
from datetime import datetime
import ipaddress

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.errors import Unauthorized
from app.models.session import DeviceSession
from app.models.user import User
from app.security import create_session_credential, decode_session_credential
from app.services.sessions import resolve_session, touch_session

settings = get_settings()

__all__ = [
    "get_db",
    "get_request_ip",
    "get_optional_session",
    "get_current_session",
    "get_current_user",
    "set_session_cookie",
    "clear_session_cookies",
]


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return None


def read_session_token(request: Request) -> tuple[str, str] | None:
    """``(user_id, raw_session_token)`` from the signed cookie, if usable."""
    credential = request.cookies.get(settings.session_cookie_name)
    if not credential:
        return None
    return decode_session_credential(credential)


def get_optional_session(
    request: Request,
    db: Session = Depends(get_db),
) -> DeviceSession | None:
    """The caller's active session matched by token, or None."""
    decoded = read_session_token(request)
    if decoded is None:
        return None

    user_id, raw_token = decoded
    session = resolve_session(db, raw_token)
    if session is None or session.user_id != user_id:
        return None

    if touch_session(db, session):
        db.commit()
    return session


def get_current_session(
    session: DeviceSession | None = Depends(get_optional_session),
) -> DeviceSession:
    if session is None:
        raise Unauthorized()
    return session


def get_current_user(
    session: DeviceSession = Depends(get_current_session),
) -> User:
    return session.user


def set_session_cookie(response: Response, session: DeviceSession, raw_token: str) -> None:
    """Issue the HttpOnly cookie carrying the signed session credential."""
    expires_at = datetime.fromisoformat(session.expires_at)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=create_session_credential(session.user_id, raw_token, expires_at),
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path=settings.session_cookie_path,
        max_age=settings.session_expire_days * 24 * 60 * 60,
    )


def cookie_domain_variants(hostname: str | None) -> list[str | None]:
    """Host-only, bare host and dot-prefixed host, so every scoping is covered."""
    variants: list[str | None] = [None]
    if not hostname:
        return variants
    try:
        ipaddress.ip_address(hostname)
        return variants
    except ValueError:
        pass
    bare = hostname.lstrip(".")
    variants.extend([bare, f".{bare}"])
    return variants


def clear_session_cookies(response: Response, hostname: str | None) -> None:
    """Expire the session and CSRF cookies under every domain variant."""
    for domain in cookie_domain_variants(hostname):
        for key in (settings.session_cookie_name, settings.csrf_cookie_name):
            response.delete_cookie(
                key=key,
                path=settings.session_cookie_path,
                domain=domain,
                secure=settings.session_cookie_secure,
                httponly=True,
                samesite=settings.session_cookie_samesite,
            )
