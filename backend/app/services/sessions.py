"""Session store: creation, lookup, revocation and the grace-period sweep.

A session moves ACTIVE -> REVOKED -> DELETED. Revocation is explicit and
immediate; deletion is deferred so the revoked device can observe its own
revocation on its next poll. Deletion is never a local timer: revocation only
records ``purge_after`` and the sweep in ``purge_revoked_sessions`` removes the
row, which makes the cleanup survive restarts and multiple instances.

The caller's "current" session is always the row whose token hash matches the
presented credential, never the most recently active row.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import InvalidOperation, NoCurrentSession, NotFound
from app.models.session import DeviceSession
from app.security import hash_token_id
from app.services.devices import lookup_location, parse_device_name

logger = logging.getLogger(__name__)
settings = get_settings()

EXPIRED_OR_REVOKED = "expired-or-revoked"


@dataclass(frozen=True)
class SessionCheck:
    valid: bool
    reason: str | None = None


def create_session(
    db: Session,
    user_id: str,
    ip_address: str | None,
    user_agent: str | None,
    now: datetime | None = None,
) -> tuple[DeviceSession, str]:
    """Persist a new session; returns the row and the raw token for the cookie."""
    now = now or datetime.utcnow()
    raw_token = secrets.token_urlsafe(32)

    session = DeviceSession(
        user_id=user_id,
        token_hash=hash_token_id(raw_token),
        expires_at=(now + timedelta(days=settings.session_expire_days)).isoformat(),
        created_at=now.isoformat(),
        last_active_at=now.isoformat(),
        device_name=parse_device_name(user_agent),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        location=lookup_location(ip_address),
    )
    db.add(session)
    db.flush()
    logger.info(f"Created session {session.id} for user {user_id} ({session.device_name})")
    return session, raw_token


def resolve_session(db: Session, raw_token: str, now: datetime | None = None) -> DeviceSession | None:
    """Active session matching the presented token, if any."""
    now = now or datetime.utcnow()
    return db.query(DeviceSession).filter(
        DeviceSession.token_hash == hash_token_id(raw_token),
        DeviceSession.is_revoked == 0,
        DeviceSession.expires_at > now.isoformat(),
    ).first()


def validate_session_token(db: Session, raw_token: str | None, now: datetime | None = None) -> SessionCheck:
    if not raw_token or resolve_session(db, raw_token, now) is None:
        return SessionCheck(valid=False, reason=EXPIRED_OR_REVOKED)
    return SessionCheck(valid=True)


def touch_session(db: Session, session: DeviceSession, now: datetime | None = None) -> bool:
    """Bump last activity, at most once per throttle interval."""
    now = now or datetime.utcnow()
    threshold = (now - timedelta(seconds=settings.session_activity_throttle_seconds)).isoformat()
    if session.last_active_at and session.last_active_at > threshold:
        return False
    session.last_active_at = now.isoformat()
    return True


def list_sessions(db: Session, user_id: str, now: datetime | None = None) -> list[DeviceSession]:
    now = now or datetime.utcnow()
    return db.query(DeviceSession).filter(
        DeviceSession.user_id == user_id,
        DeviceSession.is_revoked == 0,
        DeviceSession.expires_at > now.isoformat(),
    ).order_by(DeviceSession.last_active_at.desc()).all()


def _mark_revoked(session: DeviceSession, revoked_by: str, expire_now: bool, now: datetime) -> None:
    session.is_revoked = 1
    session.revoked_at = now.isoformat()
    session.revoked_by = revoked_by
    if expire_now:
        session.expires_at = now.isoformat()


def revoke_session(
    db: Session,
    session_id: str,
    user_id: str,
    current_session: DeviceSession | None,
    expire_now: bool = False,
    now: datetime | None = None,
) -> DeviceSession:
    """Revoke one of the caller's other sessions."""
    now = now or datetime.utcnow()
    target = db.query(DeviceSession).filter(
        DeviceSession.id == session_id,
        DeviceSession.user_id == user_id,
    ).first()
    if not target:
        raise NotFound("Session not found")

    if current_session is not None and target.id == current_session.id:
        raise InvalidOperation("Cannot revoke current session. Please use regular logout.")

    if target.is_revoked:
        return target

    _mark_revoked(target, current_session.id if current_session else "unknown", expire_now, now)
    schedule_grace_delete(db, target.id, timedelta(seconds=settings.session_revoke_grace_seconds), now)
    logger.info(f"User {user_id} revoked session {target.id}")
    return target


def revoke_other_sessions(
    db: Session,
    user_id: str,
    current_session: DeviceSession | None,
    expire_now: bool = False,
    now: datetime | None = None,
) -> int:
    """Revoke every active session of the user except the current one."""
    if current_session is None:
        raise NoCurrentSession()

    now = now or datetime.utcnow()
    db.flush()
    values = {
        "is_revoked": 1,
        "revoked_at": now.isoformat(),
        "revoked_by": current_session.id,
        "purge_after": (now + timedelta(seconds=settings.session_revoke_grace_seconds)).isoformat(),
    }
    if expire_now:
        values["expires_at"] = now.isoformat()

    count = db.query(DeviceSession).filter(
        DeviceSession.user_id == user_id,
        DeviceSession.id != current_session.id,
        DeviceSession.is_revoked == 0,
        DeviceSession.expires_at > now.isoformat(),
    ).update(values, synchronize_session="fetch")
    logger.info(f"User {user_id} revoked {count} other session(s)")
    return count


def schedule_grace_delete(
    db: Session,
    session_id: str,
    after: timedelta,
    now: datetime | None = None,
) -> None:
    """Make the session eligible for the sweep once ``after`` has elapsed."""
    now = now or datetime.utcnow()
    session = db.get(DeviceSession, session_id)
    if session is not None:
        session.purge_after = (now + after).isoformat()


def end_session(db: Session, session: DeviceSession, now: datetime | None = None) -> None:
    """Ordinary logout of the session that made the request."""
    now = now or datetime.utcnow()
    if not session.is_revoked:
        _mark_revoked(session, session.id, True, now)
    session.purge_after = now.isoformat()


def rotate_session(
    db: Session,
    session: DeviceSession,
    ip_address: str | None,
    user_agent: str | None,
    now: datetime | None = None,
) -> tuple[DeviceSession, str]:
    """Replace the current session with a fresh one (session refresh)."""
    now = now or datetime.utcnow()
    new_session, raw_token = create_session(db, session.user_id, ip_address, user_agent, now)
    _mark_revoked(session, new_session.id, True, now)
    session.purge_after = now.isoformat()
    return new_session, raw_token


def purge_revoked_sessions(db: Session, now: datetime | None = None) -> int:
    """Delete revoked sessions past their grace period and long-expired ones."""
    now = now or datetime.utcnow()
    grace_cutoff = (now - timedelta(seconds=settings.session_revoke_grace_seconds)).isoformat()

    revoked = db.query(DeviceSession).filter(
        DeviceSession.is_revoked == 1,
        DeviceSession.revoked_at <= grace_cutoff,
        or_(DeviceSession.purge_after.is_(None), DeviceSession.purge_after <= now.isoformat()),
    ).delete(synchronize_session=False)

    expired = db.query(DeviceSession).filter(
        DeviceSession.is_revoked == 0,
        DeviceSession.expires_at <= grace_cutoff,
    ).delete(synchronize_session=False)

    if revoked or expired:
        logger.info(f"Purged {revoked} revoked and {expired} expired session(s)")
    return revoked + expired
