"""Login orchestration: password or federated sign-in, then 2FA handoff.

A successful primary check yields a session directly, or, when the user has
2FA enabled, a short-lived pending token and no session at all. The pending
token is redeemed exactly once by ``complete_two_factor``.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets

from cryptography.fernet import InvalidToken
from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import (
    AttemptsExceeded,
    InvalidCode,
    InvalidCredentials,
    InvalidOrExpiredToken,
    TwoFactorNotEnabled,
)
from app.models.session import DeviceSession
from app.models.two_factor import TwoFactorToken
from app.models.user import User
from app.security import burn_password_check, hash_token_id, verify_password
from app.services.backup_codes import redeem_backup_code
from app.services.email import send_login_alert
from app.services.sessions import create_session
from app.services.totp import decrypt_secret, verify_code
from app.services.users import create_user, get_user_by_email

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class LoginResult:
    user: User
    session: DeviceSession | None = None
    session_token: str | None = None
    two_factor_token: str | None = None

    @property
    def two_factor_required(self) -> bool:
        return self.two_factor_token is not None


@dataclass(frozen=True)
class FederatedIdentity:
    """An identity the external OAuth provider has already verified."""

    email: str
    provider: str
    name: str | None = None


def _issue_two_factor_token(db: Session, user: User, now: datetime) -> str:
    raw_token = secrets.token_hex(32)
    db.add(TwoFactorToken(
        token_hash=hash_token_id(raw_token),
        user_id=user.id,
        expires_at=(now + timedelta(minutes=settings.two_factor_token_expire_minutes)).isoformat(),
        created_at=now.isoformat(),
    ))
    db.flush()
    return raw_token


def _start_session(
    db: Session,
    user: User,
    ip_address: str | None,
    user_agent: str | None,
    now: datetime,
) -> LoginResult:
    session, raw_token = create_session(db, user.id, ip_address, user_agent, now)
    send_login_alert(user.email, session)
    return LoginResult(user=user, session=session, session_token=raw_token)


def _after_primary_auth(
    db: Session,
    user: User,
    ip_address: str | None,
    user_agent: str | None,
    now: datetime,
) -> LoginResult:
    if user.two_factor_enabled:
        logger.info(f"User {user.id} passed primary auth; awaiting second factor")
        return LoginResult(user=user, two_factor_token=_issue_two_factor_token(db, user, now))
    return _start_session(db, user, ip_address, user_agent, now)


def authenticate(
    db: Session,
    email: str,
    password: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> LoginResult:
    """Check email + password. Every failure is the same InvalidCredentials."""
    now = now or datetime.utcnow()
    user = get_user_by_email(db, email)

    if not user or not user.password_hash:
        burn_password_check(password)
        raise InvalidCredentials()
    if not verify_password(password, user.password_hash):
        raise InvalidCredentials()

    return _after_primary_auth(db, user, ip_address, user_agent, now)


def authenticate_federated(
    db: Session,
    identity: FederatedIdentity,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> LoginResult:
    """Sign in (or sign up) with a provider-verified email address."""
    now = now or datetime.utcnow()
    user = get_user_by_email(db, identity.email)
    if not user:
        user = create_user(db, identity.email, None, identity.name, email_verified_at=now.isoformat())
        logger.info(f"Created user {user.id} from {identity.provider} sign-in")
    elif not user.email_verified_at:
        user.email_verified_at = now.isoformat()

    return _after_primary_auth(db, user, ip_address, user_agent, now)


def _verify_totp(user: User, code: str, now: datetime) -> bool:
    if not user.two_factor_secret:
        return False
    try:
        secret = decrypt_secret(user.two_factor_secret)
    except InvalidToken:
        logger.error(f"Two-factor secret for user {user.id} could not be decrypted")
        return False
    return verify_code(code, secret, for_time=now)


def complete_two_factor(
    db: Session,
    pending_token: str,
    code: str,
    is_backup_code: bool,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> LoginResult:
    """Redeem a pending 2FA handle with a TOTP or backup code."""
    now = now or datetime.utcnow()
    pending = db.query(TwoFactorToken).filter(
        TwoFactorToken.token_hash == hash_token_id(pending_token or ""),
    ).first()
    if not pending or pending.used or pending.expires_at <= now.isoformat():
        raise InvalidOrExpiredToken()

    user = pending.user
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabled()

    if is_backup_code:
        valid = redeem_backup_code(db, user, code)
    else:
        valid = _verify_totp(user, code, now)

    if not valid:
        pending.failed_attempts = (pending.failed_attempts or 0) + 1
        if pending.failed_attempts >= settings.two_factor_max_attempts:
            pending.used = 1
            db.flush()
            raise AttemptsExceeded("Too many invalid codes. Please sign in again.")
        db.flush()
        raise InvalidCode(attemptsUsed=pending.failed_attempts, maxAttempts=settings.two_factor_max_attempts)

    claimed = db.query(TwoFactorToken).filter(
        TwoFactorToken.id == pending.id,
        TwoFactorToken.used == 0,
    ).update({"used": 1}, synchronize_session="fetch")
    if not claimed:
        raise InvalidOrExpiredToken()

    logger.info(f"User {user.id} completed two-factor sign-in")
    return _start_session(db, user, ip_address, user_agent, now)
