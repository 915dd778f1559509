"""Password hashing and signed session credentials."""
from datetime import datetime
import hashlib

import bcrypt
from jose import JWTError, jwt

from app.config import get_settings

settings = get_settings()

# Compared against when the account does not exist, so both branches cost one bcrypt check.
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"gatekeeper-dummy-password", bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(),
    ).decode("utf-8")


def burn_password_check(password: str) -> None:
    verify_password(password, _DUMMY_PASSWORD_HASH)


def hash_token_id(token_id: str) -> str:
    """Hash an opaque token before persisting or looking it up."""
    return hashlib.sha256(token_id.encode("utf-8")).hexdigest()


def create_session_credential(user_id: str, session_token: str, expires_at: datetime) -> str:
    """Sign the cookie value carrying the raw session token."""
    payload = {"sub": user_id, "jti": session_token, "exp": expires_at, "type": "session"}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_session_credential(credential: str) -> tuple[str, str] | None:
    """Return ``(user_id, session_token)`` or None for anything unusable."""
    try:
        payload = jwt.decode(credential, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if payload.get("type") != "session":
        return None
    user_id = payload.get("sub")
    session_token = payload.get("jti")
    if not user_id or not session_token:
        return None
    return user_id, session_token
