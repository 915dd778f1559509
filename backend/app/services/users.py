"""Credential store access: lookups, registration and password changes."""
from datetime import datetime, timedelta
import logging

from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import PasswordChangeRejected
from app.models.user import User
from app.models.verification import VerificationToken
from app.security import get_password_hash, verify_password

logger = logging.getLogger(__name__)
settings = get_settings()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def create_user(
    db: Session,
    email: str,
    password: str | None,
    name: str | None = None,
    email_verified_at: str | None = None,
) -> User:
    user = User(
        email=normalize_email(email),
        name=name,
        password_hash=get_password_hash(password) if password else None,
        email_verified_at=email_verified_at,
        backup_codes="[]",
    )
    db.add(user)
    db.flush()
    return user


def change_password(
    db: Session,
    user: User,
    current_password: str,
    new_password: str,
    now: datetime | None = None,
) -> None:
    """Change a signed-in user's password, at most once per cooldown."""
    now = now or datetime.utcnow()
    if not user.password_hash or not verify_password(current_password, user.password_hash):
        raise PasswordChangeRejected("Current password is incorrect")

    if new_password == current_password:
        raise PasswordChangeRejected("Current password and new password cannot be the same")

    cooldown_start = (now - timedelta(minutes=settings.password_change_cooldown_minutes)).isoformat()
    if user.last_password_update and user.last_password_update > cooldown_start:
        raise PasswordChangeRejected("Password was changed recently. Try again later.")

    user.password_hash = get_password_hash(new_password)
    user.last_password_update = now.isoformat()
    user.password_update_count = (user.password_update_count or 0) + 1
    db.flush()
    logger.info(f"Password changed for user {user.id}")


def delete_user(db: Session, user: User) -> None:
    """Delete the account; sessions, tokens and ledger rows go with it."""
    logger.info(f"Deleting user {user.id}")
    db.query(VerificationToken).filter(VerificationToken.email == user.email).delete(synchronize_session=False)
    db.delete(user)
    db.flush()
