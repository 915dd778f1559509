"""Enable and disable two-factor authentication for a user."""
import json
import logging

from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import InvalidCode
from app.models.two_factor import TwoFactorToken
from app.models.user import User
from app.services.backup_codes import generate_backup_codes, hash_backup_codes
from app.services.totp import encrypt_secret, verify_code

logger = logging.getLogger(__name__)
settings = get_settings()


def enable_two_factor(db: Session, user: User, secret: str, code: str) -> list[str]:
    """Persist a verified secret and a fresh set of backup codes.

    Any previous secret and codes are replaced outright. Returns the plaintext
    backup codes; they cannot be retrieved again.
    """
    if not verify_code(code, secret):
        raise InvalidCode("Invalid authenticator code")

    backup_codes = generate_backup_codes(settings.backup_code_count)
    user.two_factor_secret = encrypt_secret(secret.replace(" ", "").upper())
    user.backup_codes = json.dumps(hash_backup_codes(backup_codes))
    user.two_factor_enabled = 1
    db.flush()
    logger.info(f"Two-factor enabled for user {user.id}")
    return backup_codes


def disable_two_factor(db: Session, user: User) -> None:
    """Clear all 2FA state and drop the user's pending login handles."""
    user.two_factor_enabled = 0
    user.two_factor_secret = None
    user.backup_codes = "[]"
    db.query(TwoFactorToken).filter(TwoFactorToken.user_id == user.id).delete(synchronize_session=False)
    db.flush()
    logger.info(f"Two-factor disabled for user {user.id}")
