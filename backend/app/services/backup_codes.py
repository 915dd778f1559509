"""Single-use recovery codes.

Plaintext codes are shown once; only SHA-256 digests are stored, as a JSON
list on the user row. Redemption is a compare-and-swap on that list so two
concurrent requests cannot both spend the same code.
"""
import hashlib
import hmac
import json
import logging
import secrets

from sqlalchemy.orm import Session

from app.models.user import User

logger = logging.getLogger(__name__)

BACKUP_CODE_BYTES = 4  # 8 hex characters
_MAX_SWAP_RETRIES = 3


def generate_backup_codes(count: int = 10) -> list[str]:
    return [secrets.token_hex(BACKUP_CODE_BYTES).upper() for _ in range(count)]


def normalize_backup_code(code: str) -> str:
    return code.replace(" ", "").replace("-", "").strip().upper()


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(normalize_backup_code(code).encode("utf-8")).hexdigest()


def hash_backup_codes(codes: list[str]) -> list[str]:
    return [hash_backup_code(code) for code in codes]


def consume(code: str, stored_hashes: list[str]) -> tuple[bool, list[str]]:
    """Check a code against stored digests.

    Returns ``(valid, remaining)`` where ``remaining`` has the matching digest
    removed on success and is ``stored_hashes`` unchanged otherwise.
    """
    if not isinstance(code, str) or not code.strip():
        return False, list(stored_hashes)

    candidate = hash_backup_code(code)
    for index, stored in enumerate(stored_hashes):
        if hmac.compare_digest(candidate, stored):
            return True, stored_hashes[:index] + stored_hashes[index + 1:]
    return False, list(stored_hashes)


def load_hashes(user: User) -> list[str]:
    return json.loads(user.backup_codes or "[]")


def redeem_backup_code(db: Session, user: User, code: str) -> bool:
    """Spend one backup code for ``user``. True exactly once per code."""
    for _ in range(_MAX_SWAP_RETRIES):
        db.refresh(user, attribute_names=["backup_codes"])
        current_json = user.backup_codes or "[]"
        valid, remaining = consume(code, json.loads(current_json))
        if not valid:
            return False

        swapped = db.query(User).filter(
            User.id == user.id,
            User.backup_codes == current_json,
        ).update({"backup_codes": json.dumps(remaining)}, synchronize_session=False)
        if swapped:
            db.refresh(user, attribute_names=["backup_codes"])
            logger.info(f"Backup code used for user {user.id}; {len(remaining)} remaining")
            return True

    logger.warning(f"Backup code redemption for user {user.id} lost every swap race")
    return False
