"""One-time verification codes for email confirmation and password reset.

Both flows share one attempt ledger, read through two kinds of rate window:

* ISSUE windows cap how many codes an email may be sent per day
  (10 for email verification, 5 for password reset).
* REDEEM windows cap how many codes may be submitted in a short period
  (5 per 5 minutes). A correct code, or a freshly issued one, clears it.

Counting is read-then-write. Under concurrent submissions the cap may be
slightly overshot, but a single client is never locked out early, and an
attempt landing exactly on the cap is rejected.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import hmac
import logging
import secrets

from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import (
    AttemptsExceeded,
    InvalidOperation,
    InvalidOrExpiredToken,
    NotFound,
    PasswordResetTooSoon,
    RateLimited,
)
from app.models.user import User
from app.models.verification import (
    AttemptKind,
    VerificationAttempt,
    VerificationToken,
    VerificationType,
)
from app.security import get_password_hash
from app.services.users import get_user_by_email

logger = logging.getLogger(__name__)
settings = get_settings()

CODE_DIGITS = 6


@dataclass(frozen=True)
class RateWindow:
    """A counter over the attempt ledger: one kind, one flow, one period."""

    kind: AttemptKind
    type: VerificationType
    limit: int
    period: timedelta

    def _rows(self, db: Session, email: str, now: datetime):
        return db.query(VerificationAttempt).filter(
            VerificationAttempt.email == email,
            VerificationAttempt.type == self.type.value,
            VerificationAttempt.kind == self.kind.value,
            VerificationAttempt.timestamp >= (now - self.period).isoformat(),
        )

    def count(self, db: Session, email: str, now: datetime) -> int:
        return self._rows(db, email, now).count()

    def record(self, db: Session, user: User, now: datetime, token: str | None = None) -> VerificationAttempt:
        attempt = VerificationAttempt(
            user_id=user.id,
            email=user.email,
            token=token,
            type=self.type.value,
            kind=self.kind.value,
            timestamp=now.isoformat(),
        )
        db.add(attempt)
        db.flush()
        return attempt

    def clear(self, db: Session, email: str, now: datetime) -> int:
        return self._rows(db, email, now).delete(synchronize_session=False)


def issuance_window(purpose: VerificationType) -> RateWindow:
    limit = (
        settings.email_verify_daily_limit
        if purpose == VerificationType.EMAIL_VERIFY
        else settings.password_reset_daily_limit
    )
    return RateWindow(AttemptKind.ISSUE, purpose, limit, timedelta(hours=24))


def redemption_window(purpose: VerificationType) -> RateWindow:
    return RateWindow(
        AttemptKind.REDEEM,
        purpose,
        settings.code_attempt_limit,
        timedelta(minutes=settings.code_attempt_window_minutes),
    )


@dataclass(frozen=True)
class IssuedCode:
    token: str
    code: str
    attempts_used: int
    max_attempts: int


@dataclass(frozen=True)
class CodeCheck:
    valid: bool
    attempts_used: int
    max_attempts: int
    token_found: bool = True

    @property
    def exhausted(self) -> bool:
        return self.attempts_used >= self.max_attempts


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


def generate_token() -> str:
    return secrets.token_hex(32)


def issue_code(
    db: Session,
    user: User,
    purpose: VerificationType,
    now: datetime | None = None,
) -> IssuedCode:
    """Create a new code + token for ``user``, superseding older ones."""
    now = now or datetime.utcnow()
    window = issuance_window(purpose)
    used = window.count(db, user.email, now)
    if used >= window.limit:
        logger.warning(f"{purpose.value} issuance limit reached for user {user.id}")
        raise RateLimited(
            "Too many attempts. Please try again in 24 hours.",
            attemptsUsed=used,
            maxAttempts=window.limit,
        )

    db.query(VerificationToken).filter(
        VerificationToken.email == user.email,
        VerificationToken.purpose == purpose.value,
    ).delete(synchronize_session=False)

    token = generate_token()
    code = generate_code()
    db.add(VerificationToken(
        token=token,
        email=user.email,
        code=code,
        purpose=purpose.value,
        expires_at=(now + timedelta(minutes=settings.verification_code_expire_minutes)).isoformat(),
        created_at=now.isoformat(),
    ))
    window.record(db, user, now, token=token if purpose == VerificationType.PASSWORD_RESET else None)
    redemption_window(purpose).clear(db, user.email, now)
    db.flush()

    return IssuedCode(token=token, code=code, attempts_used=used + 1, max_attempts=window.limit)


def validate_code(
    db: Session,
    token: str,
    code: str,
    purpose: VerificationType,
    now: datetime | None = None,
) -> CodeCheck:
    """Check a submitted code against the token's issuance.

    Unknown, expired or wrong-purpose tokens fail closed without counting.
    Every other call counts one redemption attempt; once the window is full
    ``AttemptsExceeded`` is raised without evaluating the code.
    """
    now = now or datetime.utcnow()
    window = redemption_window(purpose)

    issued = db.query(VerificationToken).filter(VerificationToken.token == token).first()
    if not issued or issued.purpose != purpose.value or issued.expires_at <= now.isoformat():
        return CodeCheck(valid=False, attempts_used=0, max_attempts=window.limit, token_found=False)

    user = get_user_by_email(db, issued.email)
    if not user:
        return CodeCheck(valid=False, attempts_used=0, max_attempts=window.limit, token_found=False)

    prior = window.count(db, user.email, now)
    if prior >= window.limit:
        raise AttemptsExceeded(attemptsUsed=prior, maxAttempts=window.limit)

    window.record(db, user, now)
    attempts_used = prior + 1

    submitted = (code or "").strip()
    if not hmac.compare_digest(issued.code.encode("utf-8"), submitted.encode("utf-8")):
        return CodeCheck(valid=False, attempts_used=attempts_used, max_attempts=window.limit)

    window.clear(db, user.email, now)
    if purpose == VerificationType.EMAIL_VERIFY:
        if not user.email_verified_at:
            user.email_verified_at = now.isoformat()
        logger.info(f"Email verified for user {user.id}")
    else:
        db.query(VerificationAttempt).filter(
            VerificationAttempt.token == token,
            VerificationAttempt.type == VerificationType.PASSWORD_RESET.value,
            VerificationAttempt.kind == AttemptKind.ISSUE.value,
        ).update({"success": 1, "token": None}, synchronize_session="fetch")
    db.delete(issued)
    db.flush()

    return CodeCheck(valid=True, attempts_used=attempts_used, max_attempts=window.limit)


def request_email_verification(db: Session, email: str, now: datetime | None = None) -> IssuedCode:
    user = get_user_by_email(db, email)
    if not user:
        raise NotFound("User not found")
    if user.email_verified_at:
        raise InvalidOperation("Email is already verified")
    return issue_code(db, user, VerificationType.EMAIL_VERIFY, now)


def confirm_email(db: Session, token: str, code: str, now: datetime | None = None) -> CodeCheck:
    return validate_code(db, token, code, VerificationType.EMAIL_VERIFY, now)


def request_password_reset(
    db: Session,
    email: str,
    now: datetime | None = None,
) -> tuple[User, IssuedCode] | None:
    """Issue a reset code, or None for unknown or unverified accounts."""
    user = get_user_by_email(db, email)
    if not user or not user.email_verified_at:
        logger.info("Password reset requested for an ineligible address")
        return None
    return user, issue_code(db, user, VerificationType.PASSWORD_RESET, now)


def check_reset_token(db: Session, token: str, now: datetime | None = None) -> User:
    """The user an open reset link belongs to; no attempt is counted."""
    now = now or datetime.utcnow()
    issuance = db.query(VerificationAttempt).filter(
        VerificationAttempt.token == token,
        VerificationAttempt.type == VerificationType.PASSWORD_RESET.value,
        VerificationAttempt.kind == AttemptKind.ISSUE.value,
        VerificationAttempt.timestamp >= (now - timedelta(hours=24)).isoformat(),
    ).first()
    issued = db.query(VerificationToken).filter(
        VerificationToken.token == token,
        VerificationToken.purpose == VerificationType.PASSWORD_RESET.value,
        VerificationToken.expires_at > now.isoformat(),
    ).first()
    if not issuance or not issued:
        raise InvalidOrExpiredToken("Invalid or expired reset link")
    return issuance.user


def confirm_password_reset(
    db: Session,
    token: str,
    code: str,
    new_password: str,
    now: datetime | None = None,
) -> CodeCheck:
    """Apply a new password if the code is right and no reset happened today."""
    now = now or datetime.utcnow()
    user = check_reset_token(db, token, now)

    cooldown_start = (now - timedelta(hours=settings.password_reset_cooldown_hours)).isoformat()
    if user.last_password_update and user.last_password_update > cooldown_start:
        raise PasswordResetTooSoon()

    check = validate_code(db, token, code, VerificationType.PASSWORD_RESET, now)
    if not check.valid:
        return check

    user.password_hash = get_password_hash(new_password)
    user.last_password_update = now.isoformat()
    user.password_update_count = (user.password_update_count or 0) + 1
    db.flush()
    logger.info(f"Password reset for user {user.id}")
    return check
