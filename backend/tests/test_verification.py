from datetime import datetime, timedelta

import pytest

from app.errors import (
    AttemptsExceeded,
    InvalidOperation,
    InvalidOrExpiredToken,
    NotFound,
    PasswordResetTooSoon,
    RateLimited,
)
from app.models.verification import (
    AttemptKind,
    VerificationAttempt,
    VerificationToken,
    VerificationType,
)
from app.security import verify_password
from app.services.verification import (
    check_reset_token,
    confirm_email,
    confirm_password_reset,
    issue_code,
    request_email_verification,
    request_password_reset,
    validate_code,
)
from app.services.users import create_user

from conftest import TEST_PASSWORD

NOW = datetime(2026, 3, 1, 12, 0, 0)
NEW_PASSWORD = "BrandNewPass456!"


@pytest.fixture
def user(db):
    user = create_user(db, "verify@example.com", TEST_PASSWORD)
    db.commit()
    return user


@pytest.fixture
def verified_user(db):
    user = create_user(db, "reset@example.com", TEST_PASSWORD, email_verified_at=NOW.isoformat())
    db.commit()
    return user


def _wrong(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


def test_issue_code_creates_six_digit_code(db, user):
    issued = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW)

    assert len(issued.code) == 6 and issued.code.isdigit()
    assert issued.attempts_used == 1
    assert issued.max_attempts == 10
    stored = db.query(VerificationToken).filter(VerificationToken.token == issued.token).one()
    assert stored.expires_at == (NOW + timedelta(minutes=5)).isoformat()


def test_new_code_supersedes_previous(db, user):
    first = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW)
    second = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW + timedelta(minutes=1))

    assert db.query(VerificationToken).count() == 1
    check = confirm_email(db, first.token, first.code, NOW + timedelta(minutes=1))
    assert not check.valid
    assert not check.token_found
    assert second.attempts_used == 2


def test_email_verification_daily_issuance_cap(db, user):
    for i in range(10):
        issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW + timedelta(minutes=i))

    with pytest.raises(RateLimited) as excinfo:
        issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW + timedelta(minutes=11))
    assert excinfo.value.extra == {"attemptsUsed": 10, "maxAttempts": 10}

    # The window slides: a day later issuance works again.
    issued = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW + timedelta(hours=24, minutes=30))
    assert issued.attempts_used == 1


def test_wrong_codes_are_counted_until_attempts_exceeded(db, user):
    issued = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW)
    wrong = _wrong(issued.code)

    for attempt in range(1, 6):
        check = confirm_email(db, issued.token, wrong, NOW + timedelta(seconds=attempt))
        assert not check.valid
        assert check.token_found
        assert check.attempts_used == attempt
        assert check.max_attempts == 5
    assert check.exhausted

    # Even the right code is not evaluated once the window is full.
    with pytest.raises(AttemptsExceeded):
        confirm_email(db, issued.token, issued.code, NOW + timedelta(seconds=10))
    assert user.email_verified_at is None


def test_correct_code_on_third_attempt_resets_window(db, user):
    issued = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW)
    wrong = _wrong(issued.code)

    confirm_email(db, issued.token, wrong, NOW)
    confirm_email(db, issued.token, wrong, NOW)
    check = confirm_email(db, issued.token, issued.code, NOW)

    assert check.valid
    assert check.attempts_used == 3
    assert user.email_verified_at == NOW.isoformat()
    assert db.query(VerificationToken).count() == 0
    remaining = db.query(VerificationAttempt).filter(VerificationAttempt.kind == AttemptKind.REDEEM.value).count()
    assert remaining == 0


def test_fresh_code_clears_redemption_window(db, user):
    issued = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW)
    wrong = _wrong(issued.code)
    for _ in range(5):
        confirm_email(db, issued.token, wrong, NOW)

    fresh = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW + timedelta(minutes=1))
    check = confirm_email(db, fresh.token, fresh.code, NOW + timedelta(minutes=1))
    assert check.valid


def test_expired_code_fails_closed_without_counting(db, user):
    issued = issue_code(db, user, VerificationType.EMAIL_VERIFY, NOW)

    check = confirm_email(db, issued.token, issued.code, NOW + timedelta(minutes=6))

    assert not check.valid
    assert not check.token_found
    assert db.query(VerificationAttempt).filter(VerificationAttempt.kind == AttemptKind.REDEEM.value).count() == 0


def test_code_for_other_purpose_is_rejected(db, verified_user):
    issued = issue_code(db, verified_user, VerificationType.PASSWORD_RESET, NOW)

    check = validate_code(db, issued.token, issued.code, VerificationType.EMAIL_VERIFY, NOW)

    assert not check.valid
    assert not check.token_found


def test_request_email_verification_guards(db, user, verified_user):
    with pytest.raises(NotFound):
        request_email_verification(db, "nobody@example.com", NOW)
    with pytest.raises(InvalidOperation):
        request_email_verification(db, verified_user.email, NOW)
    assert request_email_verification(db, "VERIFY@example.com", NOW).token


def test_password_reset_is_not_offered_to_unknown_or_unverified(db, user):
    assert request_password_reset(db, "nobody@example.com", NOW) is None
    assert request_password_reset(db, user.email, NOW) is None
    assert db.query(VerificationToken).count() == 0


def test_password_reset_daily_issuance_cap(db, verified_user):
    for i in range(5):
        assert request_password_reset(db, verified_user.email, NOW + timedelta(minutes=i)) is not None

    with pytest.raises(RateLimited):
        request_password_reset(db, verified_user.email, NOW + timedelta(minutes=6))


def test_password_reset_flow_and_once_per_day(db, verified_user):
    _, issued = request_password_reset(db, verified_user.email, NOW)
    assert check_reset_token(db, issued.token, NOW).id == verified_user.id

    check = confirm_password_reset(db, issued.token, issued.code, NEW_PASSWORD, NOW)

    assert check.valid
    assert verify_password(NEW_PASSWORD, verified_user.password_hash)
    assert verified_user.last_password_update == NOW.isoformat()
    assert verified_user.password_update_count == 1
    issuance = db.query(VerificationAttempt).filter(
        VerificationAttempt.kind == AttemptKind.ISSUE.value,
        VerificationAttempt.type == VerificationType.PASSWORD_RESET.value,
    ).one()
    assert issuance.success == 1
    assert issuance.token is None

    # The link is spent.
    with pytest.raises(InvalidOrExpiredToken):
        check_reset_token(db, issued.token, NOW)

    # A second reset the same day is refused even with a valid code.
    later = NOW + timedelta(hours=1)
    _, second = request_password_reset(db, verified_user.email, later)
    with pytest.raises(PasswordResetTooSoon):
        confirm_password_reset(db, second.token, second.code, "AnotherPass789!", later)
    assert verify_password(NEW_PASSWORD, verified_user.password_hash)


def test_password_reset_wrong_code_keeps_password(db, verified_user):
    _, issued = request_password_reset(db, verified_user.email, NOW)

    check = confirm_password_reset(db, issued.token, _wrong(issued.code), NEW_PASSWORD, NOW)

    assert not check.valid
    assert check.attempts_used == 1
    assert verify_password(TEST_PASSWORD, verified_user.password_hash)


def test_reset_link_expires_with_its_code(db, verified_user):
    _, issued = request_password_reset(db, verified_user.email, NOW)

    with pytest.raises(InvalidOrExpiredToken):
        check_reset_token(db, issued.token, NOW + timedelta(minutes=6))
    with pytest.raises(InvalidOrExpiredToken):
        check_reset_token(db, "0" * 64, NOW)
