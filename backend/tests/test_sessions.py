from datetime import datetime, timedelta

import pytest
import requests
from sqlalchemy.exc import IntegrityError

from app.errors import InvalidOperation, NoCurrentSession, NotFound
from app.models.session import DeviceSession
from app.models.two_factor import TwoFactorToken
from app.models.verification import VerificationToken
from app.services import devices
from app.services.reaper import run_sweep
from app.services.sessions import (
    create_session,
    list_sessions,
    purge_revoked_sessions,
    revoke_other_sessions,
    revoke_session,
    rotate_session,
    touch_session,
    validate_session_token,
)
from app.services.users import create_user

NOW = datetime(2026, 3, 1, 12, 0, 0)
UA_MAC = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)"
UA_IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)"


@pytest.fixture
def user(db):
    user = create_user(db, "owner@example.com", "TestPass123!")
    db.commit()
    return user


def _assert_revocation_consistent(db):
    for session in db.query(DeviceSession).all():
        assert bool(session.is_revoked) == (session.revoked_at is not None)


def test_create_session_stores_only_token_hash(db, user):
    session, raw_token = create_session(db, user.id, "127.0.0.1", UA_MAC, NOW)

    assert session.token_hash != raw_token
    assert len(session.token_hash) == 64
    assert session.device_name == "Mac"
    assert session.location == devices.LOCAL_NETWORK
    assert session.expires_at == (NOW + timedelta(days=30)).isoformat()
    assert validate_session_token(db, raw_token, NOW).valid


def test_list_sessions_orders_by_last_activity(db, user):
    older, _ = create_session(db, user.id, None, UA_MAC, NOW - timedelta(hours=2))
    newer, _ = create_session(db, user.id, None, UA_IPHONE, NOW - timedelta(minutes=5))
    revoked, _ = create_session(db, user.id, None, UA_MAC, NOW - timedelta(minutes=1))
    revoke_session(db, revoked.id, user.id, newer, now=NOW)

    listed = list_sessions(db, user.id, NOW)

    assert [s.id for s in listed] == [newer.id, older.id]


def test_revoke_session_rejects_current_and_foreign_sessions(db, user):
    other_user = create_user(db, "other@example.com", "TestPass123!")
    current, _ = create_session(db, user.id, None, UA_MAC, NOW)
    foreign, _ = create_session(db, other_user.id, None, UA_MAC, NOW)

    with pytest.raises(InvalidOperation):
        revoke_session(db, current.id, user.id, current, now=NOW)
    with pytest.raises(NotFound):
        revoke_session(db, foreign.id, user.id, current, now=NOW)
    with pytest.raises(NotFound):
        revoke_session(db, "does-not-exist", user.id, current, now=NOW)

    assert not foreign.is_revoked


def test_revoked_session_fails_validation_but_row_survives_grace(db, user):
    current, _ = create_session(db, user.id, None, UA_MAC, NOW)
    target, target_token = create_session(db, user.id, None, UA_IPHONE, NOW)

    revoked = revoke_session(db, target.id, user.id, current, now=NOW)
    db.commit()

    assert revoked.is_revoked == 1
    assert not revoked.is_active(NOW)
    assert current.is_active(NOW)
    assert revoked.revoked_at == NOW.isoformat()
    assert revoked.revoked_by == current.id
    assert revoked.purge_after == (NOW + timedelta(seconds=60)).isoformat()
    assert validate_session_token(db, target_token, NOW).valid is False
    assert validate_session_token(db, target_token, NOW).reason == "expired-or-revoked"

    # Second revoke is a no-op.
    again = revoke_session(db, target.id, user.id, current, now=NOW + timedelta(seconds=5))
    assert again.revoked_at == NOW.isoformat()

    assert purge_revoked_sessions(db, NOW + timedelta(seconds=30)) == 0
    assert db.get(DeviceSession, target.id) is not None

    assert purge_revoked_sessions(db, NOW + timedelta(seconds=61)) == 1
    db.commit()
    db.expire_all()
    assert db.get(DeviceSession, target.id) is None
    assert db.get(DeviceSession, current.id) is not None


def test_revoke_with_expire_now_moves_expiry(db, user):
    current, _ = create_session(db, user.id, None, UA_MAC, NOW)
    target, _ = create_session(db, user.id, None, UA_IPHONE, NOW)

    revoke_session(db, target.id, user.id, current, expire_now=True, now=NOW)

    assert target.expires_at == NOW.isoformat()


def test_revoke_other_sessions_keeps_current(db, user):
    current, current_token = create_session(db, user.id, None, UA_MAC, NOW)
    _, second_token = create_session(db, user.id, None, UA_IPHONE, NOW)
    _, third_token = create_session(db, user.id, None, UA_IPHONE, NOW)
    other_user = create_user(db, "bystander@example.com", "TestPass123!")
    _, bystander_token = create_session(db, other_user.id, None, UA_MAC, NOW)

    count = revoke_other_sessions(db, user.id, current, now=NOW)
    db.commit()

    assert count == 2
    assert validate_session_token(db, current_token, NOW).valid
    assert not validate_session_token(db, second_token, NOW).valid
    assert not validate_session_token(db, third_token, NOW).valid
    assert validate_session_token(db, bystander_token, NOW).valid
    assert [s.id for s in list_sessions(db, user.id, NOW)] == [current.id]
    _assert_revocation_consistent(db)

    # Nothing left to revoke.
    assert revoke_other_sessions(db, user.id, current, now=NOW) == 0


def test_revoke_other_sessions_requires_current_session(db, user):
    create_session(db, user.id, None, UA_MAC, NOW)

    with pytest.raises(NoCurrentSession):
        revoke_other_sessions(db, user.id, None, now=NOW)


def test_inconsistent_revocation_row_is_rejected(db, user):
    db.add(DeviceSession(
        user_id=user.id,
        token_hash="0" * 64,
        expires_at=NOW.isoformat(),
        last_active_at=NOW.isoformat(),
        is_revoked=1,
        revoked_at=None,
    ))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_touch_session_is_throttled(db, user):
    session, _ = create_session(db, user.id, None, UA_MAC, NOW)

    assert touch_session(db, session, NOW + timedelta(seconds=30)) is False
    assert session.last_active_at == NOW.isoformat()
    assert touch_session(db, session, NOW + timedelta(seconds=90)) is True
    assert session.last_active_at == (NOW + timedelta(seconds=90)).isoformat()


def test_rotate_session_replaces_token(db, user):
    session, old_token = create_session(db, user.id, None, UA_MAC, NOW)

    new_session, new_token = rotate_session(db, session, None, UA_MAC, NOW)

    assert new_session.id != session.id
    assert not validate_session_token(db, old_token, NOW).valid
    assert validate_session_token(db, new_token, NOW).valid
    _assert_revocation_consistent(db)


def test_expired_session_is_invalid_and_swept(db, user):
    session, raw_token = create_session(db, user.id, None, UA_MAC, NOW)
    later = NOW + timedelta(days=31)

    assert not validate_session_token(db, raw_token, later).valid
    assert run_sweep(db, later)["sessions"] == 1
    db.commit()
    db.expire_all()
    assert db.get(DeviceSession, session.id) is None


def test_sweep_removes_lapsed_tokens(db, user):
    db.add(TwoFactorToken(token_hash="a" * 64, user_id=user.id, expires_at=(NOW - timedelta(minutes=1)).isoformat()))
    db.add(TwoFactorToken(token_hash="b" * 64, user_id=user.id, expires_at=(NOW + timedelta(minutes=5)).isoformat()))
    db.add(VerificationToken(
        token="c" * 64,
        email=user.email,
        code="123456",
        purpose="EMAIL_VERIFY",
        expires_at=(NOW - timedelta(minutes=1)).isoformat(),
    ))
    db.flush()

    result = run_sweep(db, NOW)

    assert result == {"sessions": 0, "two_factor_tokens": 1, "verification_tokens": 1}
    assert db.query(TwoFactorToken).count() == 1


def test_parse_device_name():
    assert devices.parse_device_name(None) == "Unknown Device"
    assert devices.parse_device_name(UA_IPHONE) == "iPhone"
    assert devices.parse_device_name("Mozilla/5.0 (Linux; Android 14) Mobile") == "Mobile Device"
    assert devices.parse_device_name("Mozilla/5.0 (Windows NT 10.0; Win64; x64)") == "Windows PC"


def test_lookup_location_private_and_invalid_addresses():
    assert devices.lookup_location("192.168.1.10") == devices.LOCAL_NETWORK
    assert devices.lookup_location("::1") == devices.LOCAL_NETWORK
    assert devices.lookup_location("not-an-ip") is None
    assert devices.lookup_location(None) is None


def test_lookup_location_failure_is_silent(monkeypatch):
    def failing_get(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(devices.settings, "geolocation_enabled", True)
    monkeypatch.setattr(devices.requests, "get", failing_get)

    assert devices.lookup_location("8.8.8.8") is None


def test_lookup_location_formats_city_and_country(monkeypatch):
    class FakeResponse:
        def raise_for_status(self):
            pass

        def json(self):
            return {"city": "Lisbon", "country_name": "Portugal"}

    monkeypatch.setattr(devices.settings, "geolocation_enabled", True)
    monkeypatch.setattr(devices.requests, "get", lambda *args, **kwargs: FakeResponse())

    assert devices.lookup_location("8.8.8.8") == "Lisbon, Portugal"


@pytest.mark.parametrize("payload", [["rate limited"], "rate limited", None, 42])
def test_lookup_location_ignores_non_object_payloads(monkeypatch, payload):
    class FakeResponse:
        def raise_for_status(self):
            pass

        def json(self):
            return payload

    monkeypatch.setattr(devices.settings, "geolocation_enabled", True)
    monkeypatch.setattr(devices.requests, "get", lambda *args, **kwargs: FakeResponse())

    assert devices.lookup_location("8.8.8.8") is None


def test_create_session_survives_malformed_geolocation(db, user, monkeypatch):
    class FakeResponse:
        def raise_for_status(self):
            pass

        def json(self):
            return ["rate limited"]

    monkeypatch.setattr(devices.settings, "geolocation_enabled", True)
    monkeypatch.setattr(devices.requests, "get", lambda *args, **kwargs: FakeResponse())

    session, raw_token = create_session(db, user.id, "8.8.8.8", UA_MAC, NOW)

    assert session.location is None
    assert validate_session_token(db, raw_token, NOW).valid
