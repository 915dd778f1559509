from datetime import datetime

import pyotp
import pytest

from app.errors import InvalidCredentials
from app.models.user import User
from app.services import login as login_service
from app.services.login import FederatedIdentity, authenticate, authenticate_federated
from app.services.totp import generate_secret
from app.services.two_factor import enable_two_factor
from app.services.users import create_user

from conftest import TEST_PASSWORD

NOW = datetime(2026, 3, 1, 12, 0, 0)


def test_authenticate_starts_session_and_sends_alert(db, monkeypatch):
    alerts = []
    monkeypatch.setattr(login_service, "send_login_alert", lambda email, session: alerts.append((email, session.id)))
    user = create_user(db, "alert@example.com", TEST_PASSWORD)

    result = authenticate(db, " Alert@Example.com ", TEST_PASSWORD, "10.0.0.5", "Mozilla/5.0 (Macintosh)", NOW)

    assert not result.two_factor_required
    assert result.session.user_id == user.id
    assert result.session_token
    assert alerts == [("alert@example.com", result.session.id)]


def test_oauth_only_account_cannot_use_password(db):
    create_user(db, "oauth@example.com", None)

    with pytest.raises(InvalidCredentials):
        authenticate(db, "oauth@example.com", TEST_PASSWORD, now=NOW)


def test_federated_sign_in_creates_verified_user(db):
    identity = FederatedIdentity(email="New.Person@example.com", provider="google", name="New Person")

    result = authenticate_federated(db, identity, "127.0.0.1", None, NOW)

    user = db.query(User).filter(User.email == "new.person@example.com").one()
    assert result.user.id == user.id
    assert user.password_hash is None
    assert user.email_verified_at == NOW.isoformat()
    assert result.session is not None


def test_federated_sign_in_verifies_existing_user(db):
    user = create_user(db, "existing@example.com", TEST_PASSWORD)

    result = authenticate_federated(db, FederatedIdentity(email="existing@example.com", provider="github"), now=NOW)

    assert result.user.id == user.id
    assert user.email_verified_at == NOW.isoformat()


def test_federated_sign_in_still_requires_second_factor(db):
    user = create_user(db, "mfa-oauth@example.com", None, email_verified_at=NOW.isoformat())
    secret = generate_secret()
    enable_two_factor(db, user, secret, pyotp.TOTP(secret).now())

    result = authenticate_federated(db, FederatedIdentity(email=user.email, provider="google"), now=NOW)

    assert result.two_factor_required
    assert result.session is None
