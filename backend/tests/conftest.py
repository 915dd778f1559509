import os
import sys

os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("GEOLOCATION_ENABLED", "false")
os.environ.setdefault("REAPER_INTERVAL_SECONDS", "0")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.api import auth, deps, sessions, two_factor, users, verification
from app.database import Base
from app.errors import register_error_handlers

TEST_PASSWORD = "TestPass123!"


def build_testing_session_local():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def build_test_app(testing_session_local) -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)
    for module in (auth, two_factor, sessions, verification, users):
        app.include_router(module.router, prefix="/api")

    def override_get_db():
        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    return app


@pytest.fixture
def testing_session_local():
    return build_testing_session_local()


@pytest.fixture
def db(testing_session_local):
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(testing_session_local):
    return build_test_app(testing_session_local)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_client(app):
    """A fresh client with its own cookie jar, i.e. another device."""
    def _make(user_agent: str = "Mozilla/5.0 (Windows NT 10.0)") -> TestClient:
        return TestClient(app, headers={"user-agent": user_agent, "x-forwarded-for": "192.168.1.20"})
    return _make
