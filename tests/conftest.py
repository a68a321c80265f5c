"""Pytest configuration and fixtures.

Test isolation strategy:
- Each test gets a fresh in-memory SQLite database shared through StaticPool
- The Redis layer is backed by fakeredis
- API tests use a TestClient whose get_db dependency is bound to the test database
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("BOOTSTRAP_ADMIN_EMAIL", "boss@festival.io")

from collections.abc import Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import festchat.model  # noqa: F401
from festchat.core.database import Base, SessionLocal, get_db
from festchat.session import session_layer
from tests.factories import auth_headers, create_test_user


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal.configure(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def fake_redis() -> Generator[fakeredis.FakeRedis, None, None]:
    client = fakeredis.FakeRedis(decode_responses=True)
    session_layer.use_client(client, refresh_ttl=7 * 24 * 60 * 60, max_refresh_tokens=5)
    yield client
    client.flushall()


@pytest.fixture
def client(engine: Engine) -> Generator[TestClient, None, None]:
    from main import app

    def override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin(db: Session):
    return create_test_user(db, name="Festival Admin", email="boss@festival.io", role="admin")


@pytest.fixture
def alice(db: Session):
    return create_test_user(db, name="Alice", email="alice@festival.io")


@pytest.fixture
def bob(db: Session):
    return create_test_user(db, name="Bob", email="bob@festival.io")


@pytest.fixture
def carol(db: Session):
    return create_test_user(db, name="Carol", email="carol@festival.io")


@pytest.fixture
def headers():
    return auth_headers
