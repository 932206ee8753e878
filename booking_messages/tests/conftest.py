import os
from datetime import date, datetime, timedelta, timezone
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker

# CRITICAL: configure the test database BEFORE importing any booking_messages module
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["TESTING"] = "true"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from booking_messages.main import app
from booking_messages.database import Base
from booking_messages import models  # noqa: F401
import booking_messages.database as db_module
import booking_messages.dependencies as dependencies_module
import booking_messages.Middleware.audit_middleware as audit_mw
from booking_messages.models.reservation import Property, Reservation
from booking_messages.models.user import ParticipantRole, User
from booking_messages.services.auth_service import create_access_token


@pytest.fixture(scope="session")
def test_engine():
    return create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # share same in-memory DB across connections
    )


@pytest.fixture()
def db_session(test_engine):
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=test_engine
    )
    # Fresh schema per test
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def patch_sessionlocal(monkeypatch, test_engine, db_session):
    monkeypatch.setattr(db_module, "engine", test_engine, raising=False)

    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=test_engine
    )
    monkeypatch.setattr(db_module, "SessionLocal", TestingSessionLocal, raising=True)
    # get_db() looks SessionLocal up at call time
    monkeypatch.setattr(
        dependencies_module, "SessionLocal", TestingSessionLocal, raising=True
    )
    monkeypatch.setattr(audit_mw, "SessionLocal", TestingSessionLocal, raising=True)

    # Disable rate limiter globally for tests
    if hasattr(app.state, "limiter"):
        monkeypatch.setattr(app.state.limiter, "enabled", False)
    yield


@pytest.fixture()
def client():
    return TestClient(app)


def _seed_user(db, email, username, role):
    user = User(
        email=email,
        username=username,
        first_name=username.title(),
        last_name="Test",
        role=role,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def tenant(db_session):
    return _seed_user(db_session, "guest@example.com", "guest", ParticipantRole.TENANT)


@pytest.fixture()
def owner(db_session):
    return _seed_user(db_session, "owner@example.com", "owner", ParticipantRole.HOMEOWNER)


@pytest.fixture()
def second_tenant(db_session):
    return _seed_user(db_session, "guest2@example.com", "guest2", ParticipantRole.TENANT)


@pytest.fixture()
def manager(db_session):
    return _seed_user(db_session, "manager@example.com", "manager", ParticipantRole.MANAGER)


@pytest.fixture()
def reservation(db_session, tenant, owner):
    prop = Property(name="Seaside Loft", owner_id=owner.id)
    db_session.add(prop)
    db_session.commit()
    res = Reservation(
        property_id=prop.id,
        guest_id=tenant.id,
        check_in_date=date.today() + timedelta(days=7),
        check_out_date=date.today() + timedelta(days=10),
    )
    db_session.add(res)
    db_session.commit()
    db_session.refresh(res)
    return res


@pytest.fixture()
def auth_headers():
    def _headers(user):
        token = create_access_token(
            user.email, user.id, user.role.value, timedelta(minutes=30)
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
