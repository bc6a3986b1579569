"""
Pytest configuration and fixtures
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-carenest-access-tests")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db.base import Base
from app.core.deps import get_db
from app.core.constants import (
    PERMISSION_CLOCK_IN_OUT,
    PERMISSION_EDIT_CLIENTS,
    PERMISSION_MANAGE_SYSTEM,
    PERMISSION_VIEW_CLIENTS,
    PERMISSION_VIEW_PROPERTIES,
)
from app.core.security import hash_password
from app.models import (
    Client,
    Organization,
    Property,
    RBACSettings,
    Role,
    RosterEntry,
    Staff,
)
from app.services import rbac_events
from app.services.rbac_config_service import config_cache


# Use in-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Enable foreign keys for SQLite
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# pysqlite defers BEGIN until the first DML; emit it ourselves so SAVEPOINTs nest properly
@event.listens_for(engine, "connect")
def disable_pysqlite_transactions(dbapi_conn, connection_record):
    dbapi_conn.isolation_level = None


@event.listens_for(engine, "begin")
def emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Fixed shift used by most tests: 08:00 - 16:00 UTC
SHIFT_DAY = (2026, 3, 2)
TEST_PASSWORD = "testpass123"


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    """UTC datetime on the test shift day"""
    return datetime(*SHIFT_DAY, hour, minute, second, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    config_cache.invalidate()
    rbac_events.clear_subscribers()

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()
        config_cache.invalidate()
        rbac_events.clear_subscribers()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Test client fixture with database override"""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def org(db):
    """Organization with RBAC on and default settings (grace 15, location advisory)"""
    organization = Organization(name="CareNest Disability Services", slug="carenest", rbac_enabled=True)
    db.add(organization)
    db.flush()
    db.add(RBACSettings(
        organization_id=organization.id,
        strict_mode=False,
        grace_period_minutes=15,
        require_location=False,
        max_distance_meters=100,
        audit_logging=True,
        manual_grants_expire_with_shift=True,
    ))
    db.commit()
    db.refresh(organization)
    return organization


@pytest.fixture
def other_org(db):
    organization = Organization(name="Other Care Ltd", slug="other-care", rbac_enabled=True)
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


@pytest.fixture
def support_role(db, org):
    role = Role(
        organization_id=org.id,
        name="Support Facilitator",
        rbac_enabled=True,
        bypasses_access_control=False,
        permissions=[PERMISSION_VIEW_CLIENTS, PERMISSION_EDIT_CLIENTS, PERMISSION_VIEW_PROPERTIES, PERMISSION_CLOCK_IN_OUT],
    )
    db.add(role)
    db.commit()
    db.refresh(role)
    return role


@pytest.fixture
def admin_role(db, org):
    role = Role(
        organization_id=org.id,
        name="Office Admin",
        rbac_enabled=False,
        bypasses_access_control=True,
        permissions=[PERMISSION_MANAGE_SYSTEM],
    )
    db.add(role)
    db.commit()
    db.refresh(role)
    return role


def make_staff(db, org, role, name, email, **kwargs):
    staff = Staff(
        organization_id=org.id,
        role_id=role.id,
        name=name,
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        **kwargs
    )
    db.add(staff)
    db.commit()
    db.refresh(staff)
    return staff


@pytest.fixture
def sw1(db, org, support_role):
    """Support worker subject to access control"""
    return make_staff(db, org, support_role, "Sarah Johnson", "sarah.johnson@carenest.com")


@pytest.fixture
def sw2(db, org, support_role):
    return make_staff(db, org, support_role, "Michael Chen", "michael.chen@carenest.com")


@pytest.fixture
def admin1(db, org, admin_role):
    return make_staff(db, org, admin_role, "Lisa Thompson", "lisa.thompson@carenest.com", rbac_enabled=False)


def make_property(db, org, name, latitude=None, longitude=None):
    prop = Property(organization_id=org.id, name=name, latitude=latitude, longitude=longitude)
    db.add(prop)
    db.commit()
    db.refresh(prop)
    return prop


@pytest.fixture
def prop1(db, org):
    return make_property(db, org, "Sunrise House", -36.8485, 174.7633)


@pytest.fixture
def prop2(db, org):
    return make_property(db, org, "Community Hub", -36.8523, 174.7691)


@pytest.fixture
def clients(db, org, prop1, prop2):
    """Two clients at prop1, one at prop2"""
    rows = [
        Client(organization_id=org.id, property_id=prop1.id, name="Emma Wilson"),
        Client(organization_id=org.id, property_id=prop1.id, name="David Lee"),
        Client(organization_id=org.id, property_id=prop2.id, name="Sophie Anderson"),
    ]
    db.add_all(rows)
    db.commit()
    for row in rows:
        db.refresh(row)
    return rows


def make_roster_entry(db, staff, prop, start, end, **kwargs):
    entry = RosterEntry(
        organization_id=staff.organization_id,
        staff_id=staff.id,
        property_id=prop.id,
        start_time=start,
        end_time=end,
        **kwargs
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


@pytest.fixture
def re1(db, sw1, prop1):
    """sw1 at prop1, 08:00 - 16:00 UTC"""
    return make_roster_entry(db, sw1, prop1, at(8), at(16))


@pytest.fixture
def re2(db, sw1, prop2):
    """sw1 at prop2, same day 08:00 - 16:00 UTC"""
    return make_roster_entry(db, sw1, prop2, at(8), at(16))


def get_auth_token(client, email, password=TEST_PASSWORD):
    """Helper to get auth token"""
    response = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password}
    )
    return response.json()["access_token"]


def auth_headers(client, email, password=TEST_PASSWORD):
    return {"Authorization": f"Bearer {get_auth_token(client, email, password)}"}
