import os
import tempfile

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["METRICS_ENABLED"] = "false"
os.environ["EXCHANGE_RATE_API_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="backoffice-storage-"))

import pytest
from fastapi.testclient import TestClient

from backoffice.auth.security import create_access_token, get_password_hash
from backoffice.db import Base, SessionLocal, engine
from backoffice.main import app as fastapi_app
from backoffice.models.models import Organization, Role, User


def _wipe():
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="session", autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _db_clean():
    # Clean BEFORE and AFTER each test
    _wipe()
    yield
    _wipe()


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def client():
    return TestClient(fastapi_app)


@pytest.fixture()
def org(db):
    o = Organization(name="Acme Ltd", slug="acme", default_currency="USD")
    db.add(o)
    db.commit()
    db.refresh(o)
    return o


@pytest.fixture()
def other_org(db):
    o = Organization(name="Globex", slug="globex", default_currency="EUR")
    db.add(o)
    db.commit()
    db.refresh(o)
    return o


def _role(db, name):
    role = db.query(Role).filter(Role.name == name).first()
    if role is None:
        role = Role(name=name)
        db.add(role)
        db.flush()
    return role


def make_user(db, org, email, roles=(), full_name=None):
    user = User(
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        password_hash=get_password_hash("secret123"),
        organization_id=org.id if org else None,
        is_active=True,
    )
    user.roles = [_role(db, name) for name in roles]
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def bearer(user):
    token = create_access_token(
        str(user.id),
        roles=[r.name for r in user.roles],
        organization_id=str(user.organization_id) if user.organization_id else None,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin(db, org):
    return make_user(db, org, "admin@acme.com", roles=("admin",), full_name="Ada Admin")


@pytest.fixture()
def member(db, org):
    return make_user(db, org, "member@acme.com", full_name="Max Member")


@pytest.fixture()
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture()
def member_headers(member):
    return bearer(member)


@pytest.fixture()
def user_factory(db, org):
    def _make(email, roles=(), organization=None):
        return make_user(db, organization or org, email, roles=roles)

    return _make


@pytest.fixture()
def headers_for():
    return bearer
