import itertools
import os
import time

# Configuration is read at import time, so the test environment goes in first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-signing-feeds-and-audit"
os.environ["SUPABASE_JWT_SECRET"] = "test-supabase-jwt-secret"
os.environ["SITE_URL"] = "https://api.guardcrm.test"
os.environ["FRONTEND_URL"] = "https://app.guardcrm.test"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["RETENTION_API_KEY"] = "test-retention-api-key"
os.environ["GOOGLE_CALENDAR_CLIENT_ID"] = "google-client-id"
os.environ["GOOGLE_CALENDAR_CLIENT_SECRET"] = "google-client-secret"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
for _name in ("REDIS_URL", "RESEND_API_KEY", "MICROSOFT_CLIENT_ID", "MICROSOFT_CLIENT_SECRET"):
    os.environ.pop(_name, None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402

from guardcrm import email_service  # noqa: E402
from guardcrm.database import Base, SessionLocal, engine  # noqa: E402
from guardcrm.main import app  # noqa: E402
from guardcrm.models import Organization, User  # noqa: E402
from guardcrm.rate_limiter import reset_rate_limits  # noqa: E402
from guardcrm.services.realtime import hub  # noqa: E402

_user_ids = itertools.count(1)


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    monkeypatch.setenv("PII_ENCRYPTION_KEY", "test-pii-master-key-with-at-least-32-chars")
    monkeypatch.setenv("ENVIRONMENT", "test")
    reset_rate_limits()
    hub.reset()


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture outgoing email instead of calling Resend"""
    outbox = []

    async def fake_send_email(to, subject, html_content, from_address=None):
        outbox.append({"to": to, "subject": subject, "html": html_content})
        return {"id": f"email-{len(outbox)}"}

    monkeypatch.setattr(email_service, "send_email", fake_send_email)
    return outbox


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def org(db):
    organization = Organization(name="Acme Security", slug="acme-security")
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


def make_user(db, organization, role, **overrides):
    n = next(_user_ids)
    values = {
        "auth_uid": f"auth-{role}-{n}",
        "organization_id": organization.id,
        "email": f"{role}{n}@acme.test",
        "first_name": role.capitalize(),
        "last_name": f"User{n}",
        "role": role,
    }
    values.update(overrides)
    user = User(**values)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db, org):
    return make_user(db, org, "admin")


@pytest.fixture
def manager(db, org):
    return make_user(db, org, "manager")


@pytest.fixture
def guard(db, org, manager):
    return make_user(db, org, "guard", manager_id=manager.id)


def make_token(auth_uid, email=None, expires_in=3600, **claims):
    now = int(time.time())
    payload = {
        "sub": auth_uid,
        "email": email,
        "aud": "authenticated",
        "iat": now,
        "exp": now + expires_in,
    }
    payload.update(claims)
    return jwt.encode(payload, os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")


def auth_headers(user):
    return {"Authorization": f"Bearer {make_token(user.auth_uid, user.email)}"}


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def user_factory(db, org):
    def factory(role, **overrides):
        return make_user(db, org, role, **overrides)

    return factory


@pytest.fixture
def token_for():
    return make_token
