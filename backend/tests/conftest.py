"""Pytest configuration and fixtures."""
import os

# Application settings are read once (lru_cache); pin them before helpdesk is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_INIT_EMAIL", "root@support.example.com")
os.environ.setdefault("ADMIN_INIT_PASSWORD", "RootPassw0rd")
os.environ.setdefault("ZEPTOMAIL_TOKEN", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from helpdesk.database import Base
from helpdesk.config import Settings

TEST_PASSWORD = "Passw0rd1"


class FakeClock:
    """Manually advanced time source (epoch seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class InMemoryKV:
    """Subset of the redis client API used by the app, with TTLs on a fake clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.storage = {}
        self.expiry = {}

    def _purge(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.storage.pop(key, None)
            self.expiry.pop(key, None)

    def get(self, key):
        self._purge(key)
        return self.storage.get(key)

    def set(self, key, value, ex=None):
        self.storage[key] = value
        if ex is not None:
            self.expiry[key] = self.clock() + ex
        else:
            self.expiry.pop(key, None)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.storage:
                del self.storage[key]
                removed += 1
            self.expiry.pop(key, None)
        return removed

    def ttl(self, key):
        self._purge(key)
        if key not in self.storage:
            return -2
        deadline = self.expiry.get(key)
        return -1 if deadline is None else int(deadline - self.clock())

    def ping(self):
        return True


@pytest.fixture(scope="session")
def settings():
    """Test settings."""
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret-key",
        debug=True,
        admin_init_email="root@support.example.com",
        admin_init_password="RootPassw0rd",
        zeptomail_token="",
    )


@pytest.fixture(scope="function")
def db_session(settings):
    """Create a test database session."""
    import helpdesk.models  # noqa: F401

    engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return InMemoryKV(clock)


@pytest.fixture
def system_settings(clock):
    from helpdesk.services.system_settings import SystemSettingsService

    return SystemSettingsService(ttl_seconds=30, clock=clock)


@pytest.fixture
def internal_tenant(db_session, system_settings):
    """Home organization of the internal team."""
    from helpdesk.services.tenants import create_tenant

    tenant = create_tenant(db_session, "Support Team", "support.example.com")
    system_settings.set(db_session, "internal_tenant_id", tenant.id)
    db_session.commit()
    return tenant


@pytest.fixture
def sample_tenant(db_session):
    """Create a sample client tenant owning acme.com."""
    from helpdesk.services.tenants import create_tenant

    tenant = create_tenant(db_session, "Acme Corp", "acme.com")
    db_session.commit()
    return tenant


@pytest.fixture
def other_tenant(db_session):
    from helpdesk.services.tenants import create_tenant

    tenant = create_tenant(db_session, "Globex", "globex.com")
    db_session.commit()
    return tenant


@pytest.fixture
def make_user(db_session):
    """Factory for users with a known password."""
    from helpdesk.models import User
    from helpdesk.services.security import generate_salt, hash_password

    def _make(email, role="user", tenant=None, name=None, password=TEST_PASSWORD, **extra):
        salt = generate_salt()
        user = User(
            email=email.lower(),
            name=name or email.split("@")[0].title(),
            role=role,
            tenant_id=tenant.id if tenant is not None else None,
            salt=salt,
            password_hash=hash_password(password, salt),
            is_active=extra.pop("is_active", True),
            must_change_password=extra.pop("must_change_password", False),
            **extra,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def super_admin(make_user, internal_tenant):
    return make_user("root@support.example.com", "super_admin", internal_tenant, name="Root")


@pytest.fixture
def agent_admin(make_user):
    return make_user("lead@support.example.com", "agent_admin", None, name="Lead")


@pytest.fixture
def agent(make_user, internal_tenant):
    return make_user("agent@support.example.com", "agent", internal_tenant, name="Agent Smith")


@pytest.fixture
def other_agent(make_user, internal_tenant):
    return make_user("agent2@support.example.com", "agent", internal_tenant, name="Agent Jones")


@pytest.fixture
def org_admin(make_user, sample_tenant):
    return make_user("boss@acme.com", "org_admin", sample_tenant, name="Acme Boss")


@pytest.fixture
def customer(make_user, sample_tenant):
    return make_user("alice@acme.com", "user", sample_tenant, name="Alice")


@pytest.fixture
def coworker(make_user, sample_tenant):
    return make_user("bob@acme.com", "user", sample_tenant, name="Bob")


@pytest.fixture
def outsider(make_user, other_tenant):
    return make_user("carol@globex.com", "user", other_tenant, name="Carol")


@pytest.fixture
def sample_ticket(db_session, customer):
    """Open, unassigned ticket raised by the customer."""
    from helpdesk.services.tickets import create_ticket

    ticket = create_ticket(db_session, customer, title="Printer on fire", description="Smoke everywhere")
    db_session.commit()
    return ticket


@pytest.fixture
def client(db_session, kv, system_settings, settings):
    """API client over HTTPS (the session cookie is Secure) sharing the test session."""
    from fastapi.testclient import TestClient

    from helpdesk.database import get_db
    from helpdesk.main import app
    from helpdesk.services.notifier import EmailNotifier

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.kv = kv
    app.state.system_settings = system_settings
    app.state.notifier = EmailNotifier(settings)

    yield TestClient(app, base_url="https://testserver")

    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Sign in through the API; the client keeps the session cookie."""

    def _login(user, password=TEST_PASSWORD):
        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
        assert response.status_code == 200, response.text
        return response

    return _login
