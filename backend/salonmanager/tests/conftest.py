"""
Root test configuration and fixtures.

Provides database fixtures, model factories and a fake identity provider
shared by all tests.

The SQLite engine uses the pysqlite SAVEPOINT recipe from the SQLAlchemy
docs so begin_nested() behaves as it does on PostgreSQL.
"""

import os
import uuid
from datetime import datetime
from typing import Dict, Generator, List, Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment before settings are first read
os.environ.setdefault("ENV", "test")
os.environ.setdefault("APP_SECRET_KEY", "test-app-secret-key-with-enough-length")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("MAIN_DOMAIN", "localhost")

from salonmanager.auth.identity import (  # noqa: E402
    ANONYMOUS,
    Identity,
    IdentityProvider,
    SessionCredentials,
)
from salonmanager.config.settings import Settings, get_settings  # noqa: E402
from salonmanager.constants.permissions import MemberRole  # noqa: E402
from salonmanager.db_base import Base  # noqa: E402
from salonmanager.models import (  # noqa: E402
    Subscription,
    SubscriptionStatus,
    Tenant,
    TenantMember,
    TenantStatus,
)

TEST_WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Re-read settings from the environment for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_engine():
    """
    SQLite in-memory engine, one per test.

    StaticPool keeps the single in-memory connection alive across
    sessions and threads (TestClient runs the app in another thread).
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    """Session on the per-test engine. Code under test may commit freely."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()

    yield session

    session.close()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        env="test",
        app_url="http://testserver",
        main_domain="localhost",
        app_secret_key="test-app-secret-key-with-enough-length",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
    )


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_tenant(db_session):
    """Factory that creates and commits a tenant."""
    def _make(
        slug: str = None,
        name: str = None,
        status: TenantStatus = TenantStatus.ACTIVE,
        stripe_customer_id: Optional[str] = None,
    ) -> Tenant:
        slug = slug or f"salon-{uuid.uuid4().hex[:8]}"
        tenant = Tenant(
            name=name or slug.replace("-", " ").title(),
            slug=slug,
            status=status,
            stripe_customer_id=stripe_customer_id,
        )
        db_session.add(tenant)
        db_session.commit()
        return tenant
    return _make


@pytest.fixture
def add_member(db_session):
    """Factory that adds an identity to a tenant with a role."""
    def _add(tenant: Tenant, identity_id: str, role: MemberRole = MemberRole.STAFF) -> TenantMember:
        member = TenantMember(identity_id=identity_id, tenant_id=tenant.id, role=role)
        db_session.add(member)
        db_session.commit()
        return member
    return _add


@pytest.fixture
def make_subscription(db_session):
    """Factory that creates a subscription row for a tenant."""
    def _make(
        tenant: Tenant,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        trial_end: Optional[datetime] = None,
        **fields,
    ) -> Subscription:
        subscription = Subscription(
            tenant_id=tenant.id,
            status=status.value,
            trial_end=trial_end,
            **fields,
        )
        db_session.add(subscription)
        db_session.commit()
        return subscription
    return _make


# =============================================================================
# Identity
# =============================================================================

class FakeIdentityProvider(IdentityProvider):
    """Identity provider mapping raw session tokens to identities."""

    def __init__(self, sessions: Optional[Dict[str, Identity]] = None):
        self.sessions: Dict[str, Identity] = dict(sessions or {})
        self.signed_out: List[Identity] = []
        self.sign_out_error: Optional[Exception] = None

    def login(self, identity_id: str, email: Optional[str] = None) -> str:
        """Register a session for identity_id and return its token."""
        token = f"token-{identity_id}"
        self.sessions[token] = Identity(
            id=identity_id, session_id=f"sess_{identity_id}", email=email
        )
        return token

    def verify_session(self, credentials: SessionCredentials) -> Identity:
        return self.sessions.get(credentials.token or "", ANONYMOUS)

    def sign_out(self, identity: Identity) -> None:
        if self.sign_out_error is not None:
            raise self.sign_out_error
        if not identity.is_anonymous:
            self.signed_out.append(identity)


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
