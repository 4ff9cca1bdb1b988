"""
Shared pytest fixtures for the partner rewards engine.

Every test gets a fresh in-memory SQLite database (aiosqlite + StaticPool,
so all sessions share one connection). Sessions on that connection must not
overlap: a test either works inside the single `db` session, or seeds
committed data with `seed_partner` and lets the code under test open its
own sessions.
"""

import uuid
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from partner_rewards import models  # noqa: F401
from partner_rewards.config import Settings
from partner_rewards.core.defaults import build_default_config
from partner_rewards.core.security import Actor, create_access_token
from partner_rewards.database import Base, create_session_factory, custom_json_dumps, session_scope, utcnow
from partner_rewards.main import create_app
from partner_rewards.models.partner import Partner
from partner_rewards.services.rewards_config_service import RewardsConfigCache


TEST_SECRET_KEY = "test-secret-key-for-testing-only"
TEST_CRON_SECRET = "test-cron-secret"
ADMIN_ROLE = "sovra_admin"


@pytest.fixture
def settings():
    """Settings for an isolated, scheduler-less app."""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        SECRET_KEY=TEST_SECRET_KEY,
        CRON_SECRET=TEST_CRON_SECRET,
        ADMIN_ROLES=[ADMIN_ROLE],
        REDIS_URL=None,
        SCHEDULER_ENABLED=False,
        RENEWAL_MAX_CONCURRENT=1,  # One shared SQLite connection
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # Required for SQLite in-memory async
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    """Single session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def config():
    return build_default_config()


@pytest.fixture
def config_cache(session_factory):
    return RewardsConfigCache(session_factory, refresh_seconds=300)


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=ADMIN_ROLE, name="Rewards Admin")


@pytest.fixture
def portal_user():
    return Actor(id="user-1", role="partner_user", name="Partner User")


def build_partner(**values) -> Partner:
    now = utcnow()
    values.setdefault("id", uuid.uuid4())
    values.setdefault("name", "Acme Health")
    values.setdefault("tier", "bronze")
    values.setdefault("renewal_due_at", now + timedelta(days=365))
    values.setdefault("created_at", now)
    values.setdefault("updated_at", now)
    return Partner(**values)


@pytest.fixture
def add_partner(db):
    """Add a partner to the `db` session (flushed, not committed)."""
    async def _add(**values) -> Partner:
        partner = build_partner(**values)
        db.add(partner)
        await db.flush()
        return partner
    return _add


@pytest.fixture
def seed_partner(session_factory):
    """Commit a partner in its own session and return its id."""
    async def _seed(**values) -> uuid.UUID:
        partner = build_partner(**values)
        async with session_scope(session_factory) as session:
            session.add(partner)
        return partner.id
    return _seed


@pytest.fixture
def load_partner(session_factory):
    async def _load(partner_id: uuid.UUID) -> Partner:
        async with session_factory() as session:
            return await session.get(Partner, partner_id)
    return _load


# ==================== API ====================

@pytest.fixture
async def app(settings, engine):
    application = create_app(settings, engine=engine)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def admin_headers(settings):
    token = create_access_token(settings, "admin-1", ADMIN_ROLE)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(settings):
    token = create_access_token(settings, "user-1", "partner_user")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {TEST_CRON_SECRET}"}
