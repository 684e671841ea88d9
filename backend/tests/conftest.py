"""
Test fixtures for the backend test suite.

Uses a file-backed SQLite database (aiosqlite) per test, so separate sessions
are separate connections and concurrent debits really race each other.
"""

import os
import tempfile
import uuid
from datetime import datetime

# The module-level engine is built at import time; keep it off Postgres.
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'tokenledger-test.db')}"
)
os.environ.setdefault("DATABASE_URL_DIRECT", "")
os.environ.setdefault("LOG_JSON", "false")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tokenledger.core.database import get_db
from tokenledger.core.security import create_access_token
from tokenledger.main import create_app
from tokenledger.models import (
    ActionCost,
    Base,
    Organization,
    OrganizationWallet,
    User,
    UserRole,
    UserTokenAllocation,
)

DEFAULT_COSTS = {
    "message_text": 1,
    "message_media": 2,
    "ai_summary": 15,
    "ai_smart_reply": 5,
    "ai_moderation": 5,
    "ai_analytics": 20,
    "broadcast": 1,
    "voice_note": 2,
    "file_share": 2,
}

# ---------------------------------------------------------------------------
# Per-test database: fresh file, fresh schema
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", poolclass=NullPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    """Provide a database session bound to the per-test database."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def app(session_factory):
    """Create a FastAPI app whose requests each get their own session."""
    application = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Organization, member and balance factories
# ---------------------------------------------------------------------------


async def create_test_org(db: AsyncSession, name: str = "Test Org", invite_code: str | None = None) -> Organization:
    org = Organization(name=name, invite_code=invite_code)
    db.add(org)
    await db.flush()
    return org


async def create_test_user(
    db: AsyncSession,
    org: Organization | None,
    role: str = "user",
    email: str | None = None,
    is_active: bool = True,
) -> User:
    """Create a member of ``org`` holding ``role``. Pass ``org=None`` for an unaffiliated user."""
    user = User(
        organization_id=org.id if org else None,
        email=email or f"user-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Test User",
        is_active=is_active,
    )
    db.add(user)
    await db.flush()

    if org is not None:
        db.add(UserRole(user_id=user.id, organization_id=org.id, role=role))
        await db.flush()
    return user


async def create_wallet(
    db: AsyncSession,
    org: Organization,
    total: int = 0,
    allocated: int = 0,
    consumed: int = 0,
    tokens_expire_at: datetime | None = None,
) -> OrganizationWallet:
    wallet = OrganizationWallet(
        organization_id=org.id,
        total_tokens=total,
        tokens_purchased=total,
        tokens_allocated=allocated,
        tokens_consumed=consumed,
        tokens_expire_at=tokens_expire_at,
    )
    db.add(wallet)
    await db.flush()
    return wallet


async def create_allocation(
    db: AsyncSession,
    user: User,
    org: Organization,
    balance: int,
    monthly_quota: int | None = None,
    quota_reset_day: int = 1,
    last_reset_at: datetime | None = None,
) -> UserTokenAllocation:
    allocation = UserTokenAllocation(
        user_id=user.id,
        organization_id=org.id,
        current_balance=balance,
        monthly_quota=balance if monthly_quota is None else monthly_quota,
        quota_reset_day=quota_reset_day,
        last_reset_at=last_reset_at,
    )
    db.add(allocation)
    await db.flush()
    return allocation


async def seed_cost(
    db: AsyncSession,
    action_type: str,
    token_cost: int,
    org: Organization | None = None,
    is_enabled: bool = True,
    admin_only: bool = False,
) -> ActionCost:
    row = ActionCost(
        organization_id=org.id if org else None,
        action_type=action_type,
        token_cost=token_cost,
        is_enabled=is_enabled,
        admin_only=admin_only,
    )
    db.add(row)
    await db.flush()
    return row


async def seed_default_costs(db: AsyncSession) -> None:
    for action_type, cost in DEFAULT_COSTS.items():
        await seed_cost(db, action_type, cost)


def make_auth_headers(user: User) -> dict[str, str]:
    """Generate JWT auth headers for a test user."""
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Convenience fixtures for common test scenarios
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def org(db: AsyncSession) -> Organization:
    organization = await create_test_org(db, name="Org A", invite_code="JOINA1")
    await seed_default_costs(db)
    await db.commit()
    return organization


@pytest_asyncio.fixture
async def other_org(db: AsyncSession) -> Organization:
    organization = await create_test_org(db, name="Org B", invite_code="JOINB2")
    await db.commit()
    return organization


@pytest_asyncio.fixture
async def admin(db: AsyncSession, org: Organization) -> User:
    user = await create_test_user(db, org, role="admin")
    await db.commit()
    return user


@pytest_asyncio.fixture
async def member(db: AsyncSession, org: Organization) -> User:
    user = await create_test_user(db, org, role="user")
    await db.commit()
    return user
