# Shared pytest configuration and fixtures for all test types
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from slowapi import Limiter
from slowapi.util import get_remote_address
from unittest.mock import patch
from datetime import datetime, timezone, timedelta

# Create test limiter with no limits and in-memory storage
test_limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri="memory://",
)

# Patch the limiter before importing the app so decorators use test limiter
with patch("common.providers.rate_limiter.limiter.limiter", test_limiter):
    from api.main import app

from common.db.base import Base
from packages.auth.dependencies import get_current_account_id
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.database.usage import UsageRecordEntity  # noqa: F401
from packages.billing.models.domain.enums import PlanType, SubscriptionStatus
from packages.billing.models.domain.lifecycle import BillingPeriod

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ACCOUNT_ID = "user@example.com"


def utc_now_seconds() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def make_subscription_entity(
    account_id: str = TEST_ACCOUNT_ID,
    plan_type: PlanType = PlanType.STARTER,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    started_at: datetime = None,
    ends_at: datetime = None,
    external_membership_id: str = "mem_123",
    external_product_id: str = None,
) -> SubscriptionEntity:
    """Build a subscription row; defaults to a Starter period that began 5 days ago."""
    now = utc_now_seconds()
    started_at = started_at or now - timedelta(days=5)
    ends_at = ends_at or started_at + timedelta(days=30)
    return SubscriptionEntity(
        account_id=account_id,
        plan_type=plan_type.value,
        status=status.value,
        started_at=started_at,
        ends_at=ends_at,
        external_membership_id=external_membership_id,
        external_product_id=external_product_id,
        created_at=now,
        updated_at=now,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_connection(test_engine):
    """Create test connection with outer transaction for rollback isolation."""
    async with test_engine.connect() as connection:
        trans = await connection.begin()
        yield connection
        await trans.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_connection):
    """Create session factory bound to test connection.

    Using join_transaction_mode="create_savepoint" so transaction() and
    get_session() commits release savepoints instead of the outer transaction.
    """
    return async_sessionmaker(
        bind=test_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_lazy_sessions(test_session_factory, monkeypatch):
    """
    Patch session factories to use test database.

    This allows real transaction() and get_session() to run with proper
    commit/rollback/ContextVar semantics while using the test database.
    """
    monkeypatch.setattr("common.db.scoped.AsyncSessionLocal", test_session_factory)
    monkeypatch.setattr(
        "common.db.scoped.AsyncSessionLocalReadonly", test_session_factory
    )


@pytest.fixture
def account_id() -> str:
    return TEST_ACCOUNT_ID


@pytest_asyncio.fixture(scope="function")
async def client(account_id: str):
    """Create a test client authenticated as the test account."""

    def override_get_current_account_id():
        return account_id

    app.dependency_overrides[get_current_account_id] = override_get_current_account_id

    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def anonymous_client():
    """Create a test client that goes through real header authentication."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def subscription_factory(test_db: AsyncSession):
    """Insert subscription rows directly, bypassing the lifecycle coordinator."""

    async def _create(**kwargs) -> SubscriptionEntity:
        subscription = make_subscription_entity(**kwargs)
        test_db.add(subscription)
        await test_db.commit()
        await test_db.refresh(subscription)
        return subscription

    return _create


@pytest_asyncio.fixture(scope="function")
async def sample_subscription(subscription_factory):
    """Active Starter subscription for the test account."""
    return await subscription_factory()


@pytest_asyncio.fixture(scope="function")
async def pro_subscription(subscription_factory):
    """Active Pro subscription for the test account."""
    return await subscription_factory(plan_type=PlanType.PRO)


@pytest_asyncio.fixture(scope="function")
async def lapsed_subscription(subscription_factory):
    """Still marked active, but its window ended yesterday (sweep not run yet)."""
    now = utc_now_seconds()
    return await subscription_factory(
        started_at=now - timedelta(days=31), ends_at=now - timedelta(days=1)
    )


@pytest.fixture
def current_period() -> BillingPeriod:
    """A 30-day period that started 5 days ago."""
    return BillingPeriod.starting_at(utc_now_seconds() - timedelta(days=5), 30)


@pytest.fixture
def next_period(current_period: BillingPeriod) -> BillingPeriod:
    """The renewal period following current_period."""
    return BillingPeriod.starting_at(current_period.end, 30)
