"""Pytest fixtures for Emporium tests."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from decimal import Decimal

import pytest
import pytest_asyncio
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from uuid_utils.compat import uuid7

from emporium.config.settings import CartConfig
from emporium.core.context import TenantContext, platform_scope, tenant_scope
from emporium.db.driver import SQLAlchemyDriver
from emporium.db.models import Base, Sku, SkuStatus, Tenant, User
from emporium.db.tenancy import TenancyInterceptor

# High enough that tests never see slow-operation warnings unless they ask for them
TEST_SLOW_THRESHOLD_MS = 10_000.0


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def db(db_session: AsyncSession) -> TenancyInterceptor:
    """Tenancy interceptor over the test session."""
    return TenancyInterceptor(SQLAlchemyDriver(db_session), slow_threshold_ms=TEST_SLOW_THRESHOLD_MS)


@pytest.fixture
def interceptor_factory(session_factory):
    """Opens a fresh session-backed interceptor, like ``get_interceptor``."""

    @asynccontextmanager
    async def factory() -> AsyncGenerator[TenancyInterceptor, None]:
        async with session_factory() as session:
            yield TenancyInterceptor(SQLAlchemyDriver(session), slow_threshold_ms=TEST_SLOW_THRESHOLD_MS)

    return factory


@pytest.fixture
def cart_config() -> CartConfig:
    return CartConfig(transaction_timeout_seconds=5.0, prune_after_days=30)


# =============================================================================
# Tenant and catalog fixtures
# =============================================================================


async def _create_tenant(db: TenancyInterceptor, name: str, **fields) -> Tenant:
    suffix = str(uuid7()).replace("-", "")[:12]
    with platform_scope("test setup"):
        return await db.create(Tenant, {"name": name, "slug": f"{name.lower()}-{suffix}", **fields})


@pytest_asyncio.fixture
async def tenant_a(db: TenancyInterceptor) -> Tenant:
    return await _create_tenant(db, "StoreA", subdomain="store-a", custom_domain="shop-a.example.com")


@pytest_asyncio.fixture
async def tenant_b(db: TenancyInterceptor) -> Tenant:
    return await _create_tenant(db, "StoreB", subdomain="store-b", plan="PRO")


@pytest.fixture
def ctx_a(tenant_a: Tenant) -> TenantContext:
    return TenantContext.from_tenant(tenant_a)


@pytest.fixture
def ctx_b(tenant_b: Tenant) -> TenantContext:
    return TenantContext.from_tenant(tenant_b)


@pytest.fixture
def make_user(db: TenancyInterceptor) -> Callable[..., Awaitable[User]]:
    """Create a user in the given tenant."""

    async def factory(ctx: TenantContext, email: str = "shopper@example.com") -> User:
        with tenant_scope(ctx):
            return await db.create(User, {"email": email, "name": "Shopper"})

    return factory


@pytest.fixture
def make_sku(db: TenancyInterceptor) -> Callable[..., Awaitable[Sku]]:
    """Create a SKU in the given tenant."""

    async def factory(
        ctx: TenantContext,
        *,
        stock: int = 10,
        price: str = "10.00",
        sale_price: str | None = None,
        status: SkuStatus = SkuStatus.ACTIVE,
    ) -> Sku:
        with tenant_scope(ctx):
            return await db.create(
                Sku,
                {
                    "sku_code": f"SKU-{str(uuid7())[-8:]}",
                    "price": Decimal(price),
                    "sale_price": Decimal(sale_price) if sale_price is not None else None,
                    "stock": stock,
                    "status": status.value,
                },
            )

    return factory
