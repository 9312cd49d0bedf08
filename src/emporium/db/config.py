"""Database configuration and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from emporium.config.settings import get_settings
from emporium.db.driver import SQLAlchemyDriver
from emporium.db.tenancy import TenancyInterceptor


@lru_cache
def get_engine() -> AsyncEngine:
    """Create the process-wide async engine on first use."""
    settings = get_settings()

    kwargs: dict = {"echo": settings.DEBUG}
    if settings.ENVIRONMENT == "test":
        kwargs["poolclass"] = NullPool
    elif settings.DATABASE_URL.startswith("postgresql"):
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW

    return create_async_engine(settings.DATABASE_URL, **kwargs)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    # Rows returned by the driver are read after their transaction commits
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Verify database connectivity.

    Called during application startup to ensure the connection pool
    is ready before accepting requests.
    """
    async with get_engine().begin() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    """Close database connections gracefully."""
    await get_engine().dispose()


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for obtaining a database session.

    Use this when you need a session outside of FastAPI dependency injection,
    such as in middleware or background tasks.

    Usage:
        async with get_async_session() as session:
            result = await session.execute(query)
    """
    async with get_session_factory()() as session:
        yield session


@asynccontextmanager
async def get_interceptor() -> AsyncGenerator[TenancyInterceptor, None]:
    """Open a session and wrap it in a tenancy-enforcing interceptor.

    Usage:
        async with get_interceptor() as db:
            with tenant_scope(ctx):
                carts = await db.find_many(Cart)
    """
    async with get_async_session() as session:
        yield TenancyInterceptor(SQLAlchemyDriver(session))


async def get_db() -> AsyncGenerator[TenancyInterceptor, None]:
    """Dependency for FastAPI to inject a tenancy interceptor.

    Usage:
        @app.get("/cart")
        async def get_cart(db: TenancyInterceptor = Depends(get_db)):
            ...
    """
    async with get_interceptor() as db:
        yield db
