"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from emporium import __version__
from emporium.api.middleware import TenantContextMiddleware
from emporium.api.middleware.tenant import InterceptorFactory
from emporium.cart.maintenance import create_maintenance_scheduler
from emporium.config.settings import Settings, get_settings
from emporium.config.validation import validate_or_raise
from emporium.core.logging import get_logger, setup_logging
from emporium.db.config import close_db, get_interceptor, init_db
from emporium.db.tenancy import validate_classification

logger = get_logger("emporium.api")


def create_app(
    settings: Settings | None = None,
    interceptor_factory: InterceptorFactory = get_interceptor,
    run_maintenance: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Routes are mounted by the embedding service; this factory wires the
    tenant middleware, the health endpoint and the startup checks.

    Args:
        settings: Optional settings override (useful for testing)
        interceptor_factory: Opens interceptors for tenant resolution
        run_maintenance: Start the maintenance scheduler with the app

    Example:
        uvicorn emporium.api.app:create_app --factory
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Emporium",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=_lifespan,
    )

    app.state.settings = settings
    app.state.run_maintenance = run_maintenance

    app.add_middleware(
        TenantContextMiddleware,
        interceptor_factory=interceptor_factory,
        cache_ttl_seconds=settings.TENANT_CACHE_TTL_SECONDS,
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Liveness check; never touches the database."""
        return {"status": "healthy", "version": __version__}

    return app


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Validate configuration, open the database and run maintenance."""
    settings: Settings = app.state.settings

    setup_logging()
    validate_or_raise(settings)
    validate_classification()
    logger.info("emporium_starting", environment=settings.ENVIRONMENT)

    await init_db()

    scheduler = None
    if app.state.run_maintenance:
        scheduler = create_maintenance_scheduler(settings.cart)
        await scheduler.start()

    yield

    logger.info("emporium_stopping")
    if scheduler is not None:
        await scheduler.stop()
    await close_db()
