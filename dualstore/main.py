from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI

from dualstore.api import admin, health
from dualstore.core.circuit_breaker import BreakerStateStore, CircuitBreakerRegistry
from dualstore.core.config import settings
from dualstore.core.errors import init_sentry
from dualstore.core.logging_config import get_logger
from dualstore.db import create_db_and_tables, engine
from dualstore.middleware.context import RequestContextMiddleware
from dualstore.services.dual_write import DualWriteCoordinator
from dualstore.services.store_a import StoreAAdapter
from dualstore.services.store_b import StoreBAdapter
from dualstore.services.user_sync import UserSyncService
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("=" * 50)
    logger.info(f"{settings.PROJECT_NAME} starting ({settings.ENVIRONMENT})")
    logger.info(f"Store B: {'ENABLED' if settings.store_b_configured else 'DISABLED'}")
    logger.info(f"Breaker persistence: {'ENABLED' if settings.CIRCUIT_PERSIST else 'DISABLED'}")
    logger.info("=" * 50)

    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    create_db_and_tables(engine)

    registry = CircuitBreakerRegistry(
        failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
        open_timeout=settings.CIRCUIT_OPEN_TIMEOUT,
        store=BreakerStateStore(engine) if settings.CIRCUIT_PERSIST else None,
    )
    store_a = StoreAAdapter(engine)
    store_b = StoreBAdapter(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_ROLE_KEY,
        timeout=settings.STORE_B_HTTP_TIMEOUT,
    )
    coordinator = DualWriteCoordinator(
        store_a,
        store_b,
        registry,
        store_b_enabled=settings.store_b_configured,
    )

    app.state.coordinator = coordinator
    app.state.user_sync = UserSyncService(coordinator, store_a, store_b) if settings.store_b_configured else None

    try:
        yield
    finally:
        await store_b.aclose()
        if registry.store:
            registry.store.close()
        app.state.coordinator = None
        app.state.user_sync = None


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Trust X-Forwarded-* from the platform proxy
app.add_middleware(cast(Any, ProxyHeadersMiddleware), trusted_hosts=["*"])
app.add_middleware(cast(Any, RequestContextMiddleware))

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.get("/health")
def health_root():
    """Basic health check endpoint."""
    return {"status": "healthy"}
