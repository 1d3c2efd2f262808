import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fleetsync.core.config import settings
from fleetsync.core.limiter import limiter
from fleetsync.core.logging_config import init_application_logging
from fleetsync.services.engine import SyncEngine

# Initialize structured logging
init_application_logging()

logger = logging.getLogger("fleetsync.main")


def _check_storage_health() -> dict:
    """
    Check the health of the rate limiting storage backend.

    Returns dict with storage health status and details.
    """
    if not settings.redis_url:
        return {
            "type": "memory",
            "healthy": True,
            "message": "In-memory storage active",
        }
    return {
        "type": "redis",
        "healthy": True,
        "message": f"Configured at {settings.redis_url}",
    }


def _check_device_store(engine: SyncEngine) -> dict:
    try:
        engine.store.ping()
        return {"status": "healthy", "connected": True}
    except Exception as e:
        logger.error(f"Device store health check failed: {e}")
        return {"status": "unhealthy", "connected": False, "error": str(e)}


def create_app(engine: Optional[SyncEngine] = None) -> FastAPI:
    """
    Build the control API.

    Args:
        engine: Preconstructed engine; one is built from settings at startup otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sync_engine = engine or SyncEngine.from_settings()
        app.state.engine = sync_engine
        restored = sync_engine.start()
        if restored:
            logger.info(f"Sync engine started with restored session for {restored.handle}")
        else:
            logger.info("Sync engine started without a session")
        try:
            yield
        finally:
            await sync_engine.dispose()
            app.state.engine = None
            logger.info("Sync engine stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Offline-resilient synchronization engine for fleet inspection clients",
        version=settings.VERSION,
        lifespan=lifespan,
    )

    # Attach limiter to app.state for access in route decorators
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    logger.info(
        "Rate limiting initialized with configuration: session=%s, refresh=%s",
        settings.rate_limit_session_endpoints,
        settings.rate_limit_refresh_endpoints,
    )

    from fleetsync.api import history, notifications, session, sync

    app.include_router(session.router)
    app.include_router(sync.router)
    app.include_router(history.router)
    app.include_router(notifications.router)

    @app.get("/health")
    def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy"}

    @app.get("/api/health")
    def api_health_check():
        """
        Detailed health: device store, remote endpoint, queue and rate limiting.
        """
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.VERSION,
            "environment": {
                "dev_mode": settings.DEV_MODE,
                "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            },
            "services": {},
        }

        sync_engine: Optional[SyncEngine] = getattr(app.state, "engine", None)
        if sync_engine is None:
            health_status["status"] = "unhealthy"
            health_status["services"]["engine"] = {"status": "stopped"}
            return health_status

        store_health = _check_device_store(sync_engine)
        health_status["services"]["device_store"] = store_health
        if store_health["status"] != "healthy":
            health_status["status"] = "unhealthy"

        health_status["services"]["remote"] = {
            "configured": sync_engine.transport.configured,
            "online": sync_engine.connectivity.is_online,
            "poor_connection": sync_engine.queue.is_poor_connection,
        }
        if not sync_engine.transport.configured and health_status["status"] == "healthy":
            health_status["status"] = "degraded"

        health_status["services"]["offline_queue"] = {
            "pending": len(sync_engine.queue),
            "syncing": sync_engine.queue.is_syncing,
        }
        health_status["services"]["session"] = {
            "authenticated": sync_engine.session.is_authenticated,
        }

        health_status["services"]["rate_limiting"] = {
            "status": "enabled",
            "storage": _check_storage_health(),
            "configuration": {
                "session_endpoints": settings.rate_limit_session_endpoints,
                "refresh_endpoints": settings.rate_limit_refresh_endpoints,
            },
        }
        return health_status

    return app


app = create_app()
