"""
FastAPI application entry point.
Configures middleware, routers, and lifecycle events.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from certchain.core.config import get_settings
from certchain.core.logging import configure_logging, get_logger
from certchain.db.session import close_db, get_db_session, init_db
from certchain.modules.certificates.public_router import router as public_certificates_router
from certchain.modules.certificates.router import router as certificates_router
from certchain.modules.ledger.factory import build_anchors
from certchain.modules.ledger.mirror import MirrorNodeClient
from certchain.modules.storage.client import PinataContentStore, StorageConfig

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Opens the database pool and the shared content store and ledger clients,
    and closes them on shutdown.
    """
    settings = get_settings()
    logger.info(
        "starting_application",
        environment=settings.environment,
        version=settings.version,
        anchor_strategy=settings.anchor_strategy,
        ledger_network=settings.ledger_network,
    )

    await init_db()
    logger.info("database_initialized")

    app.state.content_store = PinataContentStore(StorageConfig.from_settings(settings))
    app.state.anchors = build_anchors(settings)
    app.state.anchor = app.state.anchors[settings.anchor_strategy]

    yield

    await app.state.content_store.close()
    # Both anchors share one gateway and one mirror client.
    await app.state.anchor.close()
    await close_db()
    logger.info("application_shutdown_complete")


def create_application() -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application with all middleware,
    routers, and settings applied.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    # ==========================================================================
    # Middleware Configuration
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Origin", "X-Api-Key", "X-Request-ID"],
    )

    # ==========================================================================
    # Router Registration
    # ==========================================================================

    # Health check endpoint (no auth required)
    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, object]:
        checks: dict[str, str] = {}

        # Probe PostgreSQL
        try:
            async for session in get_db_session():
                await session.execute(text("SELECT 1"))
            checks["db"] = "ok"
        except Exception:
            checks["db"] = "unavailable"

        # Probe the pinning API credentials
        store: PinataContentStore | None = getattr(app.state, "content_store", None)
        if store is not None and await store.test_authentication():
            checks["content_store"] = "ok"
        else:
            checks["content_store"] = "unavailable"

        # Probe the mirror node
        mirror = MirrorNodeClient(
            settings.mirror_node_url, timeout_seconds=settings.ledger_timeout_seconds
        )
        try:
            checks["mirror_node"] = "ok" if await mirror.ping() else "unavailable"
        finally:
            await mirror.close()

        overall = "healthy" if all(v == "ok" for v in checks.values()) else "degraded"
        return {"status": overall, "version": settings.version, "checks": checks}

    # Public API (no authentication required)
    app.include_router(
        public_certificates_router,
        prefix=f"{settings.api_v1_prefix}/public",
        tags=["Public Verification"],
    )

    # API v1 routers (operator API key)
    app.include_router(
        certificates_router,
        prefix=f"{settings.api_v1_prefix}/certificates",
        tags=["Certificates"],
    )

    return app


app = create_application()
