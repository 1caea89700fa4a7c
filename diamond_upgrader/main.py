"""
Diamond Upgrader - FastAPI Application
Main entry point for the diamond upgrade operations service.
Exposes the contracts registry and facet/client upgrades to operators.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from diamond_upgrader.api.services.upgrade_service import UpgradeContext
from diamond_upgrader.core.config import is_production, settings
from diamond_upgrader.core.logging import get_logger, log_request, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    setup_logging()
    app.state.upgrade_context = UpgradeContext.from_settings(settings)
    logger.info(f"Upgrader ready for network {settings.NETWORK}")
    yield
    # Shutdown
    logger.info("Upgrader shutting down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description="Diamond (EIP-2535) facet upgrade orchestration - plan, apply and audit diamond cuts",
        version="1.0.0",
        docs_url=None if is_production() else "/docs",
        redoc_url=None if is_production() else "/redoc",
        openapi_url=None if is_production() else "/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        log_request(
            request.method,
            str(request.url.path),
            response.status_code,
            round(time.perf_counter() - start, 4),
        )
        return response

    from diamond_upgrader.api.routers import contracts_router, upgrade_router

    app.include_router(
        contracts_router.router, prefix="/api/v1/contracts", tags=["Contracts Registry"]
    )
    app.include_router(
        upgrade_router.router, prefix="/api/v1/upgrade", tags=["Diamond Upgrades"]
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "network": settings.get_network_config(),
            "collision_policy": settings.COLLISION_POLICY,
        }

    return app


# Create the FastAPI app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "diamond_upgrader.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
