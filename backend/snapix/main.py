"""FastAPI application entrypoint.

Configures CORS, includes routers, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings
from .routers import campaigns as campaigns_router
from .routers import ad_accounts as ad_accounts_router
from .telemetry import init_sentry
from . import schemas

# Import models so Alembic can discover metadata
from . import models  # noqa: F401


def create_app() -> FastAPI:
    settings = get_settings()

    # Before the app exists so the FastAPI integration hooks every route
    init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    app = FastAPI(
        title="Snapix API",
        description="""
        Snapix serves Facebook ad campaign performance for the dashboard.

        This API provides endpoints for:
        - Connecting and disconnecting a Facebook ad account
        - Listing campaigns with performance metrics (cached, live or stored)
        - Campaign summary and single-campaign lookup
        - Forcing a refresh from Facebook

        ## Authentication

        JWT in the HTTP-only `access_token` cookie.
        """,
        version="1.0.0",
    )

    allowed_origins = settings.cors_origins_list
    logger.info("[CORS] Allowed origins: %s", allowed_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(campaigns_router.router)
    app.include_router(ad_accounts_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="""
        Simple health check endpoint to verify the API is running.

        This endpoint:
        - Does not require authentication
        - Returns basic service status
        - Can be used for load balancer health checks
        """
    )
    def health():
        return schemas.HealthResponse(status="ok")

    return app


app = create_app()
