from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from attestation.api.attestations import router as attestations_router
from attestation.api.health import router as health_router
from attestation.api.metrics_endpoint import router as metrics_router
from attestation.core.config import SETTINGS, Settings
from attestation.core.logging import setup_logging
from attestation.db.redis import lifespan_redis, redis_pool
from attestation.middleware.metrics import MetricsMiddleware
from attestation.middleware.request_context import RequestContextMiddleware
from attestation.services import token_service
from attestation.services.container import build_container, provision_controller

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


def create_app(settings: Settings, redis_client=None) -> FastAPI:
    """Build the API for ``settings``: token keys, container and routes."""
    token_service.configure(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        async with lifespan_redis():
            await provision_controller(app.state.container, settings)
            yield

    app = FastAPI(
        title="attestation-service",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
    )

    # Collaborators, registry and service are built once per process.
    app.state.container = build_container(settings, redis_client=redis_client)

    # Last-added runs first: RequestContext (outermost) -> Metrics -> route
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestContextMiddleware)

    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(attestations_router)

    logger.info(
        "attestation-service started  env=%s log_level=%s port=%d namespaces=%s docs=%s",
        settings.app_env,
        settings.log_level,
        settings.port,
        ",".join(app.state.container.registry.namespaces()),
        "on" if settings.is_dev else "off",
    )
    return app


app = create_app(SETTINGS, redis_client=redis_pool)
