"""
ingestion_service/api/main.py
FastAPI application factory.

Architecture:
- Thin main.py (just app creation)
- Pipeline stages come from api/pipeline in their fixed order
- Lifespan opens storage and arms the cache warm-up
- The route table is supplied by the caller and mounted under the API prefix
"""

from typing import Optional

from fastapi import APIRouter, FastAPI

from .. import __version__
from ..core.config import ServiceConfig, resolve_config
from ..core.logging import get_logger
from .lifespan import CacheWarmer, StorageConnection, lifespan
from .pipeline import build_pipeline

logger = get_logger("main")

DOCS_URL = "/api-docs"


def create_app(
    config: Optional[ServiceConfig] = None,
    routes: Optional[APIRouter] = None,
    storage: Optional[StorageConnection] = None,
    warmer: Optional[CacheWarmer] = None,
) -> FastAPI:
    """
    Create the FastAPI application with the full request pipeline.

    Args:
        config: Resolved service configuration (resolved from env if omitted)
        routes: Externally owned route table, mounted under ``api_prefix``
        storage: Storage connection (built from ``storage_url`` if omitted)
        warmer: Cache warmer (targets the service's own address if omitted)

    Returns:
        Configured FastAPI app
    """
    config = config or resolve_config()

    middleware, installers = build_pipeline(config)

    app = FastAPI(
        title="API and Exposure Ingestion Service",
        version=__version__,
        lifespan=lifespan,
        middleware=middleware,
        docs_url=DOCS_URL if config.docs_enabled else None,
        redoc_url=None,
        openapi_url=f"{DOCS_URL}/openapi.json" if config.docs_enabled else None,
    )

    app.state.config = config
    app.state.storage = storage or StorageConnection(
        config.storage_url, timeout_ms=config.storage_timeout_ms
    )
    app.state.warmer = warmer or CacheWarmer(
        config.self_url, config.api_prefix, timeout=config.warmup_timeout_seconds
    )

    for install in installers:
        install(app, config, routes)

    logger.info(
        "app_created",
        api_prefix=config.api_prefix,
        docs_enabled=config.docs_enabled,
        stages=len(middleware) + len(installers),
    )
    return app


__all__ = ["create_app", "DOCS_URL"]
