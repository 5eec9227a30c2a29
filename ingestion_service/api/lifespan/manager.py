"""
ingestion_service/api/lifespan/manager.py
Lifespan for the FastAPI application.

Responsibilities:
1. Kick off the storage connection in the background on startup
2. Arm the cache warm-up to fire once storage is open (if enabled)
3. Close storage on shutdown

Serving does not wait for storage: uvicorn binds and starts accepting
while the connection is still being established.
"""

import asyncio
from contextlib import asynccontextmanager, suppress

import structlog

logger = structlog.get_logger("ingestion.lifespan")


@asynccontextmanager
async def lifespan(app):
    """
    FastAPI lifespan context manager.

    Expects ``app.state.config``, ``app.state.storage`` and
    ``app.state.warmer`` (set by ``create_app``).
    """

    # ========================================================================
    # STARTUP
    # ========================================================================

    config = app.state.config
    storage = app.state.storage

    logger.info(
        "application_starting",
        port=config.listen_port,
        api_prefix=config.api_prefix,
        environment=config.environment.value,
    )

    if config.cache_warmup_enabled:
        storage.on_open(app.state.warmer.trigger)
    else:
        logger.info("cache_warmup_disabled")

    connect_task = asyncio.create_task(storage.connect(), name="storage:connect")
    app.state.storage_connect_task = connect_task

    logger.info("startup_completed")

    # ========================================================================
    # APP RUNNING
    # ========================================================================

    yield

    # ========================================================================
    # SHUTDOWN
    # ========================================================================

    logger.info("application_shutting_down")

    if not connect_task.done():
        connect_task.cancel()
        with suppress(asyncio.CancelledError):
            await connect_task

    await storage.close()

    logger.info("shutdown_completed")


__all__ = ["lifespan"]
