"""FastAPI application entry point for Billboard Keeper.

Lifecycle:
    1. Startup: Initialize logging, database, Redis (if the redis queue is
       used), build the Runtime and start the job worker.
    2. Running: Serve the REST API while the worker drains the job queue.
    3. Shutdown: Stop the worker, then close HTTP, database and Redis
       connections gracefully.

Run with:
    uv run uvicorn billboard_keeper.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from billboard_keeper.config import get_settings
from billboard_keeper.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from billboard_keeper.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis
    from billboard_keeper.infrastructure.redis_client import close_redis, init_redis

    redis = None
    if settings.job_queue_backend == "redis":
        redis = await init_redis()

    # 4. Runtime + worker
    from billboard_keeper.orchestration.worker import JobWorker
    from billboard_keeper.runtime import build_runtime

    runtime = build_runtime(settings, redis=redis)
    app.state.runtime = runtime

    worker = JobWorker(runtime) if settings.worker_enabled else None
    if worker is not None:
        await worker.start()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if worker is not None:
        await worker.stop()
    await runtime.aclose()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Billboard Keeper",
        description=(
            "Verification engine for paid profile placements. "
            "Confirms the artwork is displayed, keeps checking, settles escrow."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from billboard_keeper.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from billboard_keeper.api.routes.agreements import router as agreements_router
    from billboard_keeper.api.routes.dev import router as dev_router
    from billboard_keeper.api.routes.health import router as health_router

    app.include_router(health_router)
    app.include_router(agreements_router)
    if settings.is_development:
        app.include_router(dev_router)

    return app


# The app instance used by Uvicorn
app = create_app()
