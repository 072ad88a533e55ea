"""
Indexing Orchestrator - FastAPI Main Application

Configures middleware, exception handlers and routes, and owns the queue,
change detector and (optionally) the worker pool for the process lifetime.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from orchestrator import __version__
from orchestrator.config import get_settings
from orchestrator.core.errors import (
    AppException,
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from orchestrator.core.logs import configure_logging
from orchestrator.database import close_db, init_db
from orchestrator.middleware import (
    CorrelationMiddleware,
    LoggingMiddleware,
    RateLimitMiddleware,
)
from orchestrator.services.change_detection import ChangeDetector
from orchestrator.services.queue import IndexingQueue

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the shared queue and detector; starts the worker pool when
    `run_workers_in_app` is set, otherwise `orchestrator.worker.runner`
    is expected to run separately.
    """
    logger = structlog.get_logger(__name__)

    await logger.ainfo(
        "application_starting",
        app_name=settings.app_name,
        version=__version__,
        environment=settings.app_env,
    )

    await init_db()
    await logger.ainfo("database_initialized")

    queue = IndexingQueue()
    app.state.queue = queue
    app.state.detector = ChangeDetector()
    app.state.worker_pool = None

    if settings.run_workers_in_app:
        from orchestrator.services.pipeline import IndexingPipeline
        from orchestrator.worker.pool import WorkerPool

        pool = WorkerPool(queue, IndexingPipeline())
        await pool.start()
        app.state.worker_pool = pool

    yield

    await logger.ainfo("application_stopping")
    if app.state.worker_pool is not None:
        await app.state.worker_pool.stop()
    queue.close()
    await close_db()
    await logger.ainfo("database_closed")


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    configure_logging()

    app = FastAPI(
        title="Indexing Orchestrator",
        description=(
            "Keeps semantic code and documentation indexes in sync with their "
            "git and web sources through manual, webhook and scheduled triggers."
        ),
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if not settings.is_production else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Last added = outermost
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    from orchestrator.api.documentation import router as documentation_router
    from orchestrator.api.health import router as health_router
    from orchestrator.api.jobs import router as jobs_router
    from orchestrator.api.projects import router as projects_router
    from orchestrator.api.scheduler import router as scheduler_router
    from orchestrator.api.webhooks import router as webhooks_router

    app.include_router(health_router)
    app.include_router(projects_router)
    app.include_router(jobs_router)
    app.include_router(documentation_router)
    app.include_router(webhooks_router)
    app.include_router(scheduler_router)

    return app


app = create_application()
