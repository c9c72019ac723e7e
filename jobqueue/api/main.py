"""
Admin API application entry point.

Operators use it to inspect queue depth and jobs, list the dead-letter
collection and requeue dead-lettered jobs. Jobs are enqueued in-process
through ``JobQueue``, not over HTTP.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobqueue import __version__
from jobqueue.api.routes import health_router, jobs_router
from jobqueue.config import get_settings
from jobqueue.errors import StoreConflict, StoreUnavailable
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import setup_metrics
from jobqueue.observability.tracing import instrument_fastapi, setup_tracing
from jobqueue.queue import JobQueue
from jobqueue.store import create_store
from jobqueue.types.api import ErrorResponse
from jobqueue.worker.main import Dispatcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Opens the configured store unless a queue was attached by the caller.
    """
    # Startup
    owned_store = None
    if app.state.queue is None:
        setup_logging()
        setup_metrics()
        setup_tracing()
        owned_store = await create_store()
        app.state.queue = JobQueue(owned_store)

    logger.info("Application started")

    yield

    # Shutdown
    if owned_store is not None:
        await owned_store.close()
        app.state.queue = None
    logger.info("Application shutdown")


async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("Store unavailable while serving request", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error="store_unavailable", detail=str(exc)).model_dump(),
    )


async def store_conflict_handler(request: Request, exc: StoreConflict) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(error="conflict", detail=str(exc)).model_dump(),
    )


def create_app(
    queue: JobQueue | None = None,
    dispatcher: Dispatcher | None = None,
) -> FastAPI:
    """
    Create and configure the admin application.

    Args:
        queue: Queue to serve. Defaults to one over the configured store,
            opened on startup.
        dispatcher: In-process dispatcher whose slot heartbeats are
            reported by ``/health``.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Job Queue Admin API",
        description="Operator interface for a reliable background job queue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.queue = queue
    app.state.dispatcher = dispatcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
    app.add_exception_handler(StoreConflict, store_conflict_handler)

    app.include_router(health_router)
    app.include_router(jobs_router)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the admin API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
