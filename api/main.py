"""
FastAPI application factory for the ingestion service.

This file:
1. Creates the FastAPI app
2. Runs startup logic (connect to Redis and S3, make sure both buckets exist)
3. Registers all routers (images, health) and the error handler
4. Runs shutdown logic (close connections)

The `lifespan` context manager is FastAPI's way of handling startup/shutdown.

To run:  uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis import Redis

from api.routers import health, images
from broker.client import QueueProducer
from config.settings import settings
from metrics.sink import build_metrics
from models.errors import (
    NotFoundError,
    PipelineError,
    TransportError,
    UnsupportedFormatError,
    ValidationError,
)
from storage.object_store import S3ObjectStore

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# PipelineError subclass → HTTP status
_STATUS_BY_ERROR = {
    ValidationError: 400,
    UnsupportedFormatError: 400,
    NotFoundError: 404,
    TransportError: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    - Connects to Redis (job stream + metrics)
    - Creates the S3 client and the raw/processed buckets if missing

    Shutdown:
    - Closes the Redis connection pool
    """
    # ── Startup ─────────────────────────────────────────────────
    redis_client = Redis.from_url(settings.redis_url)
    store = S3ObjectStore.from_settings(settings)
    store.ensure_bucket(settings.S3_RAW_BUCKET)
    store.ensure_bucket(settings.S3_PROCESSED_BUCKET)

    app.state.redis = redis_client
    app.state.store = store
    app.state.producer = QueueProducer(redis_client, client_id=settings.QUEUE_CLIENT_ID)
    app.state.metrics = build_metrics(settings, redis_client)
    logger.info(f"API ready, publishing jobs to {settings.QUEUE_TOPIC}")

    yield  # app is running and serving requests between startup and shutdown

    # ── Shutdown ────────────────────────────────────────────────
    redis_client.close()
    logger.info("API shut down")


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Structured error body for every PipelineError raised by an endpoint."""
    status = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500
    )
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed [{exc.kind}]: {exc}")
    return JSONResponse(status_code=status, content={"message": str(exc), "error": True})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed form fields get the same 400 body as any other ValidationError."""
    return JSONResponse(status_code=400, content={"message": str(exc), "error": True})


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    app = FastAPI(
        title="Colossus",
        description="Image ingestion API: stores raw uploads and queues them for asynchronous downscaling",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(health.router)
    app.include_router(images.router)

    return app


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()
