"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI

from rasterx.api.routes import router
from rasterx.config import get_settings
from rasterx.handler import build_pipeline
from rasterx.log import configure_logging
from rasterx.worker import TransformPool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: build the pipeline on startup, drain on shutdown."""
    settings = get_settings()
    app.state.settings = settings
    configure_logging(settings.log_level)

    logger.info(
        "Starting RasterX (transform=%s, max_concurrent=%s, spool_dir=%s)",
        settings.transform,
        settings.max_concurrent,
        settings.spool_dir,
    )

    app.state.pipeline = build_pipeline(settings)
    transform_pool = TransformPool(settings.max_concurrent)
    app.state.transform_pool = transform_pool

    logger.info("RasterX ready")
    yield

    logger.info("Shutting down RasterX")
    transform_pool.shutdown()
    logger.info("RasterX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="RasterX",
        description="Memory-aware image transformation service for object storage",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("rasterx.main:app", host=settings.host, port=settings.port)
