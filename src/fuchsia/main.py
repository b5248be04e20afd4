"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI

from fuchsia.api.routes import router
from fuchsia.config import get_settings
from fuchsia.imaging.worker import ProcessingPool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting fuchsia-api (allowed_origin=%r, max_concurrent=%s, formats=%s, max_file_size=%s)",
        settings.allowed_origin,
        settings.max_concurrent,
        ",".join(fmt.value for fmt in settings.accepted_formats),
        settings.max_file_size,
    )

    processing_pool = ProcessingPool(settings.max_concurrent)
    app.state.processing_pool = processing_pool

    logger.info("fuchsia-api ready")
    yield

    logger.info("Shutting down fuchsia-api")
    processing_pool.shutdown()
    logger.info("fuchsia-api shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="fuchsia-api",
        description="Resize and circle-crop still and animated images",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application on the configured host and port."""
    settings = get_settings()
    uvicorn.run("fuchsia.main:app", host=settings.host, port=settings.port)
