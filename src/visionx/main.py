"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from visionx.config import Settings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from visionx.api.errors import recognition_error_handler
from visionx.api.routes import router
from visionx.config import get_settings
from visionx.ml.errors import RecognitionError
from visionx.ml.inference import InferencePool
from visionx.ml.model_manager import OnnxModelManager
from visionx.ml.preprocessing import ImagePreprocessor
from visionx.resolvers import LocalReferenceResolver
from visionx.service import RecognitionService

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings) -> None:
    """Build the process-wide pool, model manager and recognition service."""
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.recognition_service = RecognitionService(
        model_manager=app.state.model_manager,
        preprocessor=ImagePreprocessor(
            max_image_pixels=settings.max_image_pixels,
            max_file_size=settings.max_file_size,
        ),
        pool=app.state.inference_pool,
        resolver=LocalReferenceResolver(max_file_size=settings.max_file_size),
        default_top_k=settings.top_k,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting VisionX (device=%s, max_concurrent=%s, model=%s, assets=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_name,
        settings.assets_dir,
    )

    init_app_state(app, settings)
    if settings.preload_model:
        await app.state.recognition_service.initialize()

    logger.info("VisionX ready")
    yield

    logger.info("Shutting down VisionX")
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("VisionX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="VisionX",
        description="On-device image recognition API",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(RecognitionError, recognition_error_handler)  # type: ignore[arg-type]
    application.include_router(router)
    return application


app = create_app()
