"""API route definitions."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Query, Request, UploadFile, status

from visionx.api.middleware import verify_api_key
from visionx.api.schemas import (
    ContentUriRequest,
    ContentUriResponse,
    ErrorResponse,
    HealthResponse,
    InitModelResponse,
    ModelInfo,
    ModelsResponse,
    RecognitionResult,
    RecognizeFrameRequest,
    RecognizeImageDataRequest,
    RecognizeImageRequest,
)

if TYPE_CHECKING:
    from visionx.config import Settings
    from visionx.ml.inference import InferencePool
    from visionx.ml.model_manager import ModelManager
    from visionx.ml.postprocessing import ClassificationResult
    from visionx.service import RecognitionService

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

TopK = Annotated[int | None, Query(ge=1, le=100, description="Number of results to return")]

_RECOGNITION_ERRORS: dict[int | str, dict[str, object]] = {
    413: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def _get_service(request: Request) -> RecognitionService:
    service: RecognitionService = request.app.state.recognition_service
    return service


def _to_response(results: list[ClassificationResult]) -> list[RecognitionResult]:
    return [RecognitionResult(label=r.label, confidence=r.confidence) for r in results]


@router.post(
    "/init-model",
    response_model=InitModelResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Load the classifier (idempotent)",
)
async def init_model(request: Request) -> InitModelResponse:
    """Load the bundled model and labels, or confirm they are already loaded."""
    handle = await _get_service(request).initialize()
    return InitModelResponse(
        model=handle.name,
        input_shape=list(handle.input_shape),
        layout=str(handle.layout),
        output_size=handle.output_size,
    )


@router.post(
    "/recognize-image",
    response_model=list[RecognitionResult],
    responses=_RECOGNITION_ERRORS,
    summary="Recognize an image by path or reference",
)
async def recognize_image(
    request: Request, body: RecognizeImageRequest, top_k: TopK = None
) -> list[RecognitionResult]:
    """Classify the image behind a filesystem path, file:// URL or content URI."""
    results = await _get_service(request).recognize_by_reference(body.image_path, top_k)
    return _to_response(results)


@router.post(
    "/recognize-image-data",
    response_model=list[RecognitionResult],
    responses=_RECOGNITION_ERRORS,
    summary="Recognize a base64-encoded image",
)
async def recognize_image_data(
    request: Request, body: RecognizeImageDataRequest, top_k: TopK = None
) -> list[RecognitionResult]:
    """Classify an inline base64 payload or data URL."""
    results = await _get_service(request).recognize_by_bytes(body.image_data, top_k)
    return _to_response(results)


@router.post(
    "/recognize-frame",
    response_model=list[RecognitionResult],
    responses=_RECOGNITION_ERRORS,
    summary="Recognize a raw camera frame",
)
async def recognize_frame(
    request: Request, body: RecognizeFrameRequest, top_k: TopK = None
) -> list[RecognitionResult]:
    """Classify a raw pixel buffer captured from the camera."""
    results = await _get_service(request).recognize_by_pixels(
        body.width, body.height, body.data, body.channels, top_k
    )
    return _to_response(results)


@router.post(
    "/classify-image",
    response_model=list[RecognitionResult],
    responses=_RECOGNITION_ERRORS,
    summary="Classify an uploaded image",
)
async def classify_image(request: Request, file: UploadFile, top_k: TopK = None) -> list[RecognitionResult]:
    """Classify an uploaded image file and return ranked tags."""
    data = await file.read()
    results = await _get_service(request).recognize_by_bytes(data, top_k)
    return _to_response(results)


@router.post(
    "/read-content-uri",
    response_model=ContentUriResponse,
    responses={422: {"model": ErrorResponse}},
    summary="Read a platform content URI",
)
async def read_content_uri(request: Request, body: ContentUriRequest) -> ContentUriResponse:
    """Resolve a content URI to its bytes, base64-encoded for transport."""
    data = await _get_service(request).read_content_uri(body.uri)
    return ContentUriResponse(data=base64.b64encode(data).decode("ascii"))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model_loaded=manager.is_initialized,
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the configured classifier and, once loaded, its tensor metadata."""
    settings = _get_settings(request)
    manager = _get_model_manager(request)

    if not manager.is_initialized:
        return ModelsResponse(models=[ModelInfo(name=settings.model_name, status="not_loaded")])

    handle, _ = manager.require_loaded()
    return ModelsResponse(
        models=[
            ModelInfo(
                name=handle.name,
                status="active",
                input_shape=list(handle.input_shape),
                layout=str(handle.layout),
                output_size=handle.output_size,
            )
        ]
    )
