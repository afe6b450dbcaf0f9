"""Pydantic request/response schemas for the VisionX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RecognitionResult(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class RecognizeImageRequest(BaseModel):
    """Recognize an image file on the local filesystem."""

    image_path: str = Field(min_length=1, description="Path, file:// URL, or content URI of the image")


class RecognizeImageDataRequest(BaseModel):
    """Recognize an image sent inline."""

    image_data: str = Field(min_length=1, description="Base64-encoded image or data URL")


class RecognizeFrameRequest(BaseModel):
    """Recognize a raw camera frame."""

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    channels: int = Field(default=4, description="1 (grayscale), 3 (RGB) or 4 (RGBA)")
    data: str = Field(min_length=1, description="Base64-encoded row-major pixel buffer")


class ContentUriRequest(BaseModel):
    uri: str = Field(min_length=1)


class ContentUriResponse(BaseModel):
    """Raw bytes behind a content URI, base64-encoded for transport."""

    data: str


class InitModelResponse(BaseModel):
    """Result of model initialization."""

    status: str = "initialized"
    model: str
    input_shape: list[int] = Field(description="Model input as [height, width, channels]")
    layout: str
    output_size: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_loaded: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about the configured model."""

    name: str
    task: str = "image_classification"
    status: str = Field(description="Model status: 'active' or 'not_loaded'")
    input_shape: list[int] | None = None
    layout: str | None = None
    output_size: int | None = None


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    category: str | None = None
    kind: str | None = None
