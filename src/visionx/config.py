"""Environment-based configuration for VisionX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from VISIONX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VISIONX_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "127.0.0.1"
    port: int = 8082
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Bundled model assets
    model_name: str = "mobilenet_v2"
    assets_dir: str = "assets/model"
    model_filename: str = "mobilenet_v2.onnx"
    labels_filename: str = "labels.txt"
    # Hugging Face repo used to fetch missing assets (None = local only)
    model_repo_id: str | None = None
    fallback_input_size: int = Field(default=224, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    # Pillow's decompression-bomb threshold (Image.MAX_IMAGE_PIXELS).
    max_image_pixels: int = Field(default=89_478_485, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Recognition
    top_k: int = Field(default=5, ge=1, le=100)
    preload_model: bool = False


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
