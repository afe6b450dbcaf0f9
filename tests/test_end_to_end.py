"""Smoke-level accuracy check against the real bundled classifier.

Runs only when real assets are available:

    VISIONX_E2E_ASSETS_DIR  directory with mobilenet_v2.onnx and labels.txt
    VISIONX_E2E_IMAGE       photo of a common object
    VISIONX_E2E_LABEL       substring of its ground-truth ImageNet label
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from visionx.config import Settings
from visionx.ml.inference import InferencePool
from visionx.ml.model_manager import OnnxModelManager
from visionx.ml.preprocessing import ImagePreprocessor
from visionx.resolvers import LocalReferenceResolver
from visionx.service import RecognitionService

ASSETS_DIR = os.environ.get("VISIONX_E2E_ASSETS_DIR")
IMAGE = os.environ.get("VISIONX_E2E_IMAGE")
EXPECTED_LABEL = os.environ.get("VISIONX_E2E_LABEL")

pytestmark = pytest.mark.skipif(
    not (ASSETS_DIR and IMAGE and EXPECTED_LABEL),
    reason="VISIONX_E2E_ASSETS_DIR, VISIONX_E2E_IMAGE and VISIONX_E2E_LABEL not set",
)


async def test_reference_photo_top1() -> None:
    settings = Settings(assets_dir=str(ASSETS_DIR))
    pool = InferencePool(settings)
    service = RecognitionService(
        model_manager=OnnxModelManager(settings),
        preprocessor=ImagePreprocessor(settings.max_image_pixels, settings.max_file_size),
        pool=pool,
        resolver=LocalReferenceResolver(max_file_size=settings.max_file_size),
    )
    try:
        handle = await service.initialize()
        results = await service.recognize_by_reference(str(Path(str(IMAGE))))
        again = await service.recognize_by_reference(str(Path(str(IMAGE))))
    finally:
        pool.shutdown()

    assert handle.output_size == 1000
    assert len(results) == 5
    assert str(EXPECTED_LABEL).lower() in results[0].label.lower()
    assert results[0].confidence > 0.3
    assert results == again
