"""Forward inference for the loaded classifier.

``infer`` is a pure function of (model handle, tensor): it validates the
tensor, lays it out the way the graph expects and returns the raw score
vector. ``OnnxImageClassifier`` chains preprocessing, inference and ranking
for one synchronous recognition call.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import numpy as np

from visionx.ml.errors import InferError, InferErrorKind
from visionx.ml.model_manager import TensorLayout
from visionx.ml.postprocessing import ClassificationResult, rank

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from visionx.ml.model_manager import ModelHandle, ModelManager
    from visionx.ml.preprocessing import ImagePreprocessor, ImageSource

logger = logging.getLogger(__name__)


def to_model_layout(tensor: NDArray[np.float32], layout: TensorLayout) -> NDArray[np.float32]:
    """Add the batch axis and transpose ``(H, W, C)`` to the graph's layout."""
    if layout is TensorLayout.NCHW:
        tensor = tensor.transpose(2, 0, 1)
    return np.ascontiguousarray(tensor[np.newaxis, ...], dtype=np.float32)


def infer(handle: ModelHandle, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
    """Run one forward pass and return the raw score vector.

    Raises:
        InferError: ``shape_mismatch`` if the tensor or the output do not match
            the handle's metadata, ``numeric`` on NaN/inf values, and
            ``execution_failed`` if the runtime rejects the call.
    """
    if tensor.shape != handle.input_shape:
        raise InferError(
            InferErrorKind.SHAPE_MISMATCH,
            f"Tensor shape {tensor.shape} does not match model input {handle.input_shape}",
        )
    if not np.isfinite(tensor).all():
        raise InferError(InferErrorKind.NUMERIC, "Input tensor contains NaN or infinite values")

    batch = to_model_layout(tensor, handle.layout)
    started = time.perf_counter()
    try:
        outputs = handle.session.run(None, {handle.input_name: batch})
    except Exception as exc:  # noqa: BLE001 - onnxruntime raises pybind-specific types
        raise InferError(InferErrorKind.EXECUTION_FAILED, f"Inference failed: {exc}") from exc

    scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
    if scores.size != handle.output_size:
        raise InferError(
            InferErrorKind.SHAPE_MISMATCH,
            f"Model produced {scores.size} scores, expected {handle.output_size}",
        )
    if not np.isfinite(scores).all():
        raise InferError(InferErrorKind.NUMERIC, "Model output contains NaN or infinite values")

    logger.debug("Inference completed in %.1f ms", (time.perf_counter() - started) * 1000)
    return scores


class OnnxImageClassifier:
    """Synchronous decode -> infer -> rank pipeline over the shared model."""

    def __init__(self, model_manager: ModelManager, preprocessor: ImagePreprocessor) -> None:
        self._model_manager = model_manager
        self._preprocessor = preprocessor

    @property
    def model_name(self) -> str:
        handle, _ = self._model_manager.require_loaded()
        return handle.name

    def classify(self, source: ImageSource, top_k: int) -> list[ClassificationResult]:
        """Classify an image and return ranked tags.

        Args:
            source: Encoded bytes, a file path, or a decoded PIL image.
            top_k: Maximum number of results.

        Returns:
            List of classification results sorted by confidence (descending).
        """
        handle, labels = self._model_manager.require_loaded()
        tensor = self._preprocessor.prepare(source, handle.input_shape)
        scores = infer(handle, tensor)
        return rank(scores, labels.labels, top_k)
