"""Recognition service: the async entry points used by the API layer.

Every recognition call ensures the model is loaded, resolves its input to
bytes or pixels, and runs decode -> infer -> rank on the inference pool so the
event loop never does CPU-bound work. Intermediate tensors stay inside the
worker call; only the read-only model handle and labels are shared.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from visionx.ml.errors import PrepError, PrepErrorKind
from visionx.ml.image_classifier import OnnxImageClassifier
from visionx.ml.postprocessing import DEFAULT_TOP_K
from visionx.ml.preprocessing import decode_base64

if TYPE_CHECKING:
    from visionx.ml.inference import InferencePool
    from visionx.ml.model_manager import ModelHandle, ModelManager
    from visionx.ml.postprocessing import ClassificationResult
    from visionx.ml.preprocessing import ImagePreprocessor
    from visionx.resolvers import ReferenceResolver

logger = logging.getLogger(__name__)


class RecognitionService:
    """Orchestrates model initialization and recognition requests."""

    def __init__(
        self,
        model_manager: ModelManager,
        preprocessor: ImagePreprocessor,
        pool: InferencePool,
        resolver: ReferenceResolver,
        default_top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._model_manager = model_manager
        self._preprocessor = preprocessor
        self._pool = pool
        self._resolver = resolver
        self._classifier = OnnxImageClassifier(model_manager, preprocessor)
        self._default_top_k = default_top_k

    @property
    def is_initialized(self) -> bool:
        return self._model_manager.is_initialized

    async def initialize(self) -> ModelHandle:
        """Load the model off the event loop; a no-op once loaded.

        Raises:
            InitError: If loading fails. The service stays uninitialized and
                the next call retries.
        """
        try:
            return await self._pool.run(self._model_manager.initialize)
        except Exception:
            logger.warning("Model initialization failed", exc_info=True)
            raise

    async def ensure_initialized(self) -> ModelHandle:
        if self._model_manager.is_initialized:
            handle, _ = self._model_manager.require_loaded()
            return handle
        return await self.initialize()

    async def recognize_by_reference(self, ref: str, top_k: int | None = None) -> list[ClassificationResult]:
        """Recognize the image behind a path, ``file://`` URL or content URI."""
        await self.ensure_initialized()
        data = await self._resolver.read(ref)
        return await self._pool.run(self._classify_bytes, data, self._top_k(top_k))

    async def recognize_by_bytes(self, data: bytes | str, top_k: int | None = None) -> list[ClassificationResult]:
        """Recognize already-resident image data.

        Args:
            data: Encoded image bytes, or a base64 string / data URL.
            top_k: Maximum number of results (defaults to the configured value).
        """
        await self.ensure_initialized()
        return await self._pool.run(self._classify_bytes, data, self._top_k(top_k))

    async def recognize_by_pixels(
        self,
        width: int,
        height: int,
        data: bytes | str,
        channels: int = 4,
        top_k: int | None = None,
    ) -> list[ClassificationResult]:
        """Recognize a raw row-major pixel buffer such as a camera frame.

        ``data`` may be the raw bytes or their base64 encoding; decoding happens
        on the pool.
        """
        await self.ensure_initialized()
        return await self._pool.run(self._classify_pixels, width, height, data, channels, self._top_k(top_k))

    async def read_content_uri(self, uri: str) -> bytes:
        return await self._resolver.read_content_uri(uri)

    # -- Worker-side pipeline -----------------------------------------------

    def _classify_bytes(self, data: bytes | str, top_k: int) -> list[ClassificationResult]:
        image_bytes = decode_base64(data) if isinstance(data, str) else data
        return self._classifier.classify(image_bytes, top_k)

    def _classify_pixels(
        self, width: int, height: int, data: bytes | str, channels: int, top_k: int
    ) -> list[ClassificationResult]:
        pixels = decode_base64(data) if isinstance(data, str) else data
        image = self._preprocessor.from_pixels(width, height, pixels, channels)
        return self._classifier.classify(image, top_k)

    def _top_k(self, top_k: int | None) -> int:
        if top_k is None:
            return self._default_top_k
        if top_k < 1:
            raise PrepError(PrepErrorKind.INVALID_TOP_K, f"top_k must be at least 1, got {top_k}")
        return top_k
