"""Typed errors raised by the recognition pipeline.

Every error carries a ``category`` (which pipeline stage failed) and a
``kind`` (what went wrong) so callers can render a message per error without
parsing strings.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCategory(StrEnum):
    INIT = "init"
    PREP = "prep"
    INFER = "infer"
    NOT_INITIALIZED = "not_initialized"


class InitErrorKind(StrEnum):
    ASSET_MISSING = "asset_missing"
    ASSET_MALFORMED = "asset_malformed"
    LABEL_MISMATCH = "label_mismatch"


class PrepErrorKind(StrEnum):
    REFERENCE_UNREADABLE = "reference_unreadable"
    INVALID_BASE64 = "invalid_base64"
    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT_IMAGE = "corrupt_image"
    ZERO_AREA = "zero_area"
    CHANNEL_MISMATCH = "channel_mismatch"
    IMAGE_TOO_LARGE = "image_too_large"
    INVALID_TOP_K = "invalid_top_k"


class InferErrorKind(StrEnum):
    SHAPE_MISMATCH = "shape_mismatch"
    NUMERIC = "numeric"
    EXECUTION_FAILED = "execution_failed"


class RecognitionError(Exception):
    """Base class for every failure surfaced by the recognition pipeline."""

    category: ErrorCategory

    def __init__(self, kind: StrEnum | str, detail: str) -> None:
        super().__init__(detail)
        self.kind = str(kind)
        self.detail = detail

    def to_dict(self) -> dict[str, str]:
        return {"detail": self.detail, "category": str(self.category), "kind": self.kind}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, detail={self.detail!r})"


class InitError(RecognitionError):
    """Model or label assets could not be loaded. The manager stays uninitialized."""

    category = ErrorCategory.INIT

    def __init__(self, kind: InitErrorKind, detail: str) -> None:
        super().__init__(kind, detail)


class PrepError(RecognitionError):
    """The input could not be turned into a model-ready tensor."""

    category = ErrorCategory.PREP

    def __init__(self, kind: PrepErrorKind, detail: str) -> None:
        super().__init__(kind, detail)


class InferError(RecognitionError):
    """The forward pass failed for one call. The model handle stays valid."""

    category = ErrorCategory.INFER

    def __init__(self, kind: InferErrorKind, detail: str) -> None:
        super().__init__(kind, detail)


class NotInitializedError(RecognitionError):
    category = ErrorCategory.NOT_INITIALIZED

    def __init__(self, detail: str = "Model not initialized") -> None:
        super().__init__("not_initialized", detail)
