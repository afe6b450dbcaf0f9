"""Translate pipeline errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from visionx.ml.errors import ErrorCategory, PrepErrorKind, RecognitionError

logger = logging.getLogger(__name__)

_STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.INIT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCategory.NOT_INITIALIZED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCategory.PREP: 422,  # unprocessable content
    ErrorCategory.INFER: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: RecognitionError) -> int:
    if error.kind == PrepErrorKind.IMAGE_TOO_LARGE:
        return 413  # content too large
    return _STATUS_BY_CATEGORY[error.category]


async def recognition_error_handler(request: Request, exc: RecognitionError) -> JSONResponse:
    """Render any RecognitionError as ``{"detail", "category", "kind"}``."""
    logger.warning("%s %s failed: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())
