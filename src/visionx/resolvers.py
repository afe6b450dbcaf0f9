"""Reference resolution: turn a path, file URL or content URI into image bytes.

The recognition core never inspects reference schemes itself; it hands the
reference to a ``ReferenceResolver`` and treats the result as one more byte
source.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

from visionx.ml.errors import PrepError, PrepErrorKind

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


class ContentUriReader(Protocol):
    """Reads a platform-specific content URI (e.g. ``content://``) into bytes."""

    async def read(self, uri: str) -> bytes:
        ...


class ReferenceResolver(Protocol):
    """Resolves an image reference into raw encoded bytes."""

    async def read(self, ref: str) -> bytes:
        ...

    async def read_content_uri(self, uri: str) -> bytes:
        ...


class UnsupportedContentUriReader:
    """Content reader for platforms without a media content provider."""

    async def read(self, uri: str) -> bytes:
        raise PrepError(
            PrepErrorKind.REFERENCE_UNREADABLE,
            "Content URI handling is only supported on Android",
        )


class LocalReferenceResolver:
    """Reads plain paths and ``file://`` URLs, delegating other URIs."""

    def __init__(self, max_file_size: int, content_reader: ContentUriReader | None = None) -> None:
        self._max_file_size = max_file_size
        self._content_reader: ContentUriReader = content_reader or UnsupportedContentUriReader()

    async def read(self, ref: str) -> bytes:
        if not ref.strip():
            raise PrepError(PrepErrorKind.REFERENCE_UNREADABLE, "Empty image reference")

        if _SCHEME_RE.match(ref):
            parsed = urlparse(ref)
            if parsed.scheme.lower() != "file":
                return await self.read_content_uri(ref)
            path = Path(unquote(parsed.path))
        else:
            path = Path(ref).expanduser()

        return await asyncio.to_thread(self._read_file, path)

    async def read_content_uri(self, uri: str) -> bytes:
        logger.debug("Reading content URI %s", uri)
        return await self._content_reader.read(uri)

    def _read_file(self, path: Path) -> bytes:
        try:
            if not path.is_file():
                raise PrepError(PrepErrorKind.REFERENCE_UNREADABLE, f"Image file not found: {path}")
            size = path.stat().st_size
            if size > self._max_file_size:
                raise PrepError(
                    PrepErrorKind.IMAGE_TOO_LARGE,
                    f"File {path} is {size} bytes, limit is {self._max_file_size}",
                )
            return path.read_bytes()
        except OSError as exc:
            raise PrepError(PrepErrorKind.REFERENCE_UNREADABLE, f"Failed to open image from path {path}: {exc}") from exc
