"""Image preprocessing pipeline.

Handles base64/data-URL unwrapping, format detection and decoding, EXIF
orientation, size validation, channel reconciliation, bilinear resizing and
per-channel normalization into a channel-last float32 tensor.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from visionx.ml.errors import PrepError, PrepErrorKind

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# ImageNet statistics used to train the bundled MobileNetV2.
IMAGENET_MEAN: tuple[float, ...] = (0.485, 0.456, 0.406)
IMAGENET_STD: tuple[float, ...] = (0.229, 0.224, 0.225)
GRAYSCALE_MEAN: tuple[float, ...] = (0.449,)
GRAYSCALE_STD: tuple[float, ...] = (0.226,)

RESAMPLE = Image.Resampling.BILINEAR

_MODEL_MODES: dict[int, str] = {1: "L", 3: "RGB"}
# Integer modes holding 16-bit samples (PNG and TIFF grayscale).
_WIDE_INTEGER_MODES = frozenset({"I", "I;16", "I;16L", "I;16B", "I;16N"})
_PIXEL_MODES: dict[int, str] = {1: "L", 3: "RGB", 4: "RGBA"}
_NORMALIZATION: dict[int, tuple[tuple[float, ...], tuple[float, ...]]] = {
    1: (GRAYSCALE_MEAN, GRAYSCALE_STD),
    3: (IMAGENET_MEAN, IMAGENET_STD),
}

ImageSource = bytes | Path | Image.Image


def decode_base64(payload: str) -> bytes:
    """Decode a base64 string, optionally wrapped in a ``data:...;base64,`` URL.

    Raises:
        PrepError: ``invalid_base64`` if the payload is empty or not valid base64.
    """
    _, sep, tail = payload.partition("base64,")
    encoded = "".join((tail if sep else payload).split())
    if not encoded:
        raise PrepError(PrepErrorKind.INVALID_BASE64, "Empty base64 payload")
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PrepError(PrepErrorKind.INVALID_BASE64, f"Failed to decode base64 image data: {exc}") from exc


class ImagePreprocessor:
    """Turns encoded images or raw pixel buffers into model-ready tensors."""

    def __init__(self, max_image_pixels: int, max_file_size: int) -> None:
        self._max_image_pixels = max_image_pixels
        self._max_file_size = max_file_size

    def prepare(self, source: ImageSource, input_shape: tuple[int, int, int]) -> NDArray[np.float32]:
        """Decode ``source`` and return a normalized ``(H, W, C)`` float32 tensor.

        Args:
            source: Encoded image bytes, a path to an image file, or an already
                decoded PIL image.
            input_shape: The model's channel-last input shape.
        """
        if isinstance(source, Path):
            source = self.read_path(source)
        if isinstance(source, Image.Image):
            image = source
        else:
            side = max(input_shape[0], input_shape[1])
            image = self.decode_image(source, draft_size=(side, side))
        return self.to_tensor(image, input_shape)

    def read_path(self, path: Path) -> bytes:
        try:
            size = path.stat().st_size
            if size > self._max_file_size:
                raise PrepError(
                    PrepErrorKind.IMAGE_TOO_LARGE,
                    f"File {path} is {size} bytes, limit is {self._max_file_size}",
                )
            return path.read_bytes()
        except OSError as exc:
            raise PrepError(PrepErrorKind.REFERENCE_UNREADABLE, f"Failed to open image from path {path}: {exc}") from exc

    def decode_image(self, image_bytes: bytes, draft_size: tuple[int, int] | None = None) -> Image.Image:
        """Decode encoded image bytes (JPEG, PNG, WebP, ...) into a PIL image.

        Args:
            image_bytes: The encoded file contents.
            draft_size: If given, JPEGs are decoded at the smallest DCT scale
                that still covers this size, so multi-megapixel photos never
                materialize at full resolution.

        Raises:
            PrepError: If the data is empty, too large, not a known image
                format, or corrupt.
        """
        if not image_bytes:
            raise PrepError(PrepErrorKind.CORRUPT_IMAGE, "Image data is empty")
        if len(image_bytes) > self._max_file_size:
            raise PrepError(
                PrepErrorKind.IMAGE_TOO_LARGE,
                f"Image data is {len(image_bytes)} bytes, limit is {self._max_file_size}",
            )

        try:
            image = Image.open(io.BytesIO(image_bytes))
        except UnidentifiedImageError as exc:
            raise PrepError(PrepErrorKind.UNSUPPORTED_FORMAT, "Unrecognized image format") from exc
        except Image.DecompressionBombError as exc:
            raise PrepError(PrepErrorKind.IMAGE_TOO_LARGE, str(exc)) from exc
        except (OSError, SyntaxError, ValueError) as exc:
            raise PrepError(PrepErrorKind.CORRUPT_IMAGE, f"Failed to read image header: {exc}") from exc

        self._check_dimensions(image.width, image.height)
        image_format = image.format

        try:
            if draft_size is not None:
                image.draft(image.mode, draft_size)
            image.load()
            image = ImageOps.exif_transpose(image) or image
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            raise PrepError(PrepErrorKind.CORRUPT_IMAGE, f"Failed to decode {image_format} image: {exc}") from exc

        logger.debug("Decoded %s image %dx%d (%s)", image_format, image.width, image.height, image.mode)
        return image

    def from_pixels(self, width: int, height: int, data: bytes, channels: int = 4) -> Image.Image:
        """Wrap a raw, row-major pixel buffer (e.g. a camera frame) as an image.

        Args:
            width: Frame width in pixels.
            height: Frame height in pixels.
            data: ``width * height * channels`` bytes.
            channels: 1 (grayscale), 3 (RGB) or 4 (RGBA).
        """
        self._check_dimensions(width, height)
        mode = _PIXEL_MODES.get(channels)
        if mode is None:
            raise PrepError(
                PrepErrorKind.CHANNEL_MISMATCH,
                f"Unsupported pixel buffer with {channels} channels (expected 1, 3 or 4)",
            )
        expected = width * height * channels
        if len(data) != expected:
            raise PrepError(
                PrepErrorKind.CORRUPT_IMAGE,
                f"Pixel buffer has {len(data)} bytes, expected {expected} for {width}x{height}x{channels}",
            )
        return Image.frombytes(mode, (width, height), data)

    def to_tensor(self, image: Image.Image, input_shape: tuple[int, int, int]) -> NDArray[np.float32]:
        """Convert channels, resize bilinearly and normalize to ``input_shape``."""
        height, width, channels = input_shape
        self._check_dimensions(image.width, image.height)

        converted = self._convert_channels(image, channels)
        if converted.size != (width, height):
            converted = converted.resize((width, height), RESAMPLE)

        array = np.asarray(converted, dtype=np.float32) / 255.0
        if array.ndim == 2:
            array = array[:, :, np.newaxis]

        mean, std = _NORMALIZATION[channels]
        tensor = (array - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)
        return np.ascontiguousarray(tensor, dtype=np.float32)

    # -- Internal -----------------------------------------------------------

    def _check_dimensions(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise PrepError(PrepErrorKind.ZERO_AREA, f"Image has zero area ({width}x{height})")
        if width * height > self._max_image_pixels:
            raise PrepError(
                PrepErrorKind.IMAGE_TOO_LARGE,
                f"Image is {width}x{height} pixels, limit is {self._max_image_pixels}",
            )

    @staticmethod
    def _convert_channels(image: Image.Image, channels: int) -> Image.Image:
        mode = _MODEL_MODES.get(channels)
        if mode is None:
            raise PrepError(
                PrepErrorKind.CHANNEL_MISMATCH,
                f"Model expects {channels} channels, only 1 or 3 are supported",
            )
        if image.mode in _WIDE_INTEGER_MODES:
            # convert() would clip these at 255
            image = _reduce_to_8bit(image)
        elif image.mode == "F":
            raise PrepError(
                PrepErrorKind.CHANNEL_MISMATCH,
                "Floating-point images have no fixed value range and are not supported",
            )
        if image.mode == mode:
            return image

        try:
            if image.mode in ("RGBA", "LA", "PA") or (image.mode == "P" and "transparency" in image.info):
                # Flatten transparency onto white instead of exposing hidden pixels.
                rgba = image.convert("RGBA")
                background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
                image = Image.alpha_composite(background, rgba)
            return image.convert(mode)
        except ValueError as exc:
            raise PrepError(
                PrepErrorKind.CHANNEL_MISMATCH,
                f"Cannot convert {image.mode} image to {mode}: {exc}",
            ) from exc


def _reduce_to_8bit(image: Image.Image) -> Image.Image:
    """Map 16-bit samples onto 0..255 (``v / 257``) as a mode ``L`` image."""
    samples = np.asarray(image, dtype=np.float64)
    scaled = np.rint(np.clip(samples, 0, 65535) / 257.0)
    return Image.fromarray(scaled.astype(np.uint8))
