"""
Image decoding and canonicalization.

Removes device and resolution variance before any feature is computed:
bounded decoding, aspect-preserving letterbox to a fixed square, BT.709
grayscale and Sobel gradients shared by the edge, texture and landmark
stages.
"""

from dataclasses import dataclass
from typing import Union

import cv2
import numpy as np
import structlog

from .constants import (
    CANONICAL_SIZE,
    LETTERBOX_COLOR,
    LUMA_WEIGHTS,
    MAX_IMAGE_BYTES,
    MAX_IMAGE_DIMENSION,
)
from .exceptions import ImageDecodeError, ImageTooLargeError

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Largest possible 3x3 Sobel magnitude on 8-bit input
SOBEL_MAX_MAGNITUDE: float = 4.0 * 255.0 * float(np.sqrt(2.0))

ImageBytes = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True)
class CanonicalImage:
    """
    Letterboxed image plus derived planes, treated as read-only once built.

    Attributes
    ----------
    rgb : np.ndarray
        ``(size, size, 3)`` uint8 RGB pixels.
    gray : np.ndarray
        ``(size, size)`` float64 BT.709 luminance in ``[0, 255]``.
    grad_x, grad_y : np.ndarray
        float64 Sobel derivatives of ``gray``.
    magnitude : np.ndarray
        Gradient magnitude normalized to ``[0, 1]``.
    """

    rgb: np.ndarray
    gray: np.ndarray
    grad_x: np.ndarray
    grad_y: np.ndarray
    magnitude: np.ndarray

    @property
    def size(self) -> int:
        return self.gray.shape[0]


def decode_image(image: ImageBytes, max_bytes: int = MAX_IMAGE_BYTES) -> np.ndarray:
    """
    Decode encoded image bytes into an RGB pixel grid.

    The byte-size ceiling is enforced before decoding is attempted.

    Raises
    ------
    ImageTooLargeError
        If the buffer or the decoded dimensions exceed the ceilings.
    ImageDecodeError
        If the bytes are not a decodable image.
    """
    if not isinstance(image, (bytes, bytearray, memoryview)):
        raise ImageDecodeError(
            f"Image must be a bytes-like buffer, got {type(image).__name__}"
        )

    size = len(image)
    if size > max_bytes:
        raise ImageTooLargeError(
            f"Image of {size} bytes exceeds the {max_bytes} byte ceiling",
            size=size,
            limit=max_bytes,
        )

    if size == 0:
        raise ImageDecodeError("Image buffer is empty", image_bytes=0)

    buffer = np.frombuffer(image, dtype=np.uint8)

    try:
        decoded = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise ImageDecodeError(f"OpenCV failed to decode image: {e}", image_bytes=size)

    if decoded is None or decoded.size == 0:
        raise ImageDecodeError(
            "Failed to decode image. Data may be corrupted or an unsupported format",
            image_bytes=size,
        )

    height, width = decoded.shape[:2]
    if max(height, width) > MAX_IMAGE_DIMENSION:
        raise ImageTooLargeError(
            f"Decoded image {width}x{height} exceeds {MAX_IMAGE_DIMENSION}px",
            size=max(height, width),
            limit=MAX_IMAGE_DIMENSION,
        )

    logger.debug("Image decoded", image_bytes=size, width=width, height=height)

    return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)


def letterbox(rgb: np.ndarray, size: int = CANONICAL_SIZE) -> np.ndarray:
    """
    Resize to fit a ``size`` x ``size`` square preserving aspect ratio and
    pad the remainder with the fixed background colour, centred.
    """
    height, width = rgb.shape[:2]
    scale = min(size / width, size / height)

    new_width = min(size, max(1, int(round(width * scale))))
    new_height = min(size, max(1, int(round(height * scale))))

    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    resized = cv2.resize(rgb, (new_width, new_height), interpolation=interpolation)

    canvas = np.empty((size, size, 3), dtype=np.uint8)
    canvas[:, :] = LETTERBOX_COLOR

    top = (size - new_height) // 2
    left = (size - new_width) // 2
    canvas[top : top + new_height, left : left + new_width] = resized

    return canvas


def to_grayscale(rgb: np.ndarray) -> np.ndarray:
    """BT.709 luminance as float64, computed element-wise in a fixed order."""
    channels = rgb.astype(np.float64)
    wr, wg, wb = LUMA_WEIGHTS
    return wr * channels[:, :, 0] + wg * channels[:, :, 1] + wb * channels[:, :, 2]


def canonicalize(image: ImageBytes, max_bytes: int = MAX_IMAGE_BYTES) -> CanonicalImage:
    """Decode, letterbox and derive the grayscale and gradient planes."""
    rgb = letterbox(decode_image(image, max_bytes=max_bytes))
    gray = to_grayscale(rgb)

    grad_x = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    grad_y = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
    magnitude = np.hypot(grad_x, grad_y) / SOBEL_MAX_MAGNITUDE

    return CanonicalImage(
        rgb=rgb, gray=gray, grad_x=grad_x, grad_y=grad_y, magnitude=magnitude
    )
