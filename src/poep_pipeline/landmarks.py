"""
Facial landmark estimation without a trained model.

A face-region weighting pass finds the intensity-weighted centroid, then
three independent estimators contribute points: fixed-region intensity
sampling, gradient local maxima ("corners") and horizontal/vertical
symmetry-axis search. The points only enrich the fingerprint; they are not
used for geometric verification.
"""

from typing import List, Tuple

import cv2
import numpy as np
import structlog

from .constants import LANDMARK_CORNER_COUNT, LANDMARK_COUNT
from .data_models import LandmarkSet
from .preprocessing import CanonicalImage
from .utils import safe_divide

# Initialize structured logger
logger = structlog.get_logger(__name__)

Point = Tuple[float, float, float]

# (x0, y0, x1, y1) as fractions of the canonical frame
FACE_REGIONS: Tuple[Tuple[str, Tuple[float, float, float, float]], ...] = (
    ("left_eye", (0.25, 0.30, 0.45, 0.45)),
    ("right_eye", (0.55, 0.30, 0.75, 0.45)),
    ("nose", (0.40, 0.45, 0.60, 0.62)),
    ("mouth", (0.30, 0.65, 0.70, 0.78)),
    ("chin", (0.35, 0.80, 0.65, 0.92)),
)

# Neighbourhood for gradient local-maximum suppression
CORNER_WINDOW: int = 15

# Minimum peak-relative magnitude for a corner candidate
CORNER_MIN_RELATIVE: float = 0.1

# Symmetry search: half-width of the compared strips and axis step in pixels
SYMMETRY_HALF_WIDTH: int = 64
SYMMETRY_STEP: int = 4


def _weighted_centroid(weights: np.ndarray, x_offset: int = 0, y_offset: int = 0) -> Tuple[float, float, float]:
    height, width = weights.shape
    total = float(weights.sum())

    if total <= 0.0:
        return x_offset + (width - 1) / 2.0, y_offset + (height - 1) / 2.0, 0.0

    ys, xs = np.indices(weights.shape)
    cx = float((xs * weights).sum()) / total + x_offset
    cy = float((ys * weights).sum()) / total + y_offset
    return cx, cy, total


def face_centroid(image: CanonicalImage) -> Point:
    """Intensity-weighted centroid of the frame with mean brightness as confidence."""
    cx, cy, _ = _weighted_centroid(image.gray)
    size = float(image.size)
    confidence = float(image.gray.mean()) / 255.0
    return cx / size, cy / size, confidence


def region_samples(image: CanonicalImage) -> List[Point]:
    """Intensity-weighted centroid of each fixed face region."""
    size = image.size
    points = []

    for _name, (fx0, fy0, fx1, fy1) in FACE_REGIONS:
        x0, y0 = int(fx0 * size), int(fy0 * size)
        x1, y1 = max(int(fx1 * size), x0 + 1), max(int(fy1 * size), y0 + 1)
        region = image.gray[y0:y1, x0:x1]

        cx, cy, _ = _weighted_centroid(region, x_offset=x0, y_offset=y0)
        confidence = float(region.mean()) / 255.0 if region.size else 0.0
        points.append((cx / size, cy / size, confidence))

    return points


def gradient_corners(image: CanonicalImage, count: int = LANDMARK_CORNER_COUNT) -> List[Point]:
    """
    Strongest gradient local maxima, ordered by (-magnitude, y, x).

    Returns at most ``count`` points; a flat image yields none.
    """
    magnitude = image.magnitude
    peak = float(magnitude.max())
    if peak <= 0.0:
        return []

    kernel = np.ones((CORNER_WINDOW, CORNER_WINDOW), dtype=np.uint8)
    dilated = cv2.dilate(magnitude, kernel)
    candidates = (magnitude == dilated) & (magnitude >= CORNER_MIN_RELATIVE * peak)

    ys, xs = np.nonzero(candidates)
    values = magnitude[ys, xs]
    order = np.lexsort((xs, ys, -values))[:count]

    size = float(image.size)
    return [
        (float(xs[i]) / size, float(ys[i]) / size, float(values[i]) / peak)
        for i in order
    ]


def _best_mirror_axis(gray: np.ndarray) -> Tuple[int, float]:
    """Column index minimizing the mean absolute left/right mirror difference."""
    width = gray.shape[1]
    best_axis, best_score = width // 2, float("inf")

    for axis in range(width // 4, 3 * width // 4 + 1, SYMMETRY_STEP):
        half = min(SYMMETRY_HALF_WIDTH, axis, width - axis)
        if half <= 0:
            continue
        left = gray[:, axis - half : axis][:, ::-1]
        right = gray[:, axis : axis + half]
        score = float(np.abs(left - right).mean())
        # Strict comparison keeps the first axis on ties
        if score < best_score:
            best_axis, best_score = axis, score

    if best_score == float("inf"):
        best_score = 255.0
    return best_axis, best_score


def symmetry_axes(image: CanonicalImage, centroid: Point) -> List[Point]:
    """
    Vertical and horizontal mirror axes.

    The vertical axis is reported at the centroid's height and the
    horizontal axis at the centroid's column; confidence is one minus the
    normalized mirror difference.
    """
    size = float(image.size)
    vertical_axis, vertical_score = _best_mirror_axis(image.gray)
    horizontal_axis, horizontal_score = _best_mirror_axis(image.gray.T)

    return [
        (vertical_axis / size, centroid[1], 1.0 - safe_divide(vertical_score, 255.0)),
        (centroid[0], horizontal_axis / size, 1.0 - safe_divide(horizontal_score, 255.0)),
    ]


def estimate_landmarks(image: CanonicalImage) -> LandmarkSet:
    """
    Run every estimator and pack the results into a fixed-size LandmarkSet.

    Layout: centroid, 5 region samples, ``LANDMARK_CORNER_COUNT`` corner
    slots (zero padded), 2 symmetry points.
    """
    centroid = face_centroid(image)
    regions = region_samples(image)
    corners = gradient_corners(image)
    symmetry = symmetry_axes(image, centroid)

    padded_corners = corners + [(0.0, 0.0, 0.0)] * (LANDMARK_CORNER_COUNT - len(corners))
    points = [centroid, *regions, *padded_corners, *symmetry]

    if len(points) != LANDMARK_COUNT:
        raise ValueError(f"Estimators produced {len(points)} landmarks, expected {LANDMARK_COUNT}")

    logger.debug(
        "Landmarks estimated",
        corners_found=len(corners),
        landmark_count=LANDMARK_COUNT,
    )

    return LandmarkSet(points=np.array(points, dtype=np.float64))
