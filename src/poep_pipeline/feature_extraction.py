"""
Biometric feature extraction for the PoEP pipeline.

This module turns a captured frame into a fixed-length feature vector using
only deterministic signal processing: colour distribution, edge and gradient
statistics, texture patterns, frequency-domain descriptors and geometric
moments. No trained model is involved, so the same bytes always produce the
same vector on the same build.

Each sub-feature is an independent function of the canonical image and
returns exactly the number of values its layout entry declares. The blocks
may be computed concurrently but are always assembled in layout order.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional, Tuple

import cv2
import numpy as np
import structlog

from . import config
from .constants import (
    CANNY_HIGH_THRESHOLD,
    CANNY_LOW_THRESHOLD,
    COLOR_HISTOGRAM_BINS,
    DCT_BLOCK_SIZE,
    DCT_KEPT_COEFFICIENTS,
    EDGE_GRID_SIZE,
    FEATURE_LAYOUT,
    FEATURE_LAYOUT_VERSION,
    GABOR_KERNEL_SIZE,
    GABOR_ORIENTATIONS,
    GABOR_WAVELENGTHS,
    GLCM_LEVELS,
    HOG_BINS,
    LBP_BINS,
    LBP_RADII,
)
from .data_models import FeatureBlock, FeatureVector, LandmarkSet
from .exceptions import NoSignalExtractedError
from .landmarks import estimate_landmarks
from .preprocessing import CanonicalImage, ImageBytes, canonicalize
from .utils import safe_divide, timer

# Initialize structured logger
logger = structlog.get_logger(__name__)

# 8-neighbour offsets (dy, dx), clockwise from top-left; bit k of the LBP code
_LBP_OFFSETS: Tuple[Tuple[int, int], ...] = (
    (-1, -1),
    (-1, 0),
    (-1, 1),
    (0, 1),
    (1, 1),
    (1, 0),
    (1, -1),
    (0, -1),
)


def color_histogram(image: CanonicalImage) -> np.ndarray:
    """
    Multi-resolution RGB histograms.

    For every resolution in ``COLOR_HISTOGRAM_BINS`` and every channel, the
    fraction of pixels per bin. Binning is pure integer arithmetic.
    """
    pixel_count = image.rgb.shape[0] * image.rgb.shape[1]
    histograms = []

    for bins in COLOR_HISTOGRAM_BINS:
        for channel in range(3):
            values = image.rgb[:, :, channel].astype(np.int64).ravel()
            counts = np.bincount((values * bins) >> 8, minlength=bins)
            histograms.append(counts.astype(np.float64) / max(pixel_count, 1))

    return np.concatenate(histograms)


def hsv_statistics(image: CanonicalImage) -> np.ndarray:
    """Mean and standard deviation of hue, saturation and value in [0, 1]."""
    hsv = cv2.cvtColor(image.rgb, cv2.COLOR_RGB2HSV).astype(np.float64)
    scales = (180.0, 255.0, 255.0)

    stats = []
    for channel, scale in enumerate(scales):
        plane = hsv[:, :, channel] / scale
        stats.extend((float(plane.mean()), float(plane.std())))

    return np.array(stats, dtype=np.float64)


def sobel_edges(image: CanonicalImage) -> np.ndarray:
    """Mean Sobel magnitude sampled on an ``EDGE_GRID_SIZE`` square grid."""
    size = image.size
    cell = size // EDGE_GRID_SIZE
    trimmed = image.magnitude[: cell * EDGE_GRID_SIZE, : cell * EDGE_GRID_SIZE]
    grid = trimmed.reshape(EDGE_GRID_SIZE, cell, EDGE_GRID_SIZE, cell)
    return grid.mean(axis=(1, 3)).ravel()


def canny_ratio(image: CanonicalImage) -> np.ndarray:
    """
    Simplified Canny-style edge ratios.

    Fraction of pixels whose peak-normalized gradient passes the high
    threshold (strong edges) and fraction between low and high (weak edges).
    """
    peak = float(image.magnitude.max())
    if peak <= 0.0:
        return np.zeros(2, dtype=np.float64)

    normalized = image.magnitude / peak
    strong = normalized >= CANNY_HIGH_THRESHOLD
    weak = (normalized >= CANNY_LOW_THRESHOLD) & ~strong

    return np.array([strong.mean(), weak.mean()], dtype=np.float64)


def _lbp_codes(gray: np.ndarray, radius: int) -> np.ndarray:
    padded = np.pad(gray, radius, mode="edge")
    height, width = gray.shape
    codes = np.zeros(gray.shape, dtype=np.int64)

    for bit, (dy, dx) in enumerate(_LBP_OFFSETS):
        y0 = radius + dy * radius
        x0 = radius + dx * radius
        neighbour = padded[y0 : y0 + height, x0 : x0 + width]
        codes |= (neighbour >= gray).astype(np.int64) << bit

    return codes


def lbp_histograms(image: CanonicalImage) -> np.ndarray:
    """Local binary pattern histograms at every radius in ``LBP_RADII``."""
    pixel_count = image.gray.size
    histograms = []

    for radius in LBP_RADII:
        codes = _lbp_codes(image.gray, radius)
        counts = np.bincount((codes * LBP_BINS >> 8).ravel(), minlength=LBP_BINS)
        histograms.append(counts.astype(np.float64) / max(pixel_count, 1))

    return np.concatenate(histograms)


def cooccurrence(image: CanonicalImage) -> np.ndarray:
    """Gray-level co-occurrence contrast, homogeneity and energy (offset (0, 1))."""
    levels = GLCM_LEVELS
    quantized = np.clip((image.gray * levels / 256.0).astype(np.int64), 0, levels - 1)

    left = quantized[:, :-1].ravel()
    right = quantized[:, 1:].ravel()
    matrix = np.bincount(left * levels + right, minlength=levels * levels)
    matrix = matrix.reshape(levels, levels).astype(np.float64)

    total = float(matrix.sum())
    if total == 0.0:
        return np.zeros(3, dtype=np.float64)
    p = matrix / total

    i, j = np.indices((levels, levels))
    contrast = float(np.sum(p * (i - j) ** 2))
    homogeneity = float(np.sum(p / (1.0 + np.abs(i - j))))
    energy = math.sqrt(float(np.sum(p * p)))

    return np.array([contrast, homogeneity, energy], dtype=np.float64)


def gabor_responses(image: CanonicalImage) -> np.ndarray:
    """Mean absolute and standard deviation of a small oriented Gabor bank."""
    gray = image.gray / 255.0
    responses = []

    for k in range(GABOR_ORIENTATIONS):
        theta = k * math.pi / GABOR_ORIENTATIONS
        for wavelength in GABOR_WAVELENGTHS:
            kernel = cv2.getGaborKernel(
                (GABOR_KERNEL_SIZE, GABOR_KERNEL_SIZE),
                0.56 * wavelength,
                theta,
                wavelength,
                0.5,
                0.0,
                ktype=cv2.CV_64F,
            )
            filtered = cv2.filter2D(gray, cv2.CV_64F, kernel)
            responses.extend((float(np.abs(filtered).mean()), float(filtered.std())))

    return np.array(responses, dtype=np.float64)


def dct_coefficients(image: CanonicalImage) -> np.ndarray:
    """Mean absolute low-frequency coefficients over all 8x8 block DCTs."""
    block = DCT_BLOCK_SIZE
    kept = DCT_KEPT_COEFFICIENTS
    size = image.size - image.size % block

    accumulator = np.zeros((kept, kept), dtype=np.float64)
    block_count = 0

    for top in range(0, size, block):
        for left in range(0, size, block):
            tile = np.ascontiguousarray(image.gray[top : top + block, left : left + block])
            coefficients = cv2.dct(tile - 128.0)
            accumulator += np.abs(coefficients[:kept, :kept])
            block_count += 1

    accumulator /= max(block_count, 1) * 255.0 * block
    return accumulator.ravel()


def spectral_variance(image: CanonicalImage) -> np.ndarray:
    """Variance of the FFT magnitude of the row and column intensity profiles."""
    gray = image.gray / 255.0
    variances = []

    for axis in (1, 0):
        profile = gray.mean(axis=axis)
        spectrum = np.abs(np.fft.rfft(profile - profile.mean()))
        variances.append(float(spectrum.var()))

    return np.array(variances, dtype=np.float64)


def geometric_moments(image: CanonicalImage) -> np.ndarray:
    """
    Centroid, normalized central moments and log-scaled Hu invariants of the
    intensity image.
    """
    moments = cv2.moments(image.gray / 255.0)
    size = float(image.size)

    m00 = moments["m00"]
    centroid = (
        safe_divide(moments["m10"], m00, default=size / 2.0) / size,
        safe_divide(moments["m01"], m00, default=size / 2.0) / size,
    )

    central = [
        moments[key] for key in ("nu20", "nu11", "nu02", "nu30", "nu21", "nu12", "nu03")
    ]

    hu = cv2.HuMoments(moments).ravel()
    hu_scaled = [
        -math.copysign(1.0, h) * math.log10(abs(h)) if h != 0.0 else 0.0 for h in hu
    ]

    return np.array([*centroid, *central, *hu_scaled], dtype=np.float64)


def gradient_histogram(image: CanonicalImage) -> np.ndarray:
    """
    Unsigned histogram of oriented gradients plus magnitude summary.

    Returns ``HOG_BINS`` normalized bin weights followed by mean, std and max
    magnitude and the histogram entropy in bits.
    """
    orientation = np.mod(np.arctan2(image.grad_y, image.grad_x), math.pi)
    bins = np.minimum((orientation * HOG_BINS / math.pi).astype(np.int64), HOG_BINS - 1)

    weights = np.bincount(
        bins.ravel(), weights=image.magnitude.ravel(), minlength=HOG_BINS
    )
    total = float(weights.sum())
    histogram = weights / total if total > 0.0 else np.zeros(HOG_BINS, dtype=np.float64)

    nonzero = histogram[histogram > 0.0]
    entropy = float(-np.sum(nonzero * np.log2(nonzero))) if nonzero.size else 0.0

    magnitude = image.magnitude
    summary = [float(magnitude.mean()), float(magnitude.std()), float(magnitude.max()), entropy]

    return np.concatenate([histogram, np.array(summary, dtype=np.float64)])


# Block name -> extractor; keys must cover FEATURE_LAYOUT exactly
SUB_FEATURE_EXTRACTORS: Dict[str, Callable[[CanonicalImage], np.ndarray]] = {
    "color_histogram": color_histogram,
    "hsv_statistics": hsv_statistics,
    "sobel_edges": sobel_edges,
    "canny_ratio": canny_ratio,
    "lbp_histograms": lbp_histograms,
    "cooccurrence": cooccurrence,
    "gabor_responses": gabor_responses,
    "dct_coefficients": dct_coefficients,
    "spectral_variance": spectral_variance,
    "geometric_moments": geometric_moments,
    "gradient_histogram": gradient_histogram,
}


def assemble_feature_vector(blocks: Dict[str, np.ndarray]) -> FeatureVector:
    """
    Concatenate named blocks in layout order into a validated FeatureVector.

    Raises
    ------
    ValueError
        If a block is missing or has the wrong length.
    """
    ordered = []
    for name, _length in FEATURE_LAYOUT:
        if name not in blocks:
            raise ValueError(f"Missing feature block '{name}'")
        ordered.append(FeatureBlock(name=name, values=blocks[name]))
    return FeatureVector(blocks=tuple(ordered), layout_version=FEATURE_LAYOUT_VERSION)


def compute_feature_vector(
    image: CanonicalImage, parallel: bool = False, max_workers: Optional[int] = None
) -> FeatureVector:
    """
    Compute every sub-feature of a canonical image.

    Parameters
    ----------
    image : CanonicalImage
        Preprocessed image; shared read-only between tasks.
    parallel : bool, default=False
        Run the independent sub-features on a thread pool.
    max_workers : int, optional
        Thread pool size; defaults to ``config.MAX_WORKERS``.
    """
    names = [name for name, _ in FEATURE_LAYOUT]

    if parallel:
        workers = max_workers or config.MAX_WORKERS
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                name: executor.submit(SUB_FEATURE_EXTRACTORS[name], image) for name in names
            }
            blocks = {name: futures[name].result() for name in names}
    else:
        blocks = {name: SUB_FEATURE_EXTRACTORS[name](image) for name in names}

    return assemble_feature_vector(blocks)


def validate_feature_vector(features: FeatureVector) -> None:
    """
    Reject degenerate vectors.

    Raises
    ------
    NoSignalExtractedError
        If the vector is empty, entirely zero or contains NaN/infinity.
    """
    values = features.values

    if values.size == 0:
        raise NoSignalExtractedError("Feature vector is empty", reason="empty")

    if not np.isfinite(values).all():
        raise NoSignalExtractedError(
            "Feature vector contains non-finite values", reason="non_finite"
        )

    if not np.any(values):
        raise NoSignalExtractedError(
            "Feature vector is entirely zero", reason="all_zero"
        )


@timer
def extract(
    image: ImageBytes,
    parallel: Optional[bool] = None,
    max_bytes: Optional[int] = None,
) -> Tuple[FeatureVector, LandmarkSet]:
    """
    Extract the feature vector and landmark set from an encoded image.

    Parameters
    ----------
    image : bytes
        Encoded image (JPEG, PNG, ...), never persisted.
    parallel : bool, optional
        Compute sub-features concurrently; defaults to
        ``config.PARALLEL_EXTRACTION``. Output is identical either way.
    max_bytes : int, optional
        Size ceiling; defaults to ``config.MAX_IMAGE_BYTES``.

    Returns
    -------
    Tuple[FeatureVector, LandmarkSet]
        Fixed-length features and landmarks.

    Raises
    ------
    ImageTooLargeError
        If the image exceeds the size ceiling (checked before decoding).
    ImageDecodeError
        If the bytes cannot be decoded.
    NoSignalExtractedError
        If the resulting vector is degenerate.

    Examples
    --------
    >>> features, landmarks = extract(open("selfie.jpg", "rb").read())
    >>> len(features)
    274
    """
    use_parallel = config.PARALLEL_EXTRACTION if parallel is None else parallel
    limit = config.MAX_IMAGE_BYTES if max_bytes is None else max_bytes

    logger.info(
        "Starting biometric feature extraction",
        image_bytes=len(image) if hasattr(image, "__len__") else None,
        layout_version=FEATURE_LAYOUT_VERSION,
        parallel=use_parallel,
    )

    canonical = canonicalize(image, max_bytes=limit)
    features = compute_feature_vector(canonical, parallel=use_parallel)
    validate_feature_vector(features)
    landmarks = estimate_landmarks(canonical)

    logger.info(
        "Feature extraction completed",
        feature_vector_length=len(features),
        landmark_count=len(landmarks),
    )

    return features, landmarks
