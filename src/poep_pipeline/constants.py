"""
Constants for the PoEP proof-of-uniqueness pipeline.

This module centralizes every fixed parameter that influences the face hash
or the circuit inputs. Changing any value in the "Fingerprint" or "Feature
Layout" sections changes every face hash and therefore requires a new
circuit/verifier deployment.
"""

from typing import Final, Tuple

# =============================================================================
# Field Parameters
# =============================================================================

# BN254 (alt_bn128) scalar field modulus: every circuit input/output lives here
BN254_SCALAR_MODULUS: Final[int] = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)

# BN254 base field modulus: proof point coordinates live here
BN254_BASE_MODULUS: Final[int] = (
    21888242871839275222246405745257275088696311157297823662689037894645226208583
)

# Bit bound applied when a circuit bit-packs its inputs (value <= 2**254 - 1)
DEFAULT_MAX_INPUT_BITS: Final[int] = 254

# Replacement for inputs that reduce to zero
ZERO_INPUT_FALLBACK: Final[int] = 1

# =============================================================================
# Image Limits
# =============================================================================

# Hard ceiling on encoded image size (10 MiB)
MAX_IMAGE_BYTES: Final[int] = 10 * 1024 * 1024

# Hard ceiling on decoded width/height, guards against decompression bombs
MAX_IMAGE_DIMENSION: Final[int] = 8192

# Canonical resolution after letterboxing
CANONICAL_SIZE: Final[int] = 512

# Letterbox background (RGB)
LETTERBOX_COLOR: Final[Tuple[int, int, int]] = (0, 0, 0)

# ITU-R BT.709 luminance weights (R, G, B)
LUMA_WEIGHTS: Final[Tuple[float, float, float]] = (0.2126, 0.7152, 0.0722)

# =============================================================================
# Feature Layout
# =============================================================================

FEATURE_LAYOUT_VERSION: Final[str] = "poep-features-v2"

# Ordered (block name, length) pairs; concatenation order is part of the hash
FEATURE_LAYOUT: Final[Tuple[Tuple[str, int], ...]] = (
    ("color_histogram", 72),
    ("hsv_statistics", 6),
    ("sobel_edges", 64),
    ("canny_ratio", 2),
    ("lbp_histograms", 64),
    ("cooccurrence", 3),
    ("gabor_responses", 16),
    ("dct_coefficients", 16),
    ("spectral_variance", 2),
    ("geometric_moments", 16),
    ("gradient_histogram", 13),
)

FEATURE_VECTOR_LENGTH: Final[int] = sum(length for _, length in FEATURE_LAYOUT)

# Histogram resolutions for the multi-resolution RGB histogram
COLOR_HISTOGRAM_BINS: Final[Tuple[int, ...]] = (8, 16)

# Grid used to sample Sobel edge magnitudes
EDGE_GRID_SIZE: Final[int] = 8

# Canny-style thresholds on the normalized gradient magnitude
CANNY_HIGH_THRESHOLD: Final[float] = 0.3
CANNY_LOW_THRESHOLD: Final[float] = 0.1

# Local binary pattern radii and histogram bins per radius
LBP_RADII: Final[Tuple[int, ...]] = (1, 2)
LBP_BINS: Final[int] = 32

# Gray levels for the co-occurrence matrix
GLCM_LEVELS: Final[int] = 16

# Gabor filter bank
GABOR_ORIENTATIONS: Final[int] = 4
GABOR_WAVELENGTHS: Final[Tuple[float, ...]] = (8.0, 16.0)
GABOR_KERNEL_SIZE: Final[int] = 21

# Block DCT parameters
DCT_BLOCK_SIZE: Final[int] = 8
DCT_KEPT_COEFFICIENTS: Final[int] = 4

# Histogram of oriented gradients
HOG_BINS: Final[int] = 9

# =============================================================================
# Landmarks
# =============================================================================

LANDMARK_COUNT: Final[int] = 24
LANDMARK_CORNER_COUNT: Final[int] = 16

# =============================================================================
# Fingerprint
# =============================================================================

# Domain separation salt; changing it breaks every deployed verifier
BIOMETRIC_SALT: Final[bytes] = b"POEP_BIOMETRIC_SALT_V2"

DEFAULT_DIGEST: Final[str] = "sha256"

# 31 bytes = 248 bits, always below the 254-bit field modulus
FACE_HASH_BYTES: Final[int] = 31

# Random bytes drawn per nonce
NONCE_BYTES: Final[int] = 31

# =============================================================================
# Timeouts (seconds)
# =============================================================================

PROOF_TIMEOUT: Final[float] = 30.0
VERIFY_TIMEOUT: Final[float] = 10.0
ANCHOR_LOOKUP_TIMEOUT: Final[float] = 5.0

# =============================================================================
# Circuit Artifacts
# =============================================================================

DEFAULT_CIRCUIT_VERSION: Final[str] = "facehash-anchor-v2"
DEFAULT_CIRCUIT_WASM: Final[str] = "facehash.wasm"
DEFAULT_PROVING_KEY: Final[str] = "facehash_final.zkey"
DEFAULT_VERIFICATION_KEY: Final[str] = "verification_key.json"

DEFAULT_BASESCAN_API_URL: Final[str] = "https://api.basescan.org/api"
