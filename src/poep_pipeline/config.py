"""
Configuration management for the PoEP pipeline.

Settings are read from environment variables and an optional .env file.
Only the host application decides paths and timeouts; the pipeline modules
receive them as parameters and fall back to these values by default.
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

from .circuits import CIRCUIT_VERSIONS
from .constants import (
    ANCHOR_LOOKUP_TIMEOUT,
    DEFAULT_BASESCAN_API_URL,
    DEFAULT_CIRCUIT_VERSION,
    DEFAULT_CIRCUIT_WASM,
    DEFAULT_PROVING_KEY,
    DEFAULT_VERIFICATION_KEY,
    MAX_IMAGE_BYTES as DEFAULT_MAX_IMAGE_BYTES,
    PROOF_TIMEOUT,
    VERIFY_TIMEOUT,
)

# Load environment variables from .env file if it exists
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# =============================================================================
# Base Paths
# =============================================================================
BASE_DIR: Path = Path(__file__).resolve().parent.parent

# Project root directory (parent of src/)
PROJECT_ROOT: Path = BASE_DIR.parent

CIRCUITS_DIR: Path = Path(os.getenv("POEP_CIRCUITS_DIR", str(PROJECT_ROOT / "circuits")))

# =============================================================================
# Circuit Configuration
# =============================================================================
# Exactly one circuit version is active at a time
CIRCUIT_VERSION: str = os.getenv("POEP_CIRCUIT_VERSION", DEFAULT_CIRCUIT_VERSION)

CIRCUIT_WASM_PATH: Path = Path(
    os.getenv("POEP_CIRCUIT_WASM_PATH", str(CIRCUITS_DIR / DEFAULT_CIRCUIT_WASM))
)

PROVING_KEY_PATH: Path = Path(
    os.getenv("POEP_PROVING_KEY_PATH", str(CIRCUITS_DIR / DEFAULT_PROVING_KEY))
)

VERIFICATION_KEY_PATH: Path = Path(
    os.getenv(
        "POEP_VERIFICATION_KEY_PATH", str(CIRCUITS_DIR / DEFAULT_VERIFICATION_KEY)
    )
)

# Proving backend executable
SNARKJS_BIN: str = os.getenv("SNARKJS_BIN", "snarkjs")

# =============================================================================
# Timeouts
# =============================================================================
PROOF_TIMEOUT_SECONDS: float = float(
    os.getenv("PROOF_TIMEOUT_SECONDS", str(PROOF_TIMEOUT))
)

VERIFY_TIMEOUT_SECONDS: float = float(
    os.getenv("VERIFY_TIMEOUT_SECONDS", str(VERIFY_TIMEOUT))
)

ANCHOR_LOOKUP_TIMEOUT_SECONDS: float = float(
    os.getenv("ANCHOR_LOOKUP_TIMEOUT_SECONDS", str(ANCHOR_LOOKUP_TIMEOUT))
)

# =============================================================================
# Anchor Lookup (block explorer collaborator)
# =============================================================================
BASESCAN_API_URL: str = os.getenv("BASESCAN_API_URL", DEFAULT_BASESCAN_API_URL)

# Without a key the lookup always uses the address fallback
BASESCAN_API_KEY: Optional[str] = os.getenv("BASESCAN_API_KEY") or None

# =============================================================================
# Extraction
# =============================================================================
MAX_IMAGE_BYTES: int = int(os.getenv("MAX_IMAGE_BYTES", str(DEFAULT_MAX_IMAGE_BYTES)))

# Maximum number of threads for parallel sub-feature extraction
MAX_WORKERS: int = int(os.getenv("MAX_WORKERS", str(os.cpu_count() or 4)))

PARALLEL_EXTRACTION: bool = _env_flag("PARALLEL_EXTRACTION", "false")

# =============================================================================
# Logging Configuration
# =============================================================================
# Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Render logs as JSON lines instead of the console renderer
STRUCTURED_LOGGING: bool = _env_flag("STRUCTURED_LOGGING", "true")

# =============================================================================
# Development and Debugging Configuration
# =============================================================================
DEBUG_MODE: bool = _env_flag("DEBUG_MODE", "false")


# =============================================================================
# Configuration Validation
# =============================================================================
def validate_configuration() -> bool:
    """
    Validate the current configuration settings.

    Returns
    -------
    bool
        True if configuration is valid.

    Raises
    ------
    ValueError
        If critical configuration parameters are invalid.
    """
    errors = []

    if CIRCUIT_VERSION not in CIRCUIT_VERSIONS:
        errors.append(
            f"POEP_CIRCUIT_VERSION must be one of {sorted(CIRCUIT_VERSIONS)}"
        )

    for name, value in (
        ("PROOF_TIMEOUT_SECONDS", PROOF_TIMEOUT_SECONDS),
        ("VERIFY_TIMEOUT_SECONDS", VERIFY_TIMEOUT_SECONDS),
        ("ANCHOR_LOOKUP_TIMEOUT_SECONDS", ANCHOR_LOOKUP_TIMEOUT_SECONDS),
    ):
        if value <= 0:
            errors.append(f"{name} must be positive")

    if MAX_IMAGE_BYTES < 1:
        errors.append("MAX_IMAGE_BYTES must be at least 1")

    if MAX_WORKERS < 1:
        errors.append("MAX_WORKERS must be at least 1")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if LOG_LEVEL not in valid_log_levels:
        errors.append(f"LOG_LEVEL must be one of {valid_log_levels}")

    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"- {error}" for error in errors)
        )

    return True


def get_config_summary() -> dict:
    """
    Get a summary of the current configuration.

    Secrets such as the block explorer API key are reported only as present
    or absent.
    """
    return {
        "circuit": {
            "version": CIRCUIT_VERSION,
            "wasm": str(CIRCUIT_WASM_PATH),
            "proving_key": str(PROVING_KEY_PATH),
            "verification_key": str(VERIFICATION_KEY_PATH),
            "snarkjs_bin": SNARKJS_BIN,
        },
        "timeouts": {
            "proof_seconds": PROOF_TIMEOUT_SECONDS,
            "verify_seconds": VERIFY_TIMEOUT_SECONDS,
            "anchor_lookup_seconds": ANCHOR_LOOKUP_TIMEOUT_SECONDS,
        },
        "anchor_lookup": {
            "api_url": BASESCAN_API_URL,
            "api_key_configured": BASESCAN_API_KEY is not None,
        },
        "extraction": {
            "max_image_bytes": MAX_IMAGE_BYTES,
            "max_workers": MAX_WORKERS,
            "parallel": PARALLEL_EXTRACTION,
        },
        "logging": {
            "level": LOG_LEVEL,
            "structured": STRUCTURED_LOGGING,
        },
    }


# Validate configuration on import
if not DEBUG_MODE:
    validate_configuration()
