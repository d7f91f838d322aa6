"""
Custom exception classes for the PoEP proof-of-uniqueness pipeline.

Every failure the pipeline can report is a distinct, narrowly scoped class
grouped under four categories (input, extraction, backend, protocol) plus
timeouts. The ``retryable`` attribute tells callers whether repeating the
same call may succeed; the pipeline itself never retries.
"""

from typing import Optional, Dict, Any


class PoepPipelineError(Exception):
    """
    Base exception class for all pipeline errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    context : dict, optional
        Additional context information about the error.
    error_code : str, optional
        Unique error code for programmatic handling.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.context = context or {}
        self.error_code = error_code
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return a formatted string representation of the error."""
        parts = [self.message]

        if self.error_code:
            parts.append(f"[Error Code: {self.error_code}]")

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"[Context: {context_str}]")

        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the exception to a dictionary for structured logging.

        Returns
        -------
        dict
            Dictionary representation of the exception.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "retryable": self.retryable,
            "context": self.context,
        }


# =============================================================================
# Input errors: caller-correctable, never retried
# =============================================================================


class InputError(PoepPipelineError):
    """Exception raised for malformed or incomplete caller input."""


class ImageDecodeError(InputError):
    """Exception raised when the image bytes cannot be decoded."""

    def __init__(self, message: str, image_bytes: Optional[int] = None) -> None:
        context = {}
        if image_bytes is not None:
            context["image_bytes"] = image_bytes
        super().__init__(message, context, error_code="INPUT_001")


class ImageTooLargeError(InputError):
    """Exception raised when an image exceeds the size ceiling."""

    def __init__(self, message: str, size: int, limit: int) -> None:
        context = {"size": size, "limit": limit}
        super().__init__(message, context, error_code="INPUT_002")


class InvalidAddressError(InputError):
    """Exception raised for a wallet address that is not a 20-byte hex string."""

    def __init__(self, address: Any, reason: str) -> None:
        message = f"Invalid wallet address: {reason}"
        context = {"address": str(address)[:64]}
        super().__init__(message, context, error_code="INPUT_003")


class MissingAnchorError(InputError):
    """Exception raised when the circuit requires an anchor and none is given."""

    def __init__(self, circuit_version: str) -> None:
        message = f"Circuit '{circuit_version}' requires an anchor input"
        context = {"circuit_version": circuit_version}
        super().__init__(message, context, error_code="INPUT_004")


class ArityMismatchError(InputError):
    """Exception raised when inputs do not match the circuit's declared arity."""

    def __init__(self, message: str, circuit_version: str, expected: int, actual: int) -> None:
        context = {
            "circuit_version": circuit_version,
            "expected_inputs": expected,
            "actual_inputs": actual,
        }
        super().__init__(message, context, error_code="INPUT_005")


# =============================================================================
# Extraction errors: degenerate input, retake the photo
# =============================================================================


class ExtractionError(PoepPipelineError):
    """Exception raised when a decodable image yields no usable signal."""


class NoSignalExtractedError(ExtractionError):
    """
    Exception raised when the feature vector is empty or degenerate.

    The caller should ask the user to retake the photo; defaulting the
    vector would make every biometric identical.
    """

    def __init__(self, message: str, reason: str) -> None:
        context = {"reason": reason, "guidance": "retake photo"}
        super().__init__(message, context, error_code="EXTRACT_001")


# =============================================================================
# Backend errors: possibly transient, caller may retry with backoff
# =============================================================================


class BackendError(PoepPipelineError):
    """Exception raised when proving or verification infrastructure fails."""

    retryable = True


class CircuitUnavailableError(BackendError):
    """Exception raised when circuit artifacts are missing or empty."""

    def __init__(self, message: str, artifact: str, path: str) -> None:
        context = {"artifact": artifact, "path": path}
        super().__init__(message, context, error_code="BACKEND_001")


class ProofBackendError(BackendError):
    """Exception raised when the proving backend crashes or cannot start."""

    def __init__(self, message: str, backend: str = "unknown", **kwargs) -> None:
        context = kwargs.get("context", {})
        context["backend"] = backend
        super().__init__(message, context, error_code="BACKEND_002")


class VerifierUnavailableError(BackendError):
    """Exception raised when the verification backend cannot run."""

    def __init__(self, message: str, **kwargs) -> None:
        super().__init__(message, kwargs.get("context"), error_code="BACKEND_003")


# =============================================================================
# Protocol errors: circuit/input mismatch or backend bug, never retried blindly
# =============================================================================


class ProtocolError(PoepPipelineError):
    """Exception raised when circuit inputs or outputs violate the protocol."""


class InvalidWitnessError(ProtocolError):
    """Exception raised when witness computation rejects the circuit inputs."""

    def __init__(self, message: str, circuit_version: Optional[str] = None) -> None:
        context = {}
        if circuit_version:
            context["circuit_version"] = circuit_version
        super().__init__(message, context, error_code="PROTOCOL_001")


class MalformedProofError(ProtocolError):
    """Exception raised when a proof fails structural validation."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        context = {}
        if field:
            context["field"] = field
        super().__init__(message, context, error_code="PROTOCOL_002")


# =============================================================================
# Timeouts and configuration
# =============================================================================


class ProofTimeoutError(PoepPipelineError):
    """
    Exception raised when proof generation exceeds its hard timeout.

    Callers may retry once with a fresh nonce; repeated timeouts indicate a
    device capability problem.
    """

    retryable = True

    def __init__(self, timeout_seconds: float) -> None:
        message = f"Proof generation exceeded {timeout_seconds:.1f}s timeout"
        context = {"timeout_seconds": timeout_seconds}
        super().__init__(message, context, error_code="TIMEOUT_001")


class ConfigurationError(PoepPipelineError):
    """Exception raised for invalid configuration values."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[str] = None,
    ) -> None:
        context = {}
        if config_key:
            context["config_key"] = config_key
        if config_value:
            context["config_value"] = config_value
        super().__init__(message, context, error_code="CONFIG_001")
