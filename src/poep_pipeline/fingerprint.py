"""
Fingerprint hashing: feature vector + landmarks -> face hash.

The face hash is the private circuit input derived from a capture. Features
and landmarks are serialized as big-endian IEEE-754 doubles, followed by a
fixed ASCII domain-separation salt, digested, truncated to 31 bytes and
reduced into the field. The salt, digest and truncation are part of the
circuit's contract: changing any of them changes every face hash.
"""

import hashlib
from dataclasses import dataclass

import structlog

from .constants import (
    BIOMETRIC_SALT,
    BN254_SCALAR_MODULUS,
    DEFAULT_DIGEST,
    FACE_HASH_BYTES,
)
from .data_models import FeatureVector, LandmarkSet
from .field import reduce

# Initialize structured logger
logger = structlog.get_logger(__name__)

SUPPORTED_DIGESTS = ("sha256", "sha512")


@dataclass(frozen=True)
class HashScheme:
    """
    Parameters fixing how a face hash is computed.

    Parameters
    ----------
    salt : bytes
        ASCII domain-separation salt appended after the serialized data.
    digest : str
        ``sha256`` or ``sha512``.
    truncate_bytes : int
        Leading digest bytes kept; must stay below the field's bit length.
    """

    salt: bytes = BIOMETRIC_SALT
    digest: str = DEFAULT_DIGEST
    truncate_bytes: int = FACE_HASH_BYTES

    def __post_init__(self) -> None:
        if self.digest not in SUPPORTED_DIGESTS:
            raise ValueError(
                f"Unsupported digest '{self.digest}'. Must be one of {SUPPORTED_DIGESTS}"
            )

        if not self.salt or not self.salt.isascii():
            raise ValueError("Salt must be non-empty ASCII bytes")

        digest_size = hashlib.new(self.digest).digest_size
        if not 1 <= self.truncate_bytes <= digest_size:
            raise ValueError(
                f"truncate_bytes must be between 1 and {digest_size}, got {self.truncate_bytes}"
            )

        if self.truncate_bytes * 8 >= BN254_SCALAR_MODULUS.bit_length():
            raise ValueError(
                f"{self.truncate_bytes} bytes may exceed the field modulus"
            )


DEFAULT_SCHEME = HashScheme()


def serialize(features: FeatureVector, landmarks: LandmarkSet, salt: bytes) -> bytes:
    """Big-endian float64 features, then landmarks, then the salt."""
    feature_bytes = features.values.astype(">f8").tobytes()
    landmark_bytes = landmarks.values.astype(">f8").tobytes()
    return feature_bytes + landmark_bytes + salt


class FingerprintHasher:
    """
    Hasher producing the face hash for one fixed :class:`HashScheme`.

    Examples
    --------
    >>> hasher = FingerprintHasher()
    >>> face_hash = hasher.hash(features, landmarks)
    >>> face_hash < BN254_SCALAR_MODULUS
    True
    """

    def __init__(self, scheme: HashScheme = DEFAULT_SCHEME) -> None:
        self.scheme = scheme

        logger.debug(
            "FingerprintHasher initialized",
            digest=scheme.digest,
            truncate_bytes=scheme.truncate_bytes,
        )

    def hash(self, features: FeatureVector, landmarks: LandmarkSet) -> int:
        """
        Compute the face hash field element.

        Returns
        -------
        int
            Field element in ``[0, BN254_SCALAR_MODULUS)``.
        """
        buffer = serialize(features, landmarks, self.scheme.salt)
        digest = hashlib.new(self.scheme.digest, buffer).digest()
        truncated = digest[: self.scheme.truncate_bytes]

        face_hash = reduce(int.from_bytes(truncated, "big"))

        logger.debug(
            "Face hash computed",
            serialized_bytes=len(buffer),
            digest=self.scheme.digest,
        )

        return face_hash


def hash_fingerprint(
    features: FeatureVector,
    landmarks: LandmarkSet,
    scheme: HashScheme = DEFAULT_SCHEME,
) -> int:
    """Convenience wrapper around :meth:`FingerprintHasher.hash`."""
    return FingerprintHasher(scheme).hash(features, landmarks)
