"""
Circuit versions and compiled circuit artifacts.

A circuit version fixes the ordered public and private inputs the compiled
circuit expects. Exactly one version is configured at a time; the witness
builder and the prover both check inputs against it.
"""

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import structlog

from .constants import DEFAULT_MAX_INPUT_BITS, ZERO_INPUT_FALLBACK
from .exceptions import CircuitUnavailableError, ConfigurationError

# Initialize structured logger
logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class CircuitVersion:
    """
    Input contract of one compiled circuit.

    Parameters
    ----------
    name : str
        Version identifier, e.g. ``facehash-anchor-v2``.
    input_names : Tuple[str, ...]
        Signal names in the order the circuit declares them.
    public_outputs : int, default=1
        Number of public signals the proof exposes (the nullifier).
    max_input_bits : int, default=254
        Bit-packing bound every input must satisfy.
    zero_fallback : int, default=1
        Value substituted for a zero input.
    """

    name: str
    input_names: Tuple[str, ...]
    public_outputs: int = 1
    max_input_bits: int = DEFAULT_MAX_INPUT_BITS
    zero_fallback: int = ZERO_INPUT_FALLBACK

    @property
    def arity(self) -> int:
        return len(self.input_names)

    @property
    def requires_anchor(self) -> bool:
        return "anchor" in self.input_names


CIRCUIT_VERSIONS: Dict[str, CircuitVersion] = {
    "facehash-v1": CircuitVersion(
        name="facehash-v1",
        input_names=("faceHash", "nonce"),
    ),
    "facehash-anchor-v2": CircuitVersion(
        name="facehash-anchor-v2",
        input_names=("faceHash", "nonce", "anchor"),
    ),
}


def get_circuit_version(name: str) -> CircuitVersion:
    """
    Look up a registered circuit version.

    Raises
    ------
    ConfigurationError
        If no version with that name is registered.
    """
    try:
        return CIRCUIT_VERSIONS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown circuit version '{name}'. Must be one of {sorted(CIRCUIT_VERSIONS)}",
            config_key="POEP_CIRCUIT_VERSION",
            config_value=str(name),
        )


@dataclass(frozen=True)
class CircuitArtifacts:
    """Paths of the compiled circuit, proving key and verification key."""

    circuit_path: Path
    proving_key_path: Path
    verification_key_path: Path

    def __post_init__(self) -> None:
        for attr in ("circuit_path", "proving_key_path", "verification_key_path"):
            object.__setattr__(self, attr, Path(getattr(self, attr)))

    def _require_file(self, artifact: str, path: Path) -> None:
        if not path.is_file():
            raise CircuitUnavailableError(
                f"{artifact} not found at {path}", artifact=artifact, path=str(path)
            )
        if path.stat().st_size == 0:
            raise CircuitUnavailableError(
                f"{artifact} at {path} is empty", artifact=artifact, path=str(path)
            )

    def check_available(self) -> None:
        """
        Confirm every artifact exists and is non-empty.

        Raises
        ------
        CircuitUnavailableError
            Naming the first missing or empty artifact.
        """
        self._require_file("circuit", self.circuit_path)
        self._require_file("proving_key", self.proving_key_path)
        self._require_file("verification_key", self.verification_key_path)

    def load_verification_key(self) -> Dict[str, Any]:
        self._require_file("verification_key", self.verification_key_path)

        try:
            with open(self.verification_key_path, "r", encoding="utf-8") as f:
                verification_key = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CircuitUnavailableError(
                f"Failed to read verification key: {e}",
                artifact="verification_key",
                path=str(self.verification_key_path),
            )

        if not isinstance(verification_key, dict):
            raise CircuitUnavailableError(
                "Verification key must be a JSON object",
                artifact="verification_key",
                path=str(self.verification_key_path),
            )

        return verification_key


@dataclass(frozen=True)
class LoadedArtifacts:
    """Checked artifact paths plus the parsed verification key."""

    artifacts: CircuitArtifacts
    verification_key: Dict[str, Any]


class ArtifactCache:
    """
    Load circuit artifacts once and share them read-only.

    The first caller performs the load under a lock; concurrent callers
    block until it finishes and then receive the same object. A failed load
    is not cached, so a later call retries it.
    """

    def __init__(self, artifacts: CircuitArtifacts) -> None:
        self.artifacts = artifacts
        self._lock = threading.Lock()
        self._loaded: Optional[LoadedArtifacts] = None

    def get(self) -> LoadedArtifacts:
        if self._loaded is not None:
            return self._loaded

        with self._lock:
            if self._loaded is None:
                self.artifacts.check_available()
                verification_key = self.artifacts.load_verification_key()
                self._loaded = LoadedArtifacts(
                    artifacts=self.artifacts, verification_key=verification_key
                )

                logger.info(
                    "Circuit artifacts loaded",
                    circuit=str(self.artifacts.circuit_path),
                    proving_key=str(self.artifacts.proving_key_path),
                )

        return self._loaded

    @property
    def is_loaded(self) -> bool:
        return self._loaded is not None


def artifacts_from_paths(
    circuit_path: PathLike, proving_key_path: PathLike, verification_key_path: PathLike
) -> CircuitArtifacts:
    return CircuitArtifacts(
        circuit_path=Path(circuit_path),
        proving_key_path=Path(proving_key_path),
        verification_key_path=Path(verification_key_path),
    )
