"""
Data models for the PoEP pipeline.

The feature vector is assembled from named, fixed-length blocks whose order
and sizes are checked against the versioned layout in ``constants``. Proof
objects keep the snarkjs JSON layout internally and convert to the calldata
shape expected by the on-chain verifier.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .constants import (
    FEATURE_LAYOUT,
    FEATURE_LAYOUT_VERSION,
    LANDMARK_COUNT,
)
from .exceptions import PoepPipelineError


@dataclass(frozen=True)
class FeatureBlock:
    """One named sub-feature block (e.g. ``lbp_histograms``)."""

    name: str
    values: np.ndarray

    def __post_init__(self) -> None:
        array = np.ascontiguousarray(self.values, dtype=np.float64).reshape(-1)
        object.__setattr__(self, "values", array)


@dataclass(frozen=True)
class FeatureVector:
    """
    Fixed-length biometric feature vector.

    Parameters
    ----------
    blocks : Tuple[FeatureBlock, ...]
        Sub-feature blocks in layout order.
    layout_version : str, default=FEATURE_LAYOUT_VERSION
        Extractor layout the blocks were produced for.

    Raises
    ------
    ValueError
        If the blocks do not match the layout exactly.
    """

    blocks: Tuple[FeatureBlock, ...]
    layout_version: str = FEATURE_LAYOUT_VERSION

    def __post_init__(self) -> None:
        if self.layout_version != FEATURE_LAYOUT_VERSION:
            raise ValueError(
                f"Unsupported feature layout '{self.layout_version}', "
                f"expected '{FEATURE_LAYOUT_VERSION}'"
            )

        if len(self.blocks) != len(FEATURE_LAYOUT):
            raise ValueError(
                f"Expected {len(FEATURE_LAYOUT)} feature blocks, got {len(self.blocks)}"
            )

        for block, (name, length) in zip(self.blocks, FEATURE_LAYOUT):
            if block.name != name:
                raise ValueError(f"Feature block '{block.name}' found where '{name}' expected")
            if block.values.size != length:
                raise ValueError(
                    f"Feature block '{name}' has length {block.values.size}, expected {length}"
                )

    @property
    def values(self) -> np.ndarray:
        """Concatenated float64 vector in layout order."""
        return np.concatenate([block.values for block in self.blocks])

    def block(self, name: str) -> np.ndarray:
        for candidate in self.blocks:
            if candidate.name == name:
                return candidate.values
        raise KeyError(name)

    def __len__(self) -> int:
        return sum(block.values.size for block in self.blocks)


@dataclass(frozen=True)
class LandmarkSet:
    """
    Fixed number of ``(x, y, confidence)`` landmark estimates.

    Coordinates are normalized to ``[0, 1]`` of the canonical image; unused
    slots are zero rows.
    """

    points: np.ndarray

    def __post_init__(self) -> None:
        array = np.ascontiguousarray(self.points, dtype=np.float64)
        if array.shape != (LANDMARK_COUNT, 3):
            raise ValueError(
                f"Landmark set must have shape ({LANDMARK_COUNT}, 3), got {array.shape}"
            )
        object.__setattr__(self, "points", array)

    @property
    def values(self) -> np.ndarray:
        return self.points.reshape(-1)

    def __len__(self) -> int:
        return self.points.shape[0]


@dataclass(frozen=True)
class CircuitInputs:
    """
    Ordered circuit inputs for one circuit version.

    ``names`` and ``values`` are parallel tuples in the exact order the
    circuit binary declares its signals.
    """

    circuit_version: str
    names: Tuple[str, ...]
    values: Tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.names) != len(self.values):
            raise ValueError(
                f"{len(self.names)} input names but {len(self.values)} values"
            )

    @property
    def arity(self) -> int:
        return len(self.values)

    def to_json(self) -> Dict[str, str]:
        """Return the ``{signal: decimal string}`` mapping the backend reads."""
        return {name: str(value) for name, value in zip(self.names, self.values)}

    def __repr__(self) -> str:
        # Values are private biometric secrets
        return f"CircuitInputs(circuit_version={self.circuit_version!r}, names={self.names!r})"


@dataclass(frozen=True)
class MintPayload:
    """
    Proof in the shape the on-chain verifier and mint function take.

    ``pB`` rows are in the Solidity verifier's coordinate order, i.e. each
    Fq2 pair is swapped relative to the snarkjs JSON layout.
    """

    pA: Tuple[str, str]
    pB: Tuple[Tuple[str, str], Tuple[str, str]]
    pC: Tuple[str, str]
    nullifier: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pA": list(self.pA),
            "pB": [list(row) for row in self.pB],
            "pC": list(self.pC),
            "nullifier": self.nullifier,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MintPayload":
        pb = data["pB"]
        return cls(
            pA=(str(data["pA"][0]), str(data["pA"][1])),
            pB=(
                (str(pb[0][0]), str(pb[0][1])),
                (str(pb[1][0]), str(pb[1][1])),
            ),
            pC=(str(data["pC"][0]), str(data["pC"][1])),
            nullifier=str(data["nullifier"]),
        )

    def to_proof(self) -> "Proof":
        """Rebuild the snarkjs-layout proof, undoing the ``pB`` swap."""
        return Proof(
            pi_a=[self.pA[0], self.pA[1], "1"],
            pi_b=[
                [self.pB[0][1], self.pB[0][0]],
                [self.pB[1][1], self.pB[1][0]],
                ["1", "0"],
            ],
            pi_c=[self.pC[0], self.pC[1], "1"],
            public_signals=[self.nullifier],
        )


@dataclass
class Proof:
    """
    Groth16 proof and its public signals in snarkjs JSON layout.

    The first public signal is the nullifier.
    """

    pi_a: List[str]
    pi_b: List[List[str]]
    pi_c: List[str]
    public_signals: List[str]
    protocol: str = "groth16"
    curve: str = "bn128"

    @property
    def nullifier(self) -> str:
        return self.public_signals[0]

    @classmethod
    def from_snarkjs(
        cls, proof: Dict[str, Any], public_signals: Sequence[Any]
    ) -> "Proof":
        return cls(
            pi_a=[str(v) for v in proof["pi_a"]],
            pi_b=[[str(v) for v in row] for row in proof["pi_b"]],
            pi_c=[str(v) for v in proof["pi_c"]],
            public_signals=[str(v) for v in public_signals],
            protocol=str(proof.get("protocol", "groth16")),
            curve=str(proof.get("curve", "bn128")),
        )

    def to_snarkjs(self) -> Dict[str, Any]:
        return {
            "pi_a": list(self.pi_a),
            "pi_b": [list(row) for row in self.pi_b],
            "pi_c": list(self.pi_c),
            "protocol": self.protocol,
            "curve": self.curve,
        }

    def to_calldata(self) -> MintPayload:
        """Convert to the ``{pA, pB, pC, nullifier}`` mint argument."""
        return MintPayload(
            pA=(self.pi_a[0], self.pi_a[1]),
            pB=(
                (self.pi_b[0][1], self.pi_b[0][0]),
                (self.pi_b[1][1], self.pi_b[1][0]),
            ),
            pC=(self.pi_c[0], self.pi_c[1]),
            nullifier=self.nullifier,
        )


@dataclass(frozen=True)
class Verified:
    """Verification ran to completion; ``valid`` is its answer."""

    valid: bool


@dataclass(frozen=True)
class VerificationFailed:
    """Verification could not run."""

    error: PoepPipelineError


VerificationOutcome = Union[Verified, VerificationFailed]


@dataclass
class PipelineResult:
    """Outcome of one capture-to-proof run."""

    payload: MintPayload
    proof: Proof
    circuit_version: str
    verified: Optional[bool] = None
    timings: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": self.payload.to_dict(),
            "circuit_version": self.circuit_version,
            "verified": self.verified,
            "timings": dict(self.timings),
        }
