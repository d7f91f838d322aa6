"""
Local Groth16 verification over BN254.

Checks ``e(A, B) == e(alpha, beta) * e(vk_x, gamma) * e(C, delta)`` with
``py_ecc``'s optimized BN254 implementation, using a snarkjs verification
key. A proof that fails the check, or is malformed, is reported as invalid
(``False``). A verification key that cannot be parsed, or a check that does
not finish within the timeout, is a backend failure and raises.

Local verification is advisory. The on-chain verifier is the authority.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    add,
    b,
    b2,
    curve_order,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    pairing,
)

from .constants import BN254_BASE_MODULUS, BN254_SCALAR_MODULUS, VERIFY_TIMEOUT
from .data_models import (
    MintPayload,
    Proof,
    VerificationFailed,
    VerificationOutcome,
    Verified,
)
from .exceptions import PoepPipelineError, VerifierUnavailableError
from .field import parse_decimal_element

# Initialize structured logger
logger = structlog.get_logger(__name__)

G1Point = Tuple[FQ, FQ, FQ]
G2Point = Tuple[FQ2, FQ2, FQ2]

ProofLike = Union[Proof, MintPayload, Dict[str, Any]]


class _InvalidPoint(ValueError):
    """A coordinate is out of range or a point is off its curve."""


def _coordinate(value: Any) -> int:
    try:
        return parse_decimal_element(value, BN254_BASE_MODULUS)
    except ValueError:
        raise _InvalidPoint("coordinate outside the base field")


def _g1(coords: Sequence[Any]) -> G1Point:
    x, y = _coordinate(coords[0]), _coordinate(coords[1])
    if x == 0 and y == 0:
        return (FQ.one(), FQ.one(), FQ.zero())
    point = (FQ(x), FQ(y), FQ.one())
    if not is_on_curve(point, b):
        raise _InvalidPoint("G1 point not on curve")
    return point


def _g2(coords: Sequence[Sequence[Any]]) -> G2Point:
    x0, x1 = _coordinate(coords[0][0]), _coordinate(coords[0][1])
    y0, y1 = _coordinate(coords[1][0]), _coordinate(coords[1][1])
    if x0 == x1 == y0 == y1 == 0:
        return (FQ2.one(), FQ2.one(), FQ2.zero())
    point = (FQ2([x0, x1]), FQ2([y0, y1]), FQ2.one())
    if not is_on_curve(point, b2):
        raise _InvalidPoint("G2 point not on curve")
    return point


@dataclass(frozen=True)
class VerifyingKey:
    """Parsed snarkjs Groth16 verification key."""

    alpha1: G1Point
    beta2: G2Point
    gamma2: G2Point
    delta2: G2Point
    ic: Tuple[G1Point, ...]

    @property
    def public_input_count(self) -> int:
        return len(self.ic) - 1


def load_verifying_key(verification_key: Dict[str, Any]) -> VerifyingKey:
    """
    Parse a snarkjs ``verification_key.json`` object.

    Raises
    ------
    VerifierUnavailableError
        If the key is not a Groth16/BN254 key or any point is invalid.
    """
    try:
        protocol = verification_key.get("protocol", "groth16")
        curve = verification_key.get("curve", "bn128")
        if protocol != "groth16" or curve not in ("bn128", "bn254"):
            raise ValueError(f"unsupported key {protocol}/{curve}")

        ic = tuple(_g1(point) for point in verification_key["IC"])
        if len(ic) < 1:
            raise ValueError("IC is empty")

        return VerifyingKey(
            alpha1=_g1(verification_key["vk_alpha_1"]),
            beta2=_g2(verification_key["vk_beta_2"]),
            gamma2=_g2(verification_key["vk_gamma_2"]),
            delta2=_g2(verification_key["vk_delta_2"]),
            ic=ic,
        )
    except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
        raise VerifierUnavailableError(
            f"Malformed verification key: {e}",
            context={"reason": type(e).__name__},
        )


def _as_snarkjs(proof: ProofLike, public_signals: Optional[Sequence[Any]]) -> Tuple[Dict[str, Any], List[Any]]:
    if isinstance(proof, MintPayload):
        proof = proof.to_proof()

    if isinstance(proof, Proof):
        signals = proof.public_signals if public_signals is None else public_signals
        return proof.to_snarkjs(), list(signals)

    if public_signals is None:
        raise ValueError("Public signals are required for a raw proof object")
    return proof, list(public_signals)


def _pairing_check(
    vk: VerifyingKey, a: G1Point, b_point: G2Point, c: G1Point, inputs: List[int]
) -> bool:
    vk_x = vk.ic[0]
    for scalar, point in zip(inputs, vk.ic[1:]):
        if scalar:
            vk_x = add(vk_x, multiply(point, scalar))

    product = (
        pairing(b_point, a, final_exponentiate=False)
        * pairing(vk.beta2, neg(vk.alpha1), final_exponentiate=False)
        * pairing(vk.gamma2, neg(vk_x), final_exponentiate=False)
        * pairing(vk.delta2, neg(c), final_exponentiate=False)
    )
    return final_exponentiate(product) == FQ12.one()


class Groth16Verifier:
    """
    Groth16 verifier for one verification key.

    Parameters
    ----------
    verification_key : dict
        snarkjs verification key JSON.
    timeout : float, default=VERIFY_TIMEOUT
        Maximum seconds a single verification may take.

    Raises
    ------
    VerifierUnavailableError
        If the verification key is malformed.

    Examples
    --------
    >>> verifier = Groth16Verifier(verification_key)
    >>> verifier.verify(proof)
    True
    """

    def __init__(self, verification_key: Dict[str, Any], timeout: float = VERIFY_TIMEOUT) -> None:
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout}")

        self.vk = load_verifying_key(verification_key)
        self.timeout = timeout

    def _parse(self, proof: Dict[str, Any], public_signals: List[Any]):
        a = _g1(proof["pi_a"])
        b_point = _g2(proof["pi_b"])
        c = _g1(proof["pi_c"])

        # The twist curve has points outside the prime-order subgroup
        if not is_inf(multiply(b_point, curve_order)):
            raise _InvalidPoint("B not in the G2 subgroup")

        inputs = [parse_decimal_element(s, BN254_SCALAR_MODULUS) for s in public_signals]
        return a, b_point, c, inputs

    def verify(self, proof: ProofLike, public_signals: Optional[Sequence[Any]] = None) -> bool:
        """
        Check a proof against its public signals.

        Parameters
        ----------
        proof : Proof, MintPayload or dict
            The proof; a raw snarkjs dict needs ``public_signals``.
        public_signals : sequence, optional
            Overrides the signals carried by ``proof``.

        Returns
        -------
        bool
            True only if the pairing equation holds.

        Raises
        ------
        VerifierUnavailableError
            If the check does not finish within the timeout.

        Notes
        -----
        The pairing runs on a worker thread. On timeout the error is raised
        at once, but that thread keeps computing until the pairing finishes
        because pure-Python code cannot be interrupted.
        """
        try:
            proof_dict, signals = _as_snarkjs(proof, public_signals)
            if len(signals) != self.vk.public_input_count:
                logger.info(
                    "Public signal count mismatch",
                    expected=self.vk.public_input_count,
                    actual=len(signals),
                )
                return False
            a, b_point, c, inputs = self._parse(proof_dict, signals)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.info("Malformed proof rejected", reason=str(e))
            return False

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="poep-verifier")
        try:
            future = executor.submit(_pairing_check, self.vk, a, b_point, c, inputs)
            valid = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            raise VerifierUnavailableError(
                f"Verification exceeded {self.timeout:.1f}s timeout",
                context={"timeout_seconds": self.timeout},
            )
        finally:
            executor.shutdown(wait=False)

        logger.info("Groth16 verification completed", valid=valid)
        return valid

    def verify_outcome(
        self, proof: ProofLike, public_signals: Optional[Sequence[Any]] = None
    ) -> VerificationOutcome:
        """Like :meth:`verify` but returns pipeline failures as a value."""
        try:
            return Verified(valid=self.verify(proof, public_signals))
        except PoepPipelineError as e:
            logger.warning("Verification could not run", **e.to_dict())
            return VerificationFailed(error=e)


def verify(
    proof: ProofLike,
    public_signals: Optional[Sequence[Any]],
    verification_key: Dict[str, Any],
    timeout: float = VERIFY_TIMEOUT,
) -> bool:
    """Convenience wrapper around :meth:`Groth16Verifier.verify`."""
    return Groth16Verifier(verification_key, timeout=timeout).verify(proof, public_signals)
