"""
Zero-Knowledge proof generation for the PoEP pipeline.

This module turns ordered circuit inputs into a Groth16 proof through a
proving backend. Proof generation runs off the caller's thread under a hard
timeout; a timed-out or cancelled run returns no proof and leaves no
intermediate files behind once its worker has stopped. Structural
validation of the backend's output happens before a :class:`Proof` is
returned.
"""

import asyncio
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import structlog

from .backends import ProcessCancelled, ProvingBackend
from .circuits import ArtifactCache, CircuitArtifacts, CircuitVersion, get_circuit_version
from .constants import PROOF_TIMEOUT
from .data_models import CircuitInputs, Proof
from .exceptions import (
    ArityMismatchError,
    MalformedProofError,
    PoepPipelineError,
    ProofBackendError,
    ProofTimeoutError,
)
from .field import parse_decimal_element

# Initialize structured logger
logger = structlog.get_logger(__name__)


def _check_coordinates(values: Any, field_name: str, count: int = 2) -> None:
    if not isinstance(values, (list, tuple)) or len(values) < count:
        raise MalformedProofError(
            f"'{field_name}' must hold at least {count} coordinates", field=field_name
        )
    for value in values[:count]:
        try:
            int(str(value))
        except ValueError:
            raise MalformedProofError(
                f"'{field_name}' coordinate is not an integer", field=field_name
            )


def validate_proof_structure(
    proof: Dict[str, Any], public_signals: Sequence[Any], expected_outputs: int = 1
) -> Proof:
    """
    Validate a snarkjs proof and its public signals.

    Parameters
    ----------
    proof : Dict[str, Any]
        snarkjs proof object with ``pi_a``, ``pi_b`` and ``pi_c``.
    public_signals : Sequence[Any]
        Public signals output by the circuit.
    expected_outputs : int, default=1
        Number of public signals the circuit declares.

    Returns
    -------
    Proof
        The validated proof.

    Raises
    ------
    MalformedProofError
        If any required field is missing or not numeric, the signal count is
        wrong, or the nullifier is not a field element.
    """
    if not isinstance(proof, dict):
        raise MalformedProofError("Proof must be a JSON object")

    for name in ("pi_a", "pi_c"):
        _check_coordinates(proof.get(name), name)

    pi_b = proof.get("pi_b")
    if not isinstance(pi_b, (list, tuple)) or len(pi_b) < 2:
        raise MalformedProofError("'pi_b' must hold at least 2 rows", field="pi_b")
    for row in pi_b[:2]:
        _check_coordinates(row, "pi_b")

    if not isinstance(public_signals, (list, tuple)) or len(public_signals) != expected_outputs:
        raise MalformedProofError(
            f"Expected {expected_outputs} public signal(s)", field="public_signals"
        )

    try:
        parse_decimal_element(public_signals[0])
    except ValueError:
        raise MalformedProofError(
            "Nullifier is not a decimal field element", field="public_signals"
        )

    return Proof.from_snarkjs(proof, public_signals)


class ZkProver:
    """
    Groth16 prover bound to one circuit version and its artifacts.

    Parameters
    ----------
    backend : ProvingBackend
        Witness calculation and proving implementation.
    artifacts : CircuitArtifacts or ArtifactCache
        Compiled circuit and keys; plain artifacts are wrapped in a cache.
    circuit_version : CircuitVersion or str
        The single configured circuit version.
    timeout : float, default=PROOF_TIMEOUT
        Hard limit on proof generation in seconds.

    Examples
    --------
    >>> prover = ZkProver(SnarkjsBackend(), artifacts, "facehash-anchor-v2")
    >>> proof = prover.generate(inputs)
    >>> payload = proof.to_calldata()
    """

    def __init__(
        self,
        backend: ProvingBackend,
        artifacts: Union[CircuitArtifacts, ArtifactCache],
        circuit_version: Union[CircuitVersion, str],
        timeout: float = PROOF_TIMEOUT,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout}")

        if isinstance(circuit_version, str):
            circuit_version = get_circuit_version(circuit_version)

        if isinstance(artifacts, CircuitArtifacts):
            artifacts = ArtifactCache(artifacts)

        self.backend = backend
        self.cache = artifacts
        self.circuit_version: CircuitVersion = circuit_version
        self.timeout = timeout

        # Internal state
        self.proofs_generated = 0
        self.last_generation_time: Optional[float] = None

        logger.info(
            "ZkProver initialized",
            backend=getattr(backend, "name", type(backend).__name__),
            circuit_version=circuit_version.name,
            timeout_seconds=timeout,
        )

    def _check_inputs(self, inputs: CircuitInputs) -> None:
        version = self.circuit_version

        if inputs.circuit_version != version.name or inputs.arity != version.arity:
            raise ArityMismatchError(
                f"Inputs built for '{inputs.circuit_version}' cannot prove '{version.name}'",
                circuit_version=version.name,
                expected=version.arity,
                actual=inputs.arity,
            )

    def _run(self, inputs: CircuitInputs, cancel_event: threading.Event) -> Proof:
        """Witness calculation and proving inside a private temp directory."""
        artifacts = self.cache.get().artifacts

        try:
            with tempfile.TemporaryDirectory(prefix="poep_prove_") as d:
                workdir = Path(d)

                witness_path = self.backend.calculate_witness(
                    artifacts, inputs.to_json(), workdir, cancel_event
                )
                if cancel_event.is_set():
                    raise ProcessCancelled("cancelled after witness calculation")

                proof_dict, public_signals = self.backend.prove(
                    artifacts, witness_path, workdir, cancel_event
                )

        except (PoepPipelineError, ProcessCancelled):
            raise

        except Exception as e:
            raise ProofBackendError(
                f"Unexpected error during proof generation: {str(e)}",
                backend=getattr(self.backend, "name", type(self.backend).__name__),
            )

        return validate_proof_structure(
            proof_dict, public_signals, self.circuit_version.public_outputs
        )

    def _record(self, start_time: float) -> None:
        self.last_generation_time = time.perf_counter() - start_time
        self.proofs_generated += 1

        logger.info(
            "ZK proof generation completed",
            circuit_version=self.circuit_version.name,
            generation_time_seconds=self.last_generation_time,
        )

    def generate(self, inputs: CircuitInputs) -> Proof:
        """
        Generate a proof, blocking the caller until it finishes or times out.

        Raises
        ------
        CircuitUnavailableError
            If the circuit artifacts are missing.
        ArityMismatchError
            If the inputs were built for a different circuit version.
        InvalidWitnessError
            If the circuit rejects the inputs.
        ProofBackendError
            If the backend crashes.
        ProofTimeoutError
            If generation exceeds the timeout; no proof is returned.
        MalformedProofError
            If the backend output fails structural validation.
        """
        self.cache.get()
        self._check_inputs(inputs)

        logger.info("Starting ZK proof generation", circuit_version=self.circuit_version.name)
        start_time = time.perf_counter()

        cancel_event = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="poep-prover")

        try:
            future = executor.submit(self._run, inputs, cancel_event)
            proof = future.result(timeout=self.timeout)

        except FutureTimeoutError:
            cancel_event.set()
            logger.warning(
                "ZK proof generation timed out",
                timeout_seconds=self.timeout,
            )
            raise ProofTimeoutError(self.timeout)

        finally:
            # Worker finishes and cleans its temp directory in the background
            executor.shutdown(wait=False)

        self._record(start_time)
        return proof

    async def generate_async(self, inputs: CircuitInputs) -> Proof:
        """
        Awaitable variant of :meth:`generate`.

        Cancelling the awaiting task sets the cancel event so the backend
        stops, then re-raises :class:`asyncio.CancelledError`.
        """
        self.cache.get()
        self._check_inputs(inputs)

        start_time = time.perf_counter()
        cancel_event = threading.Event()
        loop = asyncio.get_running_loop()

        try:
            proof = await asyncio.wait_for(
                loop.run_in_executor(None, self._run, inputs, cancel_event),
                timeout=self.timeout,
            )

        except asyncio.TimeoutError:
            cancel_event.set()
            logger.warning("ZK proof generation timed out", timeout_seconds=self.timeout)
            raise ProofTimeoutError(self.timeout)

        except asyncio.CancelledError:
            cancel_event.set()
            logger.info("ZK proof generation cancelled")
            raise

        self._record(start_time)
        return proof

    def get_prover_statistics(self) -> Dict[str, Any]:
        """
        Get statistics about the prover configuration and usage.

        Returns
        -------
        Dict[str, Any]
            Dictionary containing prover statistics.
        """
        return {
            "prover_config": {
                "backend": getattr(self.backend, "name", type(self.backend).__name__),
                "circuit_version": self.circuit_version.name,
                "input_names": list(self.circuit_version.input_names),
                "timeout_seconds": self.timeout,
            },
            "usage": {
                "proofs_generated": self.proofs_generated,
                "last_generation_time_seconds": self.last_generation_time,
                "artifacts_loaded": self.cache.is_loaded,
            },
        }
