"""
End-to-end proof-of-uniqueness pipeline.

One invocation per user action: extract features from a single capture,
hash them, build circuit inputs (resolving the wallet anchor when the
circuit needs one), generate the proof and optionally verify it locally
before handing the mint payload back to the caller. Nothing is persisted
and nothing is retried; retry policy belongs to the caller.
"""

import asyncio
import functools
import time
from typing import Dict, Optional

import structlog

from . import config
from .anchor import FirstTransactionLookup, resolve_anchor
from .backends import SnarkjsBackend
from .circuits import ArtifactCache, CircuitArtifacts
from .data_models import CircuitInputs, PipelineResult, Proof
from .exceptions import MalformedProofError, MissingAnchorError
from .feature_extraction import extract
from .fingerprint import FingerprintHasher
from .preprocessing import ImageBytes
from .witness import WitnessBuilder
from .zk_prover import ZkProver
from .zk_verifier import Groth16Verifier

# Initialize structured logger
logger = structlog.get_logger(__name__)


class ProofOfUniquenessPipeline:
    """
    Orchestrates extraction, hashing, witness building, proving and
    verification.

    Parameters
    ----------
    prover : ZkProver
        Prover bound to the configured circuit version.
    verifier : Groth16Verifier, optional
        Local verifier. When given, an invalid proof is rejected before it
        is returned.
    hasher : FingerprintHasher, optional
        Defaults to the standard hash scheme.
    builder : WitnessBuilder, optional
        Defaults to a builder for the prover's circuit version.
    anchor_lookup : FirstTransactionLookup, optional
        First-transaction lookup; without one the address fallback is used.
    parallel : bool, optional
        Parallel sub-feature extraction; defaults to configuration.

    Examples
    --------
    >>> pipeline = ProofOfUniquenessPipeline.from_config()
    >>> result = pipeline.run(image_bytes, address="0x...")
    >>> result.payload.to_dict()["nullifier"]
    """

    def __init__(
        self,
        prover: ZkProver,
        verifier: Optional[Groth16Verifier] = None,
        hasher: Optional[FingerprintHasher] = None,
        builder: Optional[WitnessBuilder] = None,
        anchor_lookup: Optional[FirstTransactionLookup] = None,
        parallel: Optional[bool] = None,
    ) -> None:
        self.prover = prover
        self.verifier = verifier
        self.hasher = hasher or FingerprintHasher()
        self.builder = builder or WitnessBuilder(prover.circuit_version)
        self.anchor_lookup = anchor_lookup
        self.parallel = parallel

        if self.builder.circuit_version != prover.circuit_version:
            raise ValueError(
                f"Witness builder targets '{self.builder.circuit_version.name}' "
                f"but the prover targets '{prover.circuit_version.name}'"
            )

    @classmethod
    def from_config(cls, verify_locally: bool = True) -> "ProofOfUniquenessPipeline":
        """Build a pipeline from environment configuration."""
        cache = ArtifactCache(
            CircuitArtifacts(
                circuit_path=config.CIRCUIT_WASM_PATH,
                proving_key_path=config.PROVING_KEY_PATH,
                verification_key_path=config.VERIFICATION_KEY_PATH,
            )
        )
        prover = ZkProver(
            SnarkjsBackend(config.SNARKJS_BIN),
            cache,
            config.CIRCUIT_VERSION,
            timeout=config.PROOF_TIMEOUT_SECONDS,
        )

        verifier = None
        if verify_locally:
            verifier = Groth16Verifier(
                cache.get().verification_key, timeout=config.VERIFY_TIMEOUT_SECONDS
            )

        lookup = FirstTransactionLookup(
            api_url=config.BASESCAN_API_URL,
            api_key=config.BASESCAN_API_KEY,
            timeout=config.ANCHOR_LOOKUP_TIMEOUT_SECONDS,
        )

        return cls(prover, verifier=verifier, anchor_lookup=lookup)

    def face_hash(self, image: ImageBytes) -> int:
        """Extract and hash a capture into the face hash field element."""
        features, landmarks = extract(image, parallel=self.parallel)
        return self.hasher.hash(features, landmarks)

    def prepare_inputs(
        self,
        image: ImageBytes,
        address: Optional[str] = None,
        nonce: Optional[int] = None,
        timings: Optional[Dict[str, float]] = None,
    ) -> CircuitInputs:
        """
        Build circuit inputs for one capture.

        Raises
        ------
        MissingAnchorError
            If the circuit needs an anchor and no address was given.
        InvalidAddressError
            If the address is malformed.
        """
        timings = {} if timings is None else timings
        version = self.builder.circuit_version

        if version.requires_anchor and address is None:
            raise MissingAnchorError(version.name)

        start = time.perf_counter()
        face_hash = self.face_hash(image)
        timings["extract_seconds"] = time.perf_counter() - start

        anchor = None
        if address is not None:
            start = time.perf_counter()
            anchor = resolve_anchor(address, self.anchor_lookup)
            timings["anchor_seconds"] = time.perf_counter() - start

        return self.builder.build(face_hash, nonce=nonce, anchor=anchor)

    def _finish(self, proof: Proof, timings: Dict[str, float]) -> PipelineResult:
        verified = None
        if self.verifier is not None:
            start = time.perf_counter()
            verified = self.verifier.verify(proof)
            timings["verify_seconds"] = time.perf_counter() - start

            if not verified:
                raise MalformedProofError(
                    "Generated proof failed local verification", field="proof"
                )

        logger.info(
            "Proof of uniqueness ready",
            circuit_version=self.prover.circuit_version.name,
            verified=verified,
            **timings,
        )

        return PipelineResult(
            payload=proof.to_calldata(),
            proof=proof,
            circuit_version=self.prover.circuit_version.name,
            verified=verified,
            timings=timings,
        )

    def run(self, image: ImageBytes, address: Optional[str] = None) -> PipelineResult:
        """
        Run the full pipeline for one capture.

        Returns
        -------
        PipelineResult
            Mint payload, proof and per-stage timings.

        Raises
        ------
        PoepPipelineError
            Any typed pipeline failure; none are retried here.
        """
        timings: Dict[str, float] = {}
        inputs = self.prepare_inputs(image, address=address, timings=timings)

        start = time.perf_counter()
        proof = self.prover.generate(inputs)
        timings["prove_seconds"] = time.perf_counter() - start

        return self._finish(proof, timings)

    async def run_async(self, image: ImageBytes, address: Optional[str] = None) -> PipelineResult:
        """
        Awaitable :meth:`run`.

        Extraction, the anchor lookup and local verification run in the
        default executor so the event loop is never blocked.
        """
        loop = asyncio.get_running_loop()
        timings: Dict[str, float] = {}
        inputs = await loop.run_in_executor(
            None,
            functools.partial(self.prepare_inputs, image, address=address, timings=timings),
        )

        start = time.perf_counter()
        proof = await self.prover.generate_async(inputs)
        timings["prove_seconds"] = time.perf_counter() - start

        return await loop.run_in_executor(None, self._finish, proof, timings)
