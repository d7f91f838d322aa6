import asyncio
import time

import pytest

from poep_pipeline.circuits import ArtifactCache, CircuitArtifacts
from poep_pipeline.exceptions import (
    ArityMismatchError,
    CircuitUnavailableError,
    MalformedProofError,
    ProofBackendError,
    ProofTimeoutError,
)
from poep_pipeline.witness import WitnessBuilder
from poep_pipeline.zk_prover import ZkProver, validate_proof_structure

VERSION = "facehash-anchor-v2"


@pytest.fixture
def inputs():
    return WitnessBuilder(VERSION).build(1111, nonce=2222, anchor=3333)


def test_generate_returns_structurally_valid_proof(simulated_backend, artifacts, inputs):
    prover = ZkProver(simulated_backend, artifacts, VERSION)
    proof = prover.generate(inputs)

    assert len(proof.pi_a) >= 2
    assert len(proof.pi_b) >= 2 and all(len(row) == 2 for row in proof.pi_b[:2])
    assert len(proof.pi_c) >= 2
    assert len(proof.public_signals) == 1
    assert int(proof.nullifier) > 0
    assert prover.proofs_generated == 1


def test_generate_cleans_up_temporary_files(simulated_backend, artifacts, inputs):
    ZkProver(simulated_backend, artifacts, VERSION).generate(inputs)

    assert simulated_backend.workdirs
    assert not any(path.exists() for path in simulated_backend.workdirs)


def test_nullifier_depends_on_face_hash_and_anchor_not_nonce(simulated_backend, artifacts):
    prover = ZkProver(simulated_backend, artifacts, VERSION)
    builder = WitnessBuilder(VERSION)

    first = prover.generate(builder.build(1111, anchor=3333))
    second = prover.generate(builder.build(1111, anchor=3333))
    other_wallet = prover.generate(builder.build(1111, anchor=4444))

    assert first.nullifier == second.nullifier
    assert first.nullifier != other_wallet.nullifier


def test_calldata_swaps_pb_coordinates(simulated_backend, artifacts, inputs):
    proof = ZkProver(simulated_backend, artifacts, VERSION).generate(inputs)
    payload = proof.to_calldata()

    assert payload.pA == (proof.pi_a[0], proof.pi_a[1])
    assert payload.pB[0] == (proof.pi_b[0][1], proof.pi_b[0][0])
    assert payload.pB[1] == (proof.pi_b[1][1], proof.pi_b[1][0])
    assert payload.pC == (proof.pi_c[0], proof.pi_c[1])
    assert payload.nullifier == proof.nullifier
    assert set(payload.to_dict()) == {"pA", "pB", "pC", "nullifier"}
    assert all(isinstance(v, str) for v in payload.pA)


def test_timeout_returns_no_proof_and_cancels_backend(slow_backend, artifacts, inputs):
    prover = ZkProver(slow_backend, artifacts, VERSION, timeout=0.2)

    start = time.perf_counter()
    with pytest.raises(ProofTimeoutError) as exc_info:
        prover.generate(inputs)

    assert time.perf_counter() - start < 2.0
    assert exc_info.value.retryable
    assert slow_backend.cancelled.wait(2.0)
    assert prover.proofs_generated == 0


def test_async_timeout(slow_backend, artifacts, inputs):
    prover = ZkProver(slow_backend, artifacts, VERSION, timeout=0.2)

    with pytest.raises(ProofTimeoutError):
        asyncio.run(prover.generate_async(inputs))

    assert slow_backend.cancelled.wait(2.0)


def test_async_generate(simulated_backend, artifacts, inputs):
    prover = ZkProver(simulated_backend, artifacts, VERSION)
    proof = asyncio.run(prover.generate_async(inputs))

    assert len(proof.public_signals) == 1


def test_backend_crash_is_wrapped(crashing_backend, artifacts, inputs):
    with pytest.raises(ProofBackendError) as exc_info:
        ZkProver(crashing_backend, artifacts, VERSION).generate(inputs)

    assert exc_info.value.retryable


def test_malformed_backend_output_rejected(malformed_backend, artifacts, inputs):
    with pytest.raises(MalformedProofError):
        ZkProver(malformed_backend, artifacts, VERSION).generate(inputs)


def test_inputs_for_other_version_rejected(simulated_backend, artifacts):
    two_input = WitnessBuilder("facehash-v1").build(1, nonce=2)

    with pytest.raises(ArityMismatchError):
        ZkProver(simulated_backend, artifacts, VERSION).generate(two_input)


def test_missing_artifacts(simulated_backend, tmp_path, inputs):
    missing = CircuitArtifacts(
        tmp_path / "nope.wasm", tmp_path / "nope.zkey", tmp_path / "nope.json"
    )

    with pytest.raises(CircuitUnavailableError) as exc_info:
        ZkProver(simulated_backend, missing, VERSION).generate(inputs)

    assert exc_info.value.context["artifact"] == "circuit"


def test_empty_artifact_is_unavailable(artifacts):
    artifacts.proving_key_path.write_bytes(b"")

    with pytest.raises(CircuitUnavailableError) as exc_info:
        artifacts.check_available()

    assert exc_info.value.context["artifact"] == "proving_key"


def test_artifact_cache_loads_once(artifacts):
    cache = ArtifactCache(artifacts)

    first = cache.get()
    artifacts.verification_key_path.unlink()
    second = cache.get()

    assert first is second
    assert cache.is_loaded


@pytest.mark.parametrize(
    "proof, signals",
    [
        ({"pi_a": ["1"], "pi_b": [["1", "2"], ["3", "4"]], "pi_c": ["1", "2"]}, ["5"]),
        ({"pi_a": ["1", "2"], "pi_b": [["1", "2"]], "pi_c": ["1", "2"]}, ["5"]),
        ({"pi_a": ["1", "x"], "pi_b": [["1", "2"], ["3", "4"]], "pi_c": ["1", "2"]}, ["5"]),
        ({"pi_a": ["1", "2"], "pi_b": [["1", "2"], ["3", "4"]], "pi_c": ["1", "2"]}, []),
        ({"pi_a": ["1", "2"], "pi_b": [["1", "2"], ["3", "4"]], "pi_c": ["1", "2"]}, ["5", "6"]),
        ({"pi_a": ["1", "2"], "pi_b": [["1", "2"], ["3", "4"]], "pi_c": ["1", "2"]}, ["0xabc"]),
        ("not a proof", ["5"]),
    ],
)
def test_validate_proof_structure_rejects(proof, signals):
    with pytest.raises(MalformedProofError):
        validate_proof_structure(proof, signals, expected_outputs=1)


def test_non_positive_timeout_rejected(simulated_backend, artifacts):
    with pytest.raises(ValueError):
        ZkProver(simulated_backend, artifacts, VERSION, timeout=0)
