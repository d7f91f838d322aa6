import json
import stat
import sys
import threading
import time

import pytest

from poep_pipeline.backends import ProcessCancelled, SnarkjsBackend, run_cancellable
from poep_pipeline.exceptions import InvalidWitnessError, ProofBackendError

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="shell script stand-in for snarkjs")

PROOF = {"pi_a": ["1", "2", "1"], "pi_b": [["1", "2"], ["3", "4"], ["1", "0"]], "pi_c": ["5", "6", "1"]}


def _fake_snarkjs(tmp_path, witness_step, prove_step):
    """
    Write an executable standing in for snarkjs.

    ``wtns calculate CIRCUIT INPUT WITNESS`` runs ``witness_step`` and
    ``groth16 prove ZKEY WITNESS PROOF PUBLIC`` runs ``prove_step``.
    """
    script = tmp_path / "snarkjs"
    script.write_text(
        "#!/bin/sh\n"
        'if [ "$1" = "wtns" ]; then\n'
        f"{witness_step}\n"
        "else\n"
        f"{prove_step}\n"
        "fi\n",
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return SnarkjsBackend(executable=str(script))


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


def test_missing_snarkjs_is_backend_error(artifacts, tmp_path):
    backend = SnarkjsBackend(executable="snarkjs-does-not-exist")

    with pytest.raises(ProofBackendError):
        backend.calculate_witness(artifacts, {"faceHash": "1"}, tmp_path, threading.Event())

    with pytest.raises(ProofBackendError):
        backend.prove(artifacts, tmp_path / "witness.wtns", tmp_path, threading.Event())


@posix_only
def test_snarkjs_success_reads_back_proof(artifacts, tmp_path, workdir):
    backend = _fake_snarkjs(
        tmp_path,
        witness_step='  cp "$4" "$5"',
        prove_step=f"  echo '{json.dumps(PROOF)}' > \"$5\"\n  echo '[\"5\"]' > \"$6\"",
    )
    event = threading.Event()

    witness = backend.calculate_witness(artifacts, {"faceHash": "7", "nonce": "9"}, workdir, event)
    proof, public_signals = backend.prove(artifacts, witness, workdir, event)

    assert json.loads(witness.read_text(encoding="utf-8")) == {"faceHash": "7", "nonce": "9"}
    assert proof == PROOF
    assert public_signals == ["5"]


@posix_only
def test_rejected_witness_is_invalid_witness(artifacts, tmp_path, workdir):
    backend = _fake_snarkjs(
        tmp_path,
        witness_step="  echo 'Error: Assert Failed' >&2\n  exit 1",
        prove_step="  exit 0",
    )

    with pytest.raises(InvalidWitnessError) as excinfo:
        backend.calculate_witness(artifacts, {"faceHash": "1"}, workdir, threading.Event())

    assert "Assert Failed" in excinfo.value.message


@posix_only
def test_witness_step_without_output_file_is_invalid_witness(artifacts, tmp_path, workdir):
    backend = _fake_snarkjs(tmp_path, witness_step="  exit 0", prove_step="  exit 0")

    with pytest.raises(InvalidWitnessError):
        backend.calculate_witness(artifacts, {"faceHash": "1"}, workdir, threading.Event())


@posix_only
def test_failed_prove_is_backend_error(artifacts, tmp_path, workdir):
    backend = _fake_snarkjs(
        tmp_path,
        witness_step='  cp "$4" "$5"',
        prove_step="  echo 'out of memory' >&2\n  exit 2",
    )
    event = threading.Event()
    witness = backend.calculate_witness(artifacts, {"faceHash": "1"}, workdir, event)

    with pytest.raises(ProofBackendError) as excinfo:
        backend.prove(artifacts, witness, workdir, event)

    assert excinfo.value.context["returncode"] == 2
    assert "out of memory" in excinfo.value.context["stderr"]


@posix_only
@pytest.mark.parametrize(
    "prove_step",
    [
        "  exit 0",
        "  echo 'not json' > \"$5\"\n  echo '[\"5\"]' > \"$6\"",
    ],
)
def test_unreadable_proof_output_is_backend_error(artifacts, tmp_path, workdir, prove_step):
    backend = _fake_snarkjs(tmp_path, witness_step='  cp "$4" "$5"', prove_step=prove_step)
    event = threading.Event()
    witness = backend.calculate_witness(artifacts, {"faceHash": "1"}, workdir, event)

    with pytest.raises(ProofBackendError):
        backend.prove(artifacts, witness, workdir, event)


def test_run_cancellable_completes():
    result = run_cancellable([sys.executable, "-c", "print('ok')"])

    assert result.returncode == 0
    assert result.stdout.strip() == "ok"


def test_run_cancellable_kills_child_on_cancel():
    event = threading.Event()
    threading.Timer(0.2, event.set).start()

    start = time.perf_counter()
    with pytest.raises(ProcessCancelled):
        run_cancellable([sys.executable, "-c", "import time; time.sleep(30)"], event)

    assert time.perf_counter() - start < 5.0
