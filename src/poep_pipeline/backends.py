"""
Proving backends.

The prover talks to a backend through :class:`ProvingBackend`; the shipped
implementation drives the ``snarkjs`` command line tool. Every subprocess
is polled so a cancel event set by the caller's timeout kills the child
instead of leaving it running.
"""

import json
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import structlog

from .circuits import CircuitArtifacts
from .exceptions import InvalidWitnessError, ProofBackendError

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Poll interval for child processes while waiting on a cancel event
POLL_INTERVAL: float = 0.05

# Tail of stderr kept in error context
MAX_STDERR_CHARS: int = 2000


class ProcessCancelled(Exception):
    """Raised inside a worker when the cancel event stopped a subprocess."""


class ProvingBackend(Protocol):
    """Witness calculation and proving for one proof system."""

    name: str

    def calculate_witness(
        self,
        artifacts: CircuitArtifacts,
        inputs_json: Dict[str, str],
        workdir: Path,
        cancel_event: threading.Event,
    ) -> Path:
        ...

    def prove(
        self,
        artifacts: CircuitArtifacts,
        witness_path: Path,
        workdir: Path,
        cancel_event: threading.Event,
    ) -> Tuple[Dict[str, Any], List[Any]]:
        ...


def run_cancellable(
    cmd: List[str],
    cancel_event: Optional[threading.Event] = None,
    cwd: Optional[Path] = None,
) -> subprocess.CompletedProcess:
    """
    Run ``cmd`` to completion unless ``cancel_event`` is set first.

    Raises
    ------
    ProcessCancelled
        If the event was set; the child has been killed and reaped.
    FileNotFoundError
        If the executable does not exist.
    """
    process = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        cwd=str(cwd) if cwd else None,
    )

    while True:
        try:
            stdout, stderr = process.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel_event is not None and cancel_event.is_set():
                process.kill()
                process.communicate()
                raise ProcessCancelled(" ".join(cmd[1:3]))

    return subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)


class SnarkjsBackend:
    """
    Groth16 backend driving the ``snarkjs`` CLI.

    Parameters
    ----------
    executable : str, default="snarkjs"
        Command name or path of the snarkjs binary.

    Examples
    --------
    >>> backend = SnarkjsBackend()
    >>> witness = backend.calculate_witness(artifacts, inputs.to_json(), workdir, event)
    >>> proof, public = backend.prove(artifacts, witness, workdir, event)
    """

    name = "snarkjs"

    def __init__(self, executable: str = "snarkjs") -> None:
        self.executable = executable

    def _resolve(self) -> Optional[str]:
        return shutil.which(self.executable)

    def _require_executable(self) -> str:
        path = self._resolve()
        if path is None:
            raise ProofBackendError(
                f"snarkjs executable '{self.executable}' not found on PATH",
                backend=self.name,
            )
        return path

    def calculate_witness(
        self,
        artifacts: CircuitArtifacts,
        inputs_json: Dict[str, str],
        workdir: Path,
        cancel_event: threading.Event,
    ) -> Path:
        executable = self._require_executable()

        input_path = workdir / "input.json"
        witness_path = workdir / "witness.wtns"
        input_path.write_text(json.dumps(inputs_json), encoding="utf-8")

        start_time = time.perf_counter()
        result = run_cancellable(
            [executable, "wtns", "calculate", str(artifacts.circuit_path), str(input_path), str(witness_path)],
            cancel_event,
            cwd=workdir,
        )

        if result.returncode != 0 or not witness_path.is_file():
            raise InvalidWitnessError(
                f"Witness calculation rejected the inputs: {result.stderr[-MAX_STDERR_CHARS:].strip()}"
            )

        logger.debug(
            "Witness calculated",
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )

        return witness_path

    def prove(
        self,
        artifacts: CircuitArtifacts,
        witness_path: Path,
        workdir: Path,
        cancel_event: threading.Event,
    ) -> Tuple[Dict[str, Any], List[Any]]:
        executable = self._require_executable()

        proof_path = workdir / "proof.json"
        public_path = workdir / "public.json"

        start_time = time.perf_counter()
        result = run_cancellable(
            [
                executable,
                "groth16",
                "prove",
                str(artifacts.proving_key_path),
                str(witness_path),
                str(proof_path),
                str(public_path),
            ],
            cancel_event,
            cwd=workdir,
        )

        if result.returncode != 0:
            raise ProofBackendError(
                "snarkjs groth16 prove failed",
                backend=self.name,
                context={
                    "returncode": result.returncode,
                    "stderr": result.stderr[-MAX_STDERR_CHARS:].strip(),
                },
            )

        try:
            proof = json.loads(proof_path.read_text(encoding="utf-8"))
            public_signals = json.loads(public_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ProofBackendError(
                f"snarkjs produced unreadable proof output: {e}", backend=self.name
            )

        logger.debug(
            "Groth16 proof generated",
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )

        return proof, public_signals

