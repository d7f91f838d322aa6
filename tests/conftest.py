import hashlib
import json
import threading
from pathlib import Path

import cv2
import numpy as np
import pytest
from py_ecc.optimized_bn128 import G1, G2, multiply, normalize

from poep_pipeline.backends import ProcessCancelled
from poep_pipeline.circuits import CircuitArtifacts
from poep_pipeline.constants import BN254_SCALAR_MODULUS

R = BN254_SCALAR_MODULUS


def _encode(image: np.ndarray, ext: str = ".png") -> bytes:
    ok, buffer = cv2.imencode(ext, image)
    assert ok
    return buffer.tobytes()


def _face(seed: int, width: int = 320, height: int = 400) -> np.ndarray:
    rng = np.random.default_rng(seed)
    image = np.full((height, width, 3), 40, dtype=np.uint8)
    skin = tuple(int(v) for v in rng.integers(120, 220, size=3))
    center = (width // 2 + int(rng.integers(-10, 10)), height // 2)
    cv2.ellipse(image, center, (width // 3, height // 3), 0, 0, 360, skin, -1)
    for dx in (-width // 8, width // 8):
        cv2.circle(image, (center[0] + dx, center[1] - height // 10), 12, (30, 30, 30), -1)
    cv2.line(image, (center[0], center[1] - 10), (center[0], center[1] + 30), (90, 70, 60), 3)
    cv2.ellipse(image, (center[0], center[1] + 60), (40, 12), 0, 0, 180, (60, 40, 140), 4)
    noise = rng.integers(0, 12, size=image.shape, dtype=np.uint8)
    return cv2.add(image, noise)


@pytest.fixture
def face_image() -> bytes:
    return _encode(_face(seed=7))


@pytest.fixture
def other_face_image() -> bytes:
    return _encode(_face(seed=1234, width=360, height=360))


@pytest.fixture
def blank_image() -> bytes:
    return _encode(np.zeros((256, 256, 3), dtype=np.uint8))


@pytest.fixture
def white_image() -> bytes:
    return _encode(np.full((200, 300, 3), 255, dtype=np.uint8), ".jpg")


# =============================================================================
# Simulated Groth16 setup with known trapdoors
# =============================================================================


def _g1_json(point):
    x, y = normalize(point)
    return [str(x.n), str(y.n), "1"]


def _fq2_ints(value):
    return [str(int(getattr(c, "n", c))) for c in value.coeffs]


def _g2_json(point):
    x, y = normalize(point)
    return [_fq2_ints(x), _fq2_ints(y), ["1", "0"]]


class SimulatedGroth16:
    """
    Trusted setup whose toxic waste is known, so valid proofs can be built
    for any public signal without a circuit.
    """

    def __init__(self, public_inputs: int = 1) -> None:
        self.alpha, self.beta, self.gamma, self.delta = 11, 13, 17, 19
        self.ic_scalars = [23 + 2 * i for i in range(public_inputs + 1)]
        self.public_inputs = public_inputs

    def verification_key(self) -> dict:
        return {
            "protocol": "groth16",
            "curve": "bn128",
            "nPublic": self.public_inputs,
            "vk_alpha_1": _g1_json(multiply(G1, self.alpha)),
            "vk_beta_2": _g2_json(multiply(G2, self.beta)),
            "vk_gamma_2": _g2_json(multiply(G2, self.gamma)),
            "vk_delta_2": _g2_json(multiply(G2, self.delta)),
            "IC": [_g1_json(multiply(G1, u)) for u in self.ic_scalars],
        }

    def prove(self, public_signals, a: int = 29, b: int = 31):
        vk_x = self.ic_scalars[0]
        for u, s in zip(self.ic_scalars[1:], public_signals):
            vk_x = (vk_x + u * int(s)) % R

        numerator = (a * b - self.alpha * self.beta - vk_x * self.gamma) % R
        c = numerator * pow(self.delta, -1, R) % R

        proof = {
            "pi_a": _g1_json(multiply(G1, a)),
            "pi_b": _g2_json(multiply(G2, b)),
            "pi_c": _g1_json(multiply(G1, c)),
            "protocol": "groth16",
            "curve": "bn128",
        }
        return proof, [str(s) for s in public_signals]


@pytest.fixture(scope="session")
def groth16_setup() -> SimulatedGroth16:
    return SimulatedGroth16()


@pytest.fixture(scope="session")
def verification_key(groth16_setup) -> dict:
    return groth16_setup.verification_key()


@pytest.fixture
def artifacts(tmp_path: Path, verification_key) -> CircuitArtifacts:
    circuit = tmp_path / "facehash.wasm"
    proving_key = tmp_path / "facehash_final.zkey"
    vk_path = tmp_path / "verification_key.json"

    circuit.write_bytes(b"\x00asm\x01\x00\x00\x00")
    proving_key.write_bytes(b"zkey-placeholder")
    vk_path.write_text(json.dumps(verification_key), encoding="utf-8")

    return CircuitArtifacts(circuit, proving_key, vk_path)


# =============================================================================
# Stub proving backends
# =============================================================================


def simulated_nullifier(inputs_json: dict) -> int:
    """Deterministic stand-in for the circuit's nullifier: depends on faceHash and anchor only."""
    material = f"{inputs_json['faceHash']}:{inputs_json.get('anchor', '')}"
    return int.from_bytes(hashlib.sha256(material.encode()).digest()[:31], "big")


class SimulatedBackend:
    name = "simulated"

    def __init__(self, setup: SimulatedGroth16) -> None:
        self.setup = setup
        self.workdirs = []

    def calculate_witness(self, artifacts, inputs_json, workdir, cancel_event):
        self.workdirs.append(Path(workdir))
        witness = Path(workdir) / "witness.json"
        witness.write_text(json.dumps(inputs_json), encoding="utf-8")
        return witness

    def prove(self, artifacts, witness_path, workdir, cancel_event):
        inputs_json = json.loads(Path(witness_path).read_text(encoding="utf-8"))
        return self.setup.prove([simulated_nullifier(inputs_json)])


class SlowBackend(SimulatedBackend):
    name = "slow"

    def __init__(self, setup: SimulatedGroth16, delay: float = 5.0) -> None:
        super().__init__(setup)
        self.delay = delay
        self.cancelled = threading.Event()

    def calculate_witness(self, artifacts, inputs_json, workdir, cancel_event):
        self.workdirs.append(Path(workdir))
        if cancel_event.wait(self.delay):
            self.cancelled.set()
            raise ProcessCancelled("witness calculation")
        return super().calculate_witness(artifacts, inputs_json, workdir, cancel_event)


class CrashingBackend(SimulatedBackend):
    name = "crashing"

    def prove(self, artifacts, witness_path, workdir, cancel_event):
        raise RuntimeError("segfault in prover")


class MalformedBackend(SimulatedBackend):
    name = "malformed"

    def prove(self, artifacts, witness_path, workdir, cancel_event):
        return {"pi_a": ["1"], "pi_b": [], "pi_c": ["1", "2"]}, ["1"]


@pytest.fixture
def simulated_backend(groth16_setup) -> SimulatedBackend:
    return SimulatedBackend(groth16_setup)


@pytest.fixture
def slow_backend(groth16_setup) -> SlowBackend:
    return SlowBackend(groth16_setup)


@pytest.fixture
def crashing_backend(groth16_setup) -> CrashingBackend:
    return CrashingBackend(groth16_setup)


@pytest.fixture
def malformed_backend(groth16_setup) -> MalformedBackend:
    return MalformedBackend(groth16_setup)
