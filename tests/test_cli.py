import json

import pytest

from poep_pipeline.cli import PoepCLI
from poep_pipeline.feature_extraction import extract
from poep_pipeline.fingerprint import hash_fingerprint


def test_face_hash_command(tmp_path, face_image, capsys):
    image_path = tmp_path / "selfie.png"
    image_path.write_bytes(face_image)

    assert PoepCLI().run_from_args(["face-hash", str(image_path)]) == 0

    output = capsys.readouterr().out.strip()
    assert int(output) == hash_fingerprint(*extract(face_image))


def test_face_hash_reports_error_code(tmp_path, capsys):
    image_path = tmp_path / "broken.png"
    image_path.write_bytes(b"not an image")

    assert PoepCLI().run_from_args(["face-hash", str(image_path)]) == 1
    assert "INPUT_001" in capsys.readouterr().err


def test_missing_image_file(tmp_path, capsys):
    assert PoepCLI().run_from_args(["face-hash", str(tmp_path / "missing.png")]) == 1


def test_verify_command(tmp_path, groth16_setup, artifacts, monkeypatch, capsys):
    from poep_pipeline import config
    from poep_pipeline.data_models import Proof

    monkeypatch.setattr(config, "VERIFICATION_KEY_PATH", artifacts.verification_key_path)
    monkeypatch.setattr(config, "VERIFY_TIMEOUT_SECONDS", 120.0)

    proof, signals = groth16_setup.prove([42])
    payload_path = tmp_path / "payload.json"
    payload_path.write_text(
        json.dumps(Proof.from_snarkjs(proof, signals).to_calldata().to_dict()), encoding="utf-8"
    )

    assert PoepCLI().run_from_args(["verify", str(payload_path)]) == 0
    assert capsys.readouterr().out.strip() == "valid"


def test_unknown_command_exits():
    with pytest.raises(SystemExit):
        PoepCLI().run_from_args(["mint"])
