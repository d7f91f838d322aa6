import pytest

from poep_pipeline import config
from poep_pipeline.exceptions import (
    BackendError,
    ImageTooLargeError,
    InputError,
    NoSignalExtractedError,
    ProofTimeoutError,
)
from poep_pipeline.logging_setup import configure_logging, is_configured


def test_default_configuration_is_valid():
    assert config.validate_configuration() is True


def test_invalid_timeout_fails_validation(monkeypatch):
    monkeypatch.setattr(config, "PROOF_TIMEOUT_SECONDS", 0.0)

    with pytest.raises(ValueError, match="PROOF_TIMEOUT_SECONDS"):
        config.validate_configuration()


def test_unknown_circuit_version_fails_validation(monkeypatch):
    monkeypatch.setattr(config, "CIRCUIT_VERSION", "facehash-v0")

    with pytest.raises(ValueError, match="POEP_CIRCUIT_VERSION"):
        config.validate_configuration()


def test_config_summary_hides_api_key(monkeypatch):
    monkeypatch.setattr(config, "BASESCAN_API_KEY", "secret-key")
    summary = config.get_config_summary()

    assert summary["anchor_lookup"]["api_key_configured"] is True
    assert "secret-key" not in repr(summary)


def test_configure_logging():
    configure_logging(level="DEBUG", structured=False)

    assert is_configured()


def test_error_categories_and_retryability():
    too_large = ImageTooLargeError("too big", size=20, limit=10)
    assert isinstance(too_large, InputError)
    assert not too_large.retryable
    assert too_large.to_dict()["context"] == {"size": 20, "limit": 10}

    no_signal = NoSignalExtractedError("flat", reason="all_zero")
    assert no_signal.context["guidance"] == "retake photo"

    assert ProofTimeoutError(30.0).retryable
    assert issubclass(BackendError, Exception) and BackendError.retryable
    assert "TIMEOUT_001" in str(ProofTimeoutError(30.0))
