import hashlib

import httpx
import pytest

from poep_pipeline.anchor import (
    FirstTransactionLookup,
    derive_anchor,
    fallback_anchor_source,
    resolve_anchor,
    validate_address,
)
from poep_pipeline.constants import BN254_SCALAR_MODULUS
from poep_pipeline.exceptions import InvalidAddressError

CHECKSUMMED = "0x52908400098527886E0F7030069857D2E4169EE7"
LOWER = CHECKSUMMED.lower()
FIRST_TX = "0x" + "ab" * 32


def _lookup(handler, api_key="test-key"):
    return FirstTransactionLookup(
        api_url="https://explorer.test/api",
        api_key=api_key,
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


def test_valid_addresses_are_lowercased():
    assert validate_address(CHECKSUMMED) == LOWER
    assert validate_address(LOWER) == LOWER
    assert validate_address("0x" + LOWER[2:].upper()) == LOWER


@pytest.mark.parametrize(
    "address",
    [
        "0x1234",
        LOWER[2:],
        LOWER + "00",
        "0x" + "zz" * 20,
        "0x52908400098527886e0F7030069857D2E4169EE7",
        None,
        12345,
    ],
)
def test_invalid_addresses_rejected(address):
    with pytest.raises(InvalidAddressError):
        validate_address(address)


def test_fallback_is_sha256_of_lowercased_address():
    expected = "0x" + hashlib.sha256(LOWER.encode()).hexdigest()

    assert fallback_anchor_source(CHECKSUMMED) == expected
    assert fallback_anchor_source(LOWER) == expected


def test_derive_anchor_reduces_into_field():
    value = derive_anchor("0x" + "ff" * 32)

    assert value == (2**256 - 1) % BN254_SCALAR_MODULUS


def test_lookup_returns_first_transaction():
    seen = {}

    def handler(request):
        seen.update(dict(request.url.params))
        return httpx.Response(200, json={"status": "1", "result": [{"hash": FIRST_TX}]})

    assert _lookup(handler).first_transaction(CHECKSUMMED) == FIRST_TX
    assert seen["action"] == "txlist"
    assert seen["sort"] == "asc"
    assert seen["offset"] == "1"
    assert seen["address"] == LOWER


def test_lookup_without_key_uses_fallback():
    def handler(request):
        raise AssertionError("explorer must not be called without a key")

    assert _lookup(handler, api_key=None).first_transaction(LOWER) == fallback_anchor_source(LOWER)


def test_lookup_with_no_transactions_uses_fallback():
    def handler(request):
        return httpx.Response(200, json={"status": "0", "message": "No transactions found", "result": []})

    assert _lookup(handler).first_transaction(LOWER) == fallback_anchor_source(LOWER)


def test_lookup_http_error_uses_fallback():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    assert _lookup(handler).first_transaction(LOWER) == fallback_anchor_source(LOWER)


def test_lookup_timeout_is_retried_then_falls_back():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    assert _lookup(handler).first_transaction(LOWER) == fallback_anchor_source(LOWER)
    assert len(calls) == 2


@pytest.mark.parametrize("tx_hash", ["0xnot-hex", "0x" + "ab" * 31, FIRST_TX[2:], 12345, None])
def test_lookup_with_malformed_hash_uses_fallback(tx_hash):
    def handler(request):
        return httpx.Response(200, json={"status": "1", "result": [{"hash": tx_hash}]})

    lookup = _lookup(handler)

    assert lookup.first_transaction(LOWER) == fallback_anchor_source(LOWER)
    assert resolve_anchor(LOWER, lookup) == derive_anchor(fallback_anchor_source(LOWER))


def test_resolve_anchor_is_deterministic_per_wallet():
    first = resolve_anchor(CHECKSUMMED)
    second = resolve_anchor(LOWER)

    assert first == second == derive_anchor(fallback_anchor_source(LOWER))


def test_resolve_anchor_uses_lookup():
    def handler(request):
        return httpx.Response(200, json={"status": "1", "result": [{"hash": FIRST_TX}]})

    assert resolve_anchor(LOWER, _lookup(handler)) == derive_anchor(FIRST_TX)


def test_lookup_rejects_non_positive_timeout():
    with pytest.raises(ValueError):
        FirstTransactionLookup(timeout=0)
