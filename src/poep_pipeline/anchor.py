"""
Anchor collaborator: wallet address -> anchor field element.

The anchor binds a proof to a wallet through the hash of the wallet's
first on-chain transaction. When no block explorer key is configured, the
explorer has no transactions for the address, or the lookup fails or times
out, the anchor source falls back to the SHA-256 of the lowercased address.
The fallback is deterministic so the same wallet always gets the same
anchor.
"""

from typing import Optional

import httpx
import structlog
from eth_utils import is_checksum_address, is_hex, is_hex_address

from .constants import ANCHOR_LOOKUP_TIMEOUT, DEFAULT_BASESCAN_API_URL
from .exceptions import InvalidAddressError
from .field import to_field_element
from .utils import hash_data, retry

# Initialize structured logger
logger = structlog.get_logger(__name__)

# "0x" + 32-byte hex digest
TX_HASH_LENGTH = 66


def validate_address(address: object) -> str:
    """
    Validate a 20-byte hex wallet address.

    All-lowercase and all-uppercase hex are accepted as is; mixed case must
    carry a valid EIP-55 checksum.

    Returns
    -------
    str
        The address, lowercased.

    Raises
    ------
    InvalidAddressError
        If the address is not ``0x`` followed by 40 hex characters or its
        checksum is wrong.

    Examples
    --------
    >>> validate_address("0x52908400098527886E0F7030069857D2E4169EE7")
    '0x52908400098527886e0f7030069857d2e4169ee7'
    """
    if not isinstance(address, str):
        raise InvalidAddressError(address, "address must be a string")

    if not address.startswith(("0x", "0X")) or not is_hex_address(address):
        raise InvalidAddressError(address, "expected 0x followed by 40 hex characters")

    digits = address[2:]
    if digits != digits.lower() and digits != digits.upper():
        if not is_checksum_address(address):
            raise InvalidAddressError(address, "EIP-55 checksum mismatch")

    return "0x" + digits.lower()


def fallback_anchor_source(address: str) -> str:
    """``0x`` + SHA-256 hex of the lowercased address."""
    return "0x" + hash_data(address.lower(), "sha256")


def is_transaction_hash(value: object) -> bool:
    """True for ``0x`` followed by exactly 64 hex characters."""
    return (
        isinstance(value, str)
        and len(value) == TX_HASH_LENGTH
        and value.startswith("0x")
        and is_hex(value)
    )


def derive_anchor(tx_hash: str) -> int:
    """Reduce a hex transaction hash into the field."""
    return to_field_element(tx_hash)


class FirstTransactionLookup:
    """
    Block explorer client returning a wallet's first transaction hash.

    Parameters
    ----------
    api_url : str
        Etherscan-compatible ``/api`` endpoint.
    api_key : str, optional
        Explorer API key. Without one every lookup uses the fallback.
    timeout : float, default=ANCHOR_LOOKUP_TIMEOUT
        Per-request timeout in seconds, independent of the proof timeout.
    transport : httpx.BaseTransport, optional
        Custom transport, mainly for tests.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_BASESCAN_API_URL,
        api_key: Optional[str] = None,
        timeout: float = ANCHOR_LOOKUP_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout}")

        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @retry(max_attempts=2, delay=0.2, exceptions=(httpx.TransportError,))
    def _fetch(self, address: str) -> Optional[str]:
        params = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "page": 1,
            "offset": 1,
            "sort": "asc",
            "apikey": self.api_key,
        }

        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.get(self.api_url, params=params)
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict):
            return None

        result = data.get("result")
        if data.get("status") == "1" and isinstance(result, list) and result:
            first = result[0] if isinstance(result[0], dict) else {}
            tx_hash = first.get("hash")
            if is_transaction_hash(tx_hash):
                return tx_hash
            logger.warning(
                "Explorer returned a malformed transaction hash",
                tx_hash=str(tx_hash)[:80],
            )
        return None

    def first_transaction(self, address: str) -> str:
        """
        Return the hash of the address's first transaction, or the
        deterministic fallback.
        """
        address = validate_address(address)

        if not self.api_key:
            logger.debug("No explorer API key configured, using address fallback")
            return fallback_anchor_source(address)

        try:
            tx_hash = self._fetch(address)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "First transaction lookup failed, using address fallback",
                error=str(e),
                error_type=type(e).__name__,
            )
            return fallback_anchor_source(address)

        if tx_hash is None:
            logger.info("No transactions found for address, using address fallback")
            return fallback_anchor_source(address)

        return tx_hash


def resolve_anchor(address: str, lookup: Optional[FirstTransactionLookup] = None) -> int:
    """
    Validate the address, look up its anchor source and reduce it.

    With no lookup configured the address fallback is used directly.
    """
    address = validate_address(address)

    if lookup is None:
        source = fallback_anchor_source(address)
    else:
        source = lookup.first_transaction(address)

    return derive_anchor(source)
