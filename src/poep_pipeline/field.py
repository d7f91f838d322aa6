"""
Prime field arithmetic for circuit inputs.

Every value that crosses into the circuit is a Python ``int`` in
``[0, modulus)``. Python integers are arbitrary precision, so reducing a
512-bit digest loses nothing; floats are rejected outright.
"""

from typing import Union

from .constants import BN254_SCALAR_MODULUS, ZERO_INPUT_FALLBACK

FieldLike = Union[int, str, bytes]


def _require_int(x: object) -> int:
    # bool is an int subclass but never a meaningful field value
    if isinstance(x, bool) or not isinstance(x, int):
        raise TypeError(f"Field values must be int, got {type(x).__name__}")
    return x


def reduce(x: int, modulus: int = BN254_SCALAR_MODULUS) -> int:
    """
    Reduce an integer into the prime field.

    Parameters
    ----------
    x : int
        Arbitrary-precision integer, possibly far larger than the modulus.
    modulus : int, default=BN254_SCALAR_MODULUS
        Field modulus.

    Returns
    -------
    int
        ``x mod modulus``, always in ``[0, modulus)``.

    Raises
    ------
    TypeError
        If ``x`` is not an int (a programming error, not a runtime fault).

    Examples
    --------
    >>> reduce(BN254_SCALAR_MODULUS + 5)
    5
    """
    _require_int(x)
    if modulus <= 1:
        raise ValueError(f"Modulus must be greater than 1, got {modulus}")
    return x % modulus


def non_zero(x: int, fallback: int = ZERO_INPUT_FALLBACK) -> int:
    """
    Replace a zero or negative value with a small deterministic fallback.

    Only call sites whose circuit rejects zero inputs use this; it is not a
    general-purpose reduction step.
    """
    _require_int(x)
    if fallback <= 0:
        raise ValueError(f"Fallback must be positive, got {fallback}")
    return x if x > 0 else fallback


def to_field_element(value: FieldLike, modulus: int = BN254_SCALAR_MODULUS) -> int:
    """
    Parse an int, decimal string, ``0x`` hex string or big-endian bytes and
    reduce it into the field.

    Raises
    ------
    ValueError
        If a string is neither decimal nor ``0x``-prefixed hex.
    TypeError
        For any other input type.
    """
    if isinstance(value, (bytes, bytearray)):
        return reduce(int.from_bytes(value, "big"), modulus)

    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            digits = text[2:]
            if not digits:
                raise ValueError("Empty hex string")
            return reduce(int(digits, 16), modulus)
        if not (text.isascii() and text.isdigit()):
            raise ValueError(f"Not a decimal or hex integer: {value!r}")
        return reduce(int(text), modulus)

    return reduce(_require_int(value), modulus)


def is_field_element(x: object, modulus: int = BN254_SCALAR_MODULUS) -> bool:
    """Return True if ``x`` is an int already in ``[0, modulus)``."""
    if isinstance(x, bool) or not isinstance(x, int):
        return False
    return 0 <= x < modulus


def check_bit_bound(x: int, bits: int) -> int:
    """
    Enforce a circuit's bit-packing bound ``x <= 2**bits - 1``.

    Raises
    ------
    ValueError
        If the value does not fit in ``bits`` bits.
    """
    _require_int(x)
    if x < 0 or x.bit_length() > bits:
        raise ValueError(f"Value does not fit in {bits} bits")
    return x


def parse_decimal_element(text: object, modulus: int = BN254_SCALAR_MODULUS) -> int:
    """
    Parse a decimal string that must already be a field element.

    Unlike :func:`to_field_element` this never reduces: an out-of-range
    value is an error, which is what output validation needs.
    """
    if isinstance(text, bool):
        raise ValueError("Boolean is not a field element")
    if isinstance(text, int):
        value = text
    elif isinstance(text, str) and text.strip().isascii() and text.strip().isdigit():
        value = int(text.strip())
    else:
        raise ValueError(f"Not a decimal integer: {text!r}")
    if not 0 <= value < modulus:
        raise ValueError("Value outside the field")
    return value


def to_decimal_string(x: int) -> str:
    """Encode a field element the way circuit JSON and calldata expect."""
    return str(_require_int(x))
