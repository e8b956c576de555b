"""
Values -- fixed-point constants, range checks and identifier normalization.

All ledger quantities are plain ``int`` minor units mirroring on-chain
uint256 arithmetic: no floats, no Decimal, truncating division.

Invariants enforced:
    - Every persisted quantity lies in ``[0, UINT256_MAX]``.
    - Basis-point values lie in ``[0, BPS_DENOMINATOR]``.
    - Identifiers fit in 32 raw bytes (bytes32 on-chain).
"""

from __future__ import annotations

from financing_kernel.exceptions import (
    ArithmeticOverflowError,
    InvalidAmountError,
    InvalidIdentifierError,
)

BPS_DENOMINATOR = 10_000
WAD = 10**18
UINT256_MAX = 2**256 - 1
MAX_ID_BYTES = 32


def checked_uint256(field: str, value: int) -> int:
    """Return ``value`` if representable as uint256.

    Raises:
        ArithmeticOverflowError: value exceeds UINT256_MAX.
        InvalidAmountError: value is negative.
    """
    if value < 0:
        raise InvalidAmountError(field, value, "must not be negative")
    if value > UINT256_MAX:
        raise ArithmeticOverflowError(field, value)
    return value


def require_positive(field: str, value: int) -> int:
    """Return ``value`` if it is a strictly positive uint256."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmountError(field, value, "must be an integer")
    if value <= 0:
        raise InvalidAmountError(field, value, "must be positive")
    return checked_uint256(field, value)


def require_bps(field: str, value: int) -> int:
    """Return ``value`` if it is a basis-point figure in [0, 10000]."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmountError(field, value, "must be an integer")
    if not 0 <= value <= BPS_DENOMINATOR:
        raise InvalidAmountError(field, value, f"must be within 0..{BPS_DENOMINATOR} bps")
    return value


def apply_bps(amount: int, bps: int) -> int:
    """``amount * bps / 10000`` truncated toward zero."""
    return amount * bps // BPS_DENOMINATOR


def normalize_entity_id(value: bytes | str) -> str:
    """
    Canonical string form of an opaque entity id.

    - ``bytes`` -> ``0x``-prefixed lowercase hex (max 32 bytes)
    - ``0x`` hex string -> lowercased (max 64 hex digits)
    - any other string -> unchanged (max 32 UTF-8 bytes)

    Raises:
        InvalidIdentifierError: empty, too long, or malformed hex.
    """
    if isinstance(value, (bytes, bytearray)):
        if not value:
            raise InvalidIdentifierError(value, "empty")
        if len(value) > MAX_ID_BYTES:
            raise InvalidIdentifierError(value, f"longer than {MAX_ID_BYTES} bytes")
        return "0x" + bytes(value).hex()

    if not isinstance(value, str):
        raise InvalidIdentifierError(value, "must be bytes or str")

    text = value.strip()
    if not text:
        raise InvalidIdentifierError(value, "empty")

    if text[:2].lower() == "0x":
        digits = text[2:]
        if not digits or len(digits) > MAX_ID_BYTES * 2:
            raise InvalidIdentifierError(value, "hex id must have 1..64 digits")
        try:
            int(digits, 16)
        except ValueError:
            raise InvalidIdentifierError(value, "malformed hex") from None
        return "0x" + digits.lower()

    if len(text.encode("utf-8")) > MAX_ID_BYTES:
        raise InvalidIdentifierError(value, f"longer than {MAX_ID_BYTES} bytes")
    return text
