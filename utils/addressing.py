"""Address normalization helpers."""

from __future__ import annotations

from eth_utils import is_hex_address

RONIN_PREFIX = "ronin:"
HEX_PREFIX = "0x"
PARSE_ERROR_MESSAGE = "Failed to parse your address!"


class InvalidAddressError(ValueError):
    """Raised when input does not parse as a 20-byte hex account address."""


def normalize_address(value: str | None) -> str:
    """Rewrite the `ronin:` prefix to `0x`; case and checksum are left untouched."""
    return str(value or "").replace(RONIN_PREFIX, HEX_PREFIX, 1)


def is_valid_address(value: str | None) -> bool:
    return is_hex_address(normalize_address(value))


def parse_address(value: str | None) -> str:
    address = normalize_address(value)
    if not is_hex_address(address):
        raise InvalidAddressError(PARSE_ERROR_MESSAGE)
    return address
