"""Account address validation and EIP-55 checksum encoding."""

from __future__ import annotations

import re

from Crypto.Hash import keccak

from .errors import InvalidAddressError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: str) -> bool:
    return bool(_ADDRESS_RE.match(value or ""))


def keccak256(data: bytes) -> bytes:
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def to_checksum_address(value: str) -> str:
    """Return the mixed-case checksum form of ``value``.

    Raises:
        InvalidAddressError: If ``value`` is not a 20-byte hex address.
    """
    candidate = (value or "").strip()
    if not is_address(candidate):
        raise InvalidAddressError(f"Invalid address: {value!r}")
    lower = candidate[2:].lower()
    address_hash = keccak256(lower.encode("ascii")).hex()
    out = []
    for char, nibble in zip(lower, address_hash):
        out.append(char.upper() if char.isalpha() and int(nibble, 16) >= 8 else char)
    return "0x" + "".join(out)


def is_checksum_address(value: str) -> bool:
    """True when ``value`` already carries a correct checksum."""
    try:
        return to_checksum_address(value) == value
    except InvalidAddressError:
        return False


__all__ = ["is_address", "is_checksum_address", "keccak256", "to_checksum_address"]
