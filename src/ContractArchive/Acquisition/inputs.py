"""Input address lists (``{chains_root}/{chain}/addresses.txt``).

One address per line; blank lines and ``#`` comments are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from .addresses import is_address, is_checksum_address, to_checksum_address

LOGGER = logging.getLogger(__name__)

ADDRESSES_FILE = "addresses.txt"


def addresses_path(chains_root: str | Path, chain_name: str) -> Path:
    return Path(chains_root) / chain_name / ADDRESSES_FILE


def _iter_lines(path: Path) -> List[Tuple[int, str]]:
    lines = []
    for number, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = raw.strip()
        if line and not line.startswith("#"):
            lines.append((number, line))
    return lines


def read_addresses(chains_root: str | Path, chain_name: str) -> List[str]:
    """Checksummed addresses listed for ``chain_name``, in file order.

    A missing file yields an empty list. Malformed lines are skipped with a
    warning naming the line; ``validate_address_list`` reports them all.
    """
    path = addresses_path(chains_root, chain_name)
    if not path.exists():
        LOGGER.warning("Addresses file not found for %s: %s", chain_name, path)
        return []
    addresses: List[str] = []
    for number, line in _iter_lines(path):
        if not is_address(line):
            LOGGER.warning("Skipping invalid address at %s:%d: %r", path, number, line)
            continue
        addresses.append(to_checksum_address(line))
    return addresses


def select_addresses(
    addresses: List[str],
    *,
    address: Optional[str] = None,
    start: Optional[int] = None,
    end: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[str]:
    """Apply ``--address`` / ``--from`` / ``--to`` / ``--limit`` selection.

    ``start`` and ``end`` are zero-based, end-exclusive list indices. A single
    ``address`` only selects from the listed addresses; an unlisted one selects
    nothing.

    Raises:
        InvalidAddressError: If ``address`` is malformed.
    """
    if address:
        wanted = to_checksum_address(address)
        selected = [a for a in addresses if a == wanted]
        if not selected:
            LOGGER.warning("Address %s is not in the input list; nothing selected", wanted)
        return selected
    selected = addresses[start or 0 : end]
    if limit is not None:
        selected = selected[:limit]
    return selected


@dataclass
class AddressListReport:
    path: Path
    total: int = 0
    invalid: List[Tuple[int, str]] = field(default_factory=list)
    not_checksummed: List[Tuple[int, str]] = field(default_factory=list)
    duplicates: List[Tuple[int, str]] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.invalid and not self.duplicates


def validate_address_list(chains_root: str | Path, chain_name: str) -> AddressListReport:
    """Check an address list for malformed, non-checksummed and duplicate entries."""
    path = addresses_path(chains_root, chain_name)
    report = AddressListReport(path=path)
    if not path.exists():
        return report
    seen = set()
    for number, line in _iter_lines(path):
        report.total += 1
        if not is_address(line):
            report.invalid.append((number, line))
            continue
        if not is_checksum_address(line):
            report.not_checksummed.append((number, line))
        canonical = line.lower()
        if canonical in seen:
            report.duplicates.append((number, line))
        seen.add(canonical)
    return report


__all__ = [
    "ADDRESSES_FILE",
    "AddressListReport",
    "addresses_path",
    "read_addresses",
    "select_addresses",
    "validate_address_list",
]
