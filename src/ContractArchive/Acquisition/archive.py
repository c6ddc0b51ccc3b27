"""On-disk archive layout and atomic JSON persistence.

Layout per contract::

    {root}/{chain_name}/{ChecksummedAddress}/
        metadata.json
        abi.json
        source/<relative source path>
        provenance.json
        bytecode/hashes.json
        checksums.json

Every write replaces one whole file atomically. Nothing here deletes archive
content.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .addresses import to_checksum_address
from .errors import SchemaValidationError

LOGGER = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
ABI_FILE = "abi.json"
PROVENANCE_FILE = "provenance.json"
CHECKSUMS_FILE = "checksums.json"
SOURCE_DIR = "source"
HASHES_FILE = "bytecode/hashes.json"

_ARCHIVED_DIR = re.compile(r"^0x[a-fA-F0-9]{40}$")


def _unencodable(path: Path, exc: UnicodeEncodeError) -> SchemaValidationError:
    # lone surrogates survive json.loads but cannot be written as UTF-8
    return SchemaValidationError(
        f"Content for {path.name} is not encodable as UTF-8: {exc.reason}",
        details={"path": str(path), "position": exc.start},
    )


def write_json_atomic(path: Path, document: Any) -> None:
    """Write ``document`` as indented, key-sorted JSON via a temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2, sort_keys=True, ensure_ascii=False)
            handle.write("\n")
        os.replace(tmp_name, path)
    except UnicodeEncodeError as exc:
        Path(tmp_name).unlink(missing_ok=True)
        raise _unencodable(path, exc) from exc
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_text_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except UnicodeEncodeError as exc:
        Path(tmp_name).unlink(missing_ok=True)
        raise _unencodable(path, exc) from exc
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_json(path: Path) -> Optional[Any]:
    """Load a JSON document, ``None`` when the file does not exist.

    Raises:
        SchemaValidationError: If the file exists but is not valid JSON.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return json.loads(text)
    except ValueError as exc:
        raise SchemaValidationError(f"Corrupt JSON document {path}: {exc}") from exc


def safe_relative_path(path: str) -> Optional[PurePosixPath]:
    """Normalize a metadata source path so it stays inside ``source/``.

    Leading slashes are dropped; a path that climbs with ``..`` is rejected.
    """
    parts = [part for part in PurePosixPath(path.replace("\\", "/")).parts if part not in ("/", ".", "")]
    if not parts or any(part == ".." for part in parts):
        return None
    return PurePosixPath(*parts)


class ArchiveStore:
    """Filesystem archive rooted at ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def contract_dir(self, chain_name: str, address: str) -> Path:
        return self.root / chain_name / to_checksum_address(address)

    def read_document(self, chain_name: str, address: str, name: str) -> Optional[Any]:
        return read_json(self.contract_dir(chain_name, address) / name)

    def write_document(self, chain_name: str, address: str, name: str, document: Any) -> Path:
        path = self.contract_dir(chain_name, address) / name
        write_json_atomic(path, document)
        return path

    def write_artifacts(
        self,
        chain_name: str,
        address: str,
        *,
        metadata: Mapping[str, Any],
        abi: List[Any],
        sources: Mapping[str, str],
    ) -> Path:
        """Write metadata, ABI and source files for one contract.

        Returns:
            The contract directory.
        """
        directory = self.contract_dir(chain_name, address)
        write_json_atomic(directory / METADATA_FILE, dict(metadata))
        write_json_atomic(directory / ABI_FILE, list(abi))
        for path, content in sources.items():
            relative = safe_relative_path(path)
            if relative is None:
                LOGGER.warning("Skipping unsafe source path %r for %s", path, address)
                continue
            write_text_atomic(directory / SOURCE_DIR / relative, content)
        return directory

    def list_chains(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(entry.name for entry in self.root.iterdir() if entry.is_dir())

    def list_contracts(self, chain_name: str) -> List[str]:
        """Checksummed addresses with an archive directory on ``chain_name``."""
        chain_dir = self.root / chain_name
        if not chain_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in chain_dir.iterdir()
            if entry.is_dir() and _ARCHIVED_DIR.match(entry.name)
        )

    def iter_contract_dirs(self, chain_names: Optional[Iterable[str]] = None) -> Iterable[Path]:
        for chain_name in chain_names or self.list_chains():
            for address in self.list_contracts(chain_name):
                yield self.root / chain_name / address

    def summarize(self) -> Dict[str, int]:
        return {chain: len(self.list_contracts(chain)) for chain in self.list_chains()}


__all__ = [
    "ABI_FILE",
    "ArchiveStore",
    "CHECKSUMS_FILE",
    "HASHES_FILE",
    "METADATA_FILE",
    "PROVENANCE_FILE",
    "SOURCE_DIR",
    "read_json",
    "safe_relative_path",
    "write_json_atomic",
    "write_text_atomic",
]
