# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition.integrity",
#   "purpose": "Bytecode hash verification and per-file checksum manifests.",
#   "sections": [
#     {"id": "sha256-file", "name": "sha256_file", "anchor": "function-sha256-file", "kind": "function"},
#     {"id": "compute-file-checksums", "name": "compute_file_checksums", "anchor": "function-compute-file-checksums", "kind": "function"},
#     {"id": "verify-checksums", "name": "verify_checksums", "anchor": "function-verify-checksums", "kind": "function"},
#     {"id": "refresh-manifest-entry", "name": "refresh_manifest_entry", "anchor": "function-refresh-manifest-entry", "kind": "function"},
#     {"id": "audit-contract-dir", "name": "audit_contract_dir", "anchor": "function-audit-contract-dir", "kind": "function"},
#     {"id": "integrityverifier", "name": "IntegrityVerifier", "anchor": "class-integrityverifier", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Bytecode hash verification and per-file checksum manifests.

Two independent checks:

- **Bytecode**: the live deployed code (``eth_getCode``) and the deployed
  bytecode embedded in archived metadata are each hashed with SHA-256 over
  their decoded bytes. ``match`` holds only when both hashes exist and are
  equal. A missing RPC endpoint is a warning, never an error.
- **Checksums**: every file under a contract directory is hashed into a
  manifest keyed by sorted relative POSIX path. Re-verification partitions
  differences into ``missing``, ``extra`` and ``mismatched``; only the first
  and last invalidate the directory.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .addresses import is_address, to_checksum_address
from .archive import (
    ABI_FILE,
    CHECKSUMS_FILE,
    METADATA_FILE,
    PROVENANCE_FILE,
    read_json,
    write_json_atomic,
)
from .config import ChainConfig
from .errors import ArchiveError, IntegrityError, SchemaValidationError
from .repository_client import content_ids
from .schemas import ChecksumManifest, HashesRecord, parse_manifest, parse_provenance
from .transport import Transport
from .types import ChecksumReport, MatchQuality, MismatchedFile, VerificationResult
from .validation import validate_abi, validate_metadata_structure

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 20
AUDIT_STALE_AFTER = timedelta(days=30)

ManifestLike = Union[ChecksumManifest, Mapping[str, str]]


def sha256_file(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    """Streaming SHA-256 of a file."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def bytecode_hash(bytecode: Optional[str]) -> Optional[str]:
    """SHA-256 over the bytes encoded by a hex string; ``None`` for empty code.

    Raises:
        ValueError: If ``bytecode`` is not valid hex.
    """
    if not bytecode or bytecode in ("0x", "0X"):
        return None
    clean = bytecode[2:] if bytecode[:2].lower() == "0x" else bytecode
    return hashlib.sha256(bytes.fromhex(clean)).hexdigest()


def compute_file_checksums(
    directory: Union[str, Path], *, exclude: Iterable[str] = (CHECKSUMS_FILE,)
) -> ChecksumManifest:
    """Hash every file under ``directory``.

    Args:
        directory: Contract directory.
        exclude: Relative POSIX paths left out of the manifest.

    Returns:
        Manifest with paths sorted, independent of filesystem order.
    """
    root = Path(directory)
    skipped = set(exclude)
    files: Dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        if relative in skipped:
            continue
        files[relative] = sha256_file(path)
    return ChecksumManifest(files=files)


def _manifest_files(manifest: ManifestLike) -> Dict[str, str]:
    if isinstance(manifest, ChecksumManifest):
        return dict(manifest.files)
    if "files" in manifest and isinstance(manifest.get("files"), Mapping):
        return dict(manifest["files"])  # type: ignore[arg-type]
    return dict(manifest)


def verify_checksums(
    directory: Union[str, Path],
    manifest: ManifestLike,
    *,
    exclude: Iterable[str] = (CHECKSUMS_FILE,),
) -> ChecksumReport:
    """Recompute checksums and compare them with ``manifest``."""
    expected = _manifest_files(manifest)
    actual = compute_file_checksums(directory, exclude=exclude).files
    missing = tuple(sorted(path for path in expected if path not in actual))
    extra = tuple(sorted(path for path in actual if path not in expected))
    mismatched = tuple(
        MismatchedFile(file=path, expected=expected[path], actual=actual[path])
        for path in sorted(expected)
        if path in actual and actual[path] != expected[path]
    )
    if extra:
        LOGGER.warning("Unexpected files in %s: %s", directory, ", ".join(extra))
    return ChecksumReport(missing=missing, extra=extra, mismatched=mismatched)


def write_manifest(directory: Union[str, Path]) -> ChecksumManifest:
    """Compute and persist ``checksums.json`` for ``directory``."""
    root = Path(directory)
    manifest = compute_file_checksums(root)
    write_json_atomic(root / CHECKSUMS_FILE, manifest.to_document())
    return manifest


def refresh_manifest_entry(
    directory: Union[str, Path], relative: str
) -> Optional[ChecksumManifest]:
    """Re-hash one file into an existing manifest, leaving other entries alone.

    Returns ``None`` without writing when the directory has no manifest yet.
    """
    root = Path(directory)
    manifest = load_manifest(root)
    if manifest is None:
        return None
    files = dict(manifest.files)
    files[relative] = sha256_file(root / relative)
    updated = ChecksumManifest(files=files)
    write_json_atomic(root / CHECKSUMS_FILE, updated.to_document())
    LOGGER.debug("Refreshed manifest entry %s in %s", relative, root)
    return updated


def load_manifest(directory: Union[str, Path]) -> Optional[ChecksumManifest]:
    document = read_json(Path(directory) / CHECKSUMS_FILE)
    if document is None:
        return None
    if not isinstance(document, dict):
        raise SchemaValidationError(f"Invalid checksum manifest in {directory}")
    return parse_manifest(document)


def check_archive_integrity(directory: Union[str, Path]) -> ChecksumReport:
    """Verify a contract directory against its stored manifest.

    Raises:
        IntegrityError: Manifest missing, or files missing or modified.
    """
    manifest = load_manifest(directory)
    if manifest is None:
        raise IntegrityError(f"No checksum manifest in {directory}")
    report = verify_checksums(directory, manifest)
    if not report.valid:
        raise IntegrityError(
            f"Checksum verification failed for {directory}: "
            f"{len(report.missing)} missing, {len(report.mismatched)} mismatched",
            details={
                "missing": list(report.missing),
                "mismatched": [m.file for m in report.mismatched],
            },
        )
    return report


@dataclass
class AuditReport:
    """Outcome of auditing one archived contract directory."""

    directory: Path
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    checksums: Optional[ChecksumReport] = None

    @property
    def valid(self) -> bool:
        return not self.errors


def audit_contract_dir(
    directory: Union[str, Path], *, now: Optional[datetime] = None
) -> AuditReport:
    """Offline audit of an archived contract directory.

    Checks required documents, the address recorded in metadata against the
    directory name, metadata and ABI structure, provenance age and the
    checksum manifest.
    """
    root = Path(directory)
    report = AuditReport(directory=root)
    current = now or datetime.now(timezone.utc)
    try:
        metadata = read_json(root / METADATA_FILE)
        provenance_doc = read_json(root / PROVENANCE_FILE)
        abi = read_json(root / ABI_FILE)
    except SchemaValidationError as exc:
        report.errors.append(str(exc))
        return report

    if metadata is None:
        report.errors.append("Missing metadata.json")
    else:
        if isinstance(metadata, dict):
            recorded = metadata.get("address")
            if isinstance(recorded, str) and is_address(recorded):
                if to_checksum_address(recorded) != root.name:
                    report.errors.append("Address mismatch between metadata and archive location")
        structure = validate_metadata_structure(metadata)
        report.errors.extend(structure.errors)
        report.warnings.extend(structure.warnings)

    if abi is not None:
        # warnings would repeat those already reported for output.abi
        report.errors.extend(f"{ABI_FILE}: {error}" for error in validate_abi(abi).errors)

    if provenance_doc is None:
        report.errors.append("Missing provenance.json")
    else:
        try:
            provenance = parse_provenance(provenance_doc)
        except SchemaValidationError as exc:
            report.errors.append(str(exc))
        else:
            updated = provenance.last_updated_at
            if updated.tzinfo is None:
                updated = updated.replace(tzinfo=timezone.utc)
            if current - updated > AUDIT_STALE_AFTER:
                report.warnings.append("Data is stale (>30 days old)")
            if provenance.orphaned:
                report.warnings.append("Contract is orphaned")

    try:
        manifest = load_manifest(root)
    except SchemaValidationError as exc:
        report.errors.append(str(exc))
        return report
    if manifest is None:
        report.warnings.append("Missing checksums.json")
        return report
    report.checksums = verify_checksums(root, manifest)
    for path in report.checksums.missing:
        report.errors.append(f"Missing file: {path}")
    for mismatch in report.checksums.mismatched:
        report.errors.append(
            f"Checksum mismatch: {mismatch.file} expected {mismatch.expected} got {mismatch.actual}"
        )
    for path in report.checksums.extra:
        report.warnings.append(f"Unexpected file: {path}")
    return report


def _nested(document: Mapping[str, Any], *keys: str) -> Any:
    current: Any = document
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrityVerifier:
    """Compares live deployed bytecode with archived metadata."""

    def __init__(
        self,
        transport: Transport,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.transport = transport
        self._clock = clock

    def fetch_deployed_bytecode(self, rpc_url: str, address: str) -> Optional[str]:
        """Call ``eth_getCode`` at ``latest``.

        Returns:
            Hex bytecode, or ``None`` when the address holds no code.

        Raises:
            ArchiveError: Transport failure or a JSON-RPC error object.
        """
        payload = {
            "jsonrpc": "2.0",
            "method": "eth_getCode",
            "params": [address, "latest"],
            "id": 1,
        }
        response = self.transport.post(rpc_url, json=payload, response_type="json")
        if not isinstance(response, Mapping):
            raise ArchiveError("RPC error: malformed response", address=address)
        if response.get("error"):
            error = response["error"]
            message = error.get("message") if isinstance(error, Mapping) else error
            raise ArchiveError(f"RPC error: {message}", address=address)
        bytecode = response.get("result")
        if not bytecode or bytecode in ("0x", "0X"):
            LOGGER.warning("No bytecode found at %s; address may not be a contract", address)
            return None
        return str(bytecode)

    def verify(
        self, chain: ChainConfig, address: str, metadata: Mapping[str, Any]
    ) -> VerificationResult:
        """Compare on-chain and metadata bytecode hashes.

        Never raises for remote failures; they are recorded in ``errors``.
        """
        result = VerificationResult()
        checksummed = to_checksum_address(address)
        try:
            if chain.rpc_url:
                deployed = self.fetch_deployed_bytecode(chain.rpc_url, checksummed)
                if deployed is None:
                    result.warnings.append("No bytecode found on-chain - may not be a contract")
                else:
                    result.on_chain_hash = bytecode_hash(deployed)
            else:
                result.warnings.append("No RPC URL configured - skipping on-chain verification")
        except (ArchiveError, ValueError) as exc:
            result.errors.append(f"Verification failed: {exc}")
            LOGGER.error("Bytecode fetch failed for %s on %s: %s", checksummed, chain.name, exc)

        metadata_bytecode = _nested(metadata, "output", "deployedBytecode", "object")
        if isinstance(metadata_bytecode, str) and metadata_bytecode:
            try:
                result.metadata_hash = bytecode_hash(metadata_bytecode)
            except ValueError:
                result.warnings.append("Metadata deployed bytecode is not valid hex")
        elif metadata.get("sources"):
            result.warnings.append(
                "Metadata contains sources but no deployed bytecode for verification"
            )

        if result.on_chain_hash and result.metadata_hash:
            if result.match:
                LOGGER.info("Bytecode verified for %s on %s", checksummed, chain.name)
            else:
                result.errors.append(
                    "Bytecode hash mismatch - on-chain bytecode does not match metadata"
                )
                LOGGER.warning(
                    "Bytecode mismatch for %s on %s: on-chain=%s metadata=%s",
                    checksummed,
                    chain.name,
                    result.on_chain_hash,
                    result.metadata_hash,
                )
        else:
            result.warnings.append(
                "Cannot verify bytecode - missing on-chain data or metadata bytecode"
            )
        return result

    def build_hashes_record(
        self,
        result: VerificationResult,
        metadata: Mapping[str, Any],
        match_quality: Optional[MatchQuality] = None,
    ) -> HashesRecord:
        """Persistable summary of a verification, with creation hash and CIDs."""
        creation_hash: Optional[str] = None
        creation = _nested(metadata, "output", "bytecode", "object")
        if isinstance(creation, str) and creation:
            try:
                creation_hash = bytecode_hash(creation)
            except ValueError:
                creation_hash = None

        cids: List[str] = []
        sources = metadata.get("sources")
        if isinstance(sources, Mapping):
            for entry in sources.values():
                if isinstance(entry, Mapping):
                    for cid in content_ids(entry.get("urls")):
                        if cid not in cids:
                            cids.append(cid)

        return HashesRecord(
            on_chain_deployed_hash=result.on_chain_hash,
            metadata_deployed_hash=result.metadata_hash,
            creation_hash=creation_hash,
            match=result.match,
            ipfs_cids=cids or None,
            sourcify_match_type=match_quality.value if match_quality else None,
            verified_at=self._clock(),
        )


__all__ = [
    "AuditReport",
    "IntegrityVerifier",
    "audit_contract_dir",
    "bytecode_hash",
    "check_archive_integrity",
    "compute_file_checksums",
    "load_manifest",
    "refresh_manifest_entry",
    "sha256_file",
    "verify_checksums",
    "write_manifest",
]
