"""
Persisted record schemas

Pydantic models for every document the pipeline writes or reads back:
provenance, checksum manifest, bytecode hashes record, and the augmented
contract metadata. Field names on disk are camelCase and must stay exact;
models accept either the on-disk alias or the Python name.

Malformed documents surface as :class:`SchemaValidationError`.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import SchemaValidationError
from .validation import validate_metadata_structure

LOGGER = logging.getLogger(__name__)

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")
_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")


class ToolInfo(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    name: str
    version: str


class ProvenanceRecord(BaseModel):
    """Audit trail of when and from where a contract was obtained."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    first_seen_at: datetime = Field(alias="firstSeenAt")
    last_updated_at: datetime = Field(alias="lastUpdatedAt")
    tools: ToolInfo
    sources_used: List[str] = Field(alias="sourcesUsed")
    fetch_run_id: Optional[str] = Field(default=None, alias="fetchRunId")
    commit_hash: Optional[str] = Field(default=None, alias="commitHash")
    operator: str = "automated"
    orphaned: Optional[bool] = None

    @model_validator(mode="after")
    def _check_order(self) -> "ProvenanceRecord":
        if self.first_seen_at > self.last_updated_at:
            raise ValueError("firstSeenAt must not be later than lastUpdatedAt")
        return self

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ChecksumManifest(BaseModel):
    """Relative POSIX path → SHA-256 hex digest."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    files: Dict[str, str] = Field(default_factory=dict)

    @field_validator("files")
    @classmethod
    def validate_digests(cls, v: Dict[str, str]) -> Dict[str, str]:
        for path, digest in v.items():
            if not _HEX_DIGEST.match(digest):
                raise ValueError(f"Invalid sha256 digest for {path}")
        return dict(sorted(v.items()))

    def to_document(self) -> Dict[str, Any]:
        return {"files": dict(sorted(self.files.items()))}


class HashesRecord(BaseModel):
    """Persisted bytecode verification outcome."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    on_chain_deployed_hash: Optional[str] = Field(default=None, alias="onChainDeployedHash")
    metadata_deployed_hash: Optional[str] = Field(default=None, alias="metadataDeployedHash")
    creation_hash: Optional[str] = Field(default=None, alias="creationHash")
    match: bool
    ipfs_cids: Optional[List[str]] = Field(default=None, alias="ipfsCids")
    sourcify_match_type: Optional[str] = Field(default=None, alias="sourcifyMatchType")
    verified_at: datetime = Field(alias="verifiedAt")

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        # consumers expect explicit nulls for the two primary hashes
        doc.setdefault("onChainDeployedHash", None)
        doc.setdefault("metadataDeployedHash", None)
        return doc


class ContractMetadata(BaseModel):
    """Minimum shape of augmented contract metadata; other fields pass through."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow", populate_by_name=True)

    chain_id: int = Field(alias="chainId")
    address: str
    output: Dict[str, Any] = Field(default_factory=dict)
    sources: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not _ADDRESS.match(v):
            raise ValueError("address must be 0x followed by 40 hex characters")
        return v

    @field_validator("output")
    @classmethod
    def validate_output(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if "abi" in v and not isinstance(v["abi"], list):
            raise ValueError("output.abi must be a list")
        return v


def _schema_error(kind: str, exc: ValidationError) -> SchemaValidationError:
    return SchemaValidationError(f"Invalid {kind}: {exc}", details={"errors": exc.errors()})


def parse_provenance(document: Mapping[str, Any]) -> ProvenanceRecord:
    try:
        return ProvenanceRecord.model_validate(document)
    except ValidationError as exc:
        raise _schema_error("provenance", exc) from exc


def parse_manifest(document: Mapping[str, Any]) -> ChecksumManifest:
    try:
        return ChecksumManifest.model_validate(document)
    except ValidationError as exc:
        raise _schema_error("checksum manifest", exc) from exc


def validate_metadata(metadata: Any) -> Dict[str, Any]:
    """Validate augmented metadata and return it unchanged.

    Beyond the archive fields this checks the compiler version and every ABI
    entry (see :func:`validate_metadata_structure`). Structural warnings are
    logged, not raised.

    Raises:
        SchemaValidationError: If required fields are missing or malformed.
    """
    if not isinstance(metadata, dict):
        raise SchemaValidationError("Invalid metadata: document is not an object")
    try:
        ContractMetadata.model_validate(metadata)
    except ValidationError as exc:
        raise _schema_error("metadata", exc) from exc
    report = validate_metadata_structure(metadata)
    if report.errors:
        raise SchemaValidationError(
            "Invalid metadata: " + "; ".join(report.errors),
            details={"errors": report.errors, "warnings": report.warnings},
        )
    for warning in report.warnings:
        LOGGER.info("Metadata for %s: %s", metadata.get("address"), warning)
    return metadata


def extract_abi(metadata: Mapping[str, Any]) -> List[Any]:
    """ABI entries from ``output.abi``, empty when absent."""
    output = metadata.get("output") or {}
    abi = output.get("abi") if isinstance(output, Mapping) else None
    return list(abi) if isinstance(abi, list) else []


__all__ = [
    "ChecksumManifest",
    "ContractMetadata",
    "HashesRecord",
    "ProvenanceRecord",
    "ToolInfo",
    "extract_abi",
    "parse_manifest",
    "parse_provenance",
    "validate_metadata",
]
