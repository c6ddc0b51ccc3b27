"""Core types shared by the source clients, verifier and orchestrator.

- MatchQuality: grade of a metadata lookup (exact, approximate, explorer)
- MetadataResult: outcome of a primary metadata lookup
- SourceRecord: normalized fetch result handed to persistence
- StalenessCheck: provenance-based skip decision
- ChecksumReport: partition of a manifest comparison
- VerificationResult: bytecode comparison outcome

All types are frozen dataclasses except where the verifier accumulates
messages while it works.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .schemas import ProvenanceRecord


class MatchQuality(str, enum.Enum):
    EXACT = "exact"
    APPROXIMATE = "approximate"
    EXPLORER = "explorer"


PRIMARY_SOURCE = "primary"
EXPLORER_SOURCE = "explorer"


@dataclass(frozen=True)
class LookupStep:
    """One (match quality, mirror) pair in the primary lookup plan."""

    quality: MatchQuality
    mirror: str


@dataclass(frozen=True)
class MetadataResult:
    metadata: Dict[str, Any]
    match_quality: MatchQuality
    origin_url: str
    fetched_at: datetime


@dataclass(frozen=True)
class ExistenceCheck:
    match_quality: MatchQuality
    url: str


@dataclass(frozen=True)
class SourceRecord:
    """Normalized contract data, identical in shape for every source.

    Attributes:
        chain_id: Numeric chain id.
        address: Checksummed address.
        metadata: Compiler metadata document, augmented before persistence.
        abi: ABI entries in declaration order.
        sources: Relative source path → file content.
        match_quality: How the data was matched.
        origin_url: URL the metadata came from.
        fetched_at: UTC time of the fetch.
        source_tag: Provenance tag, ``primary`` or ``explorer``.
        explorer: Explorer-specific details, explorer records only.
    """

    chain_id: int
    address: str
    metadata: Dict[str, Any]
    abi: List[Any]
    sources: Dict[str, str]
    match_quality: MatchQuality
    origin_url: str
    fetched_at: datetime
    source_tag: str = PRIMARY_SOURCE
    explorer: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class StalenessCheck:
    exists: bool
    prior_record: Optional[ProvenanceRecord]
    is_stale: bool
    should_skip: bool


@dataclass(frozen=True)
class MismatchedFile:
    file: str
    expected: str
    actual: str


@dataclass(frozen=True)
class ChecksumReport:
    """Comparison of a directory against its manifest.

    ``extra`` files never invalidate the directory.
    """

    missing: Tuple[str, ...] = ()
    extra: Tuple[str, ...] = ()
    mismatched: Tuple[MismatchedFile, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.missing and not self.mismatched


@dataclass
class VerificationResult:
    on_chain_hash: Optional[str] = None
    metadata_hash: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def match(self) -> bool:
        return (
            self.on_chain_hash is not None
            and self.metadata_hash is not None
            and self.on_chain_hash == self.metadata_hash
        )


__all__ = [
    "ChecksumReport",
    "EXPLORER_SOURCE",
    "ExistenceCheck",
    "LookupStep",
    "MatchQuality",
    "MetadataResult",
    "MismatchedFile",
    "PRIMARY_SOURCE",
    "SourceRecord",
    "StalenessCheck",
    "VerificationResult",
]
