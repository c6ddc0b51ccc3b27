# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition",
#   "purpose": "Public API for the contract metadata acquisition pipeline.",
#   "sections": []
# }
# === /NAVMAP ===

"""Public API for the contract metadata acquisition pipeline.

This facade exposes the transport, the primary and secondary source clients,
the provenance tracker, the integrity verifier and the orchestrator that
sequences them into a per-contract state machine.
"""

from __future__ import annotations

from .cache_store import CacheEntry, CacheStore, FileCacheStore, MemoryCacheStore
from .config import ArchiveConfig, ChainConfig, load_config
from .errors import (
    AllSourcesFailedError,
    ArchiveError,
    ExhaustedSourcesError,
    ExplorerError,
    HttpStatusError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    RunAbortedError,
    SchemaValidationError,
)
from .explorer_client import ExplorerClient
from .integrity import IntegrityVerifier, compute_file_checksums, verify_checksums
from .orchestrator import ContractOutcome, ContractState, Orchestrator, RunSummary
from .provenance import TOOL_VERSION as __version__
from .provenance import ProvenanceTracker
from .repository_client import RepositoryClient
from .transport import Transport
from .types import MatchQuality, SourceRecord, VerificationResult

__all__ = [
    "AllSourcesFailedError",
    "ArchiveConfig",
    "ArchiveError",
    "CacheEntry",
    "CacheStore",
    "ChainConfig",
    "ContractOutcome",
    "ContractState",
    "ExhaustedSourcesError",
    "ExplorerClient",
    "ExplorerError",
    "FileCacheStore",
    "HttpStatusError",
    "IntegrityError",
    "IntegrityVerifier",
    "MatchQuality",
    "MemoryCacheStore",
    "NetworkError",
    "NotFoundError",
    "Orchestrator",
    "ProvenanceTracker",
    "RepositoryClient",
    "RunAbortedError",
    "RunSummary",
    "SchemaValidationError",
    "SourceRecord",
    "Transport",
    "VerificationResult",
    "__version__",
    "compute_file_checksums",
    "load_config",
    "verify_checksums",
]
