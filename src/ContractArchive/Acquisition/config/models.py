"""
Pydantic v2 Configuration Models for the acquisition pipeline

Provides strict, typed configuration for every acquisition subsystem:
- HTTP client settings (timeouts, user agent, pool limits)
- Retry and backoff policy
- Response cache location and validity window
- Primary repository lookup segments and default mirrors/gateways
- Run policy (staleness, strict mode, dry-run, circuit breaker)
- Per-chain endpoints (RPC, explorer, mirrors, gateways)
- Top-level ArchiveConfig as single source of truth

All models use extra="forbid" for strict validation. Chain entries also
accept the camelCase keys used by hand-maintained ``chains.json`` files.
"""

from __future__ import annotations

import hashlib
import json
from typing import ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..errors import ConfigurationError

MatchQualityName = Literal["exact", "approximate"]


class HttpSettings(BaseModel):
    """HTTP client configuration shared by every remote call."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(
        default="ContractArchive/0.1 (+https://github.com/contract-archive)",
        description="User-Agent header sent on every request",
    )
    timeout_s: float = Field(default=30.0, description="Per-request timeout in seconds")
    max_connections: int = Field(default=16, description="Connection pool size")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")

    @field_validator("timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_s must be > 0")
        return v

    @field_validator("max_connections")
    @classmethod
    def validate_connections(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_connections must be >= 1")
        return v


class RetrySettings(BaseModel):
    """Retry and exponential backoff policy for transient HTTP failures."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, description="Total attempts per request")
    base_delay_s: float = Field(default=1.0, description="Base backoff delay in seconds")
    max_delay_s: float = Field(default=10.0, description="Backoff cap in seconds")
    jitter_fraction: float = Field(default=0.1, description="Upper bound of random jitter")

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    @field_validator("base_delay_s", "max_delay_s")
    @classmethod
    def validate_delays(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delay values must be >= 0")
        return v

    @field_validator("jitter_fraction")
    @classmethod
    def validate_jitter(cls, v: float) -> float:
        if not 0 <= v <= 0.1:
            raise ValueError("jitter_fraction must be within [0, 0.1]")
        return v


class CacheSettings(BaseModel):
    """On-disk response cache."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Consult and populate the response cache")
    directory: str = Field(default="cache", description="Directory holding cache entries")
    ttl_s: int = Field(default=24 * 3600, description="Validity window of an entry")

    @field_validator("ttl_s")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("ttl_s must be > 0")
        return v


class RepositorySettings(BaseModel):
    """Primary metadata repository lookup conventions."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    match_segments: Dict[MatchQualityName, str] = Field(
        default_factory=lambda: {"exact": "exact_match", "approximate": "approximate_match"},
        description="Path segment used for each match quality",
    )
    default_mirrors: List[str] = Field(
        default_factory=lambda: ["https://repo.sourcify.dev"],
        description="Mirrors used when a chain does not list its own",
    )
    default_gateways: List[str] = Field(
        default_factory=lambda: ["https://ipfs.io/ipfs"],
        description="Content-addressed gateways used when a chain does not list its own",
    )

    @field_validator("match_segments")
    @classmethod
    def validate_segments(cls, v: Dict[str, str]) -> Dict[str, str]:
        missing = {"exact", "approximate"} - set(v)
        if missing:
            raise ValueError(f"match_segments missing: {sorted(missing)}")
        return v


class RunSettings(BaseModel):
    """Per-run orchestration policy."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    staleness_threshold_s: int = Field(
        default=24 * 3600, description="Age after which a provenance record is stale"
    )
    fetch_concurrency: int = Field(default=4, description="Parallel source-file fetches")
    strict: bool = Field(default=False, description="Abort the run on first contract failure")
    dry_run: bool = Field(default=False, description="Plan only, no mutating steps")
    force: bool = Field(default=False, description="Ignore provenance staleness")
    verify_bytecode: bool = Field(default=True, description="Run on-chain bytecode verification")
    failure_rate_threshold: float = Field(
        default=0.5, description="Run failure rate above which the run is unhealthy"
    )
    operator: str = Field(default="automated", description="Operator recorded in provenance")
    commit_hash: Optional[str] = Field(default=None, description="Commit recorded in provenance")

    @field_validator("fetch_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("fetch_concurrency must be >= 1")
        return v

    @field_validator("failure_rate_threshold")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("failure_rate_threshold must be within [0, 1]")
        return v


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    directory: Optional[str] = Field(default="logs", description="JSON log directory, None disables")
    max_log_size_mb: float = Field(default=10.0, description="Rotation size")
    backup_count: int = Field(default=5, description="Rotated files to keep")


class PathSettings(BaseModel):
    """Filesystem roots for archive output and input address lists."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    archive_root: str = Field(default="archive")
    chains_root: str = Field(default="chains")


class ChainConfig(BaseModel):
    """Endpoints for a single chain."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = Field(default="", description="Chain name, filled from the mapping key")
    chain_id: int = Field(alias="chainId")
    rpc_url: Optional[str] = Field(default=None, alias="rpcUrl")
    sourcify_chain_support: bool = Field(default=True, alias="sourcifyChainSupport")
    explorer_api_base: Optional[str] = Field(default=None, alias="explorerApiBase")
    explorer_api_key_ref: Optional[str] = Field(default=None, alias="explorerApiKeyRef")
    repository_mirrors: List[str] = Field(default_factory=list, alias="sourcifyRepoUrls")
    ipfs_gateways: List[str] = Field(default_factory=list, alias="ipfsGateways")

    @field_validator("chain_id")
    @classmethod
    def validate_chain_id(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("chain_id must be positive")
        return v

    @field_validator("repository_mirrors", "ipfs_gateways")
    @classmethod
    def strip_trailing_slash(cls, v: List[str]) -> List[str]:
        return [url.rstrip("/") for url in v]

    @property
    def has_explorer(self) -> bool:
        return bool(self.explorer_api_base)


class ArchiveConfig(BaseModel):
    """Top-level configuration for the acquisition pipeline."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    http: HttpSettings = Field(default_factory=HttpSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    run: RunSettings = Field(default_factory=RunSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    chains: Dict[str, ChainConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fill_chain_names(self) -> "ArchiveConfig":
        for key, chain in self.chains.items():
            if not chain.name:
                chain.name = key
        return self

    def get_chain(self, name_or_id: str | int) -> ChainConfig:
        """Look a chain up by name or numeric chain id.

        Raises:
            ConfigurationError: If no configured chain matches.
        """
        key = str(name_or_id)
        if key in self.chains:
            return self.chains[key]
        for chain in self.chains.values():
            if str(chain.chain_id) == key:
                return chain
        raise ConfigurationError(f"Unknown chain: {name_or_id}")

    def mirrors_for(self, chain: ChainConfig) -> List[str]:
        return chain.repository_mirrors or [m.rstrip("/") for m in self.repository.default_mirrors]

    def gateways_for(self, chain: ChainConfig) -> List[str]:
        return chain.ipfs_gateways or [g.rstrip("/") for g in self.repository.default_gateways]

    def config_hash(self) -> str:
        """Stable hash of the effective configuration."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()
