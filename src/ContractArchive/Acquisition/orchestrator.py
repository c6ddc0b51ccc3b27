# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition.orchestrator",
#   "purpose": "Per-contract acquisition state machine and run aggregation.",
#   "sections": [
#     {"id": "contractstate", "name": "ContractState", "anchor": "class-contractstate", "kind": "class"},
#     {"id": "contractoutcome", "name": "ContractOutcome", "anchor": "class-contractoutcome", "kind": "class"},
#     {"id": "runsummary", "name": "RunSummary", "anchor": "class-runsummary", "kind": "class"},
#     {"id": "orchestrator", "name": "Orchestrator", "anchor": "class-orchestrator", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""
Acquisition Orchestrator

Sequences the pipeline for each contract::

    PENDING → CHECKING_STALE → (SKIPPED | FETCHING_PRIMARY
        → (PERSISTING | FETCHING_SECONDARY → (PERSISTING | FAILED)))
        → VERIFYING? → DONE

Design:
- Contracts run strictly one after another so provenance read-then-write
  for a contract never interleaves with another run step.
- The secondary source is a separate stage entered only on
  :class:`ExhaustedSourcesError`, at most once per contract.
- Failures are isolated per contract and attributed to
  ``(chain_name, address)``. Strict mode turns the first failure into
  :class:`RunAbortedError`.
- Dry-run performs the staleness read and stops before any network call,
  cache write, archive write or provenance update.
- The run is unhealthy when its failure rate exceeds the configured
  threshold; the CLI turns that into a non-zero exit.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from .addresses import to_checksum_address
from .archive import HASHES_FILE, ArchiveStore
from .cache_store import FileCacheStore
from .config import ArchiveConfig, ChainConfig
from .errors import (
    AllSourcesFailedError,
    ArchiveError,
    ExhaustedSourcesError,
    RunAbortedError,
)
from .explorer_client import ExplorerClient
from .integrity import IntegrityVerifier, write_manifest
from .provenance import ProvenanceTracker, generate_run_id
from .repository_client import RepositoryClient
from .schemas import extract_abi, validate_metadata
from .transport import Transport
from .types import PRIMARY_SOURCE, MatchQuality, SourceRecord, VerificationResult

LOGGER = logging.getLogger(__name__)


class ContractState(str, enum.Enum):
    PENDING = "pending"
    CHECKING_STALE = "checking_stale"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    FETCHING_PRIMARY = "fetching_primary"
    FETCHING_SECONDARY = "fetching_secondary"
    PERSISTING = "persisting"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ContractOutcome:
    """What happened to one contract during a run."""

    chain_name: str
    address: str
    state: ContractState = ContractState.PENDING
    history: List[ContractState] = field(default_factory=lambda: [ContractState.PENDING])
    sources_used: List[str] = field(default_factory=list)
    match_quality: Optional[MatchQuality] = None
    verification: Optional[VerificationResult] = None
    error: Optional[BaseException] = None
    warnings: List[str] = field(default_factory=list)

    def transition(self, state: ContractState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def skipped(self) -> bool:
        return ContractState.SKIPPED in self.history

    @property
    def planned(self) -> bool:
        return ContractState.DRY_RUN in self.history

    @property
    def failed(self) -> bool:
        return self.state is ContractState.FAILED

    @property
    def fetched(self) -> bool:
        return self.state is ContractState.DONE and not self.skipped and not self.planned


@dataclass(frozen=True)
class ContractFailure:
    chain_name: str
    address: str
    error_type: str
    message: str


@dataclass
class RunSummary:
    """Aggregated run statistics."""

    run_id: str
    failure_rate_threshold: float = 0.5
    outcomes: List[ContractOutcome] = field(default_factory=list)
    aborted: bool = False

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return sum(1 for o in self.outcomes if o.fetched)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def planned(self) -> int:
        return sum(1 for o in self.outcomes if o.planned)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def failures(self) -> List[ContractFailure]:
        return [
            ContractFailure(
                chain_name=o.chain_name,
                address=o.address,
                error_type=type(o.error).__name__ if o.error else "Unknown",
                message=str(o.error) if o.error else "",
            )
            for o in self.outcomes
            if o.failed
        ]

    @property
    def failure_rate(self) -> float:
        return self.failed / self.processed if self.processed else 0.0

    @property
    def breaker_tripped(self) -> bool:
        return self.failure_rate > self.failure_rate_threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "processed": self.processed,
            "successful": self.successful,
            "skipped": self.skipped,
            "planned": self.planned,
            "failed": self.failed,
            "failureRate": round(self.failure_rate, 4),
            "breakerTripped": self.breaker_tripped,
            "aborted": self.aborted,
            "failures": [
                {
                    "chain": f.chain_name,
                    "address": f.address,
                    "errorType": f.error_type,
                    "message": f.message,
                }
                for f in self.failures
            ],
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _contract_name(metadata: Mapping[str, Any]) -> Optional[str]:
    settings = metadata.get("settings")
    target = settings.get("compilationTarget") if isinstance(settings, Mapping) else None
    if isinstance(target, Mapping) and target:
        name = next(iter(target.values()))
        return str(name) if name else None
    return None


class Orchestrator:
    """Drives staleness, fetch, fallback, persistence and verification."""

    def __init__(
        self,
        config: ArchiveConfig,
        *,
        transport: Transport,
        store: ArchiveStore,
        tracker: ProvenanceTracker,
        verifier: IntegrityVerifier,
        explorer: ExplorerClient,
        repository_factory: Optional[Callable[[ChainConfig], RepositoryClient]] = None,
        run_id: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.store = store
        self.tracker = tracker
        self.verifier = verifier
        self.explorer = explorer
        self._repository_factory = repository_factory or (
            lambda chain: RepositoryClient.from_config(transport, config, chain, clock=clock)
        )
        self._repositories: Dict[str, RepositoryClient] = {}
        self.run_id = run_id or generate_run_id()
        self._clock = clock
        self.logger = logger or LOGGER

    @classmethod
    def build(
        cls,
        config: ArchiveConfig,
        *,
        http_transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        environ: Optional[Mapping[str, str]] = None,
        clock: Callable[[], datetime] = _utcnow,
        run_id: Optional[str] = None,
    ) -> "Orchestrator":
        """Wire the pipeline from configuration."""
        cache = (
            FileCacheStore(config.cache.directory, ttl_s=config.cache.ttl_s)
            if config.cache.enabled
            else None
        )
        transport = Transport(
            config.http,
            config.retry,
            cache=cache,
            cache_writes=not config.run.dry_run,
            http_transport=http_transport,
            sleep=sleep,
        )
        store = ArchiveStore(config.paths.archive_root)
        tracker = ProvenanceTracker(
            store, staleness_threshold_s=config.run.staleness_threshold_s, clock=clock
        )
        return cls(
            config,
            transport=transport,
            store=store,
            tracker=tracker,
            verifier=IntegrityVerifier(transport, clock=clock),
            explorer=ExplorerClient(transport, environ=environ, clock=clock),
            run_id=run_id,
            clock=clock,
        )

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Run level
    # ------------------------------------------------------------------ #

    def run(self, targets: Iterable[Tuple[ChainConfig, str]]) -> RunSummary:
        """Process every ``(chain, address)`` target in order.

        Raises:
            RunAbortedError: In strict mode, on the first failed contract.
        """
        summary = RunSummary(
            run_id=self.run_id,
            failure_rate_threshold=self.config.run.failure_rate_threshold,
        )
        for chain, address in targets:
            outcome = self.process_contract(chain, address)
            summary.outcomes.append(outcome)
            if outcome.failed and self.config.run.strict:
                summary.aborted = True
                self.logger.error(
                    "Strict mode: aborting run after failure of %s/%s",
                    outcome.chain_name,
                    outcome.address,
                )
                raise RunAbortedError(
                    f"Run aborted on {outcome.chain_name}/{outcome.address}: {outcome.error}",
                    chain_name=outcome.chain_name,
                    address=outcome.address,
                    summary=summary,
                    cause=outcome.error,
                )

        log = self.logger.warning if summary.breaker_tripped else self.logger.info
        log(
            "Run %s: %d processed, %d successful, %d skipped, %d failed (failure rate %.0f%%)",
            self.run_id,
            summary.processed,
            summary.successful,
            summary.skipped,
            summary.failed,
            summary.failure_rate * 100,
            extra={"run_id": self.run_id, "stage": "summary"},
        )
        return summary

    def sweep_orphans(self, chain: ChainConfig, active_addresses: Iterable[str]) -> List[str]:
        """Mark archived contracts missing from the input list; no-op in dry-run."""
        if self.config.run.dry_run:
            return []
        return self.tracker.sweep_orphans(chain.name, active_addresses)

    # ------------------------------------------------------------------ #
    # Contract level
    # ------------------------------------------------------------------ #

    def process_contract(self, chain: ChainConfig, address: str) -> ContractOutcome:
        """Run the state machine for one contract; never raises ArchiveError."""
        outcome = ContractOutcome(chain_name=chain.name, address=address)
        try:
            outcome.address = to_checksum_address(address)
            self._advance(chain, outcome)
        except (ArchiveError, OSError) as exc:
            error = exc if isinstance(exc, ArchiveError) else ArchiveError(f"I/O failure: {exc}")
            outcome.error = error.attribute(chain.name, outcome.address)
            outcome.transition(ContractState.FAILED)
            self.logger.error(
                "Failed to process %s/%s: %s",
                chain.name,
                outcome.address,
                error,
                extra=self._extra(chain, outcome, "failed"),
            )
        return outcome

    def _advance(self, chain: ChainConfig, outcome: ContractOutcome) -> None:
        run = self.config.run
        address = outcome.address

        outcome.transition(ContractState.CHECKING_STALE)
        staleness = self.tracker.check_staleness(chain.name, address, force=run.force)
        if staleness.should_skip:
            outcome.transition(ContractState.SKIPPED)
            outcome.transition(ContractState.DONE)
            self.logger.info(
                "Skipping %s/%s (not stale)",
                chain.name,
                address,
                extra=self._extra(chain, outcome, "skip"),
            )
            return

        if run.dry_run:
            outcome.transition(ContractState.DRY_RUN)
            outcome.transition(ContractState.DONE)
            self.logger.info(
                "[dry-run] Would fetch %s/%s (exists=%s stale=%s)",
                chain.name,
                address,
                staleness.exists,
                staleness.is_stale,
                extra=self._extra(chain, outcome, "dry_run"),
            )
            return

        record = self._fetch(chain, outcome)
        outcome.match_quality = record.match_quality
        outcome.sources_used = [record.source_tag]

        outcome.transition(ContractState.PERSISTING)
        metadata = validate_metadata(self._augment(record))
        directory = self.store.write_artifacts(
            chain.name, address, metadata=metadata, abi=record.abi, sources=record.sources
        )
        provenance = self.tracker.build_record(
            staleness.prior_record,
            outcome.sources_used,
            run_id=self.run_id,
            operator=run.operator,
            commit_hash=run.commit_hash,
        )
        self.tracker.write(chain.name, address, provenance)
        write_manifest(directory)

        if run.verify_bytecode:
            outcome.transition(ContractState.VERIFYING)
            result = self.verifier.verify(chain, address, metadata)
            outcome.verification = result
            hashes = self.verifier.build_hashes_record(result, metadata, record.match_quality)
            self.store.write_document(chain.name, address, HASHES_FILE, hashes.to_document())
            write_manifest(directory)
            outcome.warnings.extend(result.warnings)
            outcome.warnings.extend(result.errors)

        outcome.transition(ContractState.DONE)
        self.logger.info(
            "Archived %s/%s via %s (%s)",
            chain.name,
            address,
            record.source_tag,
            record.match_quality.value,
            extra=self._extra(chain, outcome, "done"),
        )

    def _fetch(self, chain: ChainConfig, outcome: ContractOutcome) -> SourceRecord:
        outcome.transition(ContractState.FETCHING_PRIMARY)
        try:
            return self._fetch_primary(chain, outcome.address)
        except ExhaustedSourcesError as primary_error:
            self.logger.warning(
                "Primary source exhausted for %s/%s: %s",
                chain.name,
                outcome.address,
                primary_error,
                extra=self._extra(chain, outcome, "primary"),
            )
            if not chain.has_explorer:
                raise AllSourcesFailedError(
                    f"Primary source exhausted and no explorer configured: {primary_error}",
                    primary_error=primary_error,
                ) from primary_error

            outcome.transition(ContractState.FETCHING_SECONDARY)
            try:
                return self.explorer.fetch_contract_source(chain, outcome.address)
            except ArchiveError as secondary_error:
                raise AllSourcesFailedError(
                    f"Both primary and explorer sources failed: {secondary_error}",
                    primary_error=primary_error,
                    secondary_error=secondary_error,
                ) from secondary_error

    def _repository(self, chain: ChainConfig) -> RepositoryClient:
        if chain.name not in self._repositories:
            self._repositories[chain.name] = self._repository_factory(chain)
        return self._repositories[chain.name]

    def _fetch_primary(self, chain: ChainConfig, address: str) -> SourceRecord:
        if not chain.sourcify_chain_support:
            raise ExhaustedSourcesError(
                f"Repository does not support chain {chain.name}", address=address
            )
        client = self._repository(chain)
        result = client.fetch_metadata(chain.chain_id, address)
        sources: Dict[str, str] = {}
        if result.metadata.get("sources"):
            sources = client.fetch_all_sources(
                chain.chain_id, address, result.metadata, result.match_quality
            )
        return SourceRecord(
            chain_id=chain.chain_id,
            address=address,
            metadata=result.metadata,
            abi=extract_abi(result.metadata),
            sources=sources,
            match_quality=result.match_quality,
            origin_url=result.origin_url,
            fetched_at=result.fetched_at,
            source_tag=PRIMARY_SOURCE,
        )

    @staticmethod
    def _augment(record: SourceRecord) -> Dict[str, Any]:
        metadata = dict(record.metadata)
        if record.explorer is not None:
            metadata["name"] = record.explorer.get("contractName")
            metadata["explorer"] = dict(record.explorer)
        else:
            metadata["name"] = _contract_name(record.metadata)
            metadata["sourcify"] = {
                "matchType": record.match_quality.value,
                "url": record.origin_url,
            }
        metadata["chainId"] = record.chain_id
        metadata["address"] = record.address
        metadata["timestamps"] = {
            "fetchedAt": record.fetched_at.isoformat().replace("+00:00", "Z")
        }
        return metadata

    def _extra(self, chain: ChainConfig, outcome: ContractOutcome, stage: str) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "chain": chain.name,
            "address": outcome.address,
            "stage": stage,
        }


__all__ = [
    "ContractFailure",
    "ContractOutcome",
    "ContractState",
    "Orchestrator",
    "RunSummary",
]
