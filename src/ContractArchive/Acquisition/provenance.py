# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition.provenance",
#   "purpose": "Per-contract provenance records, staleness decisions and orphan marking.",
#   "sections": [
#     {"id": "generate-run-id", "name": "generate_run_id", "anchor": "function-generate-run-id", "kind": "function"},
#     {"id": "provenancetracker", "name": "ProvenanceTracker", "anchor": "class-provenancetracker", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Per-contract provenance records, staleness decisions and orphan marking.

Responsibilities
----------------
- Decide whether a contract needs re-fetching: a record younger than the
  staleness threshold (measured against ``lastUpdatedAt``) is skipped unless
  the caller forces a refresh.
- Create the record on first success and update it on every later success,
  keeping ``firstSeenAt`` and unioning ``sourcesUsed``.
- Flag contracts that left the input list as orphaned without deleting any
  history. An existing checksum manifest is updated for the rewritten
  provenance document so the directory still verifies.

Design Notes
------------
- The clock is injectable so idempotence can be tested at fixed offsets.
- Reads and writes go through :class:`ArchiveStore`; the orchestrator runs
  contracts sequentially so a read-then-write never interleaves for the same
  contract.
"""

from __future__ import annotations

import logging
import random
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from .addresses import to_checksum_address
from .archive import PROVENANCE_FILE, ArchiveStore
from .errors import SchemaValidationError
from .integrity import refresh_manifest_entry
from .schemas import ProvenanceRecord, ToolInfo, parse_provenance
from .types import StalenessCheck

LOGGER = logging.getLogger(__name__)

TOOL_NAME = "contract-archive"
TOOL_VERSION = "0.1.0"
DEFAULT_STALENESS_S = 24 * 3600

_BASE36 = string.digits + string.ascii_lowercase


def generate_run_id(
    now_ms: Optional[int] = None, rng: Optional[random.Random] = None
) -> str:
    """Run identifier of the form ``run-<epoch ms>-<9 base36 chars>``."""
    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    chooser = rng or random
    suffix = "".join(chooser.choice(_BASE36) for _ in range(9))
    return f"run-{stamp}-{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class ProvenanceTracker:
    """Staleness and history bookkeeping over an :class:`ArchiveStore`."""

    def __init__(
        self,
        store: ArchiveStore,
        *,
        staleness_threshold_s: float = DEFAULT_STALENESS_S,
        tool_name: str = TOOL_NAME,
        tool_version: str = TOOL_VERSION,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.threshold = timedelta(seconds=staleness_threshold_s)
        self.tools = ToolInfo(name=tool_name, version=tool_version)
        self._clock = clock

    def now(self) -> datetime:
        return _aware(self._clock())

    def load(self, chain_name: str, address: str) -> Optional[ProvenanceRecord]:
        """Read the stored record, ``None`` when absent.

        Raises:
            SchemaValidationError: If the stored document is malformed.
        """
        document = self.store.read_document(chain_name, address, PROVENANCE_FILE)
        if document is None:
            return None
        if not isinstance(document, dict):
            raise SchemaValidationError(
                "Invalid provenance: document is not an object",
                chain_name=chain_name,
                address=address,
            )
        return parse_provenance(document)

    def check_staleness(
        self, chain_name: str, address: str, *, force: bool = False
    ) -> StalenessCheck:
        """Decide whether ``address`` must be re-fetched.

        Args:
            chain_name: Chain the contract lives on.
            address: Contract address.
            force: Refetch even when the record is fresh.

        Returns:
            ``should_skip`` is true only for an existing, fresh record
            without ``force``.
        """
        prior = self.load(chain_name, address)
        if prior is None:
            return StalenessCheck(exists=False, prior_record=None, is_stale=True, should_skip=False)
        age = self.now() - _aware(prior.last_updated_at)
        is_stale = age > self.threshold
        should_skip = not is_stale and not force
        LOGGER.debug(
            "Provenance for %s/%s age=%ss stale=%s skip=%s",
            chain_name,
            address,
            int(age.total_seconds()),
            is_stale,
            should_skip,
        )
        return StalenessCheck(
            exists=True, prior_record=prior, is_stale=is_stale, should_skip=should_skip
        )

    def build_record(
        self,
        prior: Optional[ProvenanceRecord],
        sources_used: Iterable[str],
        *,
        run_id: str,
        operator: str = "automated",
        commit_hash: Optional[str] = None,
    ) -> ProvenanceRecord:
        """Create or update a record for a successful fetch, without writing it."""
        now = self.now()
        new_sources = list(sources_used)
        if prior is None:
            first_seen = now
            merged = sorted(set(new_sources))
        else:
            first_seen = min(_aware(prior.first_seen_at), now)
            merged = sorted(set(prior.sources_used) | set(new_sources))
        return ProvenanceRecord(
            first_seen_at=first_seen,
            last_updated_at=now,
            tools=self.tools,
            sources_used=merged,
            fetch_run_id=run_id,
            commit_hash=commit_hash,
            operator=operator,
        )

    def write(self, chain_name: str, address: str, record: ProvenanceRecord) -> None:
        self.store.write_document(chain_name, address, PROVENANCE_FILE, record.to_document())

    def record_success(
        self,
        chain_name: str,
        address: str,
        sources_used: Iterable[str],
        *,
        run_id: str,
        operator: str = "automated",
        commit_hash: Optional[str] = None,
    ) -> ProvenanceRecord:
        """Load, update and persist the record after a successful fetch."""
        prior = self.load(chain_name, address)
        record = self.build_record(
            prior, sources_used, run_id=run_id, operator=operator, commit_hash=commit_hash
        )
        self.write(chain_name, address, record)
        return record

    def mark_orphaned(self, chain_name: str, address: str) -> bool:
        """Flag a contract as no longer listed in the inputs.

        Returns:
            ``True`` when a record was updated, ``False`` when none could be.
        """
        try:
            prior = self.load(chain_name, address)
        except SchemaValidationError as exc:
            LOGGER.warning("Failed to mark %s/%s as orphaned: %s", chain_name, address, exc)
            return False
        if prior is None:
            LOGGER.warning("No provenance to orphan for %s/%s", chain_name, address)
            return False
        now = self.now()
        updated = prior.model_copy(
            update={"orphaned": True, "last_updated_at": max(now, _aware(prior.first_seen_at))}
        )
        self.write(chain_name, address, updated)
        try:
            refresh_manifest_entry(self.store.contract_dir(chain_name, address), PROVENANCE_FILE)
        except SchemaValidationError as exc:
            LOGGER.warning("Manifest for %s/%s not refreshed: %s", chain_name, address, exc)
        LOGGER.info("Contract marked as orphaned: %s/%s", chain_name, address)
        return True

    def sweep_orphans(self, chain_name: str, active_addresses: Iterable[str]) -> List[str]:
        """Mark every archived contract absent from ``active_addresses``."""
        active = {to_checksum_address(a) for a in active_addresses}
        orphaned: List[str] = []
        for address in self.store.list_contracts(chain_name):
            if to_checksum_address(address) in active:
                continue
            try:
                prior = self.load(chain_name, address)
            except SchemaValidationError as exc:
                LOGGER.warning("Skipping orphan check for %s/%s: %s", chain_name, address, exc)
                continue
            if prior is not None and prior.orphaned:
                continue
            if self.mark_orphaned(chain_name, address):
                orphaned.append(address)
        return orphaned


__all__ = [
    "DEFAULT_STALENESS_S",
    "ProvenanceTracker",
    "TOOL_NAME",
    "TOOL_VERSION",
    "generate_run_id",
]
