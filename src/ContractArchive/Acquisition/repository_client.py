# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition.repository_client",
#   "purpose": "Primary metadata repository client with mirror and match-quality fallback.",
#   "sections": [
#     {"id": "repositoryclient", "name": "RepositoryClient", "anchor": "class-repositoryclient", "kind": "class"},
#     {"id": "content-ids", "name": "content_ids", "anchor": "function-content-ids", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Primary metadata repository client.

Lookups walk an explicit ordered plan of ``(match quality, mirror)`` pairs:
every mirror at exact quality first, then every mirror at approximate
quality. The first success wins. A ``404`` means "not present here"; any
other failure is logged, remembered, and the scan moves on. When the plan is
exhausted the client raises :class:`ExhaustedSourcesError` carrying the last
non-404 error, which is the orchestrator's cue to try the secondary source.

Source files referenced by the metadata are fetched concurrently through a
bounded worker pool. A file that cannot be fetched from any mirror, nor from a
content-addressed gateway listed in the metadata, is omitted.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

from .addresses import to_checksum_address
from .config import ArchiveConfig, ChainConfig
from .errors import ArchiveError, ExhaustedSourcesError, GatewayExhaustedError, NotFoundError
from .transport import Transport
from .types import ExistenceCheck, LookupStep, MatchQuality, MetadataResult

LOGGER = logging.getLogger(__name__)

DEFAULT_SEGMENTS: Dict[str, str] = {"exact": "exact_match", "approximate": "approximate_match"}
_QUALITY_ORDER = (MatchQuality.EXACT, MatchQuality.APPROXIMATE)
_CONTENT_PREFIXES = ("ipfs://", "dweb:/ipfs/")


def content_ids(urls: Optional[Sequence[str]]) -> List[str]:
    """Content identifiers named by ``ipfs://`` or ``dweb:/ipfs/`` URLs."""
    cids: List[str] = []
    for url in urls or ():
        for prefix in _CONTENT_PREFIXES:
            if isinstance(url, str) and url.startswith(prefix):
                cid = url[len(prefix) :].strip("/")
                if cid and cid not in cids:
                    cids.append(cid)
    return cids


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepositoryClient:
    """Client for a Sourcify-style metadata repository and its gateways."""

    def __init__(
        self,
        transport: Transport,
        *,
        mirrors: Sequence[str],
        gateways: Sequence[str] = (),
        match_segments: Optional[Mapping[str, str]] = None,
        fetch_concurrency: int = 4,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not mirrors:
            raise ValueError("At least one repository mirror is required")
        self.transport = transport
        self.mirrors = [m.rstrip("/") for m in mirrors]
        self.gateways = [g.rstrip("/") for g in gateways]
        self.match_segments = dict(match_segments or DEFAULT_SEGMENTS)
        self.fetch_concurrency = max(1, fetch_concurrency)
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        transport: Transport,
        config: ArchiveConfig,
        chain: ChainConfig,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "RepositoryClient":
        return cls(
            transport,
            mirrors=config.mirrors_for(chain),
            gateways=config.gateways_for(chain),
            match_segments=config.repository.match_segments,
            fetch_concurrency=config.run.fetch_concurrency,
            clock=clock,
        )

    # ------------------------------------------------------------------ #
    # URL construction
    # ------------------------------------------------------------------ #

    def lookup_plan(self) -> List[LookupStep]:
        """Ordered lookup plan: exact on every mirror, then approximate."""
        return [LookupStep(quality, mirror) for quality in _QUALITY_ORDER for mirror in self.mirrors]

    def _contract_base(self, step: LookupStep, chain_id: int, address: str) -> str:
        segment = self.match_segments[step.quality.value]
        return f"{step.mirror}/contracts/{segment}/{chain_id}/{to_checksum_address(address)}"

    def metadata_url(self, step: LookupStep, chain_id: int, address: str) -> str:
        return f"{self._contract_base(step, chain_id, address)}/metadata.json"

    def source_file_url(self, step: LookupStep, chain_id: int, address: str, path: str) -> str:
        encoded = quote(path, safe="!~*'()")
        return f"{self._contract_base(step, chain_id, address)}/sources/{encoded}"

    # ------------------------------------------------------------------ #
    # Metadata
    # ------------------------------------------------------------------ #

    def fetch_metadata(self, chain_id: int, address: str) -> MetadataResult:
        """Fetch contract metadata, walking the lookup plan.

        Args:
            chain_id: Numeric chain id.
            address: Contract address in any case.

        Returns:
            Metadata with the match quality and URL that produced it.

        Raises:
            ExhaustedSourcesError: If every plan step failed.
        """
        last_error: Optional[BaseException] = None
        for step in self.lookup_plan():
            url = self.metadata_url(step, chain_id, address)
            try:
                metadata = self.transport.get(url, response_type="json")
            except NotFoundError:
                LOGGER.debug("Not found (%s) at %s", step.quality.value, step.mirror)
                continue
            except ArchiveError as exc:
                LOGGER.warning("Metadata lookup failed at %s: %s", url, exc)
                last_error = exc
                continue
            if not isinstance(metadata, dict):
                LOGGER.warning("Metadata at %s is not a JSON object", url)
                last_error = ArchiveError(f"Metadata at {url} is not a JSON object")
                continue
            LOGGER.info("Found %s match for %s on chain %s", step.quality.value, address, chain_id)
            return MetadataResult(
                metadata=metadata,
                match_quality=step.quality,
                origin_url=url,
                fetched_at=self._clock(),
            )
        raise ExhaustedSourcesError(
            f"Contract {address} not found in repository for chain {chain_id}"
            + (f": {last_error}" if last_error else ""),
            address=address,
            last_error=last_error,
        )

    def check_contract_exists(self, chain_id: int, address: str) -> Optional[ExistenceCheck]:
        """Check the plan with ``HEAD`` requests; ``None`` when nothing matches."""
        for step in self.lookup_plan():
            url = self.metadata_url(step, chain_id, address)
            try:
                self.transport.head(url)
            except NotFoundError:
                continue
            except ArchiveError as exc:
                LOGGER.debug("Existence check failed at %s: %s", url, exc)
                continue
            return ExistenceCheck(match_quality=step.quality, url=url)
        return None

    # ------------------------------------------------------------------ #
    # Sources
    # ------------------------------------------------------------------ #

    def fetch_source_file(
        self, chain_id: int, address: str, path: str, match_quality: MatchQuality
    ) -> str:
        """Fetch one source file from the mirrors at ``match_quality``."""
        last_error: Optional[BaseException] = None
        for mirror in self.mirrors:
            url = self.source_file_url(LookupStep(match_quality, mirror), chain_id, address, path)
            try:
                content = self.transport.get(url, response_type="text")
            except NotFoundError as exc:
                last_error = exc
                continue
            except ArchiveError as exc:
                LOGGER.debug("Source fetch failed at %s: %s", url, exc)
                last_error = exc
                continue
            return content
        raise ExhaustedSourcesError(
            f"Source file {path} unavailable for {address}", address=address, last_error=last_error
        )

    def fetch_all_sources(
        self,
        chain_id: int,
        address: str,
        metadata: Mapping[str, Any],
        match_quality: MatchQuality,
    ) -> Dict[str, str]:
        """Fetch every source file named in ``metadata["sources"]``.

        Files carrying inline ``content`` are taken as-is. Failed files are
        logged and omitted; a partial result never raises.

        Returns:
            Relative path → content, in metadata order.
        """
        entries = metadata.get("sources") or {}
        if not isinstance(entries, Mapping):
            return {}

        results: Dict[str, Optional[str]] = {}
        pending: List[str] = []
        for path, entry in entries.items():
            if isinstance(entry, Mapping) and isinstance(entry.get("content"), str):
                results[path] = entry["content"]
            else:
                results[path] = None
                pending.append(path)

        if pending:
            workers = min(self.fetch_concurrency, len(pending))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sources") as pool:
                fetched = pool.map(
                    lambda p: self._fetch_one(chain_id, address, p, entries.get(p), match_quality),
                    pending,
                )
                for path, content in zip(pending, fetched):
                    results[path] = content

        sources = {path: content for path, content in results.items() if content is not None}
        if len(sources) < len(results):
            LOGGER.warning(
                "Fetched %d/%d source files for %s", len(sources), len(results), address
            )
        return sources

    def _fetch_one(
        self,
        chain_id: int,
        address: str,
        path: str,
        entry: Any,
        match_quality: MatchQuality,
    ) -> Optional[str]:
        try:
            return self.fetch_source_file(chain_id, address, path, match_quality)
        except ArchiveError as exc:
            primary_error = exc
        urls = entry.get("urls") if isinstance(entry, Mapping) else None
        for cid in content_ids(urls):
            try:
                return self.fetch_content(cid)
            except GatewayExhaustedError as exc:
                LOGGER.debug("Gateways failed for %s (%s): %s", path, cid, exc)
        LOGGER.warning("Failed to fetch source %s for %s: %s", path, address, primary_error)
        return None

    # ------------------------------------------------------------------ #
    # Content-addressed blobs
    # ------------------------------------------------------------------ #

    def fetch_content(self, cid: str) -> str:
        """Fetch a blob by content id from the first gateway that answers.

        Raises:
            GatewayExhaustedError: If every gateway failed.
        """
        if not self.gateways:
            raise GatewayExhaustedError(f"No gateways configured for {cid}")
        errors: List[BaseException] = []
        for gateway in self.gateways:
            url = f"{gateway}/{cid}"
            try:
                return self.transport.get(url, response_type="text")
            except ArchiveError as exc:
                LOGGER.debug("Gateway %s failed for %s: %s", gateway, cid, exc)
                errors.append(exc)
        raise GatewayExhaustedError(
            f"All {len(self.gateways)} gateways failed for {cid}", errors=errors
        )


__all__ = ["DEFAULT_SEGMENTS", "RepositoryClient", "content_ids"]
