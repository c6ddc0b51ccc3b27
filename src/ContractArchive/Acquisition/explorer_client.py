"""Block-explorer fallback client.

Queries an Etherscan-style ``getsourcecode`` endpoint and normalizes its
answer into the same ``{metadata, abi, sources}`` shape the repository
client produces. Explorers encode multi-file sources three ways:

- a standard-json document with a top-level ``sources`` key
- the same document wrapped in an extra pair of braces (``{{ ... }}``)
- a single flat file, stored as ``{ContractName}.sol``

Anything unparsable is treated as the flat form.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .addresses import to_checksum_address
from .config import ChainConfig
from .errors import ExplorerError
from .transport import Transport
from .types import EXPLORER_SOURCE, MatchQuality, SourceRecord

LOGGER = logging.getLogger(__name__)

_EXPLORER_NAMES: Tuple[Tuple[str, str], ...] = (
    ("optimistic.etherscan.io", "Optimism Etherscan"),
    ("etherscan.io", "Etherscan"),
    ("polygonscan.com", "Polygonscan"),
    ("arbiscan.io", "Arbiscan"),
    ("basescan.org", "Basescan"),
)


def explorer_name(api_base: str) -> str:
    for marker, name in _EXPLORER_NAMES:
        if marker in api_base:
            return name
    return "Unknown Explorer"


def normalize_source_code(source_code: str, contract_name: str) -> Dict[str, str]:
    """Decode an explorer ``SourceCode`` field into path → content.

    Args:
        source_code: Raw ``SourceCode`` value.
        contract_name: ``ContractName`` value, used for the flat form.

    Returns:
        Mapping of relative source path to file content.
    """
    flat = {f"{contract_name or 'Contract'}.sol": source_code}
    text = source_code.strip()
    if not (text.startswith("{") and "sources" in text):
        return flat

    document: Any = None
    try:
        document = json.loads(text)
    except ValueError:
        pass
    if not (isinstance(document, dict) and isinstance(document.get("sources"), dict)):
        try:
            document = json.loads(text[1:-1])
        except ValueError:
            return flat
    if not (isinstance(document, dict) and isinstance(document.get("sources"), dict)):
        return flat

    sources: Dict[str, str] = {}
    for path, entry in document["sources"].items():
        if isinstance(entry, Mapping) and isinstance(entry.get("content"), str):
            sources[path] = entry["content"]
        elif isinstance(entry, str):
            sources[path] = entry
    return sources or flat


def _parse_json_field(raw: Any, default: Any, *, label: str, address: str) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        LOGGER.warning("Failed to parse %s from explorer for %s: %s", label, address, exc)
        return default


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExplorerClient:
    """Secondary source backed by an explorer's contract API."""

    def __init__(
        self,
        transport: Transport,
        *,
        environ: Optional[Mapping[str, str]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.transport = transport
        self._environ = environ
        self._clock = clock

    def _api_key(self, chain: ChainConfig) -> Optional[str]:
        if not chain.explorer_api_key_ref:
            return None
        environ = os.environ if self._environ is None else self._environ
        return environ.get(chain.explorer_api_key_ref) or None

    def fetch_contract_source(self, chain: ChainConfig, address: str) -> SourceRecord:
        """Fetch and normalize verified source for ``address``.

        Raises:
            ExplorerError: No explorer configured, error status, or the
                contract is not verified.
            ArchiveError: Transport failures propagate unchanged.
        """
        checksummed = to_checksum_address(address)
        if not chain.explorer_api_base:
            raise ExplorerError(
                f"No explorer API configured for chain {chain.name}",
                chain_name=chain.name,
                address=checksummed,
            )

        params: Dict[str, str] = {
            "module": "contract",
            "action": "getsourcecode",
            "address": checksummed,
        }
        api_key = self._api_key(chain)
        if api_key:
            params["apikey"] = api_key

        LOGGER.debug("Fetching contract source from explorer for %s on %s", checksummed, chain.name)
        response = self.transport.get(chain.explorer_api_base, params=params, response_type="json")

        if not isinstance(response, Mapping) or str(response.get("status")) != "1":
            message = response.get("message") if isinstance(response, Mapping) else None
            raise ExplorerError(
                f"Explorer API error: {message or 'Unknown error'}",
                chain_name=chain.name,
                address=checksummed,
            )
        results = response.get("result")
        result = results[0] if isinstance(results, list) and results else None
        if not isinstance(result, Mapping) or not result.get("SourceCode"):
            raise ExplorerError(
                "Contract source code not found or not verified",
                chain_name=chain.name,
                address=checksummed,
            )

        LOGGER.info(
            "Fetched contract source from explorer for %s (%s)",
            checksummed,
            result.get("ContractName"),
        )
        return self.normalize(result, chain, checksummed)

    def normalize(
        self, result: Mapping[str, Any], chain: ChainConfig, address: str
    ) -> SourceRecord:
        """Convert one explorer result row into a :class:`SourceRecord`."""
        contract_name = str(result.get("ContractName") or "Contract")
        sources = normalize_source_code(str(result.get("SourceCode") or ""), contract_name)
        abi: List[Any] = _parse_json_field(result.get("ABI"), [], label="ABI", address=address)
        if not isinstance(abi, list):
            abi = []
        libraries = _parse_json_field(
            result.get("Library"), {}, label="libraries", address=address
        )
        try:
            runs = int(result.get("Runs") or 200)
        except (TypeError, ValueError):
            runs = 200

        metadata: Dict[str, Any] = {
            "compiler": {"version": result.get("CompilerVersion")},
            "language": "Solidity",
            "output": {"abi": abi},
            "settings": {
                "optimizer": {"enabled": str(result.get("OptimizationUsed")) == "1", "runs": runs},
                "evmVersion": result.get("EVMVersion") or "default",
                "libraries": libraries if isinstance(libraries, dict) else {},
            },
            "sources": {path: {"content": content} for path, content in sources.items()},
            "version": 1,
        }
        api_base = chain.explorer_api_base or ""
        explorer = {
            "name": explorer_name(api_base),
            "apiBase": api_base,
            "contractName": contract_name,
            "verified": True,
            "sourceLicense": result.get("LicenseType"),
            "proxy": str(result.get("Proxy")) == "1",
            "implementation": result.get("Implementation") or None,
        }
        return SourceRecord(
            chain_id=chain.chain_id,
            address=address,
            metadata=metadata,
            abi=abi,
            sources=sources,
            match_quality=MatchQuality.EXPLORER,
            origin_url=api_base,
            fetched_at=self._clock(),
            source_tag=EXPLORER_SOURCE,
            explorer=explorer,
        )


__all__ = ["ExplorerClient", "explorer_name", "normalize_source_code"]
