# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition.cache_store",
#   "purpose": "Injectable response cache used by the HTTP transport.",
#   "sections": [
#     {"id": "cacheentry", "name": "CacheEntry", "anchor": "class-cacheentry", "kind": "class"},
#     {"id": "cachestore", "name": "CacheStore", "anchor": "class-cachestore", "kind": "class"},
#     {"id": "filecachestore", "name": "FileCacheStore", "anchor": "class-filecachestore", "kind": "class"},
#     {"id": "memorycachestore", "name": "MemoryCacheStore", "anchor": "class-memorycachestore", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Injectable response cache used by the HTTP transport.

Entries are keyed by the SHA-256 of the request URL. An entry older than the
validity window reads as absent. Stores are unlocked: writes replace the
whole file atomically and an unreadable entry is simply a miss, so a race
between two writers can only cost a cache hit.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_S = 24 * 3600

CACHED_HEADERS = ("etag", "last-modified", "content-type", "content-length")


def cache_key(url: str) -> str:
    """Stable cache key for a request URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    """Cached response payload plus the validators needed to revalidate it."""

    url: str
    timestamp: int
    headers: Dict[str, Optional[str]] = field(default_factory=dict)
    data: Any = None

    @property
    def etag(self) -> Optional[str]:
        return self.headers.get("etag")

    @property
    def last_modified(self) -> Optional[str]:
        return self.headers.get("last-modified")

    def age_s(self, now_ms: int) -> float:
        return (now_ms - self.timestamp) / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "timestamp": self.timestamp,
            "headers": {name: self.headers.get(name) for name in CACHED_HEADERS},
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheEntry":
        return cls(
            url=str(payload["url"]),
            timestamp=int(payload["timestamp"]),
            headers=dict(payload.get("headers") or {}),
            data=payload.get("data"),
        )


class CacheStore(Protocol):
    """Capability interface consumed by the transport."""

    def get(self, key: str) -> Optional[CacheEntry]:
        ...

    def put(self, key: str, entry: CacheEntry) -> None:
        ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class FileCacheStore:
    """One JSON document per entry under ``directory``."""

    def __init__(
        self,
        directory: str | Path,
        *,
        ttl_s: float = DEFAULT_TTL_S,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.directory = Path(directory)
        self.ttl_s = ttl_s
        self._clock_ms = clock_ms

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            entry = CacheEntry.from_dict(payload)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.debug("Ignoring unreadable cache entry %s: %s", path.name, exc)
            return None
        if entry.age_s(self._clock_ms()) > self.ttl_s:
            return None
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(entry.to_dict(), handle)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class MemoryCacheStore:
    """Process-local store, used for tests and cache-less runs that still revalidate."""

    def __init__(self, *, ttl_s: float = DEFAULT_TTL_S, clock_ms: Callable[[], int] = _now_ms):
        self.ttl_s = ttl_s
        self._clock_ms = clock_ms
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None or entry.age_s(self._clock_ms()) > self.ttl_s:
            return None
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "CACHED_HEADERS",
    "CacheEntry",
    "CacheStore",
    "FileCacheStore",
    "MemoryCacheStore",
    "cache_key",
]
