# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition.transport",
#   "purpose": "HTTP execution with classified errors, retries and ETag revalidation.",
#   "sections": [
#     {"id": "build-http-client", "name": "build_http_client", "anchor": "function-build-http-client", "kind": "function"},
#     {"id": "parse-retry-after", "name": "parse_retry_after", "anchor": "function-parse-retry-after", "kind": "function"},
#     {"id": "transport", "name": "Transport", "anchor": "class-transport", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""HTTP execution with classified errors, retries and ETag revalidation.

**Purpose**
-----------
Every remote call made by the pipeline (repository lookups, gateway blobs,
explorer queries, JSON-RPC) goes through :class:`Transport`. It owns one
pooled ``httpx.Client`` and decides, once, what a failure means:

- ``httpx`` transport/timeout failures → :class:`NetworkError`
- HTTP 404 → :class:`NotFoundError`
- any other status >= 400 → :class:`HttpStatusError`

Callers branch on exception type only; they never inspect status codes.

**Caching**
-----------
GET responses are cached through an injected :class:`CacheStore`. A fresh
cached entry with an ETag turns the next GET into a conditional request and
a ``304`` answer returns the cached payload unchanged.
"""

from __future__ import annotations

import email.utils
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Literal, Mapping, Optional

import httpx

from .cache_store import CACHED_HEADERS, CacheEntry, CacheStore, cache_key
from .config import HttpSettings, RetrySettings
from .errors import HttpStatusError, NetworkError, NotFoundError, SchemaValidationError
from .logging_config import mask_url
from .retry import build_retrying

LOGGER = logging.getLogger(__name__)

ResponseType = Literal["auto", "json", "text"]


def build_http_client(
    settings: HttpSettings,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    event_hooks: Optional[Mapping[str, list]] = None,
) -> httpx.Client:
    """Create the pooled client used by :class:`Transport`.

    Args:
        settings: Timeout, pool and TLS settings.
        transport: Optional custom transport, ``httpx.MockTransport`` in tests.
        event_hooks: Request/response hooks for logging.
    """
    return httpx.Client(
        timeout=httpx.Timeout(settings.timeout_s),
        verify=settings.verify_tls,
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=settings.max_connections,
        ),
        follow_redirects=True,
        transport=transport,
        event_hooks=dict(event_hooks or {}),
    )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _log_request(request: httpx.Request) -> None:
    LOGGER.debug("HTTP request %s %s", request.method, mask_url(str(request.url)))


def _log_response(response: httpx.Response) -> None:
    LOGGER.debug(
        "HTTP response %s %s status=%s",
        response.request.method,
        mask_url(str(response.request.url)),
        response.status_code,
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


class Transport:
    """Retrying, caching HTTP executor shared by all source clients."""

    def __init__(
        self,
        http: Optional[HttpSettings] = None,
        retry: Optional[RetrySettings] = None,
        *,
        cache: Optional[CacheStore] = None,
        cache_writes: bool = True,
        http_transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[Callable[[], float]] = None,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.http_settings = http or HttpSettings()
        self.retry_settings = retry or RetrySettings()
        self.cache = cache
        self.cache_writes = cache_writes
        self._sleep = sleep
        self._rng = rng
        self._clock_ms = clock_ms
        self._client = build_http_client(
            self.http_settings,
            transport=http_transport,
            event_hooks={"request": [_log_request], "response": [_log_response]},
        )
        self._lock = threading.Lock()
        self.network_requests = 0

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        force_refresh: bool = False,
        response_type: ResponseType = "auto",
    ) -> Any:
        """Execute a request and return its decoded payload.

        Args:
            method: HTTP method.
            url: Absolute URL.
            headers: Extra request headers.
            params: Query parameters, part of the cache key.
            json: JSON body for POST.
            force_refresh: Skip the conditional request even when cached.
            response_type: ``json``, ``text`` or ``auto`` (sniffed).

        Returns:
            Decoded payload, or the cached payload on ``304``. ``HEAD``
            returns the response headers as a dict.

        Raises:
            NetworkError: Connection failures after retries.
            NotFoundError: HTTP 404, never retried.
            HttpStatusError: Other HTTP failures, after retries when retryable.
            SchemaValidationError: ``response_type="json"`` body is not JSON.
        """
        method = method.upper()
        full_url = str(httpx.URL(url, params=dict(params))) if params else url
        key = cache_key(full_url)
        send_headers: Dict[str, str] = dict(headers or {})

        cached: Optional[CacheEntry] = None
        if method == "GET" and self.cache is not None and not force_refresh:
            cached = self.cache.get(key)
            if cached is not None and cached.etag:
                send_headers["If-None-Match"] = cached.etag
                if cached.last_modified:
                    send_headers["If-Modified-Since"] = cached.last_modified
            else:
                cached = None

        retrying = build_retrying(self.retry_settings, sleep=self._sleep, rng=self._rng)
        response = retrying(self._send_once, method, full_url, send_headers, json)

        if response.status_code == 304:
            if cached is None:
                raise HttpStatusError(304, url=mask_url(full_url))
            LOGGER.debug("Cache revalidated for %s", mask_url(full_url))
            return cached.data

        if method == "HEAD":
            return dict(response.headers)

        payload = self._decode(response, response_type, full_url)

        if (
            method == "GET"
            and response.status_code == 200
            and self.cache is not None
            and self.cache_writes
        ):
            self._store(key, full_url, response, payload)
        return payload

    def get(self, url: str, **kwargs: Any) -> Any:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, *, json: Any = None, **kwargs: Any) -> Any:
        return self.request("POST", url, json=json, **kwargs)

    def head(self, url: str, **kwargs: Any) -> Dict[str, str]:
        return self.request("HEAD", url, **kwargs)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _send_once(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        json: Any,
    ) -> httpx.Response:
        with self._lock:
            self.network_requests += 1
        safe_url = mask_url(url)
        try:
            response = self._client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Timeout requesting {safe_url}: {exc}", url=safe_url) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network error requesting {safe_url}: {exc}", url=safe_url) from exc

        status = response.status_code
        if status == 404:
            raise NotFoundError(url=safe_url)
        if status >= 400:
            raise HttpStatusError(
                status,
                url=safe_url,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response, response_type: ResponseType, url: str) -> Any:
        if response_type == "text":
            return response.text
        content_type = response.headers.get("content-type", "")
        if response_type == "json" or "json" in content_type:
            try:
                return response.json()
            except ValueError as exc:
                if response_type == "json":
                    raise SchemaValidationError(
                        f"Invalid JSON from {mask_url(url)}: {exc}"
                    ) from exc
                return response.text
        text = response.text
        if text[:1] in ("{", "["):
            try:
                return response.json()
            except ValueError:
                return text
        return text

    def _store(self, key: str, url: str, response: httpx.Response, payload: Any) -> None:
        entry = CacheEntry(
            url=mask_url(url),
            timestamp=self._clock_ms(),
            headers={name: response.headers.get(name) for name in CACHED_HEADERS},
            data=payload,
        )
        try:
            self.cache.put(key, entry)  # type: ignore[union-attr]
        except OSError as exc:
            LOGGER.warning("Failed to write cache entry for %s: %s", entry.url, exc)


__all__ = ["Transport", "build_http_client", "parse_retry_after"]
