# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition.errors",
#   "purpose": "Error taxonomy for the contract acquisition pipeline.",
#   "sections": [
#     {"id": "archiveerror", "name": "ArchiveError", "anchor": "class-archiveerror", "kind": "class"},
#     {"id": "networkerror", "name": "NetworkError", "anchor": "class-networkerror", "kind": "class"},
#     {"id": "httpstatuserror", "name": "HttpStatusError", "anchor": "class-httpstatuserror", "kind": "class"},
#     {"id": "notfounderror", "name": "NotFoundError", "anchor": "class-notfounderror", "kind": "class"},
#     {"id": "exhaustedsourceserror", "name": "ExhaustedSourcesError", "anchor": "class-exhaustedsourceserror", "kind": "class"},
#     {"id": "runabortederror", "name": "RunAbortedError", "anchor": "class-runabortederror", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy for the contract acquisition pipeline.

Responsibilities
----------------
- Classify transport failures exactly once, at the HTTP boundary, into
  :class:`NetworkError`, :class:`HttpStatusError` and :class:`NotFoundError`
  so clients never re-derive retryability from raw status codes.
- Provide source-level failures (:class:`ExhaustedSourcesError`,
  :class:`ExplorerError`, :class:`AllSourcesFailedError`) that drive the
  primary-to-secondary fallback in the orchestrator.
- Attribute every contract-level failure to ``(chain_name, address)`` so a
  re-run can target just the failures.

Design Notes
------------
- All exceptions derive from :class:`ArchiveError`; callers that only want
  per-contract isolation catch the base class.
- Exceptions carry keyword-only metadata instead of formatted strings so log
  sinks can emit structured fields.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ArchiveError(Exception):
    """Base class for all acquisition pipeline failures."""

    def __init__(
        self,
        message: str,
        *,
        chain_name: Optional[str] = None,
        address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.chain_name = chain_name
        self.address = address
        self.details = details or {}

    def attribute(self, chain_name: str, address: str) -> "ArchiveError":
        """Attach contract attribution when the raiser did not know it."""
        if self.chain_name is None:
            self.chain_name = chain_name
        if self.address is None:
            self.address = address
        return self


class ConfigurationError(ArchiveError):
    """Raised when configuration files or chain lookups are invalid."""


class NetworkError(ArchiveError):
    """Connection-level failure (DNS, refused connection, timeout)."""

    retryable = True

    def __init__(self, message: str, *, url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.url = url


class HttpStatusError(ArchiveError):
    """Remote endpoint answered with a non-success HTTP status.

    Attributes:
        status: HTTP status code returned by the server.
        url: Request URL that produced the status.
        retry_after: Server-supplied Retry-After in seconds, when present.
    """

    def __init__(
        self,
        status: int,
        *,
        url: Optional[str] = None,
        retry_after: Optional[float] = None,
        message: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message or f"HTTP {status} for {url}", **kwargs)
        self.status = status
        self.url = url
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


class NotFoundError(HttpStatusError):
    """HTTP 404: the resource is not present at this endpoint."""

    def __init__(self, *, url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(404, url=url, message=f"Not found: {url}", **kwargs)


class SchemaValidationError(ArchiveError):
    """A metadata, provenance or manifest document is malformed."""


class IntegrityError(ArchiveError):
    """Checksum or bytecode mismatch detected in archived content."""


class InvalidAddressError(ArchiveError, ValueError):
    """Input string is not a 20-byte hex account address."""


class ExhaustedSourcesError(ArchiveError):
    """Every (match quality, mirror) combination of the primary source failed."""

    def __init__(self, message: str, *, last_error: Optional[BaseException] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.last_error = last_error


class GatewayExhaustedError(ArchiveError):
    """Every content-addressed gateway failed for a blob."""

    def __init__(self, message: str, *, errors: Optional[List[BaseException]] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.errors = list(errors or [])


class ExplorerError(ArchiveError):
    """Block explorer reported an error status or an unverified contract."""


class AllSourcesFailedError(ArchiveError):
    """Primary and secondary sources both failed for a contract."""

    def __init__(
        self,
        message: str,
        *,
        primary_error: Optional[BaseException] = None,
        secondary_error: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.primary_error = primary_error
        self.secondary_error = secondary_error


class RunAbortedError(ArchiveError):
    """Strict mode aborted the run on the first contract failure."""

    def __init__(self, message: str, *, summary: Any = None, cause: Optional[BaseException] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.summary = summary
        self.cause = cause


__all__ = (
    "ArchiveError",
    "ConfigurationError",
    "NetworkError",
    "HttpStatusError",
    "NotFoundError",
    "SchemaValidationError",
    "IntegrityError",
    "InvalidAddressError",
    "ExhaustedSourcesError",
    "GatewayExhaustedError",
    "ExplorerError",
    "AllSourcesFailedError",
    "RunAbortedError",
)
