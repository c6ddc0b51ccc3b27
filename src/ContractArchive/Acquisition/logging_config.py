"""
Structured Logging Utilities

Centralizes structured logging setup for the acquisition pipeline. Provides
helpers for masking credentials (explorer API keys travel in query strings),
emitting JSON log records with contract attribution, and rotating log files.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from .config import LoggingSettings

PACKAGE_LOGGER = "ContractArchive.Acquisition"
_MASK = "***masked***"
_SENSITIVE_KEYS = {"authorization", "api_key", "apikey", "token", "secret", "password"}
_QUERY_SECRET = re.compile(r"((?:apikey|api_key|token)=)[^&\s]+", re.IGNORECASE)


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Args:
        payload: Arbitrary key-value pairs that may contain credentials.

    Returns:
        Copy of the payload where secret fields are replaced and query-string
        credentials inside string values are redacted.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": "ok"})
        {'token': '***masked***', 'status': 'ok'}
    """
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if key.lower() in _SENSITIVE_KEYS:
            masked[key] = _MASK
        elif isinstance(value, str):
            masked[key] = mask_url(value)
        else:
            masked[key] = value
    return masked


def mask_url(value: str) -> str:
    """Redact ``apikey=...`` style query parameters inside a string."""
    return _QUERY_SECRET.sub(lambda m: m.group(1) + _MASK, value)


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs with contract attribution."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", None),
            "chain": getattr(record, "chain", None),
            "address": getattr(record, "address", None),
            "stage": getattr(record, "stage", None),
        }
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            log_obj.update(record.extra_fields)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj))


class _MaskingConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return mask_url(super().format(record))


def setup_logging(config: LoggingSettings, log_dir: Optional[Path] = None) -> logging.Logger:
    """Configure console and rotating JSON file handlers.

    Args:
        config: Logging configuration containing level, size, and retention.
        log_dir: Optional directory override for log file placement.

    Returns:
        Configured logger scoped to the acquisition package.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_carchive_managed", False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(_MaskingConsoleFormatter("%(levelname)s: %(message)s"))
    stream_handler._carchive_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    directory = log_dir or (Path(config.directory) if config.directory else None)
    if directory is not None:
        directory.mkdir(parents=True, exist_ok=True)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            directory / f"contract-archive-{today}.jsonl",
            maxBytes=int(config.max_log_size_mb * 1024 * 1024),
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._carchive_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = True
    return logger


__all__ = [
    "JSONFormatter",
    "mask_sensitive_data",
    "mask_url",
    "setup_logging",
]
