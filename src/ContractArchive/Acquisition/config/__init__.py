"""Configuration models and loader for the acquisition pipeline."""

from .loader import export_config_schema, load_config
from .models import (
    ArchiveConfig,
    CacheSettings,
    ChainConfig,
    HttpSettings,
    LoggingSettings,
    PathSettings,
    RepositorySettings,
    RetrySettings,
    RunSettings,
)

__all__ = [
    "ArchiveConfig",
    "CacheSettings",
    "ChainConfig",
    "HttpSettings",
    "LoggingSettings",
    "PathSettings",
    "RepositorySettings",
    "RetrySettings",
    "RunSettings",
    "export_config_schema",
    "load_config",
]
