"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Testing:
    In tests, clear the cache to force reload:
    get_discovery_settings.cache_clear()

    Or construct directly with custom values:
    settings = DiscoverySettings(wait_time=5.0)
"""

from __future__ import annotations

from functools import lru_cache

from .discovery import DiscoverySettings
from .logs import LoggingSettings


@lru_cache(maxsize=1)
def get_discovery_settings() -> DiscoverySettings:
    """Get cached discovery settings.

    Returns:
        Validated and frozen DiscoverySettings instance.
    """
    return DiscoverySettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear every cached settings instance (useful in tests)."""
    get_discovery_settings.cache_clear()
    get_logging_settings.cache_clear()
