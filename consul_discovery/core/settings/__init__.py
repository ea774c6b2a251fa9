"""Pydantic Settings v2 configuration.

Import settings via cached loaders:
    from consul_discovery.core.settings import get_discovery_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file
"""

from __future__ import annotations

from .discovery import DiscoverySettings
from .loader import clear_all_caches, get_discovery_settings, get_logging_settings
from .logs import LoggingSettings

__all__ = [
    "DiscoverySettings",
    "LoggingSettings",
    "clear_all_caches",
    "get_discovery_settings",
    "get_logging_settings",
]
