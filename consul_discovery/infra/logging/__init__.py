"""Logging setup for discovery processes.

Usage:
    from consul_discovery.infra.logging import setup_logging

    setup_logging()  # reads LOG_* settings once
"""

from __future__ import annotations

from consul_discovery.infra.logging.config import configure_logging, setup_logging
from consul_discovery.infra.logging.formatters import JSONFormatter

__all__ = ["JSONFormatter", "configure_logging", "setup_logging"]
