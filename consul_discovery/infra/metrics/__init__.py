"""Prometheus metrics infrastructure."""

from __future__ import annotations

from consul_discovery.infra.metrics.prometheus import (
    DEFAULT_LATENCY_BUCKETS,
    LONG_POLL_BUCKETS,
    REGISTRY,
)

__all__ = ["DEFAULT_LATENCY_BUCKETS", "LONG_POLL_BUCKETS", "REGISTRY"]
