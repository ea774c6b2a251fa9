"""Prometheus registry and shared bucket definitions."""

from __future__ import annotations

from prometheus_client import CollectorRegistry

# Custom registry so embedding processes control what gets exposed
REGISTRY = CollectorRegistry()

# Covers plain registry requests from 1ms to 10s
DEFAULT_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

# Blocking queries are held open by the registry for up to 10 minutes
LONG_POLL_BUCKETS = (
    0.01,
    0.1,
    1.0,
    5.0,
    15.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
)
