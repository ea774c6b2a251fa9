"""Prometheus metrics for registry discovery.

These metrics cover request outcomes, long-poll durations, index
synchronization events and watcher lifecycle.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from consul_discovery.infra.metrics.prometheus import (
    DEFAULT_LATENCY_BUCKETS,
    LONG_POLL_BUCKETS,
    REGISTRY,
)

# ──────────────────────────────────────────────────────────────
# Request metrics
# ──────────────────────────────────────────────────────────────

consul_sd_requests_total = Counter(
    "consul_sd_requests_total",
    "Total registry API requests. "
    "Usage: Increment after each request, labelled by kind and outcome.",
    ["kind", "status"],  # kind: blocking/plain, status: success/failure
    registry=REGISTRY,
)

consul_sd_errors_total = Counter(
    "consul_sd_errors_total",
    "Total errors during registry requests. "
    "Categorized by operation and error type for debugging.",
    ["operation", "error_type"],  # error_type: timeout/connection/http_error
    registry=REGISTRY,
)

consul_sd_request_duration_seconds = Histogram(
    "consul_sd_request_duration_seconds",
    "Duration of plain (non-blocking) registry requests in seconds.",
    ["operation"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

consul_sd_blocking_request_duration_seconds = Histogram(
    "consul_sd_blocking_request_duration_seconds",
    "Duration of blocking registry queries in seconds. "
    "Long durations are normal: the registry holds the request until data changes.",
    ["operation"],
    buckets=LONG_POLL_BUCKETS,
    registry=REGISTRY,
)

# ──────────────────────────────────────────────────────────────
# Index synchronization metrics
# ──────────────────────────────────────────────────────────────

consul_sd_index_transitions_total = Counter(
    "consul_sd_index_transitions_total",
    "Change index transitions after blocking queries.",
    ["transition"],  # fresh, reset_to_one, reset_to_zero
    registry=REGISTRY,
)

consul_sd_index_header_anomalies_total = Counter(
    "consul_sd_index_header_anomalies_total",
    "Blocking responses with a missing or malformed X-Consul-Index header.",
    ["reason"],  # missing, malformed
    registry=REGISTRY,
)

# ──────────────────────────────────────────────────────────────
# Lifecycle metrics
# ──────────────────────────────────────────────────────────────

consul_sd_active_watchers = Gauge(
    "consul_sd_active_watchers",
    "Number of running registry watchers.",
    registry=REGISTRY,
)

consul_sd_config_builds_total = Counter(
    "consul_sd_config_builds_total",
    "Runtime config constructions, one per distinct descriptor.",
    ["status"],  # success, failure
    registry=REGISTRY,
)
