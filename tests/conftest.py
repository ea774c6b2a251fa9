"""Pytest configuration and shared fixtures.

Organization:
    - Environment Fixtures: isolate settings caches and registry env vars
    - Settings Fixtures: fast discovery settings for watcher tests
    - Registry Fixtures: in-memory registry client and health entry factory
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from consul_discovery.core.settings import DiscoverySettings, clear_all_caches
from consul_discovery.infra.discovery.mock_client import MockRegistryClient

# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Drop registry credentials and settings overrides from the environment.

    Settings caches are reset before and after each test.
    """
    for name in ("CONSUL_HTTP_TOKEN", "CONSUL_HTTP_TOKEN_FILE"):
        monkeypatch.delenv(name, raising=False)
    for name in (
        "CONSUL_SD_WAIT_TIME",
        "CONSUL_SD_BLOCKING_READ_TIMEOUT",
        "CONSUL_SD_REQUEST_TIMEOUT",
        "CONSUL_SD_CONNECT_TIMEOUT",
        "CONSUL_SD_RETRY_INITIAL_DELAY",
        "CONSUL_SD_RETRY_MAX_DELAY",
        "LOG_LEVEL",
        "LOG_JSON_LOGS",
        "LOG_CONSOLE_ENABLED",
        "LOG_SERVICE_NAME",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_all_caches()
    yield
    clear_all_caches()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def discovery_settings() -> DiscoverySettings:
    """Discovery settings with short backoff so failing watchers retry quickly.

    Returns:
        DiscoverySettings instance.
    """
    return DiscoverySettings(
        blocking_read_timeout=10.0,
        retry_initial_delay=0.01,
        retry_max_delay=0.05,
    )


# ============================================================================
# Registry Fixtures
# ============================================================================


@pytest.fixture
def make_service_node() -> Callable[..., dict[str, Any]]:
    """Factory for raw ``/v1/health/service/<name>`` entries.

    Example:
        def test_something(make_service_node):
            entry = make_service_node("api", node="node-1", port=8080)
    """

    def _make(
        service: str,
        *,
        node: str = "node-1",
        node_address: str = "10.0.0.1",
        address: str = "",
        port: int = 8080,
        tags: list[str] | None = None,
        checks: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        return {
            "Node": {
                "ID": f"{node}-id",
                "Node": node,
                "Address": node_address,
                "Datacenter": "dc1",
                "TaggedAddresses": {"lan": node_address},
                "Meta": {"rack": "r1"},
            },
            "Service": {
                "ID": f"{service}-{node}",
                "Service": service,
                "Address": address,
                "Port": port,
                "Tags": tags or [],
                "Meta": {},
            },
            "Checks": checks
            if checks is not None
            else [{"CheckID": "serfHealth", "ServiceID": "", "Status": "passing"}],
        }

    return _make


@pytest.fixture
def mock_registry(make_service_node: Callable[..., dict[str, Any]]) -> MockRegistryClient:
    """In-memory registry with two services.

    Returns:
        MockRegistryClient serving ``api`` (tags http, v1) and ``worker``.
    """
    registry = MockRegistryClient(blocking_read_timeout=10.0)
    registry.add_service(
        "api",
        tags=["http", "v1"],
        nodes=[
            make_service_node("api", node="node-1", tags=["http", "v1"]),
            make_service_node("api", node="node-2", node_address="10.0.0.2", tags=["http", "v1"]),
        ],
    )
    registry.add_service("worker", tags=["batch"], nodes=[make_service_node("worker", port=9000)])
    return registry
