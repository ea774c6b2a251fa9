"""Consul service discovery infrastructure.

This package long-polls a Consul-compatible registry to discover scrape
targets:
- Blocking queries with change-index tracking and reset handling
- One watcher per distinct descriptor, shared by every job that uses it
- OpenTelemetry tracing and Prometheus metrics
- Mock client for testing

Usage:
    from consul_discovery.infra.discovery import ConsulDiscovery, ConsulSDConfig

    async with ConsulDiscovery() as discovery:
        api_config = await discovery.acquire(ConsulSDConfig(server="consul:8500"))
        for node in api_config.get_service_nodes():
            print(node.service.service, node.address, node.service.port)

Configuration:
    # Environment variables
    CONSUL_SD_WAIT_TIME=30
    CONSUL_SD_BLOCKING_READ_TIMEOUT=600
    CONSUL_HTTP_TOKEN_FILE=/run/secrets/consul-token
"""

from consul_discovery.infra.discovery.api_config import (
    ConsulAPIConfig,
    build_api_config,
    get_datacenter,
    normalize_server,
)
from consul_discovery.infra.discovery.blocking import (
    IndexTransition,
    correct_index,
    get_blocking_api_response,
    max_wait_time,
)
from consul_discovery.infra.discovery.client import RegistryClient
from consul_discovery.infra.discovery.config_map import ConfigMap
from consul_discovery.infra.discovery.credentials import resolve_token
from consul_discovery.infra.discovery.mock_client import MockRegistryClient
from consul_discovery.infra.discovery.models import ServiceNode
from consul_discovery.infra.discovery.protocols import APIResponse, RegistryClientProtocol
from consul_discovery.infra.discovery.sd_config import (
    BasicAuthConfig,
    ConsulSDConfig,
    ProxyClientConfig,
    TLSConfig,
)
from consul_discovery.infra.discovery.service import ConsulDiscovery
from consul_discovery.infra.discovery.watcher import ConsulWatcher

__all__ = [
    # Descriptors
    "ConsulSDConfig",
    "TLSConfig",
    "BasicAuthConfig",
    "ProxyClientConfig",
    # Protocol
    "RegistryClientProtocol",
    "APIResponse",
    # Clients
    "RegistryClient",
    "MockRegistryClient",
    # Blocking queries
    "IndexTransition",
    "correct_index",
    "get_blocking_api_response",
    "max_wait_time",
    # Config construction
    "ConsulAPIConfig",
    "build_api_config",
    "get_datacenter",
    "normalize_server",
    "resolve_token",
    # Runtime
    "ConfigMap",
    "ConsulDiscovery",
    "ConsulWatcher",
    "ServiceNode",
]
