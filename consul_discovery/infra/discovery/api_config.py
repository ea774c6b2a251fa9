"""Runtime config construction for Consul service discovery.

build_api_config() turns a ConsulSDConfig descriptor into a ConsulAPIConfig
holding a started watcher:

1. Resolve the ACL token (explicit, token file, token env) or basic auth
2. Build TLS options
3. Normalize the server URL
4. Resolve proxy credentials
5. Create the registry HTTP client
6. Resolve the datacenter (explicit, or asked from /v1/agent/self)
7. Create and start the watcher

Any failure aborts the whole build and closes the client, so no partially
built watcher is left running.
"""

from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from consul_discovery.core.exceptions import (
    ConfigurationError,
    RegistryRequestError,
    ResponseParseError,
)
from consul_discovery.infra.discovery.client import RegistryClient
from consul_discovery.infra.discovery.credentials import (
    resolve_path,
    resolve_proxy,
    resolve_registry_auth,
)
from consul_discovery.infra.discovery.metrics import consul_sd_config_builds_total
from consul_discovery.infra.discovery.models import AgentInfo, ServiceNode
from consul_discovery.infra.discovery.watcher import ConsulWatcher

if TYPE_CHECKING:
    import httpx

    from consul_discovery.core.settings.discovery import DiscoverySettings
    from consul_discovery.infra.discovery.protocols import RegistryClientProtocol
    from consul_discovery.infra.discovery.sd_config import ConsulSDConfig, TLSConfig

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "localhost:8500"
DEFAULT_SCHEME = "http"
DEFAULT_TAG_SEPARATOR = ","
AGENT_SELF_PATH = "/v1/agent/self"


@dataclass
class ConsulAPIConfig:
    """Resolved runtime config shared by every job with an equal descriptor."""

    tag_separator: str
    datacenter: str
    watcher: ConsulWatcher

    def stop(self) -> None:
        """Stop the watcher without waiting for its in-flight request."""
        self.watcher.stop()

    def get_service_nodes(self) -> list[ServiceNode]:
        """Health entries of all watched services, ordered by service name."""
        snapshot = self.watcher.get_service_nodes()
        return [node for name in sorted(snapshot) for node in snapshot[name]]

    def join_tags(self, tags: list[str]) -> str:
        """Join tags with the separator on both ends, so ``,a,b,`` matches ``.*,a,.*``."""
        if not tags:
            return ""
        sep = self.tag_separator
        return sep + sep.join(tags) + sep


def normalize_server(server: str, scheme: str = "") -> str:
    """Return the registry base URL.

    >>> normalize_server("localhost:8500")
    'http://localhost:8500'
    >>> normalize_server("https://consul.internal")
    'https://consul.internal'
    """
    server = server or DEFAULT_SERVER
    if "://" not in server:
        server = f"{scheme or DEFAULT_SCHEME}://{server}"
    return server


def build_ssl_verify(
    tls_config: TLSConfig, base_dir: str | Path | None = None
) -> ssl.SSLContext | bool:
    """Build the ``verify`` argument for httpx from TLS options.

    Raises:
        ConfigurationError: If a referenced CA, certificate or key cannot be loaded.
    """
    if tls_config.insecure_skip_verify and not tls_config.cert_file:
        return False
    if not (tls_config.ca_file or tls_config.cert_file):
        return True

    try:
        ca_file = resolve_path(tls_config.ca_file, base_dir) if tls_config.ca_file else None
        context = ssl.create_default_context(cafile=ca_file)
        if tls_config.cert_file:
            key_file = resolve_path(tls_config.key_file, base_dir) if tls_config.key_file else None
            context.load_cert_chain(resolve_path(tls_config.cert_file, base_dir), key_file)
        if tls_config.insecure_skip_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(
            f"cannot parse auth config: cannot load TLS files: {e}",
            field="tls_config",
            extra={
                "ca_file": tls_config.ca_file,
                "cert_file": tls_config.cert_file,
                "key_file": tls_config.key_file,
            },
        ) from e
    return context


async def get_datacenter(client: RegistryClientProtocol, datacenter: str) -> str:
    """Return ``datacenter`` or ask the agent for its own.

    See https://developer.hashicorp.com/consul/api-docs/agent#read-configuration

    Raises:
        RegistryRequestError: If the agent cannot be queried.
        ResponseParseError: If the agent document has no datacenter.
    """
    if datacenter:
        return datacenter

    try:
        data = await client.get_api_response(AGENT_SELF_PATH)
    except RegistryRequestError as e:
        raise RegistryRequestError(
            f"cannot query consul agent info: {e.detail}",
            path=AGENT_SELF_PATH,
            status_code=e.status_code,
        ) from e

    try:
        agent = AgentInfo.model_validate_json(data)
    except ValidationError as e:
        raise ResponseParseError(
            f"cannot parse {AGENT_SELF_PATH} response: {e}",
            path=AGENT_SELF_PATH,
        ) from e

    logger.debug("Resolved datacenter from agent", extra={"datacenter": agent.config.datacenter})
    return agent.config.datacenter


async def build_api_config(
    sd_config: ConsulSDConfig,
    settings: DiscoverySettings | None = None,
    *,
    base_dir: str | Path | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ConsulAPIConfig:
    """Build a runtime config with a started watcher for ``sd_config``.

    Args:
        sd_config: Descriptor of the registry to watch.
        settings: Discovery settings. If None, loads from environment.
        base_dir: Directory against which relative file paths are resolved.
        transport: Custom httpx transport, used by tests to stub the registry.

    Raises:
        ConfigurationError: If credentials, TLS or proxy settings are unusable.
        RegistryRequestError: If the datacenter cannot be resolved.
        ResponseParseError: If the agent document cannot be decoded.
    """
    if settings is None:
        from consul_discovery.core.settings import get_discovery_settings

        settings = get_discovery_settings()

    try:
        auth, headers = resolve_registry_auth(sd_config)
        verify = build_ssl_verify(sd_config.tls_config, base_dir)
        base_url = normalize_server(sd_config.server, sd_config.scheme)
        proxy = resolve_proxy(sd_config.proxy_url, sd_config.proxy_client_config, base_dir)
    except ConfigurationError:
        consul_sd_config_builds_total.labels(status="failure").inc()
        raise

    client = RegistryClient(
        base_url,
        settings,
        auth=auth,
        headers=headers,
        verify=verify,
        proxy=proxy,
        transport=transport,
    )
    try:
        api_config = await build_api_config_with_client(client, sd_config, settings)
    except BaseException:
        consul_sd_config_builds_total.labels(status="failure").inc()
        await client.close()
        raise

    consul_sd_config_builds_total.labels(status="success").inc()
    return api_config


async def build_api_config_with_client(
    client: RegistryClientProtocol,
    sd_config: ConsulSDConfig,
    settings: DiscoverySettings,
) -> ConsulAPIConfig:
    """Finish the build on an already constructed client.

    The watcher takes ownership of ``client`` and closes it when it stops.
    """
    tag_separator = (
        sd_config.tag_separator if sd_config.tag_separator is not None else DEFAULT_TAG_SEPARATOR
    )
    datacenter = await get_datacenter(client, sd_config.datacenter)

    watcher = ConsulWatcher(client, sd_config, datacenter, settings)
    watcher.start()

    logger.info(
        "Consul discovery config built",
        extra={"base_url": client.base_url, "datacenter": datacenter},
    )
    return ConsulAPIConfig(tag_separator=tag_separator, datacenter=datacenter, watcher=watcher)
