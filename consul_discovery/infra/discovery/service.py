"""Consul service discovery orchestrator.

ConsulDiscovery owns the ConfigMap that deduplicates watchers. It is created
by the discovery subsystem and passed around by reference; there is no
process-wide instance.

Scrape jobs acquire a runtime config for their descriptor and release it when
they go away. Jobs with equal descriptors share one watcher; the watcher stops
when the last job releases it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from consul_discovery.infra.discovery.api_config import ConsulAPIConfig, build_api_config
from consul_discovery.infra.discovery.config_map import ConfigMap

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    import httpx

    from consul_discovery.core.settings.discovery import DiscoverySettings
    from consul_discovery.infra.discovery.sd_config import ConsulSDConfig

logger = logging.getLogger(__name__)


class ConsulDiscovery:
    """Lifecycle-managed registry of Consul runtime configs.

    Example:
        async with ConsulDiscovery(settings=get_discovery_settings()) as discovery:
            api_config = await discovery.acquire(sd_config)
            nodes = api_config.get_service_nodes()
            ...
            await discovery.release(sd_config)
    """

    def __init__(
        self,
        settings: DiscoverySettings | None = None,
        *,
        base_dir: str | Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the discovery registry.

        Args:
            settings: Discovery settings. If None, loads from environment.
            base_dir: Directory against which relative file paths in
                descriptors are resolved.
            transport: Custom httpx transport shared by every client, used by
                tests to stub the registry.
        """
        if settings is None:
            from consul_discovery.core.settings import get_discovery_settings

            settings = get_discovery_settings()

        self._settings = settings
        self._base_dir = base_dir
        self._transport = transport
        self._configs: ConfigMap[ConsulSDConfig, ConsulAPIConfig] = ConfigMap()

    @property
    def active_configs(self) -> int:
        """Number of distinct descriptors with a live watcher."""
        return len(self._configs)

    def ref_count(self, sd_config: ConsulSDConfig) -> int:
        return self._configs.ref_count(sd_config)

    async def acquire(self, sd_config: ConsulSDConfig) -> ConsulAPIConfig:
        """Return the shared runtime config for ``sd_config``, building it if needed.

        A cached config whose watcher crashed is rebuilt.

        Raises:
            ConfigurationError: If the descriptor cannot be turned into a client.
            RegistryRequestError: If the datacenter cannot be resolved.
        """

        async def build() -> ConsulAPIConfig:
            return await build_api_config(
                sd_config,
                self._settings,
                base_dir=self._base_dir,
                transport=self._transport,
            )

        return await self._configs.get(
            sd_config, build, is_stale=lambda api_config: api_config.watcher.has_crashed
        )

    async def release(self, sd_config: ConsulSDConfig) -> None:
        """Release one reference; the watcher stops when none remain."""
        await self._configs.release(sd_config)

    async def close(self) -> None:
        """Stop every watcher regardless of outstanding references."""
        await self._configs.stop_all()
        logger.debug("ConsulDiscovery closed")

    async def __aenter__(self) -> ConsulDiscovery:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
