"""Long-polling watcher for one registry configuration.

The watcher runs a single asyncio task that:
1. Issues a blocking query on ``/v1/catalog/services`` with its change index
2. Selects the services the descriptor asks for
3. Refreshes health entries of the selected services, one request at a time
4. Publishes the new snapshot and immediately polls again

Requests are strictly sequential. Failed polls are logged and followed by an
exponential backoff; the loop only exits when stop() is called.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, TypeVar
from urllib.parse import quote

from pydantic import TypeAdapter, ValidationError

from consul_discovery.core.exceptions import DiscoveryError, ResponseParseError
from consul_discovery.infra.discovery.blocking import get_blocking_api_response
from consul_discovery.infra.discovery.metrics import consul_sd_active_watchers
from consul_discovery.infra.discovery.models import ServiceNode
from consul_discovery.utils.retry import RetryStrategy

if TYPE_CHECKING:
    from consul_discovery.core.settings.discovery import DiscoverySettings
    from consul_discovery.infra.discovery.protocols import RegistryClientProtocol
    from consul_discovery.infra.discovery.sd_config import ConsulSDConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

SERVICES_PATH = "/v1/catalog/services"
HEALTH_SERVICE_PATH = "/v1/health/service/"

_catalog_adapter = TypeAdapter(dict[str, list[str] | None])
_service_nodes_adapter = TypeAdapter(list[ServiceNode])

# Keeps 2**attempt finite for watchers that fail for a long time
_MAX_BACKOFF_EXPONENT = 30


def build_query_params(sd_config: ConsulSDConfig, datacenter: str) -> dict[str, str | list[str]]:
    """Query params shared by every request of a watcher."""
    params: dict[str, str | list[str]] = {}
    if datacenter:
        params["dc"] = datacenter
    if sd_config.stale_reads_allowed:
        # Presence of the key is what matters to the registry
        params["stale"] = ""
    if sd_config.namespace:
        params["ns"] = sd_config.namespace
    if sd_config.partition:
        params["partition"] = sd_config.partition
    if sd_config.node_meta:
        params["node-meta"] = [f"{k}:{v}" for k, v in sd_config.node_meta]
    if sd_config.filter:
        params["filter"] = sd_config.filter
    return params


class ConsulWatcher:
    """Poll loop for a single resolved registry configuration.

    Example:
        watcher = ConsulWatcher(client, sd_config, "dc1", settings)
        watcher.start()
        ...
        nodes = watcher.get_service_nodes()
        watcher.stop()  # returns immediately
        await watcher.wait_stopped()
    """

    def __init__(
        self,
        client: RegistryClientProtocol,
        sd_config: ConsulSDConfig,
        datacenter: str,
        settings: DiscoverySettings,
    ) -> None:
        self._client = client
        self._settings = settings
        self._datacenter = datacenter
        self._watch_services = frozenset(sd_config.services)
        self._watch_tags = tuple(sd_config.tags)
        self._params = build_query_params(sd_config, datacenter)

        self._index = 0
        self._service_nodes: dict[str, list[ServiceNode]] = {}
        self._synced = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._backoff = RetryStrategy(
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            exceptions=(DiscoveryError,),
            max_exponent=_MAX_BACKOFF_EXPONENT,
        )

    @property
    def index(self) -> int:
        """Change index used for the next catalog query."""
        return self._index

    @property
    def datacenter(self) -> str:
        return self._datacenter

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def has_crashed(self) -> bool:
        """True if the poll loop exited without stop() being called."""
        return self._task is not None and self._task.done() and not self._stop_event.is_set()

    @property
    def is_synced(self) -> bool:
        """True once a first snapshot has been published."""
        return self._synced.is_set()

    def get_service_nodes(self) -> dict[str, list[ServiceNode]]:
        """Latest snapshot of health entries per watched service."""
        return dict(self._service_nodes)

    async def wait_synced(self, timeout: float | None = None) -> None:
        """Wait for the first published snapshot.

        Raises:
            TimeoutError: If no poll succeeded within ``timeout``.
        """
        await asyncio.wait_for(self._synced.wait(), timeout=timeout)

    def start(self) -> None:
        """Start the poll loop. Must be called from a running event loop."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(
            self._watch_loop(),
            name=f"consul-watcher-{self._client.base_url}",
        )
        consul_sd_active_watchers.inc()
        logger.info(
            "Consul watcher started",
            extra={"base_url": self._client.base_url, "datacenter": self._datacenter},
        )

    def stop(self) -> None:
        """Ask the poll loop to exit.

        Does not wait for an in-flight request: it completes or times out on
        its own and no further request is issued afterwards.
        """
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        logger.info(
            "Consul watcher stopping",
            extra={"base_url": self._client.base_url, "datacenter": self._datacenter},
        )

    async def wait_stopped(self, timeout: float | None = None) -> None:
        """Wait until the poll loop has exited and the client is closed.

        On timeout the task is cancelled, abandoning the in-flight request.
        """
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except TimeoutError:
            logger.warning("Consul watcher did not stop in time, cancelling")
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def poll_once(self) -> None:
        """Run one catalog query and refresh the selected services.

        The change index advances only once the new snapshot is published, so
        a poll that fails halfway is retried without blocking.

        Raises:
            DiscoveryError: If a request fails or a response cannot be decoded.
        """
        data, index = await get_blocking_api_response(
            self._client,
            SERVICES_PATH,
            self._index,
            params=self._params,
            settings=self._settings,
        )
        if self._stop_event.is_set():
            return

        catalog = _decode(_catalog_adapter, data, SERVICES_PATH)
        service_names = self._select_services(catalog)

        service_nodes: dict[str, list[ServiceNode]] = {}
        for name in service_names:
            if self._stop_event.is_set():
                return
            service_nodes[name] = await self._fetch_service_nodes(name)

        self._service_nodes = service_nodes
        self._index = index
        self._synced.set()
        logger.debug(
            "Consul services refreshed",
            extra={
                "base_url": self._client.base_url,
                "index": self._index,
                "services": len(service_nodes),
            },
        )

    def _select_services(self, catalog: dict[str, list[str] | None]) -> list[str]:
        selected: list[str] = []
        for name, tags in catalog.items():
            if self._watch_services and name not in self._watch_services:
                continue
            service_tags = set(tags or ())
            if any(tag not in service_tags for tag in self._watch_tags):
                continue
            selected.append(name)
        return sorted(selected)

    async def _fetch_service_nodes(self, name: str) -> list[ServiceNode]:
        path = HEALTH_SERVICE_PATH + quote(name, safe="")
        params = dict(self._params)
        if self._watch_tags:
            params["tag"] = list(self._watch_tags)
        data = await self._client.get_api_response(path, params)
        return _decode(_service_nodes_adapter, data, path)

    async def _watch_loop(self) -> None:
        failures = 0
        try:
            while not self._stop_event.is_set():
                try:
                    await self.poll_once()
                    failures = 0
                except Exception as e:
                    if not self._backoff.should_retry(e):
                        logger.exception(
                            "Consul watcher crashed",
                            extra={"base_url": self._client.base_url},
                        )
                        raise
                    delay = self._backoff.calculate_delay(failures)
                    failures += 1
                    logger.warning(
                        "Consul poll failed, retrying after %.2fs",
                        delay,
                        extra={
                            "base_url": self._client.base_url,
                            "error": str(e),
                            "consecutive_failures": failures,
                        },
                    )
                    await self._sleep_unless_stopped(delay)
        finally:
            consul_sd_active_watchers.dec()
            await self._client.close()
            logger.info("Consul watcher stopped", extra={"base_url": self._client.base_url})

    async def _sleep_unless_stopped(self, delay: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)


def _decode(adapter: TypeAdapter[T], data: bytes, path: str) -> T:
    try:
        return adapter.validate_json(data)
    except ValidationError as e:
        raise ResponseParseError(f"cannot parse response from {path!r}: {e}", path=path) from e
