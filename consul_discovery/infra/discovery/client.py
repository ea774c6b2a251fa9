"""Registry HTTP API client with observability.

This module provides the real RegistryClientProtocol implementation that:
- Uses httpx for async HTTP operations
- Applies a separate, longer read timeout to blocking queries
- Includes OpenTelemetry tracing for all API calls
- Records Prometheus metrics for monitoring
- Raises RegistryRequestError on failure, leaving retries to the caller
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
from opentelemetry import trace

from consul_discovery.core.exceptions import RegistryRequestError
from consul_discovery.infra.discovery.metrics import (
    consul_sd_blocking_request_duration_seconds,
    consul_sd_errors_total,
    consul_sd_request_duration_seconds,
    consul_sd_requests_total,
)
from consul_discovery.infra.discovery.protocols import APIResponse

if TYPE_CHECKING:
    import ssl

    from consul_discovery.core.settings.discovery import DiscoverySettings
    from consul_discovery.infra.discovery.protocols import QueryParams

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _endpoint_name(path: str) -> str:
    """Collapse per-service paths so metric labels stay bounded."""
    return "/".join(path.split("/")[:4])


class RegistryClient:
    """HTTP client for the registry API.

    Example:
        client = RegistryClient("http://localhost:8500", settings=get_discovery_settings())
        body = await client.get_api_response("/v1/agent/self")
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        settings: DiscoverySettings,
        *,
        auth: httpx.Auth | None = None,
        headers: dict[str, str] | None = None,
        verify: ssl.SSLContext | bool = True,
        proxy: httpx.Proxy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            base_url: Normalized registry URL including scheme.
            settings: Discovery settings providing timeouts.
            auth: Basic auth for the registry, if any.
            headers: Extra headers sent with every request (e.g. X-Consul-Token).
            verify: SSL context or flag controlling certificate verification.
            proxy: Proxy definition including proxy credentials.
            transport: Custom transport, used by tests to stub the registry.
        """
        self._base_url = base_url
        self._settings = settings
        self._plain_timeout = httpx.Timeout(
            settings.request_timeout, connect=settings.connect_timeout
        )

        client_kwargs: dict[str, Any] = {
            "base_url": base_url,
            "headers": headers or {},
            "auth": auth,
            "timeout": self._plain_timeout,
            "verify": verify,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        elif proxy is not None:
            client_kwargs["proxy"] = proxy
        self._client = httpx.AsyncClient(**client_kwargs)

        logger.debug(
            "RegistryClient initialized",
            extra={"base_url": base_url, "proxied": proxy is not None},
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def blocking_read_timeout(self) -> float:
        return self._settings.blocking_read_timeout

    async def get_api_response(self, path: str, params: QueryParams | None = None) -> bytes:
        """Perform a regular GET and return the response body.

        Args:
            path: API path, e.g. ``/v1/agent/self``.
            params: Extra query parameters.

        Returns:
            Raw response body.

        Raises:
            RegistryRequestError: On transport failure or non-2xx status.
        """
        response = await self._get(path, params, kind="plain", timeout=self._plain_timeout)
        return response.content

    async def get_blocking_api_response(
        self, path: str, params: QueryParams | None = None
    ) -> APIResponse:
        """Perform a long-poll GET and return body and headers.

        The read timeout is the blocking read timeout, so the wait requested
        from the registry must stay below it.
        """
        timeout = httpx.Timeout(
            self._settings.blocking_read_timeout, connect=self._settings.connect_timeout
        )
        response = await self._get(path, params, kind="blocking", timeout=timeout)
        return APIResponse(content=response.content, headers=response.headers)

    async def _get(
        self,
        path: str,
        params: QueryParams | None,
        *,
        kind: str,
        timeout: httpx.Timeout,
    ) -> httpx.Response:
        start_time = time.perf_counter()
        histogram = (
            consul_sd_blocking_request_duration_seconds
            if kind == "blocking"
            else consul_sd_request_duration_seconds
        )
        operation = _endpoint_name(path)

        with tracer.start_as_current_span(f"consul.{kind}_get") as span:
            span.set_attribute("consul.path", path)
            span.set_attribute("consul.base_url", self._base_url)

            try:
                response = await self._client.get(path, params=params, timeout=timeout)
            except httpx.TimeoutException as e:
                histogram.labels(operation=operation).observe(time.perf_counter() - start_time)
                span.set_attribute("consul.success", False)
                span.record_exception(e)
                consul_sd_requests_total.labels(kind=kind, status="failure").inc()
                consul_sd_errors_total.labels(operation=kind, error_type="timeout").inc()
                raise RegistryRequestError(
                    f"request to {self._base_url}{path} timed out: {e!r}",
                    path=path,
                ) from e
            except httpx.HTTPError as e:
                histogram.labels(operation=operation).observe(time.perf_counter() - start_time)
                span.set_attribute("consul.success", False)
                span.record_exception(e)
                consul_sd_requests_total.labels(kind=kind, status="failure").inc()
                consul_sd_errors_total.labels(operation=kind, error_type="connection").inc()
                raise RegistryRequestError(
                    f"cannot fetch {self._base_url}{path}: {e}",
                    path=path,
                ) from e

            histogram.labels(operation=operation).observe(time.perf_counter() - start_time)

            if not response.is_success:
                span.set_attribute("consul.success", False)
                span.set_attribute("consul.status_code", response.status_code)
                consul_sd_requests_total.labels(kind=kind, status="failure").inc()
                consul_sd_errors_total.labels(operation=kind, error_type="http_error").inc()
                raise RegistryRequestError(
                    f"unexpected status code returned from {self._base_url}{path}: "
                    f"{response.status_code}; expecting 2xx; response body: "
                    f"{response.text[:200]!r}",
                    path=path,
                    status_code=response.status_code,
                )

            span.set_attribute("consul.success", True)
            consul_sd_requests_total.labels(kind=kind, status="success").inc()
            return response

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()
        logger.debug("RegistryClient closed", extra={"base_url": self._base_url})
