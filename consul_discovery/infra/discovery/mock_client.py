"""Mock registry client for testing without a real Consul instance.

This module provides a MockRegistryClient that implements
RegistryClientProtocol and serves an in-memory catalog, making it ideal for
watcher and config builder tests.

Usage in tests:
    from consul_discovery.infra.discovery.mock_client import MockRegistryClient

    @pytest.fixture
    def mock_registry():
        registry = MockRegistryClient()
        registry.add_service("api", tags=["http"], nodes=[{"Node": {...}, "Service": {...}}])
        return registry
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from consul_discovery.core.exceptions import RegistryRequestError
from consul_discovery.infra.discovery.blocking import INDEX_HEADER
from consul_discovery.infra.discovery.protocols import APIResponse, QueryParams

logger = logging.getLogger(__name__)

MISSING = object()


@dataclass
class CallRecord:
    """Record of a request for assertion in tests."""

    method: str
    path: str
    params: dict[str, Any] = field(default_factory=dict)
    success: bool = True


class MockRegistryClient:
    """In-memory registry for testing.

    Attributes:
        datacenter: Datacenter reported by ``/v1/agent/self``.
        services: Catalog of service name -> tags.
        nodes: Health entries per service, as raw registry JSON objects.
        index: Change index reported in ``X-Consul-Index``.
        index_header: Override for the header value; MISSING omits the header.
        call_history: List of all requests for assertion.
        fail_next_call: Set to True to simulate a failure on next call.
        blocking_gate: When set, blocking requests wait for this event.
        closed: Whether close() has been called.

    Like the real registry, a blocking query whose ``index`` is already
    current is held until the catalog changes. Set ``index_header`` to answer
    immediately with a fixed header instead.
    """

    def __init__(
        self,
        datacenter: str = "dc1",
        *,
        base_url: str = "http://localhost:8500",
        blocking_read_timeout: float = 600.0,
    ) -> None:
        self.datacenter = datacenter
        self.services: dict[str, list[str]] = {}
        self.nodes: dict[str, list[dict[str, Any]]] = {}
        self.index = 1
        self.index_header: Any = None
        self.call_history: list[CallRecord] = []
        self.fail_next_call = False
        self.blocking_gate: asyncio.Event | None = None
        self.closed = False
        self._changed = asyncio.Event()
        self._base_url = base_url
        self._blocking_read_timeout = blocking_read_timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def blocking_read_timeout(self) -> float:
        return self._blocking_read_timeout

    def _should_fail(self) -> bool:
        """Check if the next call should fail and reset flag."""
        if self.fail_next_call:
            self.fail_next_call = False
            return True
        return False

    def _fail(self, method: str, path: str, params: dict[str, Any]) -> RegistryRequestError:
        self.call_history.append(CallRecord(method, path, params, False))
        logger.debug("MockRegistryClient: %s %s failed (simulated)", method, path)
        return RegistryRequestError(
            f"unexpected status code returned from {self._base_url}{path}: 500",
            path=path,
            status_code=500,
        )

    async def get_api_response(self, path: str, params: QueryParams | None = None) -> bytes:
        call_params = dict(params or {})
        if self._should_fail():
            raise self._fail("get_api_response", path, call_params)

        if path == "/v1/agent/self":
            body: Any = {
                "Config": {"Datacenter": self.datacenter, "NodeName": "mock-agent"},
                "Member": {"Name": "mock-agent"},
            }
        elif path.startswith("/v1/health/service/"):
            body = self.nodes.get(path.rsplit("/", 1)[-1], [])
        else:
            self.call_history.append(CallRecord("get_api_response", path, call_params, False))
            raise RegistryRequestError(f"unexpected path {path}", path=path, status_code=404)

        self.call_history.append(CallRecord("get_api_response", path, call_params))
        return json.dumps(body).encode()

    async def get_blocking_api_response(
        self, path: str, params: QueryParams | None = None
    ) -> APIResponse:
        call_params = dict(params or {})
        if self.blocking_gate is not None:
            await self.blocking_gate.wait()
        if self._should_fail():
            raise self._fail("get_blocking_api_response", path, call_params)
        if path != "/v1/catalog/services":
            self.call_history.append(
                CallRecord("get_blocking_api_response", path, call_params, False)
            )
            raise RegistryRequestError(f"unexpected path {path}", path=path, status_code=404)

        requested = int(str(call_params.get("index", "0")))
        while self.index_header is None and 0 < requested >= self.index:
            await self._changed.wait()

        headers: dict[str, str] = {}
        if self.index_header is None:
            headers[INDEX_HEADER] = str(self.index)
        elif self.index_header is not MISSING:
            headers[INDEX_HEADER] = str(self.index_header)

        self.call_history.append(CallRecord("get_blocking_api_response", path, call_params))
        return APIResponse(content=json.dumps(self.services).encode(), headers=headers)

    async def close(self) -> None:
        """Mark the client as closed."""
        self.closed = True
        self.call_history.append(CallRecord("close", ""))
        logger.debug("MockRegistryClient: closed")

    # ──────────────────────────────────────────────────────────────
    # Test helper methods
    # ──────────────────────────────────────────────────────────────

    def add_service(
        self,
        name: str,
        tags: list[str] | None = None,
        nodes: list[dict[str, Any]] | None = None,
    ) -> None:
        """Register a service in the catalog and bump the index (test helper)."""
        self.services[name] = list(tags or [])
        self.nodes[name] = list(nodes or [])
        self.bump_index()

    def remove_service(self, name: str) -> None:
        """Remove a service from the catalog and bump the index (test helper)."""
        self.services.pop(name, None)
        self.nodes.pop(name, None)
        self.bump_index()

    def bump_index(self) -> None:
        """Advance the index and wake held blocking queries (test helper)."""
        self.index += 1
        self._changed.set()
        self._changed = asyncio.Event()

    def get_calls(self, method: str | None = None, path: str | None = None) -> list[CallRecord]:
        """Get call history, optionally filtered by method and path (test helper)."""
        return [
            c
            for c in self.call_history
            if (method is None or c.method == method) and (path is None or c.path == path)
        ]

    def reset(self) -> None:
        """Reset call history and flags (test helper)."""
        self.call_history.clear()
        self.fail_next_call = False
        self.blocking_gate = None
        self.closed = False
