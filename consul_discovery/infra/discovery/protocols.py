"""Protocol definitions for registry client abstraction.

This module defines the RegistryClientProtocol that allows for:
- Easy testing with mock implementations
- Dependency injection into the watcher and config builder
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class APIResponse:
    """Body and headers of a successful registry response."""

    content: bytes
    headers: Mapping[str, str] = field(default_factory=dict)


QueryParams = Mapping[str, str | list[str]]


@runtime_checkable
class RegistryClientProtocol(Protocol):
    """Protocol for registry HTTP operations.

    Unlike a fire-and-forget client, every method raises
    RegistryRequestError on transport failure or non-2xx status so callers
    can decide whether to back off.
    """

    @property
    def base_url(self) -> str:
        """Normalized registry URL, e.g. ``http://localhost:8500``."""
        ...

    @property
    def blocking_read_timeout(self) -> float:
        """Read timeout in seconds enforced for blocking requests."""
        ...

    async def get_api_response(self, path: str, params: QueryParams | None = None) -> bytes:
        """Perform a regular GET and return the response body.

        Raises:
            RegistryRequestError: On transport failure or non-2xx status.
        """
        ...

    async def get_blocking_api_response(
        self, path: str, params: QueryParams | None = None
    ) -> APIResponse:
        """Perform a long-poll GET using the blocking read timeout.

        Raises:
            RegistryRequestError: On transport failure or non-2xx status.
        """
        ...

    async def close(self) -> None:
        """Close the client and release resources."""
        ...
