"""Exception classes for registry discovery.

Three kinds of failure are distinguished:

- ConfigurationError: the descriptor or its referenced files cannot be turned
  into a working client. Fatal to config construction, never retried.
- RegistryRequestError: a single request to the registry failed (network
  error or non-2xx status). Transient, the watcher polls again later.
- ResponseParseError: the registry answered with a body we cannot decode.

Protocol anomalies such as a missing ``X-Consul-Index`` header are logged and
never raised.
"""

from __future__ import annotations

from typing import Any


class DiscoveryError(Exception):
    """Base discovery exception.

    All custom exceptions should inherit from this class.

    Attributes:
        detail: Human-readable error message.
        extra: Additional context-specific information about the error.
    """

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        """Initialize discovery exception.

        Args:
            detail: Human-readable error message.
            extra: Additional context about the error.
        """
        self.detail = detail
        self.extra = extra or {}
        super().__init__(detail)


class ConfigurationError(DiscoveryError):
    """Raised when a descriptor cannot be turned into a runtime config.

    Example:
        raise ConfigurationError(
            detail="cannot read consul token file '/run/secrets/token'",
            field="token",
            extra={"path": "/run/secrets/token"},
        )
    """

    def __init__(
        self,
        detail: str,
        field: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize configuration error.

        Args:
            detail: Human-readable error message.
            field: Name of the offending descriptor field, if known.
            extra: Additional context about the error.
        """
        self.field = field
        super().__init__(detail, extra)


class RegistryRequestError(DiscoveryError):
    """Raised when a request to the registry fails."""

    def __init__(
        self,
        detail: str,
        path: str,
        status_code: int | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize request error.

        Args:
            detail: Human-readable error message.
            path: Registry API path that was requested.
            status_code: HTTP status code, or None for transport failures.
            extra: Additional context about the error.
        """
        self.path = path
        self.status_code = status_code
        super().__init__(detail, extra)


class ResponseParseError(DiscoveryError):
    """Raised when a registry response body cannot be decoded."""

    def __init__(self, detail: str, path: str, extra: dict[str, Any] | None = None) -> None:
        self.path = path
        super().__init__(detail, extra)
