"""Configuration descriptors for Consul service discovery jobs.

A ConsulSDConfig identifies which registry to talk to and how. Descriptors are
frozen and compared by value, so two jobs with field-for-field identical
descriptors map onto the same runtime config and the same watcher.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class TLSConfig(_FrozenModel):
    """TLS options for the registry connection.

    Relative file paths are resolved against the base directory passed to
    build_api_config().
    """

    ca_file: str | None = Field(default=None, description="CA bundle used to verify the server")
    cert_file: str | None = Field(default=None, description="Client certificate for mTLS")
    key_file: str | None = Field(default=None, description="Private key for cert_file")
    insecure_skip_verify: bool = Field(
        default=False, description="Disable server certificate verification"
    )


class BasicAuthConfig(_FrozenModel):
    """HTTP basic auth credentials; the password may come from a file."""

    username: str
    password: SecretStr | None = None
    password_file: str | None = None


class ProxyClientConfig(_FrozenModel):
    """Credentials presented to the HTTP proxy (not to the registry)."""

    basic_auth: BasicAuthConfig | None = None
    bearer_token: SecretStr | None = None
    bearer_token_file: str | None = None


class ConsulSDConfig(_FrozenModel):
    """Consul service discovery descriptor for one scrape job.

    Example:
        sd_config = ConsulSDConfig(
            server="consul.internal:8500",
            datacenter="dc1",
            services=["api", "worker"],
        )
    """

    # ──────────────────────────────────────────────────────────────
    # Registry connection
    # ──────────────────────────────────────────────────────────────

    server: str = Field(
        default="",
        description="Registry address, host:port or full URL (defaults to localhost:8500)",
    )

    scheme: str = Field(
        default="",
        pattern=r"^(https?)?$",
        description="Scheme used when server has none (defaults to http)",
    )

    datacenter: str = Field(
        default="",
        description="Datacenter to query (empty = ask the agent via /v1/agent/self)",
    )

    # ──────────────────────────────────────────────────────────────
    # Authentication
    # ──────────────────────────────────────────────────────────────

    token: SecretStr | None = Field(
        default=None,
        description="ACL token; None falls back to CONSUL_HTTP_TOKEN_FILE/CONSUL_HTTP_TOKEN, '' disables auth",
    )

    username: str = Field(default="", description="Basic auth username; overrides token")
    password: SecretStr | None = Field(default=None, description="Basic auth password")

    tls_config: TLSConfig = Field(default_factory=TLSConfig)

    # ──────────────────────────────────────────────────────────────
    # Proxy
    # ──────────────────────────────────────────────────────────────

    proxy_url: str | None = Field(default=None, description="HTTP proxy for registry requests")
    proxy_client_config: ProxyClientConfig = Field(default_factory=ProxyClientConfig)

    # ──────────────────────────────────────────────────────────────
    # Query selection
    # ──────────────────────────────────────────────────────────────

    services: tuple[str, ...] = Field(
        default=(),
        description="Services to watch (empty = all services in the catalog)",
    )

    tags: tuple[str, ...] = Field(
        default=(),
        description="Only watch services carrying all of these tags",
    )

    node_meta: tuple[tuple[str, str], ...] = Field(
        default=(),
        description="Node metadata key/value pairs used to filter nodes",
    )

    tag_separator: str | None = Field(
        default=None,
        description="Separator used to join service tags (defaults to ',')",
    )

    allow_stale: bool | None = Field(
        default=None,
        description="Allow stale reads from any server (defaults to true)",
    )

    namespace: str = Field(default="", description="Consul Enterprise namespace")
    partition: str = Field(default="", description="Consul Enterprise admin partition")
    filter: str = Field(default="", description="Server-side filter expression")

    # ──────────────────────────────────────────────────────────────
    # Validators
    # ──────────────────────────────────────────────────────────────

    @field_validator("services", "tags", mode="before")
    @classmethod
    def _to_tuple(cls, value: Any) -> Any:
        """Accept any sequence of strings."""
        if isinstance(value, str):
            return (value,)
        if value is None:
            return ()
        return tuple(value)

    @field_validator("node_meta", mode="before")
    @classmethod
    def _parse_node_meta(cls, value: Any) -> Any:
        """Accept a mapping and store it as sorted pairs so it stays hashable."""
        if value is None:
            return ()
        if isinstance(value, dict):
            return tuple(sorted((str(k), str(v)) for k, v in value.items()))
        return tuple(tuple(pair) for pair in value)

    @property
    def stale_reads_allowed(self) -> bool:
        """Stale reads are allowed unless explicitly disabled."""
        return self.allow_stale is None or self.allow_stale
