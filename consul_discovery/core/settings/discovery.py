"""Registry discovery settings.

Environment variables use CONSUL_SD_ prefix.
Example: CONSUL_SD_WAIT_TIME=30, CONSUL_SD_BLOCKING_READ_TIMEOUT=600

These are process-wide knobs shared by every watcher. Per-job registry
connection details live in ConsulSDConfig descriptors instead.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DiscoverySettings(BaseSettings):
    """Process-wide settings for registry long-polling."""

    # ──────────────────────────────────────────────────────────────
    # Blocking query timing
    # ──────────────────────────────────────────────────────────────

    wait_time: float = Field(
        default=0.0,
        ge=0.0,
        description="Wait time override in seconds for blocking queries (0 = derive from read timeout)",
    )

    blocking_read_timeout: float = Field(
        default=600.0,
        # Below 2s the requested wait truncates to "0s", the registry's 5 minute default
        ge=2.0,
        description="Read timeout in seconds the HTTP client enforces for blocking queries",
    )

    # ──────────────────────────────────────────────────────────────
    # HTTP client
    # ──────────────────────────────────────────────────────────────

    request_timeout: float = Field(
        default=60.0,
        gt=0.0,
        le=600.0,
        description="Read timeout in seconds for non-blocking registry requests",
    )

    connect_timeout: float = Field(
        default=5.0,
        ge=0.5,
        le=30.0,
        description="HTTP connection timeout in seconds",
    )

    # ──────────────────────────────────────────────────────────────
    # Watcher backoff after failed polls
    # ──────────────────────────────────────────────────────────────

    retry_initial_delay: float = Field(
        default=1.0,
        gt=0.0,
        description="Initial delay in seconds before polling again after a failure",
    )

    retry_max_delay: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound in seconds for the delay between failed polls",
    )

    @model_validator(mode="after")
    def _validate_retry_delays(self) -> DiscoverySettings:
        """Ensure the backoff ceiling is not below the initial delay."""
        if self.retry_max_delay < self.retry_initial_delay:
            raise ValueError(
                f"retry_max_delay ({self.retry_max_delay}s) must be "
                f">= retry_initial_delay ({self.retry_initial_delay}s)"
            )
        return self

    @property
    def wait_time_override(self) -> float | None:
        """Operator-supplied wait time, or None when unset."""
        return self.wait_time or None

    model_config = SettingsConfigDict(
        env_prefix="CONSUL_SD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
