"""Credential resolution for registry and proxy authentication.

Token precedence, first match wins:
1. Explicit ``token`` in the descriptor, including an empty string
2. Contents of the file named by ``CONSUL_HTTP_TOKEN_FILE``
3. Value of ``CONSUL_HTTP_TOKEN``
4. Empty token (valid when ACLs are disabled in the registry)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from consul_discovery.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from pydantic import SecretStr

    from consul_discovery.infra.discovery.sd_config import (
        BasicAuthConfig,
        ConsulSDConfig,
        ProxyClientConfig,
    )

logger = logging.getLogger(__name__)

TOKEN_FILE_ENV = "CONSUL_HTTP_TOKEN_FILE"
TOKEN_ENV = "CONSUL_HTTP_TOKEN"


def resolve_path(path: str, base_dir: str | Path | None = None) -> Path:
    """Resolve ``path`` relative to ``base_dir`` unless it is absolute."""
    resolved = Path(path)
    if base_dir is not None and not resolved.is_absolute():
        resolved = Path(base_dir) / resolved
    return resolved


def read_secret_file(path: str | Path, base_dir: str | Path | None = None) -> str:
    """Read a secret from a file, stripping surrounding whitespace.

    Raises:
        OSError: If the file cannot be read.
    """
    return resolve_path(str(path), base_dir).read_text(encoding="utf-8").strip()


def resolve_token(token: SecretStr | str | None) -> str:
    """Return the registry ACL token to present.

    Args:
        token: Explicit token from the descriptor, or None when unset.

    Returns:
        The token, possibly empty.

    Raises:
        ConfigurationError: If CONSUL_HTTP_TOKEN_FILE is set but unreadable.
    """
    if token is not None:
        return token if isinstance(token, str) else token.get_secret_value()

    token_file = os.getenv(TOKEN_FILE_ENV)
    if token_file:
        try:
            token_value = read_secret_file(token_file)
        except OSError as e:
            raise ConfigurationError(
                f"cannot read consul token file {token_file!r}; probably, `token` arg is "
                f"missing in consul_sd_config? error: {e}",
                field="token",
                extra={"path": token_file},
            ) from e
        logger.debug("Using consul token from file", extra={"path": token_file})
        return token_value

    return os.getenv(TOKEN_ENV, "")


def resolve_basic_auth(
    basic_auth: BasicAuthConfig,
    base_dir: str | Path | None = None,
    *,
    field: str = "basic_auth",
) -> tuple[str, str]:
    """Return (username, password) for a basic auth config.

    Raises:
        ConfigurationError: If password_file is set but unreadable.
    """
    if basic_auth.password_file:
        try:
            password = read_secret_file(basic_auth.password_file, base_dir)
        except OSError as e:
            raise ConfigurationError(
                f"cannot read password from password_file {basic_auth.password_file!r}: {e}",
                field=field,
                extra={"path": basic_auth.password_file},
            ) from e
    elif basic_auth.password is not None:
        password = basic_auth.password.get_secret_value()
    else:
        password = ""
    return basic_auth.username, password


def resolve_registry_auth(sd_config: ConsulSDConfig) -> tuple[httpx.BasicAuth | None, dict[str, str]]:
    """Resolve the auth presented to the registry.

    Basic auth and ACL tokens are mutually exclusive on the wire: when a
    username is configured the token is discarded.

    Returns:
        (basic auth or None, extra request headers)
    """
    token = resolve_token(sd_config.token)
    if sd_config.username:
        password = sd_config.password.get_secret_value() if sd_config.password else ""
        return httpx.BasicAuth(sd_config.username, password), {}
    if token:
        return None, {"X-Consul-Token": token}
    return None, {}


def resolve_proxy(
    proxy_url: str | None,
    proxy_client_config: ProxyClientConfig,
    base_dir: str | Path | None = None,
) -> httpx.Proxy | None:
    """Build the httpx proxy definition, including proxy credentials.

    Raises:
        ConfigurationError: If the proxy credentials cannot be resolved.
    """
    if not proxy_url:
        return None

    try:
        headers: dict[str, str] = {}
        auth: tuple[str, str] | None = None
        if proxy_client_config.basic_auth is not None:
            auth = resolve_basic_auth(
                proxy_client_config.basic_auth, base_dir, field="proxy_client_config"
            )
        if proxy_client_config.bearer_token_file:
            try:
                bearer = read_secret_file(proxy_client_config.bearer_token_file, base_dir)
            except OSError as e:
                raise ConfigurationError(
                    f"cannot read bearer token from bearer_token_file "
                    f"{proxy_client_config.bearer_token_file!r}: {e}",
                    field="proxy_client_config",
                    extra={"path": proxy_client_config.bearer_token_file},
                ) from e
            headers["Proxy-Authorization"] = f"Bearer {bearer}"
        elif proxy_client_config.bearer_token is not None:
            headers["Proxy-Authorization"] = (
                f"Bearer {proxy_client_config.bearer_token.get_secret_value()}"
            )
        return httpx.Proxy(proxy_url, auth=auth, headers=headers or None)
    except ConfigurationError as e:
        raise ConfigurationError(
            f"cannot parse proxy auth config: {e.detail}",
            field="proxy_client_config",
            extra=e.extra,
        ) from e
    except (ValueError, httpx.InvalidURL) as e:
        raise ConfigurationError(
            f"cannot parse proxy_url {proxy_url!r}: {e}",
            field="proxy_url",
        ) from e
