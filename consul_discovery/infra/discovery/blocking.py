"""Blocking query support for the registry API.

A blocking query carries the last-seen change index; the registry holds the
request open until its state moves past that index or the requested wait
elapses. The returned ``X-Consul-Index`` header becomes the index for the
next request after the corrections described in
https://developer.hashicorp.com/consul/api-docs/features/blocking#implementation-details
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING

from consul_discovery.core.exceptions import RegistryRequestError
from consul_discovery.infra.discovery.metrics import (
    consul_sd_index_header_anomalies_total,
    consul_sd_index_transitions_total,
)

if TYPE_CHECKING:
    from consul_discovery.core.settings.discovery import DiscoverySettings
    from consul_discovery.infra.discovery.protocols import QueryParams, RegistryClientProtocol

logger = logging.getLogger(__name__)

INDEX_HEADER = "X-Consul-Index"

# The registry rejects longer waits
MAX_REGISTRY_WAIT = 600.0

_MAX_INDEX = 2**63 - 1


class IndexTransition(str, Enum):
    """Outcome of applying a freshly reported index to the local one."""

    FRESH = "fresh"
    RESET_TO_ONE = "reset_to_one"  # registry restarted or compacted its state
    RESET_TO_ZERO = "reset_to_zero"  # index went backwards; refresh without blocking


def max_wait_time(read_timeout: float, override: float | None = None) -> float:
    """Compute the wait, in seconds, to request for one blocking query.

    The registry adds random jitter of up to wait/16 before answering, so the
    wait is reduced by one eighth of the client's read timeout to make the
    response arrive before that timeout fires.

    Args:
        read_timeout: Read timeout the HTTP client enforces for blocking requests.
        override: Operator-supplied wait; used only if strictly between 1s and
            the computed ceiling.
    """
    wait = read_timeout - read_timeout / 8
    if wait > MAX_REGISTRY_WAIT:
        wait = MAX_REGISTRY_WAIT
    if override is not None and 1.0 < override < wait:
        wait = override
    return wait


def parse_index_header(value: str) -> int:
    """Parse an ``X-Consul-Index`` value as a non-negative 64-bit integer.

    Raises:
        ValueError: If the value is not a decimal integer in [0, 2**63-1].
    """
    value = value.strip()
    if not value.isdigit():
        raise ValueError(f"invalid index {value!r}: expecting a non-negative integer")
    index = int(value)
    if index > _MAX_INDEX:
        raise ValueError(f"invalid index {value!r}: out of int64 range")
    return index


def classify_index(current: int, new_index: int) -> IndexTransition:
    """Classify how ``new_index`` relates to the locally known ``current`` index."""
    if new_index < 1:
        return IndexTransition.RESET_TO_ONE
    if current > new_index:
        return IndexTransition.RESET_TO_ZERO
    return IndexTransition.FRESH


def correct_index(current: int, new_index: int) -> int:
    """Return the index to use for the next blocking query.

    >>> correct_index(5, 0)
    1
    >>> correct_index(5, 4)
    0
    >>> correct_index(5, 7)
    7
    """
    transition = classify_index(current, new_index)
    if transition is IndexTransition.RESET_TO_ONE:
        return 1
    if transition is IndexTransition.RESET_TO_ZERO:
        return 0
    return new_index


def _header_value(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def next_index_from_headers(current: int, headers: Mapping[str, str], path: str) -> int:
    """Apply the index correction to the freshness header of a response.

    A missing or malformed header is logged and leaves the index unchanged.
    """
    raw = _header_value(headers, INDEX_HEADER)
    if not raw:
        consul_sd_index_header_anomalies_total.labels(reason="missing").inc()
        logger.error(
            "cannot find %s header in response from %r",
            INDEX_HEADER,
            path,
            extra={"path": path, "index": current},
        )
        return current

    try:
        new_index = parse_index_header(raw)
    except ValueError as e:
        consul_sd_index_header_anomalies_total.labels(reason="malformed").inc()
        logger.error(
            "cannot parse %s header value in response from %r: %s",
            INDEX_HEADER,
            path,
            e,
            extra={"path": path, "index": current},
        )
        return current

    transition = classify_index(current, new_index)
    consul_sd_index_transitions_total.labels(transition=transition.value).inc()
    if transition is not IndexTransition.FRESH:
        logger.info(
            "Consul index reset",
            extra={
                "path": path,
                "index": current,
                "reported_index": new_index,
                "transition": transition.value,
            },
        )
    return correct_index(current, new_index)


async def get_blocking_api_response(
    client: RegistryClientProtocol,
    path: str,
    index: int,
    *,
    params: QueryParams | None = None,
    settings: DiscoverySettings | None = None,
) -> tuple[bytes, int]:
    """Perform one blocking query and return (body, next index).

    ``index`` and ``wait`` are appended to ``params``. The wait is recomputed
    for every call from the client's blocking read timeout and the
    configured override.

    Raises:
        RegistryRequestError: If the request fails; no retry is attempted here.
    """
    if settings is None:
        from consul_discovery.core.settings import get_discovery_settings

        settings = get_discovery_settings()

    wait = max_wait_time(client.blocking_read_timeout, settings.wait_time_override)
    query: dict[str, str | list[str]] = dict(params or {})
    query["index"] = str(index)
    query["wait"] = f"{int(wait)}s"

    try:
        response = await client.get_blocking_api_response(path, query)
    except RegistryRequestError as e:
        raise RegistryRequestError(
            f"cannot perform blocking Consul API request at {path!r}: {e.detail}",
            path=path,
            status_code=e.status_code,
            extra={"index": index, **e.extra},
        ) from e

    return response.content, next_index_from_headers(index, response.headers, path)
