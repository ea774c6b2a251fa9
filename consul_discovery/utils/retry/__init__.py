from __future__ import annotations

from consul_discovery.utils.retry.strategies import RetryStrategy

__all__ = ["RetryStrategy"]
