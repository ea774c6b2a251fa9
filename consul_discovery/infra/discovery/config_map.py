"""Reference-counted cache of lazily constructed runtime configs.

Many scrape jobs may reference structurally identical descriptors. ConfigMap
guarantees that equal keys share a single value: the first caller builds it,
concurrent callers for the same key wait for that construction, and later
callers reuse it. Every successful get() takes a reference; when release()
drops the last one the value is stopped and evicted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)


class Stoppable(Protocol):
    def stop(self) -> None: ...


K = TypeVar("K", bound=Hashable)
V = TypeVar("V", bound=Stoppable)


@dataclass
class _Entry(Generic[V]):
    future: asyncio.Future[V]
    refs: int = field(default=0)
    # Entry being rebuilt; restored if the rebuild fails
    replaces: _Entry[V] | None = None


class ConfigMap(Generic[K, V]):
    """Deduplicating, reference-counted map from descriptors to runtime configs.

    Construction of distinct keys runs concurrently; only the bookkeeping
    around entries is serialized by a lock.

    Example:
        configs: ConfigMap[ConsulSDConfig, ConsulAPIConfig] = ConfigMap()
        api_config = await configs.get(sd_config, lambda: build_api_config(sd_config))
        ...
        await configs.release(sd_config)
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._entries: dict[K, _Entry[V]] = {}
        self._stopped = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def ref_count(self, key: K) -> int:
        """Number of outstanding references held for ``key``."""
        entry = self._entries.get(key)
        return entry.refs if entry is not None else 0

    async def get(
        self,
        key: K,
        factory: Callable[[], Awaitable[V]],
        is_stale: Callable[[V], bool] | None = None,
    ) -> V:
        """Return the value for ``key``, constructing it at most once.

        Args:
            key: Hashable descriptor.
            factory: Builds the value when no live one exists.
            is_stale: Returns True for a cached value that can no longer serve
                callers. Such a value is stopped and rebuilt; the new entry
                keeps the references held on the old one.

        Raises:
            Exception: Whatever ``factory`` raised. The key is evicted so a
                later call constructs again.
        """
        while True:
            async with self._lock:
                if self._stopped:
                    raise RuntimeError("config map is stopped")
                entry = self._entries.get(key)
                if entry is None:
                    entry = _Entry(asyncio.get_running_loop().create_future())
                    self._entries[key] = entry
                    break

            # Another caller is constructing or has constructed the value
            await asyncio.wait([entry.future])
            if entry.future.cancelled():
                continue
            value = entry.future.result()
            async with self._lock:
                if self._entries.get(key) is not entry:
                    # Evicted between completion and now; build a fresh one
                    continue
                if is_stale is None or not is_stale(value):
                    entry.refs += 1
                    return value
                stale = entry
                entry = _Entry(
                    asyncio.get_running_loop().create_future(),
                    refs=stale.refs,
                    replaces=stale,
                )
                self._entries[key] = entry
            value.stop()
            logger.warning(
                "Cached config is stale, rebuilding", extra={"refs": stale.refs}
            )
            break

        return await self._construct(key, entry, factory)

    async def _construct(
        self, key: K, entry: _Entry[V], factory: Callable[[], Awaitable[V]]
    ) -> V:
        try:
            value = await factory()
        except BaseException as e:
            async with self._lock:
                if self._entries.get(key) is entry:
                    if entry.replaces is not None and entry.refs > 0:
                        entry.replaces.refs = entry.refs
                        self._entries[key] = entry.replaces
                    else:
                        del self._entries[key]
            if isinstance(e, asyncio.CancelledError):
                entry.future.cancel()
            else:
                entry.future.set_exception(e)
                # Mark retrieved; waiters may not exist
                entry.future.exception()
            raise

        async with self._lock:
            if self._entries.get(key) is not entry:
                # stop_all() ran while this value was being built
                value.stop()
                error = RuntimeError("config map was stopped during construction")
                entry.future.set_exception(error)
                entry.future.exception()
                raise error
            entry.refs += 1
            entry.replaces = None
            entry.future.set_result(value)
        logger.debug("Config constructed", extra={"configs": len(self._entries)})
        return value

    async def release(self, key: K) -> None:
        """Drop one reference to ``key``; stop and evict the value at zero.

        Raises:
            KeyError: If no live value exists for ``key``.
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.refs <= 0:
                raise KeyError(key)
            entry.refs -= 1
            # A value being rebuilt stays with the caller that is rebuilding it
            if entry.refs > 0 or not entry.future.done():
                return
            del self._entries[key]
            value = entry.future.result()

        value.stop()
        logger.debug("Config released and stopped", extra={"configs": len(self._entries)})

    async def stop_all(self) -> None:
        """Stop and evict every constructed value regardless of references."""
        async with self._lock:
            self._stopped = True
            entries = list(self._entries.values())
            self._entries.clear()

        for entry in entries:
            if entry.future.done() and not entry.future.cancelled() and entry.future.exception() is None:
                entry.future.result().stop()
