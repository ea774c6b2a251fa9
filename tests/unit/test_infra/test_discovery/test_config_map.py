"""Tests for the deduplicating, reference-counted ConfigMap."""

from __future__ import annotations

import asyncio

import pytest

from consul_discovery.infra.discovery.config_map import ConfigMap
from consul_discovery.infra.discovery.sd_config import ConsulSDConfig


class FakeConfig:
    """Stoppable value that remembers whether it was stopped."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class CountingFactory:
    """Factory that counts constructions and can block or fail on demand."""

    def __init__(self, name: str = "cfg") -> None:
        self.name = name
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None
        self.built: list[FakeConfig] = []

    async def __call__(self) -> FakeConfig:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        value = FakeConfig(f"{self.name}-{self.calls}")
        self.built.append(value)
        return value


@pytest.mark.unit
class TestConfigMapGet:
    """Test construction and deduplication."""

    async def test_equal_keys_share_one_value(self):
        """Test that structurally equal descriptors map to one value."""
        configs: ConfigMap[ConsulSDConfig, FakeConfig] = ConfigMap()
        factory = CountingFactory()

        first = await configs.get(ConsulSDConfig(server="a:8500", services=["api"]), factory)
        second = await configs.get(ConsulSDConfig(server="a:8500", services=("api",)), factory)

        assert first is second
        assert factory.calls == 1
        assert configs.ref_count(ConsulSDConfig(server="a:8500", services=["api"])) == 2

    async def test_distinct_keys_get_distinct_values(self):
        """Test that different descriptors build their own value."""
        configs: ConfigMap[ConsulSDConfig, FakeConfig] = ConfigMap()
        factory = CountingFactory()

        first = await configs.get(ConsulSDConfig(server="a:8500"), factory)
        second = await configs.get(ConsulSDConfig(server="b:8500"), factory)

        assert first is not second
        assert len(configs) == 2

    async def test_concurrent_gets_construct_once(self):
        """Test that concurrent callers for one key wait for a single construction."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        factory.gate = asyncio.Event()

        tasks = [asyncio.create_task(configs.get("job", factory)) for _ in range(5)]
        await asyncio.sleep(0)
        factory.gate.set()
        results = await asyncio.gather(*tasks)

        assert factory.calls == 1
        assert all(result is results[0] for result in results)
        assert configs.ref_count("job") == 5

    async def test_distinct_keys_construct_concurrently(self):
        """Test that a slow construction does not block other keys."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        slow = CountingFactory("slow")
        slow.gate = asyncio.Event()
        fast = CountingFactory("fast")

        slow_task = asyncio.create_task(configs.get("slow", slow))
        await asyncio.sleep(0)
        fast_value = await asyncio.wait_for(configs.get("fast", fast), timeout=1.0)

        assert fast_value.name == "fast-1"
        assert not slow_task.done()
        slow.gate.set()
        await slow_task

    async def test_failure_is_not_cached(self):
        """Test that a failed construction is evicted and retried later."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        factory.error = ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await configs.get("job", factory)

        assert "job" not in configs

        factory.error = None
        value = await configs.get("job", factory)

        assert factory.calls == 2
        assert value.name == "cfg-2"
        assert configs.ref_count("job") == 1

    async def test_concurrent_waiters_see_failure(self):
        """Test that callers waiting on a failing construction receive its error."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        factory.gate = asyncio.Event()
        factory.error = RuntimeError("cannot build")

        tasks = [asyncio.create_task(configs.get("job", factory)) for _ in range(3)]
        await asyncio.sleep(0)
        factory.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert factory.calls == 1
        assert all(isinstance(result, RuntimeError) for result in results)
        assert "job" not in configs

    async def test_cancelled_construction_lets_waiter_build(self):
        """Test that cancelling the constructing caller hands construction to a waiter."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        factory.gate = asyncio.Event()

        owner = asyncio.create_task(configs.get("job", factory))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(configs.get("job", factory))
        await asyncio.sleep(0)

        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner

        factory.gate.set()
        value = await waiter

        assert factory.calls == 2
        assert configs.ref_count("job") == 1
        assert value.name == "cfg-2"


@pytest.mark.unit
class TestConfigMapRelease:
    """Test reference counting and teardown."""

    async def test_release_stops_at_zero(self):
        """Test that the value is stopped only when the last reference is dropped."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        value = await configs.get("job", factory)
        await configs.get("job", factory)

        await configs.release("job")
        assert not value.stopped
        assert configs.ref_count("job") == 1

        await configs.release("job")
        assert value.stopped
        assert "job" not in configs

    async def test_get_after_release_builds_again(self):
        """Test that a fully released key is constructed anew."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        first = await configs.get("job", factory)
        await configs.release("job")

        second = await configs.get("job", factory)

        assert first is not second
        assert factory.calls == 2

    async def test_release_unknown_key(self):
        """Test that releasing a key never acquired is an error."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()

        with pytest.raises(KeyError):
            await configs.release("job")

    async def test_stop_all(self):
        """Test that stop_all stops every value regardless of references."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        first = await configs.get("a", factory)
        second = await configs.get("b", factory)
        await configs.get("b", factory)

        await configs.stop_all()

        assert first.stopped
        assert second.stopped
        assert len(configs) == 0

    async def test_get_after_stop_all_fails(self):
        """Test that a stopped map refuses new constructions."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        await configs.stop_all()

        with pytest.raises(RuntimeError, match="stopped"):
            await configs.get("job", CountingFactory())

    async def test_stop_all_during_construction_stops_new_value(self):
        """Test that a value finished after stop_all is stopped instead of leaked."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        factory.gate = asyncio.Event()

        task = asyncio.create_task(configs.get("job", factory))
        await asyncio.sleep(0)
        await configs.stop_all()
        factory.gate.set()

        with pytest.raises(RuntimeError, match="stopped during construction"):
            await task

        assert factory.built[0].stopped


@pytest.mark.unit
class TestConfigMapStaleValues:
    """Test rebuilding of cached values that can no longer serve callers."""

    async def test_stale_value_is_rebuilt(self):
        """Test that a stale value is stopped and replaced on the next get."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        first = await configs.get("job", factory)
        dead = {first.name}

        second = await configs.get("job", factory, is_stale=lambda v: v.name in dead)

        assert second is not first
        assert first.stopped
        assert not second.stopped
        assert factory.calls == 2
        assert configs.ref_count("job") == 2

    async def test_live_value_is_reused(self):
        """Test that the staleness check does not rebuild healthy values."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        first = await configs.get("job", factory)

        second = await configs.get("job", factory, is_stale=lambda v: False)

        assert second is first
        assert factory.calls == 1

    async def test_rebuilt_value_keeps_references(self):
        """Test that releases of the old holders are counted against the new value."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        first = await configs.get("job", factory)
        second = await configs.get("job", factory, is_stale=lambda v: v is first)

        await configs.release("job")
        assert not second.stopped

        await configs.release("job")
        assert second.stopped
        assert "job" not in configs

    async def test_failed_rebuild_restores_old_entry(self):
        """Test that a failed rebuild keeps the old references and retries later."""
        configs: ConfigMap[str, FakeConfig] = ConfigMap()
        factory = CountingFactory()
        first = await configs.get("job", factory)
        factory.error = ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await configs.get("job", factory, is_stale=lambda v: v is first)

        assert configs.ref_count("job") == 1

        factory.error = None
        second = await configs.get("job", factory, is_stale=lambda v: v is first)

        assert second is not first
        assert configs.ref_count("job") == 2
