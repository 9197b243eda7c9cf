from __future__ import annotations

import asyncio

import pytest

from core.errors import OperationTimeout
from core.locks import LocalOrderLockProvider, RedisOrderLockProvider


@pytest.mark.asyncio
async def test_local_lock_serializes_same_order():
    locks = LocalOrderLockProvider(default_timeout=1.0)
    events: list[str] = []

    async def _worker(name: str):
        async with locks.hold("ORDER-1"):
            events.append(f"{name}:start")
            await asyncio.sleep(0.01)
            events.append(f"{name}:end")

    await asyncio.gather(_worker("a"), _worker("b"))

    assert events in (
        ["a:start", "a:end", "b:start", "b:end"],
        ["b:start", "b:end", "a:start", "a:end"],
    )
    assert locks.active_orders() == 0


@pytest.mark.asyncio
async def test_local_lock_does_not_block_other_orders():
    locks = LocalOrderLockProvider(default_timeout=1.0)

    async with locks.hold("ORDER-1"):
        async with locks.hold("ORDER-2"):
            assert locks.active_orders() == 2


@pytest.mark.asyncio
async def test_local_lock_times_out_while_held():
    locks = LocalOrderLockProvider()

    async with locks.hold("ORDER-1"):
        with pytest.raises(OperationTimeout) as exc_info:
            async with locks.hold("ORDER-1", timeout=0.01):
                pass

    assert exc_info.value.details["order_id"] == "ORDER-1"
    assert locks.active_orders() == 0


class _FakeRedisLock:
    def __init__(self, acquired: bool) -> None:
        self.acquired = acquired
        self.released = False

    async def acquire(self) -> bool:
        return self.acquired

    async def release(self) -> None:
        self.released = True


class _FakeRedis:
    def __init__(self, acquired: bool = True) -> None:
        self.lock_calls: list[dict] = []
        self.last_lock = _FakeRedisLock(acquired)

    def lock(self, name: str, *, timeout: float, blocking_timeout: float | None):
        self.lock_calls.append({"name": name, "timeout": timeout, "blocking_timeout": blocking_timeout})
        return self.last_lock


@pytest.mark.asyncio
async def test_redis_lock_uses_order_key_and_lease():
    redis_client = _FakeRedis()
    locks = RedisOrderLockProvider(redis_client, lease_seconds=30.0, default_timeout=5.0)

    async with locks.hold("ORDER-1"):
        pass

    assert redis_client.lock_calls == [{"name": "order-lock:ORDER-1", "timeout": 30.0, "blocking_timeout": 5.0}]
    assert redis_client.last_lock.released is True


@pytest.mark.asyncio
async def test_redis_lock_not_acquired_raises_timeout():
    locks = RedisOrderLockProvider(_FakeRedis(acquired=False), default_timeout=0.1)

    with pytest.raises(OperationTimeout):
        async with locks.hold("ORDER-1"):
            pass
