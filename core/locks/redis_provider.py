from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from redis.exceptions import LockError

from core.errors import OperationTimeout

logger = logging.getLogger(__name__)


class RedisOrderLockProvider:
    """Per-order lock shared by every worker process through Redis.

    The lease bounds how long a crashed holder can block an order; it must be
    longer than the slowest gateway call.
    """

    backend_name = "redis"

    def __init__(
        self,
        redis_client: Any,
        *,
        lease_seconds: float = 30.0,
        default_timeout: float | None = None,
        key_prefix: str = "order-lock",
    ) -> None:
        self._redis = redis_client
        self._lease_seconds = lease_seconds
        self._default_timeout = default_timeout
        self._key_prefix = key_prefix

    def _key(self, order_id: str) -> str:
        return f"{self._key_prefix}:{order_id}"

    @asynccontextmanager
    async def hold(self, order_id: str, *, timeout: float | None = None) -> AsyncIterator[None]:
        wait_for = timeout if timeout is not None else self._default_timeout
        lock = self._redis.lock(
            self._key(order_id),
            timeout=self._lease_seconds,
            blocking_timeout=wait_for,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise OperationTimeout(
                "Timed out waiting for another operation on this order",
                order_id=order_id,
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Order lock lease expired before release", extra={"order_id": order_id})

    async def ping(self) -> None:
        await self._redis.ping()
