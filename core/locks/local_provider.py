from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from core.errors import OperationTimeout


class _Entry:
    __slots__ = ("lock", "waiters")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.waiters = 0


class LocalOrderLockProvider:
    """Per-order mutual exclusion inside a single event loop.

    Entries are reference counted and dropped once nobody holds or waits on
    them, so the table only grows with the number of orders in flight.
    """

    backend_name = "local"

    def __init__(self, *, default_timeout: float | None = None) -> None:
        self._entries: dict[str, _Entry] = {}
        self._default_timeout = default_timeout

    @asynccontextmanager
    async def hold(self, order_id: str, *, timeout: float | None = None) -> AsyncIterator[None]:
        entry = self._entries.get(order_id)
        if entry is None:
            entry = self._entries[order_id] = _Entry()
        entry.waiters += 1
        try:
            wait_for = timeout if timeout is not None else self._default_timeout
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=wait_for)
            except asyncio.TimeoutError as err:
                raise OperationTimeout(
                    "Timed out waiting for another operation on this order",
                    order_id=order_id,
                ) from err
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and self._entries.get(order_id) is entry:
                del self._entries[order_id]

    def active_orders(self) -> int:
        return len(self._entries)
