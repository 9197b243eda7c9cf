from __future__ import annotations

from typing import AsyncContextManager, Protocol


class OrderLockProvider(Protocol):
    backend_name: str

    def hold(self, order_id: str, *, timeout: float | None = None) -> AsyncContextManager[None]:
        ...
