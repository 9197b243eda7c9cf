from __future__ import annotations

import time
from typing import Any

from pymongo.errors import DuplicateKeyError


class MongoWebhookReceiptStore:
    def __init__(self, db: Any, *, collection: str = "payment_webhook_events") -> None:
        self._events = db[collection]
        self._indexes_ready = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_ready:
            return
        await self._events.create_index(
            [("provider", 1), ("event_id", 1)],
            name="idx_payment_webhook_provider_event_unique",
            unique=True,
        )
        self._indexes_ready = True

    async def is_processed(self, provider: str, event_id: str) -> bool:
        await self._ensure_indexes()
        row = await self._events.find_one({"provider": provider, "event_id": event_id})
        return row is not None

    async def mark_processed(self, provider: str, event_id: str) -> None:
        await self._ensure_indexes()
        try:
            await self._events.insert_one({"provider": provider, "event_id": event_id, "created_at": int(time.time())})
        except DuplicateKeyError:
            # A concurrent delivery of the same event already recorded it.
            return
