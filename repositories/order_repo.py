from __future__ import annotations

import time
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from core.errors import order_state_conflict
from core.payments.stores import duplicate_order
from schemas.order_schema import OrderRecord


def _epoch() -> int:
    return int(time.time())


class MongoOrderStore:
    """Orders collection; ``save_order`` only succeeds against the version it was read at."""

    def __init__(self, db: Any, *, collection: str = "payment_orders") -> None:
        self._orders = db[collection]
        self._indexes_ready = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_ready:
            return
        await self._orders.create_index(
            "checkout_session.id",
            name="idx_order_checkout_session_id",
            sparse=True,
        )
        await self._orders.create_index(
            "settlement.reference",
            name="idx_order_settlement_reference_unique",
            unique=True,
            sparse=True,
        )
        await self._orders.create_index("needs_review", name="idx_order_needs_review")
        self._indexes_ready = True

    async def get_order(self, order_id: str) -> OrderRecord | None:
        await self._ensure_indexes()
        row = await self._orders.find_one({"_id": order_id})
        if row is None:
            return None
        return OrderRecord(**row)

    async def create_order(self, order: OrderRecord) -> OrderRecord:
        await self._ensure_indexes()
        try:
            await self._orders.insert_one(order.to_document())
        except DuplicateKeyError as err:
            raise duplicate_order(order.id) from err
        return order

    async def save_order(self, order: OrderRecord) -> OrderRecord:
        await self._ensure_indexes()
        document = order.to_document()
        document.pop("_id")
        document["version"] = order.version + 1
        document["updated_at"] = _epoch()
        row = await self._orders.find_one_and_update(
            {"_id": order.id, "version": order.version},
            {"$set": document},
            return_document=ReturnDocument.AFTER,
        )
        if row is None:
            raise order_state_conflict(order.id, "Order was modified concurrently", expected_version=order.version)
        return OrderRecord(**row)

    async def find_by_session(self, session_id: str) -> OrderRecord | None:
        await self._ensure_indexes()
        row = await self._orders.find_one({"checkout_session.id": session_id})
        if row is None:
            return None
        return OrderRecord(**row)

    async def find_by_settlement_reference(self, reference: str) -> OrderRecord | None:
        await self._ensure_indexes()
        row = await self._orders.find_one({"settlement.reference": reference})
        if row is None:
            return None
        return OrderRecord(**row)

    async def flag_for_review(self, order_id: str, reason: str) -> None:
        await self._ensure_indexes()
        await self._orders.update_one(
            {"_id": order_id},
            {"$set": {"needs_review": True, "review_reason": reason, "updated_at": _epoch()}},
        )
