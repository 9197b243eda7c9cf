from __future__ import annotations

import time
from typing import Protocol

from core.errors import AppException, ErrorCode, order_state_conflict
from schemas.order_schema import OrderRecord
from schemas.vendor_schema import VendorRecord


def _epoch() -> int:
    return int(time.time())


class OrderStore(Protocol):
    async def get_order(self, order_id: str) -> OrderRecord | None:
        ...

    async def create_order(self, order: OrderRecord) -> OrderRecord:
        ...

    async def save_order(self, order: OrderRecord) -> OrderRecord:
        ...

    async def find_by_session(self, session_id: str) -> OrderRecord | None:
        ...

    async def find_by_settlement_reference(self, reference: str) -> OrderRecord | None:
        ...

    async def flag_for_review(self, order_id: str, reason: str) -> None:
        ...


class VendorStore(Protocol):
    async def get_vendor(self, vendor_id: str) -> VendorRecord | None:
        ...

    async def set_subaccount_code(self, vendor_id: str, subaccount_code: str) -> VendorRecord | None:
        ...


class WebhookReceiptStore(Protocol):
    async def is_processed(self, provider: str, event_id: str) -> bool:
        ...

    async def mark_processed(self, provider: str, event_id: str) -> None:
        ...


def duplicate_order(order_id: str) -> AppException:
    return AppException(
        status_code=409,
        code=ErrorCode.ORDER_STATE_CONFLICT,
        message="Order already exists",
        details={"order_id": order_id},
    )


class MemoryOrderStore:
    """Process-local order store; rows are copied in and out so callers never share state."""

    def __init__(self) -> None:
        self._rows: dict[str, OrderRecord] = {}

    async def get_order(self, order_id: str) -> OrderRecord | None:
        row = self._rows.get(order_id)
        return row.model_copy(deep=True) if row is not None else None

    async def create_order(self, order: OrderRecord) -> OrderRecord:
        if order.id in self._rows:
            raise duplicate_order(order.id)
        self._rows[order.id] = order.model_copy(deep=True)
        return order.model_copy(deep=True)

    async def save_order(self, order: OrderRecord) -> OrderRecord:
        stored = self._rows.get(order.id)
        if stored is None or stored.version != order.version:
            raise order_state_conflict(order.id, "Order was modified concurrently", expected_version=order.version)
        saved = order.model_copy(deep=True, update={"version": order.version + 1, "updated_at": _epoch()})
        self._rows[order.id] = saved
        return saved.model_copy(deep=True)

    async def find_by_session(self, session_id: str) -> OrderRecord | None:
        for row in self._rows.values():
            if row.checkout_session is not None and row.checkout_session.id == session_id:
                return row.model_copy(deep=True)
        return None

    async def find_by_settlement_reference(self, reference: str) -> OrderRecord | None:
        for row in self._rows.values():
            if row.settlement is not None and row.settlement.reference == reference:
                return row.model_copy(deep=True)
        return None

    async def flag_for_review(self, order_id: str, reason: str) -> None:
        row = self._rows.get(order_id)
        if row is None:
            return
        self._rows[order_id] = row.model_copy(
            update={"needs_review": True, "review_reason": reason, "updated_at": _epoch()}
        )


class MemoryVendorStore:
    def __init__(self, vendors: list[VendorRecord] | None = None) -> None:
        self._rows: dict[str, VendorRecord] = {vendor.id: vendor for vendor in vendors or []}

    async def get_vendor(self, vendor_id: str) -> VendorRecord | None:
        row = self._rows.get(vendor_id)
        return row.model_copy() if row is not None else None

    async def set_subaccount_code(self, vendor_id: str, subaccount_code: str) -> VendorRecord | None:
        row = self._rows.get(vendor_id)
        if row is None:
            return None
        if row.subaccount_code is None:
            row = row.model_copy(update={"subaccount_code": subaccount_code})
            self._rows[vendor_id] = row
        return row.model_copy()

    def add(self, vendor: VendorRecord) -> None:
        self._rows[vendor.id] = vendor


class MemoryWebhookReceiptStore:
    def __init__(self) -> None:
        self._seen: set[tuple[str, str]] = set()

    async def is_processed(self, provider: str, event_id: str) -> bool:
        return (provider, event_id) in self._seen

    async def mark_processed(self, provider: str, event_id: str) -> None:
        self._seen.add((provider, event_id))
