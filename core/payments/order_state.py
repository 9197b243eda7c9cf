"""Order lifecycle rules shared by every path that mutates an order.

Lifecycle: INITIATED -> AUTHORIZED/CAPTURED -> REFUNDED|VOIDED, or FAILED.
FAILED only ends the lifecycle until money moves: a later authorization or
capture for the same order is applied.

A forward transition is applied. A target that sits earlier in the lifecycle
than the current status (a late AUTHORIZED webhook after a capture, say) is
ignored and the current status is kept. Leaving a terminal status for a
different one is a conflict.
"""

from __future__ import annotations

import time
from decimal import Decimal

from core.errors import order_state_conflict
from core.payments.amounts import ZERO, amount_or_zero, format_amount
from core.payments.types import GatewayOrder, OrderStatus, TransactionResult, TransactionType
from schemas.order_schema import OrderRecord, TransactionRecord

_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.INITIATED: frozenset({OrderStatus.AUTHORIZED, OrderStatus.CAPTURED, OrderStatus.FAILED}),
    OrderStatus.AUTHORIZED: frozenset({OrderStatus.CAPTURED, OrderStatus.VOIDED}),
    OrderStatus.CAPTURED: frozenset({OrderStatus.REFUNDED, OrderStatus.VOIDED}),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.VOIDED: frozenset(),
    OrderStatus.FAILED: frozenset({OrderStatus.AUTHORIZED, OrderStatus.CAPTURED}),
}

_RANK: dict[OrderStatus, int] = {
    OrderStatus.INITIATED: 0,
    OrderStatus.AUTHORIZED: 1,
    OrderStatus.CAPTURED: 2,
    OrderStatus.REFUNDED: 3,
    OrderStatus.VOIDED: 3,
    OrderStatus.FAILED: 3,
}

# Gateway order statuses that have no exact counterpart in the local lifecycle.
_GATEWAY_STATUS_ALIASES = {
    "PARTIALLY_CAPTURED": OrderStatus.CAPTURED,
    "PARTIALLY_REFUNDED": OrderStatus.REFUNDED,
    "CANCELLED": OrderStatus.VOIDED,
    "DECLINED": OrderStatus.FAILED,
    "AUTHENTICATION_INITIATED": OrderStatus.INITIATED,
    "AUTHENTICATION_UNSUCCESSFUL": OrderStatus.FAILED,
    "VERIFIED": OrderStatus.INITIATED,
}


def _epoch() -> int:
    return int(time.time())


def next_status(order_id: str, current: OrderStatus, target: OrderStatus) -> OrderStatus:
    if target == current or target in _TRANSITIONS[current]:
        return target
    if _RANK[target] < _RANK[current]:
        return current
    raise order_state_conflict(
        order_id,
        f"Order cannot move from {current.value} to {target.value}",
        current_status=current.value,
        requested_status=target.value,
    )


def advance(order: OrderRecord, target: OrderStatus) -> None:
    order.status = next_status(order.id, order.status, target)


def map_gateway_status(raw_status: str | None) -> OrderStatus | None:
    if not raw_status:
        return None
    value = raw_status.strip().upper()
    if value in OrderStatus.__members__:
        return OrderStatus(value)
    return _GATEWAY_STATUS_ALIASES.get(value)


def record_transaction(
    order: OrderRecord,
    *,
    transaction_id: str,
    type: TransactionType,
    amount: Decimal,
    currency: str,
    result: TransactionResult,
    gateway_code: str | None = None,
    target_transaction_id: str | None = None,
    source: str = "api",
) -> TransactionRecord:
    record = TransactionRecord(
        id=transaction_id,
        type=type,
        amount=format_amount(amount),
        currency=currency,
        result=result,
        gateway_code=gateway_code,
        target_transaction_id=target_transaction_id,
        source=source,
        created_at=_epoch(),
    )
    order.transactions.append(record)
    return record


def set_totals(
    order: OrderRecord,
    *,
    authorized: Decimal | None = None,
    captured: Decimal | None = None,
    refunded: Decimal | None = None,
) -> None:
    new_authorized = order.authorized if authorized is None else authorized
    new_captured = order.captured if captured is None else captured
    new_refunded = order.refunded if refunded is None else refunded
    if min(new_authorized, new_captured, new_refunded) < ZERO or new_refunded > new_captured:
        raise order_state_conflict(
            order.id,
            "Order totals would become inconsistent",
            total_authorized_amount=format_amount(new_authorized),
            total_captured_amount=format_amount(new_captured),
            total_refunded_amount=format_amount(new_refunded),
        )
    order.total_authorized_amount = format_amount(new_authorized)
    order.total_captured_amount = format_amount(new_captured)
    order.total_refunded_amount = format_amount(new_refunded)


def reconcile_with_gateway(order: OrderRecord, remote: GatewayOrder) -> bool:
    """Adopt the gateway's authoritative totals and status. Returns True if anything changed."""
    before = (order.status, order.total_authorized_amount, order.total_captured_amount, order.total_refunded_amount)

    if remote.total_authorized_amount is not None or remote.total_captured_amount is not None:
        set_totals(
            order,
            authorized=_remote_total(remote.total_authorized_amount, order.authorized),
            captured=_remote_total(remote.total_captured_amount, order.captured),
            refunded=_remote_total(remote.total_refunded_amount, order.refunded),
        )

    target = map_gateway_status(remote.status)
    if target is not None:
        advance(order, target)

    after = (order.status, order.total_authorized_amount, order.total_captured_amount, order.total_refunded_amount)
    return before != after


def _remote_total(value: str | None, local: Decimal) -> Decimal:
    return local if value is None else amount_or_zero(value)
