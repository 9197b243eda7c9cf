from __future__ import annotations

from decimal import Decimal

import pytest

from core.errors import AppException, ErrorCode
from core.payments import order_state
from core.payments.types import GatewayOrder, OrderStatus


@pytest.mark.parametrize(
    ("current", "target", "expected"),
    [
        (OrderStatus.INITIATED, OrderStatus.AUTHORIZED, OrderStatus.AUTHORIZED),
        (OrderStatus.INITIATED, OrderStatus.CAPTURED, OrderStatus.CAPTURED),
        (OrderStatus.AUTHORIZED, OrderStatus.CAPTURED, OrderStatus.CAPTURED),
        (OrderStatus.CAPTURED, OrderStatus.AUTHORIZED, OrderStatus.CAPTURED),
        (OrderStatus.CAPTURED, OrderStatus.INITIATED, OrderStatus.CAPTURED),
        (OrderStatus.REFUNDED, OrderStatus.REFUNDED, OrderStatus.REFUNDED),
        (OrderStatus.FAILED, OrderStatus.CAPTURED, OrderStatus.CAPTURED),
        (OrderStatus.FAILED, OrderStatus.INITIATED, OrderStatus.FAILED),
    ],
)
def test_next_status_applies_forward_and_ignores_stale(current, target, expected):
    assert order_state.next_status("ORDER-1", current, target) == expected


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (OrderStatus.VOIDED, OrderStatus.REFUNDED),
        (OrderStatus.FAILED, OrderStatus.VOIDED),
        (OrderStatus.AUTHORIZED, OrderStatus.REFUNDED),
    ],
)
def test_next_status_rejects_leaving_terminal_or_skipping(current, target):
    with pytest.raises(AppException) as exc_info:
        order_state.next_status("ORDER-1", current, target)

    assert exc_info.value.code == ErrorCode.ORDER_STATE_CONFLICT


def test_map_gateway_status_handles_aliases():
    assert order_state.map_gateway_status("captured") == OrderStatus.CAPTURED
    assert order_state.map_gateway_status("PARTIALLY_REFUNDED") == OrderStatus.REFUNDED
    assert order_state.map_gateway_status("SOMETHING_NEW") is None
    assert order_state.map_gateway_status(None) is None


def test_set_totals_rejects_refunded_above_captured(make_order):
    order = make_order(total_authorized_amount="100.00", total_captured_amount="50.00")

    with pytest.raises(AppException):
        order_state.set_totals(order, refunded=Decimal("60.00"))

    assert order.total_refunded_amount == "0"


def test_reconcile_adopts_remote_totals(make_order):
    order = make_order()
    remote = GatewayOrder(
        id="ORDER-1",
        status="CAPTURED",
        amount="100.00",
        currency="USD",
        total_authorized_amount="100.00",
        total_captured_amount="100.00",
        total_refunded_amount="0.00",
    )

    changed = order_state.reconcile_with_gateway(order, remote)

    assert changed is True
    assert order.status == OrderStatus.CAPTURED
    assert order.captured == Decimal("100.00")
    assert order_state.reconcile_with_gateway(order, remote) is False
