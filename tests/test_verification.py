from __future__ import annotations

from decimal import Decimal

import pytest

from core.payments.types import CheckoutOperation, OrderStatus
from core.payments.verification import verify
from schemas.checkout_schema import InitiateCheckoutIn, PaymentResultIn
from schemas.order_schema import CheckoutSessionRecord
from services.checkout_service import handle_payment_result, start_checkout

_SESSION = (
    201,
    {
        "result": "SUCCESS",
        "session": {"id": "SESSION0001", "updateStatus": "SUCCESS", "version": "a1b2"},
        "successIndicator": "f3c1d2e4a5b6",
    },
)


def _remote(status: str, captured: str = "0.00"):
    return (
        200,
        {
            "id": "ORDER-1",
            "status": status,
            "amount": "100.00",
            "currency": "USD",
            "totalAuthorizedAmount": "100.00" if status != "INITIATED" else "0.00",
            "totalCapturedAmount": captured,
            "totalRefundedAmount": "0.00",
        },
    )


def _with_session(make_order):
    return make_order(
        checkout_session=CheckoutSessionRecord(
            id="SESSION0001",
            success_indicator="f3c1d2e4a5b6",
            operation=CheckoutOperation.PURCHASE,
        )
    )


def test_verify_requires_exact_non_empty_match():
    assert verify("abc123", "abc123") is True
    assert verify("abc123", "abc124") is False
    assert verify("ABC123", "abc123") is False
    assert verify("", "") is False
    assert verify(None, "abc123") is False


@pytest.mark.asyncio
async def test_purchase_checkout_then_captured_order_verifies(make_manager, gateway):
    manager = make_manager()
    gateway.on("POST", "/session", _SESSION)
    gateway.on("GET", "/order/ORDER-1", _remote("CAPTURED", captured="100.00"))

    session = await start_checkout(
        manager,
        InitiateCheckoutIn(order_id="ORDER-1", amount="100.00", currency="USD", operation=CheckoutOperation.PURCHASE),
    )
    assert session.session_id == "SESSION0001"
    assert session.success_indicator == "f3c1d2e4a5b6"

    outcome = await manager.verifier.verify_checkout("ORDER-1", "f3c1d2e4a5b6")

    assert outcome.success is True
    assert outcome.indicator_match is True
    assert outcome.remote_confirmed is True
    assert outcome.remote_status == "CAPTURED"
    assert outcome.session_id == "SESSION0001"
    assert outcome.message == "Payment successful"

    stored = await manager.orders.get_order("ORDER-1")
    assert stored.status == OrderStatus.CAPTURED
    assert stored.captured == Decimal("100.00")


@pytest.mark.asyncio
async def test_indicator_match_with_unpaid_remote_order_is_not_success(make_manager, make_order, gateway):
    manager = make_manager()
    await manager.orders.create_order(_with_session(make_order))
    gateway.on("GET", "/order/ORDER-1", _remote("INITIATED"))

    outcome = await manager.verifier.verify_checkout("ORDER-1", "f3c1d2e4a5b6")

    assert outcome.indicator_match is True
    assert outcome.success is False
    assert outcome.remote_status == "INITIATED"
    stored = await manager.orders.get_order("ORDER-1")
    assert stored.status == OrderStatus.INITIATED


@pytest.mark.asyncio
async def test_remote_status_wins_over_indicator_mismatch(make_manager, make_order, gateway):
    manager = make_manager()
    await manager.orders.create_order(_with_session(make_order))
    gateway.on("GET", "/order/ORDER-1", _remote("AUTHORIZED"))

    outcome = await manager.verifier.verify_checkout("ORDER-1", "tampered")

    assert outcome.indicator_match is False
    assert outcome.success is True


@pytest.mark.asyncio
async def test_failed_refetch_is_not_success_by_default(make_manager, make_order, gateway):
    manager = make_manager()
    await manager.orders.create_order(_with_session(make_order))
    gateway.on("GET", "/order/ORDER-1", (503, {}))

    outcome = await manager.verifier.verify_checkout("ORDER-1", "f3c1d2e4a5b6")

    assert outcome.indicator_match is True
    assert outcome.remote_confirmed is False
    assert outcome.success is False


@pytest.mark.asyncio
async def test_indicator_alone_is_trusted_only_when_enabled(make_manager, make_order, gateway):
    manager = make_manager(checkout_trust_indicator_only=True)
    await manager.orders.create_order(_with_session(make_order))
    gateway.on("GET", "/order/ORDER-1", (503, {}))

    outcome = await manager.verifier.verify_checkout("ORDER-1", "f3c1d2e4a5b6")

    assert outcome.success is True
    assert outcome.remote_confirmed is False


@pytest.mark.asyncio
async def test_stale_remote_status_does_not_move_order_backwards(make_manager, make_order, gateway):
    manager = make_manager()
    order = _with_session(make_order)
    order.status = OrderStatus.CAPTURED
    order.total_authorized_amount = "100.00"
    order.total_captured_amount = "100.00"
    await manager.orders.create_order(order)
    gateway.on("GET", "/order/ORDER-1", _remote("AUTHORIZED", captured="100.00"))

    await manager.verifier.verify_checkout("ORDER-1", "f3c1d2e4a5b6")

    stored = await manager.orders.get_order("ORDER-1")
    assert stored.status == OrderStatus.CAPTURED


@pytest.mark.asyncio
async def test_callback_finds_order_by_session_id(make_manager, make_order, gateway):
    manager = make_manager()
    await manager.orders.create_order(_with_session(make_order))
    gateway.on("GET", "/order/ORDER-1", _remote("CAPTURED", captured="100.00"))

    result = await handle_payment_result(
        manager,
        PaymentResultIn(result_indicator="f3c1d2e4a5b6", session_id="SESSION0001"),
    )

    assert result["order_id"] == "ORDER-1"
    assert result["success"] is True
    assert result["message"] == "Payment successful"
