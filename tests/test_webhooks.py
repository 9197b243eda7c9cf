from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from core.errors import AppException, ErrorCode, SignatureMismatch
from core.payments.types import OrderStatus, TransactionResult
from core.payments.webhooks import WebhookVerifier, parse_event

_SECRET = "sk_test_secret"


def _signed(payload: dict) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode("utf-8")
    signature = hmac.new(_SECRET.encode("utf-8"), body, hashlib.sha512).hexdigest()
    return body, {"X-Paystack-Signature": signature, "Content-Type": "application/json"}


def _charge_success(amount: int = 10000, charge_id: int = 4001) -> dict:
    return {
        "event": "charge.success",
        "data": {
            "id": charge_id,
            "reference": "ORDER-1",
            "amount": amount,
            "currency": "USD",
            "status": "success",
            "gateway_response": "Successful",
        },
    }


def test_verifier_accepts_matching_signature_and_parses_body():
    verifier = WebhookVerifier("paystack", _SECRET, "x-paystack-signature")
    body, headers = _signed({"event": "charge.success", "data": {"id": 1}})

    payload = verifier.verify(body, headers)

    assert payload["event"] == "charge.success"


def test_verifier_rejects_missing_signature():
    verifier = WebhookVerifier("paystack", _SECRET, "x-paystack-signature")

    with pytest.raises(SignatureMismatch) as exc_info:
        verifier.verify(b"{}", {})

    assert exc_info.value.status_code == 401


def test_verifier_rejects_invalid_json_after_signature_match():
    verifier = WebhookVerifier("paystack", _SECRET, "x-paystack-signature")
    body = b"not json"

    with pytest.raises(AppException) as exc_info:
        verifier.verify(body, {"x-paystack-signature": verifier.sign(body)})

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == ErrorCode.PAYMENT_WEBHOOK_INVALID


def test_event_id_combines_type_and_provider_identifier():
    event = parse_event("paystack", _charge_success())

    assert event.event_id == "charge.success:4001"


@pytest.mark.asyncio
async def test_charge_success_captures_order(make_manager, make_order):
    manager = make_manager()
    await manager.orders.create_order(make_order())
    body, headers = _signed(_charge_success())

    ack = await manager.webhooks.process("paystack", body, headers)

    assert ack.handled is True
    assert ack.duplicate is False
    assert ack.order_status == OrderStatus.CAPTURED.value
    stored = await manager.orders.get_order("ORDER-1")
    assert stored.status == OrderStatus.CAPTURED
    assert stored.captured == Decimal("100")
    assert stored.find_transaction("PAY-4001").source == "webhook"


@pytest.mark.asyncio
async def test_tampered_body_is_rejected_without_touching_order(make_manager, make_order):
    manager = make_manager()
    await manager.orders.create_order(make_order())
    body, headers = _signed(_charge_success(amount=10000))
    tampered = body.replace(b"10000", b"99999")

    with pytest.raises(SignatureMismatch):
        await manager.webhooks.process("paystack", tampered, headers)

    stored = await manager.orders.get_order("ORDER-1")
    assert stored.status == OrderStatus.INITIATED
    assert stored.transactions == []
    assert stored.version == 0


@pytest.mark.asyncio
async def test_redelivered_event_is_acknowledged_as_duplicate(make_manager, make_order):
    manager = make_manager()
    await manager.orders.create_order(make_order())
    body, headers = _signed(_charge_success())

    await manager.webhooks.process("paystack", body, headers)
    ack = await manager.webhooks.process("paystack", body, headers)

    assert ack.duplicate is True
    stored = await manager.orders.get_order("ORDER-1")
    assert stored.captured == Decimal("100")
    assert len(stored.transactions) == 1


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged_and_ignored(make_manager, make_order):
    manager = make_manager()
    await manager.orders.create_order(make_order())
    body, headers = _signed({"event": "transfer.success", "data": {"id": 77, "reference": "ORDER-1"}})

    ack = await manager.webhooks.process("paystack", body, headers)

    assert ack.handled is False
    assert ack.duplicate is False
    stored = await manager.orders.get_order("ORDER-1")
    assert stored.version == 0


@pytest.mark.asyncio
async def test_refund_processed_adds_refund(make_manager, make_order):
    manager = make_manager()
    await manager.orders.create_order(
        make_order(
            status=OrderStatus.CAPTURED,
            total_authorized_amount="100.00",
            total_captured_amount="100.00",
        )
    )
    body, headers = _signed(
        {
            "event": "refund.processed",
            "data": {"id": 9001, "transaction_reference": "ORDER-1", "amount": 2500, "currency": "USD"},
        }
    )

    ack = await manager.webhooks.process("paystack", body, headers)

    assert ack.handled is True
    stored = await manager.orders.get_order("ORDER-1")
    assert stored.refunded == Decimal("25")
    assert stored.status == OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_late_failure_after_success_keeps_order_captured(make_manager, make_order):
    manager = make_manager()
    await manager.orders.create_order(make_order())
    success_body, success_headers = _signed(_charge_success())
    failed = _charge_success(charge_id=4000)
    failed["event"] = "charge.failed"
    failed_body, failed_headers = _signed(failed)

    await manager.webhooks.process("paystack", success_body, success_headers)
    ack = await manager.webhooks.process("paystack", failed_body, failed_headers)

    assert ack.handled is True
    stored = await manager.orders.get_order("ORDER-1")
    assert stored.status == OrderStatus.CAPTURED


@pytest.mark.asyncio
async def test_success_after_failed_attempt_captures_order(make_manager, make_order):
    manager = make_manager()
    await manager.orders.create_order(make_order())
    failed = _charge_success(charge_id=4000)
    failed["event"] = "charge.failed"
    failed_body, failed_headers = _signed(failed)
    success_body, success_headers = _signed(_charge_success(charge_id=4001))

    await manager.webhooks.process("paystack", failed_body, failed_headers)
    assert (await manager.orders.get_order("ORDER-1")).status == OrderStatus.FAILED
    ack = await manager.webhooks.process("paystack", success_body, success_headers)

    assert ack.handled is True
    assert ack.order_status == OrderStatus.CAPTURED.value
    stored = await manager.orders.get_order("ORDER-1")
    assert stored.status == OrderStatus.CAPTURED
    assert stored.refundable == Decimal("100")
    assert stored.needs_review is False


@pytest.mark.asyncio
async def test_webhook_and_capture_on_one_order_are_serialized(make_manager, make_order, gateway):
    manager = make_manager()
    await manager.orders.create_order(
        make_order(status=OrderStatus.AUTHORIZED, total_authorized_amount="100.00")
    )

    async def _slow_approve(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.01)
        return httpx.Response(200, json={"result": "SUCCESS", "response": {"gatewayCode": "APPROVED"}})

    gateway.on("PUT", "/order/ORDER-1/transaction/CAP-1", _slow_approve)
    body, headers = _signed(_charge_success(amount=4000, charge_id=4002))

    capture, ack = await asyncio.gather(
        manager.transactions.capture("ORDER-1", "CAP-1", "60.00", "USD"),
        manager.webhooks.process("paystack", body, headers),
    )

    assert capture.result == TransactionResult.SUCCESS
    assert ack.handled is True
    stored = await manager.orders.get_order("ORDER-1")
    assert stored.captured == Decimal("100")
    assert stored.refunded == Decimal("0")
    assert stored.status == OrderStatus.CAPTURED
    assert {"CAP-1", "PAY-4002"} <= {transaction.id for transaction in stored.transactions}


@pytest.mark.asyncio
async def test_unconfigured_provider_is_not_found(make_manager):
    manager = make_manager()

    with pytest.raises(AppException) as exc_info:
        await manager.webhooks.process("stripe", b"{}", {})

    assert exc_info.value.status_code == 404
