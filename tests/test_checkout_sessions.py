from __future__ import annotations

import httpx
import pytest

from core.errors import NoSupportedOperation, RejectedError, TransientError
from core.payments.checkout_sessions import CheckoutSessionManager, MerchantInteraction
from core.payments.gateway_client import GatewayClient
from core.payments.types import CheckoutOperation, CheckoutOrder

_OPERATION_REJECTED = (
    400,
    {"result": "ERROR", "error": {"cause": "INVALID_REQUEST", "field": "interaction.operation"}},
)


def _session_ok(session_id: str = "SESSION0001", indicator: str = "ind-123"):
    return (
        201,
        {
            "result": "SUCCESS",
            "session": {"id": session_id, "updateStatus": "SUCCESS", "version": "v1"},
            "successIndicator": indicator,
        },
    )


def _sessions(gateway) -> CheckoutSessionManager:
    client = GatewayClient(
        base_url="https://gateway.test",
        api_version="100",
        merchant_id="TESTMERCHANT",
        password="secret",
        transport=gateway.transport(),
    )
    return CheckoutSessionManager(
        client,
        MerchantInteraction(
            name="Test Store",
            url="https://store.test",
            return_url="https://store.test/v1/checkout/callback",
            redirect_merchant_url="https://store.test/v1/checkout/callback",
            retry_attempt_count=3,
        ),
    )


def _order() -> CheckoutOrder:
    return CheckoutOrder(id="ORDER-1", amount="100.00", currency="USD", description="Goods")


@pytest.mark.asyncio
async def test_purchase_session_returns_id_and_indicator(gateway):
    gateway.on("POST", "/session", _session_ok())

    session = await _sessions(gateway).initiate_checkout(_order(), CheckoutOperation.PURCHASE)

    assert session.session_id == "SESSION0001"
    assert session.success_indicator == "ind-123"
    assert session.operation == CheckoutOperation.PURCHASE
    assert session.attempted_operations == (CheckoutOperation.PURCHASE,)

    body = gateway.body(gateway.requests[0])
    assert body["apiOperation"] == "INITIATE_CHECKOUT"
    assert body["checkoutMode"] == "WEBSITE"
    assert body["interaction"]["operation"] == "PURCHASE"
    assert body["interaction"]["merchant"] == {"name": "Test Store", "url": "https://store.test"}
    assert body["interaction"]["retryAttemptCount"] == 3
    assert body["order"] == {"id": "ORDER-1", "amount": "100.00", "currency": "USD", "description": "Goods"}


@pytest.mark.asyncio
async def test_authorize_falls_back_to_purchase_when_operation_is_rejected(gateway):
    gateway.on("POST", "/session", _OPERATION_REJECTED, _session_ok())

    session = await _sessions(gateway).initiate_checkout(_order(), CheckoutOperation.AUTHORIZE)

    assert session.operation == CheckoutOperation.PURCHASE
    assert session.attempted_operations == (CheckoutOperation.AUTHORIZE, CheckoutOperation.PURCHASE)
    operations = [gateway.body(request)["interaction"]["operation"] for request in gateway.requests]
    assert operations == ["AUTHORIZE", "PURCHASE"]


@pytest.mark.asyncio
async def test_exhausted_fallback_lists_every_attempted_operation(gateway):
    gateway.on("POST", "/session", _OPERATION_REJECTED)

    with pytest.raises(NoSupportedOperation) as exc_info:
        await _sessions(gateway).initiate_checkout(_order(), CheckoutOperation.AUTHORIZE)

    assert exc_info.value.attempted_operations == ["AUTHORIZE", "PURCHASE"]
    assert exc_info.value.details["order_id"] == "ORDER-1"
    assert len(gateway.requests) == 2


@pytest.mark.asyncio
async def test_rejection_on_another_field_stops_the_fallback(gateway):
    gateway.on(
        "POST",
        "/session",
        (400, {"result": "ERROR", "error": {"field": "order.amount", "explanation": "Invalid amount"}}),
    )

    with pytest.raises(RejectedError) as exc_info:
        await _sessions(gateway).initiate_checkout(_order(), CheckoutOperation.AUTHORIZE)

    assert exc_info.value.field == "order.amount"
    assert exc_info.value.details["attempted_operations"] == ["AUTHORIZE"]
    assert exc_info.value.details["order_id"] == "ORDER-1"
    assert len(gateway.requests) == 1


@pytest.mark.asyncio
async def test_transient_failure_is_not_retried(gateway):
    gateway.on("POST", "/session", (500, {}))

    with pytest.raises(TransientError) as exc_info:
        await _sessions(gateway).initiate_checkout(_order(), CheckoutOperation.PURCHASE)

    assert exc_info.value.details["order_id"] == "ORDER-1"
    assert len(gateway.requests) == 1


@pytest.mark.asyncio
async def test_session_without_indicator_is_transient(gateway):
    gateway.on("POST", "/session", (201, {"session": {"id": "SESSION0001"}}))

    with pytest.raises(TransientError):
        await _sessions(gateway).initiate_checkout(_order())


def test_interaction_overrides_cannot_change_operation():
    sessions = CheckoutSessionManager(
        client=None,  # type: ignore[arg-type]
        interaction=MerchantInteraction(
            name="Test Store",
            url=None,
            return_url="https://store.test/return",
            redirect_merchant_url="https://store.test/return",
            retry_attempt_count=2,
        ),
    )

    body = sessions.build_session_request(
        _order(),
        CheckoutOperation.VERIFY,
        {"operation": "PURCHASE", "returnUrl": "https://other.test/return"},
    )

    assert body["interaction"]["operation"] == "VERIFY"
    assert body["interaction"]["returnUrl"] == "https://other.test/return"
    assert "url" not in body["interaction"]["merchant"]


@pytest.mark.asyncio
async def test_probe_operations_reports_enabled_and_disabled(gateway):
    accepted = {"PURCHASE"}

    def _respond(request):
        operation = gateway.body(request)["interaction"]["operation"]
        if operation in accepted:
            return httpx.Response(201, json=_session_ok()[1])
        return httpx.Response(400, json=_OPERATION_REJECTED[1])

    gateway.on("POST", "/session", _respond)

    results = await _sessions(gateway).probe_operations()

    assert results["PURCHASE"]["enabled"] is True
    assert results["AUTHORIZE"]["enabled"] is False
    assert results["VERIFY"]["status"] == "DISABLED"
    for request in gateway.requests:
        order = gateway.body(request)["order"]
        assert order["amount"] == "1.00"
        assert order["id"].startswith("TEST-")
