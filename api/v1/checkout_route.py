from __future__ import annotations

from fastapi import APIRouter, Depends

from core.payments.manager import PaymentManager
from core.response_envelope import document_response
from schemas.checkout_schema import CaptureIn, InitiateCheckoutIn, PaymentResultIn, RefundIn, VoidIn
from services.checkout_service import (
    capture_payment,
    check_gateway_connection,
    get_order_details,
    handle_payment_result,
    probe_merchant_config,
    refund_payment,
    start_checkout,
    void_payment,
)
from services.payment_service import get_payment_manager

router = APIRouter(prefix="/checkout", tags=["Checkout"])

_GATEWAY_ERRORS = {
    422: "No supported operation or invalid amount",
    502: "Gateway rejected the request or is unavailable",
    504: "Gateway timed out",
}


@router.get("/test-connection")
@document_response(message="Gateway connection checked")
async def test_gateway_connection(manager: PaymentManager = Depends(get_payment_manager)):
    return await check_gateway_connection(manager)


@router.get("/test-config")
@document_response(message="Merchant configuration checked")
async def test_merchant_configuration(manager: PaymentManager = Depends(get_payment_manager)):
    """Open one throw-away session per operation and report which ones the merchant account accepts."""
    return await probe_merchant_config(manager)


@router.post("/initialize")
@document_response(
    message="Checkout session created",
    response_codes={409: "Order cannot start a checkout", **_GATEWAY_ERRORS},
)
async def initialize_checkout(payload: InitiateCheckoutIn, manager: PaymentManager = Depends(get_payment_manager)):
    return await start_checkout(manager, payload)


@router.get("/callback")
@document_response(message="Payment callback processed")
async def payment_callback(
    resultIndicator: str | None = None,
    sessionId: str | None = None,
    orderId: str | None = None,
    manager: PaymentManager = Depends(get_payment_manager),
):
    """
    Browser return from the hosted checkout page.

    The gateway appends `resultIndicator` and `sessionId`; the order is looked
    up by session when `orderId` is absent.
    """
    return await handle_payment_result(
        manager,
        PaymentResultIn(order_id=orderId, result_indicator=resultIndicator, session_id=sessionId),
    )


@router.post("/result")
@document_response(message="Payment result verified")
async def payment_result(payload: PaymentResultIn, manager: PaymentManager = Depends(get_payment_manager)):
    return await handle_payment_result(manager, payload)


@router.get("/order/{order_id}")
@document_response(message="Order details fetched", response_codes={404: "Order not found"})
async def order_details(order_id: str, manager: PaymentManager = Depends(get_payment_manager)):
    return await get_order_details(manager, order_id)


@router.post("/capture")
@document_response(message="Capture processed", response_codes={409: "Order state conflict", **_GATEWAY_ERRORS})
async def capture(payload: CaptureIn, manager: PaymentManager = Depends(get_payment_manager)):
    return await capture_payment(manager, payload)


@router.post("/refund")
@document_response(message="Refund processed", response_codes={409: "Order state conflict", **_GATEWAY_ERRORS})
async def refund(payload: RefundIn, manager: PaymentManager = Depends(get_payment_manager)):
    return await refund_payment(manager, payload)


@router.post("/void")
@document_response(message="Void processed", response_codes={409: "Order state conflict", **_GATEWAY_ERRORS})
async def void(payload: VoidIn, manager: PaymentManager = Depends(get_payment_manager)):
    return await void_payment(manager, payload)
