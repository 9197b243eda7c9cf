from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict
from typing import Any

from core.errors import AppException, ErrorCode, order_state_conflict, resource_not_found
from core.payments.amounts import format_amount, parse_amount
from core.payments.manager import PaymentManager
from core.payments.types import (
    CheckoutOrder,
    GatewayOrder,
    OrderStatus,
    TransactionOutcome,
    VerificationOutcome,
)
from schemas.checkout_schema import (
    CaptureIn,
    CheckoutSessionOut,
    InitiateCheckoutIn,
    PaymentResultIn,
    RefundIn,
    VoidIn,
)
from schemas.order_schema import CheckoutSessionRecord, OrderRecord, OrderSummaryOut

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Payment for goods and services"


def _epoch() -> int:
    return int(time.time())


def generate_order_id() -> str:
    return f"ORDER-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _validation_failed(message: str, **details: Any) -> AppException:
    return AppException(
        status_code=400,
        code=ErrorCode.VALIDATION_FAILED,
        message=message,
        details=details or None,
    )


def transaction_payload(outcome: TransactionOutcome) -> dict[str, Any]:
    return {
        "order_id": outcome.order_id,
        "transaction_id": outcome.transaction_id,
        "type": outcome.type.value,
        "result": outcome.result.value,
        "amount": format_amount(outcome.amount),
        "currency": outcome.currency,
        "gateway_code": outcome.gateway_code,
        "order_status": outcome.order_status.value,
        "replayed": outcome.replayed,
    }


def verification_payload(outcome: VerificationOutcome) -> dict[str, Any]:
    payload = asdict(outcome)
    payload["message"] = outcome.message
    return payload


def gateway_order_payload(remote: GatewayOrder) -> dict[str, Any]:
    return {
        "id": remote.id,
        "status": remote.status,
        "amount": remote.amount,
        "currency": remote.currency,
        "total_authorized_amount": remote.total_authorized_amount,
        "total_captured_amount": remote.total_captured_amount,
        "total_refunded_amount": remote.total_refunded_amount,
        "transactions": [asdict(transaction) for transaction in remote.transactions],
    }


async def _load_or_create_order(manager: PaymentManager, payload: InitiateCheckoutIn) -> OrderRecord:
    if payload.order_id:
        existing = await manager.orders.get_order(payload.order_id)
        if existing is not None:
            if payload.amount is not None and parse_amount(payload.amount) != parse_amount(existing.amount):
                raise order_state_conflict(
                    existing.id,
                    "Order amount cannot change once the order exists",
                    order_amount=existing.amount,
                )
            return existing

    if payload.amount is None:
        if payload.order_id:
            raise resource_not_found("Order", payload.order_id)
        raise _validation_failed("Amount is required to create an order", missing="amount")

    order_id = payload.order_id or generate_order_id()
    amount = parse_amount(payload.amount, order_id=order_id)
    now = _epoch()
    order = OrderRecord(
        _id=order_id,
        amount=format_amount(amount),
        currency=(payload.currency or manager.settings.default_currency).upper(),
        description=payload.description or DEFAULT_DESCRIPTION,
        vendor_id=payload.vendor_id,
        payer_email=payload.payer_email,
        created_at=now,
        updated_at=now,
    )
    created = await manager.orders.create_order(order)
    logger.info("Order created", extra={"order_id": order_id})
    return created


async def start_checkout(manager: PaymentManager, payload: InitiateCheckoutIn) -> CheckoutSessionOut:
    order = await _load_or_create_order(manager, payload)
    if order.status != OrderStatus.INITIATED:
        raise order_state_conflict(
            order.id,
            f"Order in status {order.status.value} cannot start a new checkout",
            current_status=order.status.value,
        )

    session = await manager.sessions.initiate_checkout(
        CheckoutOrder(
            id=order.id,
            amount=order.amount,
            currency=order.currency,
            description=order.description,
        ),
        payload.operation,
        payload.interaction,
    )

    async with manager.locks.hold(order.id, timeout=manager.settings.lock_timeout_seconds):
        current = await manager.orders.get_order(order.id)
        if current is None:
            raise resource_not_found("Order", order.id)
        current.checkout_session = CheckoutSessionRecord(
            id=session.session_id,
            success_indicator=session.success_indicator,
            operation=session.operation,
            update_status=session.update_status,
            version=session.version,
        )
        await manager.orders.save_order(current)

    return CheckoutSessionOut(
        order_id=order.id,
        session_id=session.session_id,
        success_indicator=session.success_indicator,
        operation=session.operation,
        attempted_operations=list(session.attempted_operations),
        update_status=session.update_status,
        version=session.version,
    )


async def handle_payment_result(manager: PaymentManager, payload: PaymentResultIn) -> dict[str, Any]:
    """Verify a browser return from the hosted page, locating the order by session when needed."""
    if not payload.result_indicator:
        raise _validation_failed("Missing payment result parameters", missing="result_indicator")

    order_id = payload.order_id
    if not order_id:
        if not payload.session_id:
            raise _validation_failed("Either order_id or session_id is required", missing="order_id")
        order = await manager.orders.find_by_session(payload.session_id)
        if order is None:
            raise resource_not_found("Checkout session", payload.session_id)
        order_id = order.id

    outcome = await manager.verifier.verify_checkout(
        order_id,
        payload.result_indicator,
        session_id=payload.session_id,
    )
    return verification_payload(outcome)


async def get_order_details(manager: PaymentManager, order_id: str) -> dict[str, Any]:
    local = await manager.orders.get_order(order_id)
    remote = await manager.verifier.retrieve_order(order_id)
    return {
        "order": OrderSummaryOut.from_record(local).model_dump(mode="json") if local is not None else None,
        "gateway": gateway_order_payload(remote),
    }


async def capture_payment(manager: PaymentManager, payload: CaptureIn) -> dict[str, Any]:
    outcome = await manager.transactions.capture(
        payload.order_id,
        payload.transaction_id,
        payload.amount,
        payload.currency,
    )
    return transaction_payload(outcome)


async def refund_payment(manager: PaymentManager, payload: RefundIn) -> dict[str, Any]:
    outcome = await manager.transactions.refund(
        payload.order_id,
        payload.transaction_id,
        payload.amount,
        payload.currency,
    )
    return transaction_payload(outcome)


async def void_payment(manager: PaymentManager, payload: VoidIn) -> dict[str, Any]:
    outcome = await manager.transactions.void(
        payload.order_id,
        payload.transaction_id,
        void_transaction_id=payload.void_transaction_id,
    )
    return transaction_payload(outcome)


async def check_gateway_connection(manager: PaymentManager) -> dict[str, Any]:
    result = await manager.client.check_connection()
    result["gateway_url"] = manager.client.endpoint("")
    return result


async def probe_merchant_config(manager: PaymentManager) -> dict[str, Any]:
    results = await manager.sessions.probe_operations()
    return {
        "merchant_id": manager.client.merchant_id,
        "operations": results,
        "available_operations": [name for name, result in results.items() if result["enabled"]],
    }