from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable

from core.errors import (
    AppException,
    InvalidAmount,
    PaymentError,
    order_state_conflict,
    resource_not_found,
    transaction_id_conflict,
)
from core.locks.provider import OrderLockProvider
from core.payments import order_state
from core.payments.amounts import ZERO, format_amount, parse_amount
from core.payments.gateway_client import GatewayClient, parse_gateway_order
from core.payments.stores import OrderStore
from core.payments.types import GatewayOrder, OrderStatus, TransactionOutcome, TransactionResult, TransactionType
from schemas.order_schema import OrderRecord, TransactionRecord

logger = logging.getLogger(__name__)

_GATEWAY_RESULTS = {
    "SUCCESS": TransactionResult.SUCCESS,
    "PENDING": TransactionResult.PENDING,
    "FAILURE": TransactionResult.FAILURE,
    "ERROR": TransactionResult.FAILURE,
}

_GATEWAY_TRANSACTION_TYPES = {
    "AUTHORIZATION": TransactionType.AUTHORIZE,
    "AUTHORIZE": TransactionType.AUTHORIZE,
    "CAPTURE": TransactionType.PAY,
    "PAYMENT": TransactionType.PAY,
    "PAY": TransactionType.PAY,
    "REFUND": TransactionType.REFUND,
    "VOID": TransactionType.VOID,
}


@dataclass(frozen=True)
class _Target:
    id: str
    type: TransactionType
    amount: Decimal


def _outcome(order: OrderRecord, record: TransactionRecord, *, replayed: bool) -> TransactionOutcome:
    return TransactionOutcome(
        order_id=order.id,
        transaction_id=record.id,
        type=record.type,
        result=record.result,
        amount=Decimal(record.amount),
        currency=record.currency,
        gateway_code=record.gateway_code,
        order_status=order.status,
        replayed=replayed,
    )


def void_transaction_id_for(transaction_id: str) -> str:
    return f"{transaction_id}-VOID"


class TransactionLifecycleManager:
    """Capture, refund and void against an order already known to the gateway.

    Each call issues ``PUT /order/{order}/transaction/{new id}`` under the
    per-order lock. A transaction id that the order already holds is answered
    from the stored record without contacting the gateway.
    """

    def __init__(
        self,
        client: GatewayClient,
        store: OrderStore,
        locks: OrderLockProvider,
        *,
        lock_timeout: float | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._locks = locks
        self._lock_timeout = lock_timeout

    async def _load(self, order_id: str) -> OrderRecord:
        order = await self._store.get_order(order_id)
        if order is None:
            raise resource_not_found("Order", order_id)
        return order

    @staticmethod
    def _replay(
        order: OrderRecord,
        transaction_id: str,
        type: TransactionType,
        amount: Decimal | None,
        target_transaction_id: str | None = None,
    ) -> TransactionOutcome | None:
        existing = order.find_transaction(transaction_id)
        if existing is None:
            return None
        same_request = existing.type == type and (amount is None or Decimal(existing.amount) == amount)
        if target_transaction_id is not None:
            same_request = same_request and existing.target_transaction_id == target_transaction_id
        if not same_request:
            raise transaction_id_conflict(order.id, transaction_id)
        return _outcome(order, existing, replayed=True)

    def _resolve_amount(
        self,
        order: OrderRecord,
        amount: str | None,
        currency: str | None,
        available: Decimal,
        action: str,
    ) -> Decimal:
        if currency is not None and currency.upper() != order.currency.upper():
            raise InvalidAmount(
                f"{action.capitalize()} currency does not match the order currency",
                order_id=order.id,
                context={"currency": currency, "order_currency": order.currency},
            )
        if available <= ZERO:
            raise InvalidAmount(
                f"Nothing left to {action} on this order",
                order_id=order.id,
                context={"available_amount": format_amount(available)},
            )
        if amount is None:
            return available
        requested = parse_amount(amount, order_id=order.id)
        if requested > available:
            raise InvalidAmount(
                f"Requested {action} exceeds the available amount",
                order_id=order.id,
                context={"requested_amount": format_amount(requested), "available_amount": format_amount(available)},
            )
        return requested

    async def _submit(
        self,
        order: OrderRecord,
        transaction_id: str,
        body: dict[str, Any],
        timeout: float | None,
    ) -> tuple[TransactionResult, str | None, dict[str, Any]]:
        try:
            payload = await self._client.send(
                "PUT",
                f"/order/{order.id}/transaction/{transaction_id}",
                body,
                timeout=timeout,
            )
        except PaymentError as err:
            raise err.with_context(order_id=order.id, operation=body["apiOperation"])

        result = _GATEWAY_RESULTS.get(str(payload.get("result") or "").upper(), TransactionResult.PENDING)
        response = payload.get("response") if isinstance(payload.get("response"), dict) else {}
        return result, response.get("gatewayCode"), payload

    @staticmethod
    def _apply_confirmed(
        order: OrderRecord,
        record: TransactionRecord,
        payload: dict[str, Any],
        apply: Callable[[OrderRecord], None],
    ) -> OrderRecord:
        """Apply a gateway-confirmed transaction to a copy of the order.

        If a local rule rejects the update, the original order keeps the
        transaction record and is flagged for review instead.
        """
        candidate = order.model_copy(deep=True)
        try:
            apply(candidate)
            if isinstance(payload.get("order"), dict):
                order_state.reconcile_with_gateway(candidate, parse_gateway_order(payload, fallback_id=order.id))
        except AppException as err:
            logger.error(
                "Gateway accepted %s but the order cannot reflect it: %s",
                record.type.value,
                err.message,
                extra={"order_id": order.id, "transaction_id": record.id, "operation": record.type.value},
            )
            order.needs_review = True
            order.review_reason = f"{record.type.value} {record.id}: {err.message}"
            return order
        return candidate

    async def _finish(
        self,
        order: OrderRecord,
        record: TransactionRecord,
        payload: dict[str, Any],
        apply: Callable[[OrderRecord], None],
    ) -> TransactionOutcome:
        if record.result == TransactionResult.SUCCESS:
            order = self._apply_confirmed(order, record, payload, apply)
        saved = await self._store.save_order(order)
        logger.info(
            "%s transaction recorded with result %s",
            record.type.value,
            record.result.value,
            extra={"order_id": order.id, "transaction_id": record.id, "operation": record.type.value},
        )
        return _outcome(saved, record, replayed=False)

    async def capture(
        self,
        order_id: str,
        transaction_id: str,
        amount: str | None = None,
        currency: str | None = None,
        *,
        timeout: float | None = None,
    ) -> TransactionOutcome:
        async with self._locks.hold(order_id, timeout=self._lock_timeout):
            order = await self._load(order_id)
            requested = parse_amount(amount, order_id=order_id) if amount is not None else None
            replayed = self._replay(order, transaction_id, TransactionType.PAY, requested)
            if replayed is not None:
                return replayed

            if order.status not in {OrderStatus.AUTHORIZED, OrderStatus.CAPTURED, OrderStatus.REFUNDED}:
                raise order_state_conflict(
                    order_id,
                    f"Order in status {order.status.value} cannot be captured",
                    current_status=order.status.value,
                )
            capture_amount = self._resolve_amount(order, amount, currency, order.capturable, "capture")

            body = {
                "apiOperation": "CAPTURE",
                "transaction": {"amount": format_amount(capture_amount), "currency": order.currency},
            }
            result, gateway_code, payload = await self._submit(order, transaction_id, body, timeout)

            record = order_state.record_transaction(
                order,
                transaction_id=transaction_id,
                type=TransactionType.PAY,
                amount=capture_amount,
                currency=order.currency,
                result=result,
                gateway_code=gateway_code,
            )

            def apply(current: OrderRecord) -> None:
                order_state.set_totals(current, captured=current.captured + capture_amount)
                order_state.advance(current, OrderStatus.CAPTURED)

            return await self._finish(order, record, payload, apply)

    async def refund(
        self,
        order_id: str,
        transaction_id: str,
        amount: str | None = None,
        currency: str | None = None,
        *,
        timeout: float | None = None,
    ) -> TransactionOutcome:
        async with self._locks.hold(order_id, timeout=self._lock_timeout):
            order = await self._load(order_id)
            requested = parse_amount(amount, order_id=order_id) if amount is not None else None
            replayed = self._replay(order, transaction_id, TransactionType.REFUND, requested)
            if replayed is not None:
                return replayed

            if order.status not in {OrderStatus.CAPTURED, OrderStatus.REFUNDED}:
                raise order_state_conflict(
                    order_id,
                    f"Order in status {order.status.value} cannot be refunded",
                    current_status=order.status.value,
                )
            refund_amount = self._resolve_amount(order, amount, currency, order.refundable, "refund")

            body = {
                "apiOperation": "REFUND",
                "transaction": {"amount": format_amount(refund_amount), "currency": order.currency},
            }
            result, gateway_code, payload = await self._submit(order, transaction_id, body, timeout)

            record = order_state.record_transaction(
                order,
                transaction_id=transaction_id,
                type=TransactionType.REFUND,
                amount=refund_amount,
                currency=order.currency,
                result=result,
                gateway_code=gateway_code,
            )

            def apply(current: OrderRecord) -> None:
                order_state.set_totals(current, refunded=current.refunded + refund_amount)
                order_state.advance(current, OrderStatus.REFUNDED)

            return await self._finish(order, record, payload, apply)

    async def _find_target(
        self,
        order: OrderRecord,
        transaction_id: str,
        timeout: float | None,
    ) -> tuple[_Target, GatewayOrder | None]:
        local = order.find_transaction(transaction_id)
        if local is not None:
            if local.result != TransactionResult.SUCCESS:
                raise order_state_conflict(
                    order.id,
                    "Only successful transactions can be voided",
                    transaction_id=transaction_id,
                    result=local.result.value,
                )
            return _Target(id=local.id, type=local.type, amount=Decimal(local.amount)), None

        # Authorizations made on the hosted page are only known to the gateway.
        try:
            payload = await self._client.send("GET", f"/order/{order.id}", timeout=timeout)
        except PaymentError as err:
            raise err.with_context(order_id=order.id, operation="VOID")
        remote = parse_gateway_order(payload, fallback_id=order.id)
        for transaction in remote.transactions:
            if transaction.id != transaction_id:
                continue
            mapped = _GATEWAY_TRANSACTION_TYPES.get(transaction.type.upper())
            if mapped is None:
                break
            return _Target(id=transaction.id, type=mapped, amount=Decimal(transaction.amount or "0")), remote
        raise resource_not_found("Transaction", transaction_id)

    def _check_voidable(self, order: OrderRecord, target: _Target) -> None:
        if target.type == TransactionType.VOID:
            raise order_state_conflict(order.id, "A void cannot itself be voided", transaction_id=target.id)
        if target.type == TransactionType.AUTHORIZE and order.captured > ZERO:
            raise order_state_conflict(
                order.id,
                "Authorization has captures against it and cannot be voided",
                transaction_id=target.id,
            )
        if target.type == TransactionType.PAY and order.captured - target.amount < order.refunded:
            raise InvalidAmount(
                "Voiding this capture would leave more refunded than captured",
                order_id=order.id,
                context={"transaction_id": target.id},
            )

    @staticmethod
    def _adopt_remote_target(order: OrderRecord, target: _Target, remote: GatewayOrder) -> None:
        order_state.reconcile_with_gateway(order, remote)
        if order.status not in {OrderStatus.INITIATED, OrderStatus.FAILED}:
            return
        if target.type == TransactionType.AUTHORIZE:
            order_state.set_totals(order, authorized=max(order.authorized, target.amount))
            order_state.advance(order, OrderStatus.AUTHORIZED)
        elif target.type == TransactionType.PAY:
            captured = order.captured + target.amount
            order_state.set_totals(order, authorized=max(order.authorized, captured), captured=captured)
            order_state.advance(order, OrderStatus.CAPTURED)

    def _apply_void(self, order: OrderRecord, target: _Target) -> None:
        if target.type == TransactionType.AUTHORIZE:
            order_state.set_totals(order, authorized=ZERO)
            order_state.advance(order, OrderStatus.VOIDED)
        elif target.type == TransactionType.PAY:
            order_state.set_totals(order, captured=order.captured - target.amount)
            if order.captured == ZERO:
                order_state.advance(order, OrderStatus.VOIDED)
        elif target.type == TransactionType.REFUND:
            order_state.set_totals(order, refunded=order.refunded - target.amount)

    async def void(
        self,
        order_id: str,
        transaction_id: str,
        *,
        void_transaction_id: str | None = None,
        timeout: float | None = None,
    ) -> TransactionOutcome:
        new_id = void_transaction_id or void_transaction_id_for(transaction_id)
        async with self._locks.hold(order_id, timeout=self._lock_timeout):
            order = await self._load(order_id)
            replayed = self._replay(order, new_id, TransactionType.VOID, None, target_transaction_id=transaction_id)
            if replayed is not None:
                return replayed

            target, remote = await self._find_target(order, transaction_id, timeout)
            if remote is not None:
                self._adopt_remote_target(order, target, remote)
            self._check_voidable(order, target)
            # Dry run on a copy; the gateway is only called for a void the order can take.
            self._apply_void(order.model_copy(deep=True), target)

            body = {"apiOperation": "VOID", "transaction": {"targetTransactionId": transaction_id}}
            result, gateway_code, payload = await self._submit(order, new_id, body, timeout)

            record = order_state.record_transaction(
                order,
                transaction_id=new_id,
                type=TransactionType.VOID,
                amount=target.amount,
                currency=order.currency,
                result=result,
                gateway_code=gateway_code,
                target_transaction_id=transaction_id,
            )
            return await self._finish(order, record, payload, lambda current: self._apply_void(current, target))
