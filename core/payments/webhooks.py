from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Mapping

from core.errors import AppException, ErrorCode, SignatureMismatch, resource_not_found
from core.locks.provider import OrderLockProvider
from core.payments import order_state
from core.payments.amounts import from_minor_units
from core.payments.stores import OrderStore, WebhookReceiptStore
from core.payments.types import OrderStatus, TransactionResult, TransactionType, WebhookAck, WebhookEvent
from schemas.order_schema import OrderRecord

logger = logging.getLogger(__name__)


def _invalid_payload(provider: str, message: str) -> AppException:
    return AppException(
        status_code=400,
        code=ErrorCode.PAYMENT_WEBHOOK_INVALID,
        message=message,
        details={"provider": provider},
    )


class WebhookVerifier:
    """HMAC check over the raw request body.

    The body is parsed only after the signature matched, so nothing from an
    unauthenticated payload reaches the order store.
    """

    def __init__(self, provider: str, secret: str, header: str, *, digest: str = "sha512") -> None:
        self.provider = provider
        self._secret = secret.encode("utf-8")
        self._header = header.lower()
        self._digest = getattr(hashlib, digest)

    def sign(self, body: bytes) -> str:
        return hmac.new(self._secret, body, self._digest).hexdigest()

    def verify(self, body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        lowered = {key.lower(): value for key, value in headers.items()}
        signature = (lowered.get(self._header) or "").strip()
        if not signature or not hmac.compare_digest(self.sign(body), signature.lower()):
            logger.warning("Webhook signature mismatch", extra={"provider": self.provider})
            raise SignatureMismatch(self.provider)

        try:
            payload = json.loads(body)
        except ValueError as err:
            raise _invalid_payload(self.provider, "Webhook body is not valid JSON") from err
        if not isinstance(payload, dict):
            raise _invalid_payload(self.provider, "Webhook body must be a JSON object")
        return payload


def parse_event(provider: str, payload: dict[str, Any]) -> WebhookEvent:
    event_type = payload.get("event")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    identity = data.get("id") or data.get("reference")
    if not event_type or identity is None:
        raise _invalid_payload(provider, "Webhook is missing its event type or identifier")
    return WebhookEvent(
        provider=provider,
        event_id=f"{event_type}:{identity}",
        event_type=str(event_type),
        payload=payload,
    )


class WebhookProcessor:
    def __init__(
        self,
        verifiers: Mapping[str, WebhookVerifier],
        orders: OrderStore,
        receipts: WebhookReceiptStore,
        locks: OrderLockProvider,
        *,
        lock_timeout: float | None = None,
    ) -> None:
        self._verifiers = dict(verifiers)
        self._orders = orders
        self._receipts = receipts
        self._locks = locks
        self._lock_timeout = lock_timeout
        self._handlers = {
            "charge.success": self._on_charge_success,
            "charge.failed": self._on_charge_failed,
            "refund.processed": self._on_refund_processed,
        }

    @property
    def providers(self) -> list[str]:
        return sorted(self._verifiers)

    async def process(self, provider: str, body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        verifier = self._verifiers.get(provider.lower())
        if verifier is None:
            raise resource_not_found("Webhook provider", provider)

        payload = verifier.verify(body, headers)
        event = parse_event(verifier.provider, payload)
        log_extra = {"provider": event.provider, "event_type": event.event_type}

        if await self._receipts.is_processed(event.provider, event.event_id):
            logger.info("Duplicate webhook acknowledged", extra=log_extra)
            return WebhookAck(
                provider=event.provider,
                event_id=event.event_id,
                event_type=event.event_type,
                handled=False,
                duplicate=True,
            )

        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.info("Ignoring unhandled webhook event", extra=log_extra)
            ack = WebhookAck(
                provider=event.provider,
                event_id=event.event_id,
                event_type=event.event_type,
                handled=False,
            )
        else:
            ack = await handler(event)

        await self._receipts.mark_processed(event.provider, event.event_id)
        return ack

    async def _find_order(self, data: dict[str, Any]) -> OrderRecord | None:
        reference = data.get("reference") or data.get("transaction_reference")
        if reference:
            order = await self._orders.find_by_settlement_reference(str(reference))
            if order is not None:
                return order
            order = await self._orders.get_order(str(reference))
            if order is not None:
                return order
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        order_id = metadata.get("order_id")
        if order_id:
            return await self._orders.get_order(str(order_id))
        return None

    async def _apply(self, event: WebhookEvent, mutate) -> WebhookAck:
        data = event.payload.get("data") or {}
        located = await self._find_order(data)
        log_extra = {"provider": event.provider, "event_type": event.event_type}
        if located is None:
            logger.warning("Webhook does not match any order", extra=log_extra)
            return WebhookAck(
                provider=event.provider,
                event_id=event.event_id,
                event_type=event.event_type,
                handled=False,
            )

        async with self._locks.hold(located.id, timeout=self._lock_timeout):
            order = await self._orders.get_order(located.id)
            if order is None:
                return WebhookAck(
                    provider=event.provider,
                    event_id=event.event_id,
                    event_type=event.event_type,
                    handled=False,
                )
            try:
                changed = mutate(order, data)
            except AppException as err:
                logger.error(
                    "Webhook cannot be applied to order: %s",
                    err.message,
                    extra={**log_extra, "order_id": order.id},
                )
                await self._orders.flag_for_review(order.id, f"{event.event_type}: {err.message}")
                return WebhookAck(
                    provider=event.provider,
                    event_id=event.event_id,
                    event_type=event.event_type,
                    handled=False,
                    order_id=order.id,
                    order_status=order.status.value,
                )
            if changed:
                order = await self._orders.save_order(order)
                logger.info("Webhook applied to order", extra={**log_extra, "order_id": order.id})

        return WebhookAck(
            provider=event.provider,
            event_id=event.event_id,
            event_type=event.event_type,
            handled=True,
            order_id=order.id,
            order_status=order.status.value,
        )

    async def _on_charge_success(self, event: WebhookEvent) -> WebhookAck:
        def mutate(order: OrderRecord, data: dict[str, Any]) -> bool:
            transaction_id = f"PAY-{data.get('id') or data.get('reference')}"
            if order.find_transaction(transaction_id) is not None:
                return False
            amount = from_minor_units(data.get("amount") or 0)
            order_state.record_transaction(
                order,
                transaction_id=transaction_id,
                type=TransactionType.PAY,
                amount=amount,
                currency=str(data.get("currency") or order.currency),
                result=TransactionResult.SUCCESS,
                gateway_code=data.get("gateway_response"),
                source="webhook",
            )
            captured = order.captured + amount
            order_state.set_totals(order, authorized=max(order.authorized, captured), captured=captured)
            order_state.advance(order, OrderStatus.CAPTURED)
            return True

        return await self._apply(event, mutate)

    async def _on_charge_failed(self, event: WebhookEvent) -> WebhookAck:
        def mutate(order: OrderRecord, data: dict[str, Any]) -> bool:
            transaction_id = f"PAY-{data.get('id') or data.get('reference')}"
            if order.find_transaction(transaction_id) is not None:
                return False
            order_state.record_transaction(
                order,
                transaction_id=transaction_id,
                type=TransactionType.PAY,
                amount=from_minor_units(data.get("amount") or 0),
                currency=str(data.get("currency") or order.currency),
                result=TransactionResult.FAILURE,
                gateway_code=data.get("gateway_response"),
                source="webhook",
            )
            # A failed attempt after a successful one does not undo the payment.
            if order.status == OrderStatus.INITIATED:
                order_state.advance(order, OrderStatus.FAILED)
            return True

        return await self._apply(event, mutate)

    async def _on_refund_processed(self, event: WebhookEvent) -> WebhookAck:
        def mutate(order: OrderRecord, data: dict[str, Any]) -> bool:
            transaction_id = f"REFUND-{data.get('id') or data.get('reference')}"
            if order.find_transaction(transaction_id) is not None:
                return False
            amount = from_minor_units(data.get("amount") or 0)
            order_state.record_transaction(
                order,
                transaction_id=transaction_id,
                type=TransactionType.REFUND,
                amount=amount,
                currency=str(data.get("currency") or order.currency),
                result=TransactionResult.SUCCESS,
                source="webhook",
            )
            order_state.set_totals(order, refunded=order.refunded + amount)
            order_state.advance(order, OrderStatus.REFUNDED)
            return True

        return await self._apply(event, mutate)
