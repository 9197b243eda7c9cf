from __future__ import annotations

import hmac
import logging

from core.errors import AppException, PaymentError, resource_not_found
from core.locks.provider import OrderLockProvider
from core.payments import order_state
from core.payments.gateway_client import GatewayClient, parse_gateway_order
from core.payments.stores import OrderStore
from core.payments.types import SETTLED_ORDER_STATUSES, GatewayOrder, VerificationOutcome

logger = logging.getLogger(__name__)


def verify(result_indicator: str | None, success_indicator: str | None) -> bool:
    """Constant-time comparison of the redirect's result indicator with the session's success indicator."""
    if not result_indicator or not success_indicator:
        return False
    return hmac.compare_digest(result_indicator.encode("utf-8"), success_indicator.encode("utf-8"))


class ResultVerifier:
    """Decides whether a checkout actually succeeded.

    The indicator comparison alone only proves the browser came back from the
    hosted page. The gateway's own order status is the authority; the
    indicator is trusted on its own only when ``trust_indicator_only`` is set
    and the re-fetch could not be completed.
    """

    def __init__(
        self,
        client: GatewayClient,
        store: OrderStore,
        locks: OrderLockProvider,
        *,
        trust_indicator_only: bool = False,
        lock_timeout: float | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._locks = locks
        self._trust_indicator_only = trust_indicator_only
        self._lock_timeout = lock_timeout

    verify = staticmethod(verify)

    async def retrieve_order(self, order_id: str, *, timeout: float | None = None) -> GatewayOrder:
        try:
            payload = await self._client.send("GET", f"/order/{order_id}", timeout=timeout)
        except PaymentError as err:
            raise err.with_context(order_id=order_id, operation="RETRIEVE_ORDER")
        return parse_gateway_order(payload, fallback_id=order_id)

    async def _reconcile(self, order_id: str, remote: GatewayOrder) -> None:
        async with self._locks.hold(order_id, timeout=self._lock_timeout):
            order = await self._store.get_order(order_id)
            if order is None:
                return
            try:
                changed = order_state.reconcile_with_gateway(order, remote)
            except AppException as err:
                logger.error(
                    "Gateway state cannot be applied to local order: %s",
                    err.message,
                    extra={"order_id": order_id, "gateway_status": remote.status},
                )
                await self._store.flag_for_review(order_id, f"gateway status {remote.status}: {err.message}")
                return
            if changed:
                await self._store.save_order(order)
                logger.info(
                    "Order reconciled with gateway status %s",
                    remote.status,
                    extra={"order_id": order_id, "operation": "VERIFY_CHECKOUT"},
                )

    async def verify_checkout(
        self,
        order_id: str,
        result_indicator: str | None,
        success_indicator: str | None = None,
        session_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> VerificationOutcome:
        if success_indicator is None:
            order = await self._store.get_order(order_id)
            if order is None:
                raise resource_not_found("Order", order_id)
            if order.checkout_session is not None:
                success_indicator = order.checkout_session.success_indicator
                session_id = session_id or order.checkout_session.id

        indicator_match = verify(result_indicator, success_indicator)
        if not indicator_match:
            logger.warning(
                "Result indicator does not match the checkout session",
                extra={"order_id": order_id, "operation": "VERIFY_CHECKOUT"},
            )

        try:
            remote = await self.retrieve_order(order_id, timeout=timeout)
        except PaymentError as err:
            logger.warning(
                "Could not re-fetch order for verification: %s",
                err.message,
                extra={"order_id": order_id, "operation": "VERIFY_CHECKOUT"},
            )
            return VerificationOutcome(
                success=indicator_match and self._trust_indicator_only,
                indicator_match=indicator_match,
                remote_confirmed=False,
                remote_status=None,
                order_id=order_id,
                session_id=session_id,
                result_indicator=result_indicator,
            )

        await self._reconcile(order_id, remote)

        success = remote.status in {status.value for status in SETTLED_ORDER_STATUSES}
        if success and not indicator_match:
            logger.warning(
                "Gateway reports %s although the result indicator did not match",
                remote.status,
                extra={"order_id": order_id, "operation": "VERIFY_CHECKOUT"},
            )

        return VerificationOutcome(
            success=success,
            indicator_match=indicator_match,
            remote_confirmed=True,
            remote_status=remote.status,
            order_id=order_id,
            session_id=session_id,
            result_indicator=result_indicator,
            amount=remote.amount,
            currency=remote.currency,
            total_authorized_amount=remote.total_authorized_amount,
            total_captured_amount=remote.total_captured_amount,
            total_refunded_amount=remote.total_refunded_amount,
            transactions=remote.transactions,
        )
