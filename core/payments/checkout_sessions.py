from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from core.errors import NoSupportedOperation, PaymentError, RejectedError, TransientError
from core.payments.gateway_client import GatewayClient
from core.payments.types import CheckoutOperation, CheckoutOrder, CheckoutSession

logger = logging.getLogger(__name__)

OPERATION_FIELD = "interaction.operation"

OPERATION_FALLBACKS: dict[CheckoutOperation, tuple[CheckoutOperation, ...]] = {
    CheckoutOperation.AUTHORIZE: (CheckoutOperation.AUTHORIZE, CheckoutOperation.PURCHASE),
    CheckoutOperation.PURCHASE: (CheckoutOperation.PURCHASE, CheckoutOperation.VERIFY),
    CheckoutOperation.VERIFY: (CheckoutOperation.VERIFY, CheckoutOperation.PURCHASE),
}


@dataclass(frozen=True)
class MerchantInteraction:
    name: str
    url: str | None
    return_url: str
    redirect_merchant_url: str
    retry_attempt_count: int


class CheckoutSessionManager:
    def __init__(self, client: GatewayClient, interaction: MerchantInteraction, *, default_currency: str = "USD") -> None:
        self._client = client
        self._interaction = interaction
        self._default_currency = default_currency

    def build_session_request(
        self,
        order: CheckoutOrder,
        operation: CheckoutOperation,
        interaction_overrides: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        interaction: dict[str, Any] = {
            "operation": operation.value,
            "merchant": {"name": self._interaction.name},
            "returnUrl": self._interaction.return_url,
            "redirectMerchantUrl": self._interaction.redirect_merchant_url,
            "retryAttemptCount": self._interaction.retry_attempt_count,
        }
        if self._interaction.url:
            interaction["merchant"]["url"] = self._interaction.url
        if interaction_overrides:
            interaction.update({k: v for k, v in interaction_overrides.items() if k != "operation"})

        return {
            "apiOperation": "INITIATE_CHECKOUT",
            "checkoutMode": "WEBSITE",
            "interaction": interaction,
            "order": order.as_payload(),
        }

    async def create_session(
        self,
        order: CheckoutOrder,
        operation: CheckoutOperation,
        interaction_overrides: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> CheckoutSession:
        """Single session-creation attempt with one operation."""
        body = self.build_session_request(order, operation, interaction_overrides)
        try:
            payload = await self._client.send("POST", "/session", body, timeout=timeout)
        except PaymentError as err:
            raise err.with_context(order_id=order.id, operation=operation.value)

        session = payload.get("session") or {}
        session_id = session.get("id")
        success_indicator = payload.get("successIndicator")
        if not session_id or not success_indicator:
            logger.warning(
                "Session response missing id or success indicator: %s",
                payload,
                extra={"order_id": order.id, "operation": operation.value},
            )
            raise TransientError(
                "Payment gateway returned an incomplete session",
                order_id=order.id,
                operation=operation.value,
            )

        logger.info(
            "Checkout session created",
            extra={"order_id": order.id, "operation": operation.value},
        )
        return CheckoutSession(
            session_id=session_id,
            success_indicator=success_indicator,
            operation=operation,
            update_status=session.get("updateStatus"),
            version=session.get("version"),
            attempted_operations=(operation,),
        )

    async def initiate_checkout(
        self,
        order: CheckoutOrder,
        preferred_operation: CheckoutOperation = CheckoutOperation.PURCHASE,
        interaction_overrides: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> CheckoutSession:
        """Create a session, walking the fallback list for the preferred operation.

        Only a rejection on ``interaction.operation`` (the merchant account is
        not provisioned for that operation) moves on to the next candidate.
        """
        attempted: list[CheckoutOperation] = []
        for operation in OPERATION_FALLBACKS[preferred_operation]:
            attempted.append(operation)
            try:
                session = await self.create_session(order, operation, interaction_overrides, timeout=timeout)
            except RejectedError as err:
                if err.field != OPERATION_FIELD:
                    err.details["attempted_operations"] = [op.value for op in attempted]
                    raise
                logger.info(
                    "Operation %s not enabled for merchant, trying next candidate",
                    operation.value,
                    extra={"order_id": order.id, "operation": operation.value},
                )
                continue
            return CheckoutSession(
                session_id=session.session_id,
                success_indicator=session.success_indicator,
                operation=session.operation,
                update_status=session.update_status,
                version=session.version,
                attempted_operations=tuple(attempted),
            )

        raise NoSupportedOperation([op.value for op in attempted], order_id=order.id)

    async def probe_operations(self, *, timeout: float | None = None) -> dict[str, dict[str, Any]]:
        """Report which operations the merchant account accepts, one throw-away session each."""
        results: dict[str, dict[str, Any]] = {}
        for operation in CheckoutOperation:
            order = CheckoutOrder(
                id=f"TEST-{int(time.time() * 1000)}-{operation.value}",
                amount="1.00",
                currency=self._default_currency,
                description="Configuration test",
            )
            try:
                await self.create_session(order, operation, timeout=timeout)
            except RejectedError as err:
                results[operation.value] = {"enabled": False, "status": "DISABLED", "error": err.message}
                continue
            results[operation.value] = {"enabled": True, "status": "SUCCESS", "error": None}
        return results
