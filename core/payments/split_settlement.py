from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any

import httpx

from core.errors import (
    AppException,
    ErrorCode,
    OperationTimeout,
    PaymentError,
    RejectedError,
    SubaccountNotProvisioned,
    TransientError,
    resource_not_found,
)
from core.locks.provider import OrderLockProvider
from core.payments.amounts import parse_amount, to_minor_units
from core.payments.stores import OrderStore, VendorStore
from core.payments.types import SplitPaymentInit
from schemas.order_schema import OrderRecord, SettlementRecord

logger = logging.getLogger(__name__)

PROVIDER_NAME = "paystack"


def _percentage(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _missing_field(message: str, **details: Any) -> AppException:
    return AppException(
        status_code=400,
        code=ErrorCode.VALIDATION_FAILED,
        message=message,
        details=details or None,
    )


class SplitSettlementClient:
    """Bearer-authenticated client for the split-settlement provider.

    Error translation mirrors the hosted-checkout client: 5xx and network
    failures are transient, 4xx are rejections, timeouts are their own kind.
    """

    def __init__(
        self,
        *,
        base_url: str,
        secret_key: str,
        default_timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._secret_key = secret_key
        self._default_timeout = default_timeout
        self._client = httpx.AsyncClient(transport=transport)

    async def post(self, path: str, body: dict[str, Any], *, timeout: float | None = None) -> dict[str, Any]:
        operation = f"POST {path}"
        try:
            response = await self._client.post(
                f"{self._base_url}/{path.lstrip('/')}",
                json=body,
                headers={
                    "Authorization": f"Bearer {self._secret_key}",
                    "Content-Type": "application/json",
                },
                timeout=timeout if timeout is not None else self._default_timeout,
            )
        except httpx.TimeoutException as err:
            logger.warning("Settlement provider timed out", extra={"provider": PROVIDER_NAME, "operation": operation})
            raise OperationTimeout("Settlement provider did not respond in time", operation=operation) from err
        except httpx.HTTPError as err:
            logger.warning(
                "Settlement provider request failed: %s",
                err,
                extra={"provider": PROVIDER_NAME, "operation": operation},
            )
            raise TransientError("Settlement provider request failed", operation=operation) from err

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 500:
            logger.warning(
                "Settlement provider server error: %s",
                payload if payload is not None else response.text[:500],
                extra={"provider": PROVIDER_NAME, "operation": operation, "gateway_status": response.status_code},
            )
            raise TransientError(
                "Settlement provider is temporarily unavailable",
                operation=operation,
                context={"gateway_status": response.status_code},
            )

        if response.status_code >= 400 or (isinstance(payload, dict) and payload.get("status") is False):
            explanation = payload.get("message") if isinstance(payload, dict) else None
            logger.warning(
                "Settlement provider rejected request: %s",
                payload,
                extra={"provider": PROVIDER_NAME, "operation": operation, "gateway_status": response.status_code},
            )
            raise RejectedError(
                explanation or "Settlement provider rejected the request",
                explanation=explanation,
                http_status=response.status_code,
                operation=operation,
            )

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            logger.warning("Settlement provider returned no data block", extra={"provider": PROVIDER_NAME, "operation": operation})
            raise TransientError("Settlement provider returned an unreadable response", operation=operation)
        return data

    async def aclose(self) -> None:
        await self._client.aclose()


class SplitSettlementManager:
    def __init__(
        self,
        client: SplitSettlementClient,
        orders: OrderStore,
        vendors: VendorStore,
        locks: OrderLockProvider,
        *,
        commission_percent: Decimal,
        callback_url: str | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self._client = client
        self._orders = orders
        self._vendors = vendors
        self._locks = locks
        self._commission_percent = commission_percent
        self._callback_url = callback_url
        self._lock_timeout = lock_timeout

    @property
    def vendor_share_percent(self) -> Decimal:
        return Decimal("100") - self._commission_percent

    def _callback_for(self, order_id: str) -> str | None:
        if not self._callback_url:
            return None
        return str(httpx.URL(self._callback_url).copy_add_param("order", order_id))

    def build_initialize_request(
        self,
        order: OrderRecord,
        subaccount_code: str,
        email: str,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "email": email,
            "amount": to_minor_units(parse_amount(order.amount, order_id=order.id)),
            "currency": order.currency,
            "reference": order.id,
            "split": {
                "type": "percentage",
                "bearer_type": "account",
                "subaccounts": [
                    {"subaccount": subaccount_code, "share": _percentage(self.vendor_share_percent)},
                ],
            },
            "metadata": {"order_id": order.id},
        }
        callback_url = self._callback_for(order.id)
        if callback_url:
            body["callback_url"] = callback_url
        return body

    async def initialize_payment(
        self,
        order_id: str,
        vendor_id: str,
        payer_email: str | None = None,
        *,
        timeout: float | None = None,
    ) -> SplitPaymentInit:
        async with self._locks.hold(order_id, timeout=self._lock_timeout):
            order = await self._orders.get_order(order_id)
            if order is None:
                raise resource_not_found("Order", order_id)

            if order.settlement is not None:
                return SplitPaymentInit(
                    order_id=order.id,
                    reference=order.settlement.reference,
                    authorization_url=order.settlement.authorization_url,
                    access_code=order.settlement.access_code,
                    reused=True,
                    needs_review=order.needs_review,
                )

            vendor = await self._vendors.get_vendor(vendor_id)
            if vendor is None:
                raise resource_not_found("Vendor", vendor_id)
            if not vendor.subaccount_code:
                raise SubaccountNotProvisioned(vendor_id, order_id=order_id)

            email = payer_email or order.payer_email
            if not email:
                raise _missing_field("Payer email is required to start a split payment", order_id=order_id)

            body = self.build_initialize_request(order, vendor.subaccount_code, email)
            try:
                data = await self._client.post("/transaction/initialize", body, timeout=timeout)
            except PaymentError as err:
                raise err.with_context(order_id=order_id, operation="SPLIT_INITIALIZE")

            authorization_url = data.get("authorization_url")
            if not authorization_url:
                raise TransientError(
                    "Settlement provider returned no authorization URL",
                    order_id=order_id,
                    operation="SPLIT_INITIALIZE",
                )
            reference = str(data.get("reference") or order.id)
            access_code = data.get("access_code")

            order.settlement = SettlementRecord(
                provider=PROVIDER_NAME,
                reference=reference,
                authorization_url=authorization_url,
                access_code=access_code,
                vendor_id=vendor_id,
                initialized_at=int(time.time()),
            )
            order.vendor_id = vendor_id
            order.payer_email = email
            needs_review = False
            try:
                await self._orders.save_order(order)
            except Exception:
                logger.exception(
                    "Split payment initialized but the reference could not be stored",
                    extra={"order_id": order_id, "vendor_id": vendor_id, "provider": PROVIDER_NAME},
                )
                needs_review = True
                try:
                    await self._orders.flag_for_review(order_id, f"unsaved settlement reference {reference}")
                except Exception:
                    logger.exception("Could not flag order for review", extra={"order_id": order_id})

            logger.info(
                "Split payment initialized",
                extra={"order_id": order_id, "vendor_id": vendor_id, "provider": PROVIDER_NAME},
            )
            return SplitPaymentInit(
                order_id=order_id,
                reference=reference,
                authorization_url=authorization_url,
                access_code=access_code,
                needs_review=needs_review,
            )

    async def provision_subaccount(self, vendor_id: str, *, timeout: float | None = None) -> tuple[str, bool]:
        """Create the vendor's settlement subaccount once. Returns ``(code, created)``."""
        vendor = await self._vendors.get_vendor(vendor_id)
        if vendor is None:
            raise resource_not_found("Vendor", vendor_id)
        if vendor.subaccount_code:
            return vendor.subaccount_code, False
        if not vendor.has_bank_details:
            raise _missing_field("Vendor bank details are missing", vendor_id=vendor_id)

        body: dict[str, Any] = {
            "business_name": vendor.business_name,
            "settlement_bank": vendor.settlement_bank,
            "account_number": vendor.account_number,
            "percentage_charge": _percentage(self._commission_percent),
        }
        if vendor.email:
            body["primary_contact_email"] = vendor.email
        if vendor.contact_name:
            body["primary_contact_name"] = vendor.contact_name

        try:
            data = await self._client.post("/subaccount", body, timeout=timeout)
        except PaymentError as err:
            err.details["vendor_id"] = vendor_id
            raise err.with_context(operation="CREATE_SUBACCOUNT")

        code = data.get("subaccount_code")
        if not code:
            raise TransientError("Settlement provider returned no subaccount code", operation="CREATE_SUBACCOUNT")

        stored = await self._vendors.set_subaccount_code(vendor_id, code)
        if stored is None:
            raise resource_not_found("Vendor", vendor_id)
        logger.info("Vendor subaccount provisioned", extra={"vendor_id": vendor_id, "provider": PROVIDER_NAME})
        # A concurrent request may have stored its code first; that code wins.
        return stored.subaccount_code or code, stored.subaccount_code == code
