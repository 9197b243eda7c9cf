from __future__ import annotations

import base64
import logging
import time
from decimal import Decimal
from typing import Any

import httpx

from core.errors import OperationTimeout, RejectedError, TransientError
from core.payments.types import GatewayOrder, GatewayTransaction

logger = logging.getLogger(__name__)


def basic_auth_header(merchant_id: str, password: str) -> str:
    credentials = f"merchant.{merchant_id}:{password}".encode("utf-8")
    return f"Basic {base64.b64encode(credentials).decode('ascii')}"


def parse_rejection(payload: Any) -> tuple[str | None, str | None, str | None]:
    """Pull ``error.field``, ``error.explanation`` and ``error.cause`` out of a gateway error body."""
    if not isinstance(payload, dict):
        return None, None, None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None, None, None
    return error.get("field"), error.get("explanation"), error.get("cause")


class GatewayClient:
    """Signed transport for the hosted-checkout REST API.

    Every call is a single attempt. Whether a failed call may be repeated is
    the caller's decision, because only requests that reuse an explicit
    transaction id are idempotent on the gateway side.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_version: str,
        merchant_id: str,
        password: str,
        default_timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._merchant_id = merchant_id
        self._api_root = f"{base_url.rstrip('/')}/api/rest/version/{api_version}/merchant/{merchant_id}"
        self._auth_header = basic_auth_header(merchant_id, password)
        self._default_timeout = default_timeout
        self._client = httpx.AsyncClient(transport=transport)

    @property
    def merchant_id(self) -> str:
        return self._merchant_id

    def endpoint(self, path: str) -> str:
        return f"{self._api_root}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": self._auth_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None,
        timeout: float | None,
    ) -> httpx.Response:
        url = self.endpoint(path)
        try:
            return await self._client.request(
                method,
                url,
                json=body,
                headers=self._headers(),
                timeout=timeout if timeout is not None else self._default_timeout,
            )
        except httpx.TimeoutException as err:
            logger.warning("Gateway request timed out", extra={"operation": f"{method} {path}"})
            raise OperationTimeout("Payment gateway did not respond in time", operation=f"{method} {path}") from err
        except httpx.HTTPError as err:
            logger.warning("Gateway request failed: %s", err, extra={"operation": f"{method} {path}"})
            raise TransientError("Payment gateway request failed", operation=f"{method} {path}") from err

    async def send(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        response = await self._request(method, path, body, timeout)
        operation = f"{method} {path}"

        try:
            payload = response.json(parse_float=Decimal)
        except ValueError:
            payload = None

        if response.status_code >= 500:
            logger.warning(
                "Gateway server error: %s",
                payload if payload is not None else response.text[:500],
                extra={"operation": operation, "gateway_status": response.status_code},
            )
            raise TransientError(
                "Payment gateway is temporarily unavailable",
                operation=operation,
                context={"gateway_status": response.status_code},
            )

        if response.status_code >= 400:
            field, explanation, cause = parse_rejection(payload)
            logger.warning(
                "Gateway rejected request: %s",
                payload,
                extra={"operation": operation, "gateway_status": response.status_code},
            )
            raise RejectedError(
                explanation or "Payment gateway rejected the request",
                field=field,
                explanation=explanation,
                cause=cause,
                http_status=response.status_code,
                operation=operation,
            )

        if not isinstance(payload, dict):
            logger.warning("Gateway returned a non-JSON body", extra={"operation": operation})
            raise TransientError("Payment gateway returned an unreadable response", operation=operation)

        return payload

    async def check_connection(self, *, timeout: float | None = None) -> dict[str, Any]:
        """Probe credentials with a lookup of an order that cannot exist.

        Any status below 500 proves the gateway is reachable; only 401 and 403
        mean the credentials were refused.
        """
        probe_path = f"/order/TEST-{int(time.time() * 1000)}"
        response = await self._request("GET", probe_path, None, timeout)
        if response.status_code >= 500:
            raise TransientError(
                "Payment gateway is temporarily unavailable",
                operation=f"GET {probe_path}",
                context={"gateway_status": response.status_code},
            )
        return {
            "status": response.status_code,
            "connected": response.status_code not in {401, 403},
            "merchant_id": self._merchant_id,
        }

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_gateway_transaction(item: Any) -> GatewayTransaction | None:
    if not isinstance(item, dict):
        return None
    nested = item.get("transaction") if isinstance(item.get("transaction"), dict) else item
    transaction_id = nested.get("id")
    if not transaction_id:
        return None
    response = item.get("response") if isinstance(item.get("response"), dict) else {}
    return GatewayTransaction(
        id=str(transaction_id),
        type=str(nested.get("type") or ""),
        amount=_as_text(nested.get("amount")),
        currency=nested.get("currency"),
        result=item.get("result"),
        gateway_code=response.get("gatewayCode"),
    )


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def parse_gateway_order(payload: dict[str, Any], *, fallback_id: str = "") -> GatewayOrder:
    """Read an order resource, whether it is nested under ``order`` or at the top level."""
    order = payload.get("order") if isinstance(payload.get("order"), dict) else payload
    raw_transactions = payload.get("transaction")
    if isinstance(raw_transactions, dict):
        raw_transactions = [raw_transactions]
    transactions = tuple(
        parsed
        for parsed in (_parse_gateway_transaction(item) for item in raw_transactions or [])
        if parsed is not None
    )
    return GatewayOrder(
        id=str(order.get("id") or fallback_id),
        status=str(order.get("status") or ""),
        amount=_as_text(order.get("amount")),
        currency=order.get("currency"),
        total_authorized_amount=_as_text(order.get("totalAuthorizedAmount")),
        total_captured_amount=_as_text(order.get("totalCapturedAmount")),
        total_refunded_amount=_as_text(order.get("totalRefundedAmount")),
        transactions=transactions,
        raw=payload,
    )
