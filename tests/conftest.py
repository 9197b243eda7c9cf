from __future__ import annotations

import json
import os
import time
from decimal import Decimal
from typing import Any, Callable

import httpx
import pytest

# main.py builds its application at import time from the environment.
os.environ.setdefault("MERCHANT_ID", "TESTMERCHANT")
os.environ.setdefault("MERCHANT_PASSWORD", "secret")

from core.payments.manager import PaymentManager  # noqa: E402
from core.payments.types import OrderStatus  # noqa: E402
from core.settings import Settings  # noqa: E402
from schemas.order_schema import OrderRecord  # noqa: E402

GATEWAY_ROOT = "/api/rest/version/100/merchant/TESTMERCHANT"


class FakeProvider:
    """Scripted HTTP peer behind ``httpx.MockTransport``.

    Responses are queued per ``(method, path)``; the last queued response is
    repeated once the queue is drained. A queued callable receives the request.
    """

    def __init__(self, path_prefix: str = "") -> None:
        self.path_prefix = path_prefix
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[Any]] = {}

    def on(self, method: str, path: str, *responses: Any) -> None:
        self._routes.setdefault((method, path), []).extend(responses)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith(self.path_prefix):
            path = path[len(self.path_prefix):]
        queue = self._routes.get((request.method, path))
        if not queue:
            return httpx.Response(404, json={"error": {"explanation": f"no stub for {request.method} {path}"}})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response):
            return response(request)
        status, body = response
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def calls(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        matched = []
        for request in self.requests:
            request_path = request.url.path[len(self.path_prefix):]
            if method is not None and request.method != method:
                continue
            if path is not None and request_path != path:
                continue
            matched.append(request)
        return matched

    @staticmethod
    def body(request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content)


def build_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "env": "test",
        "log_level": "INFO",
        "log_format": "text",
        "cors_origins": (),
        "debug_include_error_details": False,
        "gateway_base_url": "https://gateway.test",
        "gateway_api_version": "100",
        "merchant_id": "TESTMERCHANT",
        "merchant_password": "secret",
        "merchant_name": "Test Store",
        "merchant_url": "https://store.test",
        "default_currency": "USD",
        "checkout_return_url": "https://store.test/v1/checkout/callback",
        "redirect_merchant_url": "https://store.test/v1/checkout/callback",
        "retry_attempt_count": 3,
        "gateway_timeout_seconds": 5.0,
        "checkout_trust_indicator_only": False,
        "paystack_base_url": "https://paystack.test",
        "paystack_secret_key": "sk_test_secret",
        "paystack_callback_url": "https://store.test/payment/success",
        "platform_commission_percent": Decimal("10"),
        "order_store_backend": "memory",
        "mongo_url": None,
        "db_name": None,
        "lock_backend": "local",
        "redis_url": None,
        "lock_timeout_seconds": 2.0,
        "lock_lease_seconds": 30.0,
    }
    values.update(overrides)
    return Settings(**values)


def build_order(order_id: str = "ORDER-1", **overrides: Any) -> OrderRecord:
    now = int(time.time())
    values: dict[str, Any] = {
        "_id": order_id,
        "amount": "100.00",
        "currency": "USD",
        "description": "Test order",
        "status": OrderStatus.INITIATED,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return OrderRecord(**values)


@pytest.fixture
def gateway() -> FakeProvider:
    return FakeProvider(GATEWAY_ROOT)


@pytest.fixture
def settlement() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    return build_settings


@pytest.fixture
def make_order() -> Callable[..., OrderRecord]:
    return build_order


@pytest.fixture
def make_manager(gateway: FakeProvider, settlement: FakeProvider) -> Callable[..., PaymentManager]:
    def _make(**setting_overrides: Any) -> PaymentManager:
        return PaymentManager.from_settings(
            build_settings(**setting_overrides),
            gateway_transport=gateway.transport(),
            settlement_transport=settlement.transport(),
        )

    return _make
