from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from redis.asyncio import Redis

from core.database import MongoHandle, connect_mongo
from core.errors import AppException, ErrorCode
from core.locks import LocalOrderLockProvider, OrderLockProvider, RedisOrderLockProvider
from core.payments.checkout_sessions import CheckoutSessionManager, MerchantInteraction
from core.payments.gateway_client import GatewayClient
from core.payments.split_settlement import PROVIDER_NAME, SplitSettlementClient, SplitSettlementManager
from core.payments.stores import (
    MemoryOrderStore,
    MemoryVendorStore,
    MemoryWebhookReceiptStore,
    OrderStore,
    VendorStore,
    WebhookReceiptStore,
)
from core.payments.transactions import TransactionLifecycleManager
from core.payments.verification import ResultVerifier
from core.payments.webhooks import WebhookProcessor, WebhookVerifier
from core.settings import Settings
from repositories.order_repo import MongoOrderStore
from repositories.vendor_repo import MongoVendorStore
from repositories.webhook_receipt_repo import MongoWebhookReceiptStore

logger = logging.getLogger(__name__)


class PaymentManager:
    """Owns the payment component graph for one application instance.

    Built once at startup and kept on ``app.state``; everything that talks to
    a gateway or a store gets it from here.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        client: GatewayClient,
        orders: OrderStore,
        vendors: VendorStore,
        receipts: WebhookReceiptStore,
        locks: OrderLockProvider,
        settlement_client: SplitSettlementClient | None = None,
        mongo: MongoHandle | None = None,
        redis_client: Any | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.orders = orders
        self.vendors = vendors
        self.receipts = receipts
        self.locks = locks
        self._mongo = mongo
        self._redis = redis_client
        self._settlement_client = settlement_client

        lock_timeout = settings.lock_timeout_seconds
        self.sessions = CheckoutSessionManager(
            client,
            MerchantInteraction(
                name=settings.merchant_name,
                url=settings.merchant_url,
                return_url=settings.checkout_return_url,
                redirect_merchant_url=settings.redirect_merchant_url,
                retry_attempt_count=settings.retry_attempt_count,
            ),
            default_currency=settings.default_currency,
        )
        self.transactions = TransactionLifecycleManager(client, orders, locks, lock_timeout=lock_timeout)
        self.verifier = ResultVerifier(
            client,
            orders,
            locks,
            trust_indicator_only=settings.checkout_trust_indicator_only,
            lock_timeout=lock_timeout,
        )

        self.split: SplitSettlementManager | None = None
        verifiers: dict[str, WebhookVerifier] = {}
        if settlement_client is not None and settings.paystack_secret_key:
            self.split = SplitSettlementManager(
                settlement_client,
                orders,
                vendors,
                locks,
                commission_percent=settings.platform_commission_percent,
                callback_url=settings.paystack_callback_url,
                lock_timeout=lock_timeout,
            )
            verifiers[PROVIDER_NAME] = WebhookVerifier(
                PROVIDER_NAME,
                settings.paystack_secret_key,
                "x-paystack-signature",
            )
        self.webhooks = WebhookProcessor(verifiers, orders, receipts, locks, lock_timeout=lock_timeout)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        gateway_transport: httpx.AsyncBaseTransport | None = None,
        settlement_transport: httpx.AsyncBaseTransport | None = None,
    ) -> "PaymentManager":
        client = GatewayClient(
            base_url=settings.gateway_base_url,
            api_version=settings.gateway_api_version,
            merchant_id=settings.merchant_id,
            password=settings.merchant_password,
            default_timeout=settings.gateway_timeout_seconds,
            transport=gateway_transport,
        )

        mongo: MongoHandle | None = None
        if settings.order_store_backend == "mongodb":
            mongo = connect_mongo(settings.mongo_url or "", settings.db_name or "")
            orders: OrderStore = MongoOrderStore(mongo.db)
            vendors: VendorStore = MongoVendorStore(mongo.db)
            receipts: WebhookReceiptStore = MongoWebhookReceiptStore(mongo.db)
        else:
            orders = MemoryOrderStore()
            vendors = MemoryVendorStore()
            receipts = MemoryWebhookReceiptStore()

        redis_client = None
        if settings.lock_backend == "redis":
            redis_client = Redis.from_url(settings.redis_url or "", socket_connect_timeout=2)
            locks: OrderLockProvider = RedisOrderLockProvider(
                redis_client,
                lease_seconds=settings.lock_lease_seconds,
                default_timeout=settings.lock_timeout_seconds,
            )
        else:
            locks = LocalOrderLockProvider(default_timeout=settings.lock_timeout_seconds)

        settlement_client = None
        if settings.split_settlement_enabled:
            settlement_client = SplitSettlementClient(
                base_url=settings.paystack_base_url,
                secret_key=settings.paystack_secret_key or "",
                default_timeout=settings.gateway_timeout_seconds,
                transport=settlement_transport,
            )

        logger.info(
            "Payment components configured",
            extra={"operation": f"store={settings.order_store_backend} lock={settings.lock_backend}"},
        )
        return cls(
            settings=settings,
            client=client,
            orders=orders,
            vendors=vendors,
            receipts=receipts,
            locks=locks,
            settlement_client=settlement_client,
            mongo=mongo,
            redis_client=redis_client,
        )

    def require_split(self) -> SplitSettlementManager:
        if self.split is None:
            raise AppException(
                status_code=503,
                code=ErrorCode.INTERNAL_ERROR,
                message="Split settlement is not configured",
                details={"missing": "PAYSTACK_SECRET_KEY"},
            )
        return self.split

    async def health(self) -> dict[str, dict[str, Any]]:
        services: dict[str, dict[str, Any]] = {
            "order_store": {"status": "healthy", "backend": self.settings.order_store_backend},
            "locks": {"status": "healthy", "backend": self.locks.backend_name},
            "split_settlement": {"status": "enabled" if self.split is not None else "disabled"},
        }

        if self._mongo is not None:
            services["order_store"].update(await _probe(self._mongo.ping))
        if self._redis is not None:
            services["locks"].update(await _probe(self._redis.ping))
        return services

    async def aclose(self) -> None:
        await self.client.aclose()
        if self._settlement_client is not None:
            await self._settlement_client.aclose()
        if self._redis is not None:
            await self._redis.aclose()
        if self._mongo is not None:
            await self._mongo.close()


async def _probe(ping) -> dict[str, Any]:
    start = time.perf_counter()
    try:
        await ping()
    except Exception as exc:
        return {
            "status": "unhealthy",
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            "message": str(exc),
        }
    return {"status": "healthy", "latency_ms": round((time.perf_counter() - start) * 1000, 2)}
