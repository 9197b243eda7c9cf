from __future__ import annotations

from dataclasses import asdict
from typing import Any, Mapping

from fastapi import Request

from core.errors import AppException, ErrorCode
from core.payments.manager import PaymentManager


def get_payment_manager(request: Request) -> PaymentManager:
    manager = getattr(request.app.state, "payments", None)
    if manager is None:
        raise AppException(
            status_code=503,
            code=ErrorCode.INTERNAL_ERROR,
            message="Payment gateway is not configured",
        )
    return manager


async def process_webhook(
    manager: PaymentManager,
    *,
    provider_name: str,
    body: bytes,
    headers: Mapping[str, str],
) -> dict[str, Any]:
    ack = await manager.webhooks.process(provider_name, body, headers)
    return asdict(ack)
