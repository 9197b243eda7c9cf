from __future__ import annotations

from dataclasses import asdict
from typing import Any

from core.payments.manager import PaymentManager
from schemas.checkout_schema import SplitPaymentIn
from schemas.vendor_schema import SubaccountOut


async def initialize_split_payment(manager: PaymentManager, *, order_id: str, payload: SplitPaymentIn) -> dict[str, Any]:
    result = await manager.require_split().initialize_payment(
        order_id,
        payload.vendor_id,
        payload.payer_email,
    )
    return asdict(result)


async def provision_vendor_subaccount(manager: PaymentManager, *, vendor_id: str) -> SubaccountOut:
    code, created = await manager.require_split().provision_subaccount(vendor_id)
    return SubaccountOut(vendor_id=vendor_id, subaccount_code=code, created=created)
