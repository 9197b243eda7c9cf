from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from core.payments.types import CheckoutOperation


class InitiateCheckoutIn(BaseModel):
    order_id: str | None = Field(default=None, min_length=1)
    amount: str | None = Field(default=None, description="Decimal string, e.g. \"100.00\"")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str | None = None
    operation: CheckoutOperation = CheckoutOperation.PURCHASE
    interaction: dict[str, Any] | None = None
    vendor_id: str | None = None
    payer_email: str | None = None


class CheckoutSessionOut(BaseModel):
    order_id: str
    session_id: str
    success_indicator: str
    operation: CheckoutOperation
    attempted_operations: list[CheckoutOperation]
    update_status: str | None = None
    version: str | None = None


class PaymentResultIn(BaseModel):
    order_id: str | None = None
    result_indicator: str | None = None
    session_id: str | None = None


class CaptureIn(BaseModel):
    order_id: str = Field(min_length=1)
    transaction_id: str = Field(min_length=1)
    amount: str | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class RefundIn(CaptureIn):
    pass


class VoidIn(BaseModel):
    order_id: str = Field(min_length=1)
    transaction_id: str = Field(min_length=1, description="Transaction to void")
    void_transaction_id: str | None = Field(default=None, min_length=1)


class SplitPaymentIn(BaseModel):
    vendor_id: str = Field(min_length=1)
    payer_email: str | None = None
