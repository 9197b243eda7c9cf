from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from core.payments.amounts import amount_or_zero
from core.payments.types import CheckoutOperation, OrderStatus, TransactionResult, TransactionType


class TransactionRecord(BaseModel):
    id: str
    type: TransactionType
    amount: str
    currency: str
    result: TransactionResult
    gateway_code: str | None = None
    target_transaction_id: str | None = None
    source: str = "api"
    created_at: int


class CheckoutSessionRecord(BaseModel):
    id: str
    success_indicator: str
    operation: CheckoutOperation
    update_status: str | None = None
    version: str | None = None


class SettlementRecord(BaseModel):
    provider: str
    reference: str
    authorization_url: str
    access_code: str | None = None
    vendor_id: str
    initialized_at: int


class OrderRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    amount: str
    currency: str = Field(min_length=3, max_length=3)
    description: str | None = None
    status: OrderStatus = OrderStatus.INITIATED
    total_authorized_amount: str = "0"
    total_captured_amount: str = "0"
    total_refunded_amount: str = "0"
    transactions: list[TransactionRecord] = Field(default_factory=list)
    checkout_session: CheckoutSessionRecord | None = None
    settlement: SettlementRecord | None = None
    vendor_id: str | None = None
    payer_email: str | None = None
    needs_review: bool = False
    review_reason: str | None = None
    version: int = 0
    created_at: int
    updated_at: int

    @property
    def authorized(self) -> Decimal:
        return amount_or_zero(self.total_authorized_amount)

    @property
    def captured(self) -> Decimal:
        return amount_or_zero(self.total_captured_amount)

    @property
    def refunded(self) -> Decimal:
        return amount_or_zero(self.total_refunded_amount)

    @property
    def capturable(self) -> Decimal:
        return self.authorized - self.captured

    @property
    def refundable(self) -> Decimal:
        return self.captured - self.refunded

    def find_transaction(self, transaction_id: str) -> TransactionRecord | None:
        for transaction in self.transactions:
            if transaction.id == transaction_id:
                return transaction
        return None

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class OrderSummaryOut(BaseModel):
    id: str
    status: OrderStatus
    amount: str
    currency: str
    description: str | None = None
    total_authorized_amount: str
    total_captured_amount: str
    total_refunded_amount: str
    needs_review: bool
    transactions: list[TransactionRecord]

    @classmethod
    def from_record(cls, order: OrderRecord) -> "OrderSummaryOut":
        return cls(
            id=order.id,
            status=order.status,
            amount=order.amount,
            currency=order.currency,
            description=order.description,
            total_authorized_amount=order.total_authorized_amount,
            total_captured_amount=order.total_captured_amount,
            total_refunded_amount=order.total_refunded_amount,
            needs_review=order.needs_review,
            transactions=order.transactions,
        )
