from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class CheckoutOperation(str, Enum):
    AUTHORIZE = "AUTHORIZE"
    PURCHASE = "PURCHASE"
    VERIFY = "VERIFY"


class OrderStatus(str, Enum):
    INITIATED = "INITIATED"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    REFUNDED = "REFUNDED"
    VOIDED = "VOIDED"
    FAILED = "FAILED"


class TransactionType(str, Enum):
    AUTHORIZE = "AUTHORIZE"
    PAY = "PAY"
    REFUND = "REFUND"
    VOID = "VOID"


class TransactionResult(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    PENDING = "PENDING"


SETTLED_ORDER_STATUSES = frozenset({OrderStatus.CAPTURED, OrderStatus.AUTHORIZED})


@dataclass(frozen=True)
class CheckoutOrder:
    id: str
    amount: str
    currency: str
    description: str | None = None

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "amount": self.amount, "currency": self.currency}
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    success_indicator: str
    operation: CheckoutOperation
    update_status: str | None = None
    version: str | None = None
    attempted_operations: tuple[CheckoutOperation, ...] = ()


@dataclass(frozen=True)
class GatewayTransaction:
    id: str
    type: str
    amount: str | None
    currency: str | None
    result: str | None = None
    gateway_code: str | None = None


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    status: str
    amount: str | None
    currency: str | None
    total_authorized_amount: str | None = None
    total_captured_amount: str | None = None
    total_refunded_amount: str | None = None
    transactions: tuple[GatewayTransaction, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_settled(self) -> bool:
        return self.status in {status.value for status in SETTLED_ORDER_STATUSES}


@dataclass(frozen=True)
class TransactionOutcome:
    order_id: str
    transaction_id: str
    type: TransactionType
    result: TransactionResult
    amount: Decimal
    currency: str
    gateway_code: str | None
    order_status: OrderStatus
    replayed: bool = False


@dataclass(frozen=True)
class VerificationOutcome:
    success: bool
    indicator_match: bool | None
    remote_confirmed: bool
    remote_status: str | None
    order_id: str | None
    session_id: str | None
    result_indicator: str | None
    amount: str | None = None
    currency: str | None = None
    total_authorized_amount: str | None = None
    total_captured_amount: str | None = None
    total_refunded_amount: str | None = None
    transactions: tuple[GatewayTransaction, ...] = ()

    @property
    def message(self) -> str:
        if self.success:
            return "Payment successful"
        if self.remote_status is None and self.indicator_match is False:
            return "Payment verification failed"
        return "Payment failed or pending"


@dataclass(frozen=True)
class SplitPaymentInit:
    order_id: str
    reference: str
    authorization_url: str
    access_code: str | None
    reused: bool = False
    needs_review: bool = False


@dataclass(frozen=True)
class WebhookEvent:
    provider: str
    event_id: str
    event_type: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class WebhookAck:
    provider: str
    event_id: str
    event_type: str
    handled: bool
    duplicate: bool = False
    order_id: str | None = None
    order_status: str | None = None
