from core.payments.types import (
    CheckoutOperation,
    CheckoutOrder,
    CheckoutSession,
    GatewayOrder,
    GatewayTransaction,
    OrderStatus,
    SplitPaymentInit,
    TransactionOutcome,
    TransactionResult,
    TransactionType,
    VerificationOutcome,
    WebhookAck,
    WebhookEvent,
)

__all__ = [
    "CheckoutOperation",
    "CheckoutOrder",
    "CheckoutSession",
    "GatewayOrder",
    "GatewayTransaction",
    "OrderStatus",
    "SplitPaymentInit",
    "TransactionOutcome",
    "TransactionResult",
    "TransactionType",
    "VerificationOutcome",
    "WebhookAck",
    "WebhookEvent",
]
