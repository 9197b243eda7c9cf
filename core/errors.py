from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    ORDER_STATE_CONFLICT = "ORDER_STATE_CONFLICT"
    TRANSACTION_ID_CONFLICT = "TRANSACTION_ID_CONFLICT"
    PAYMENT_WEBHOOK_INVALID = "PAYMENT_WEBHOOK_INVALID"
    TRANSIENT_ERROR = "TRANSIENT_ERROR"
    REJECTED_ERROR = "REJECTED_ERROR"
    NO_SUPPORTED_OPERATION = "NO_SUPPORTED_OPERATION"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    SUBACCOUNT_NOT_PROVISIONED = "SUBACCOUNT_NOT_PROVISIONED"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    TIMEOUT = "TIMEOUT"


class AppException(HTTPException):
    def __init__(
        self,
        *,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        detail = {
            "message": message,
            "code": code.value,
            "details": details,
        }
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code
        self.message = message

    @property
    def details(self) -> Any:
        return self.detail["details"]  # type: ignore[index]


class PaymentError(AppException):
    """Base for the gateway failure taxonomy.

    ``details`` only ever holds caller-safe context (order id, operation,
    field names). Raw provider payloads are logged where they are received and
    never attached here.
    """

    default_status = status.HTTP_502_BAD_GATEWAY
    default_code = ErrorCode.INTERNAL_ERROR
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        order_id: str | None = None,
        operation: str | None = None,
        context: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        details: dict[str, Any] = {"kind": type(self).__name__, "retryable": self.retryable}
        if order_id is not None:
            details["order_id"] = order_id
        if operation is not None:
            details["operation"] = operation
        if context:
            details.update(context)
        super().__init__(
            status_code=status_code or self.default_status,
            code=self.default_code,
            message=message,
            details=details,
        )
        self.order_id = order_id
        self.operation = operation

    def with_context(self, *, order_id: str | None = None, operation: str | None = None) -> "PaymentError":
        if order_id is not None and self.order_id is None:
            self.order_id = order_id
            self.details["order_id"] = order_id
        if operation is not None and self.operation is None:
            self.operation = operation
            self.details["operation"] = operation
        return self


class TransientError(PaymentError):
    default_code = ErrorCode.TRANSIENT_ERROR
    retryable = True


class RejectedError(PaymentError):
    default_code = ErrorCode.REJECTED_ERROR

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        explanation: str | None = None,
        cause: str | None = None,
        http_status: int | None = None,
        order_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            message,
            order_id=order_id,
            operation=operation,
            context={
                "field": field,
                "explanation": explanation,
                "cause": cause,
                "gateway_status": http_status,
            },
        )
        self.field = field
        self.explanation = explanation
        self.cause = cause
        self.http_status = http_status


class NoSupportedOperation(PaymentError):
    default_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = ErrorCode.NO_SUPPORTED_OPERATION

    def __init__(self, attempted_operations: Sequence[str], *, order_id: str | None = None) -> None:
        attempted = list(attempted_operations)
        super().__init__(
            "No supported payment operation is enabled for this merchant account "
            f"(tried: {', '.join(attempted)})",
            order_id=order_id,
            context={"attempted_operations": attempted},
        )
        self.attempted_operations = attempted


class InvalidAmount(PaymentError):
    default_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = ErrorCode.INVALID_AMOUNT


class SubaccountNotProvisioned(PaymentError):
    default_status = status.HTTP_409_CONFLICT
    default_code = ErrorCode.SUBACCOUNT_NOT_PROVISIONED

    def __init__(self, vendor_id: str, *, order_id: str | None = None) -> None:
        super().__init__(
            "Vendor has no provisioned settlement subaccount",
            order_id=order_id,
            context={"vendor_id": vendor_id},
        )
        self.vendor_id = vendor_id


class SignatureMismatch(PaymentError):
    default_status = status.HTTP_401_UNAUTHORIZED
    default_code = ErrorCode.SIGNATURE_MISMATCH

    def __init__(self, provider: str) -> None:
        super().__init__("Invalid webhook signature", context={"provider": provider})
        self.provider = provider


class OperationTimeout(PaymentError):
    default_status = status.HTTP_504_GATEWAY_TIMEOUT
    default_code = ErrorCode.TIMEOUT
    retryable = True


def resource_not_found(resource: str, resource_id: str | None = None) -> AppException:
    details = {"resource": resource}
    if resource_id:
        details["resource_id"] = resource_id
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        code=ErrorCode.RESOURCE_NOT_FOUND,
        message=f"{resource} not found",
        details=details,
    )


def order_state_conflict(order_id: str, message: str, **context: Any) -> AppException:
    return AppException(
        status_code=status.HTTP_409_CONFLICT,
        code=ErrorCode.ORDER_STATE_CONFLICT,
        message=message,
        details={"order_id": order_id, **context},
    )


def transaction_id_conflict(order_id: str, transaction_id: str) -> AppException:
    return AppException(
        status_code=status.HTTP_409_CONFLICT,
        code=ErrorCode.TRANSACTION_ID_CONFLICT,
        message="Transaction id already used for a different request on this order",
        details={"order_id": order_id, "transaction_id": transaction_id},
    )
