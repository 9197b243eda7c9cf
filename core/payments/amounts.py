from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from core.errors import InvalidAmount

ZERO = Decimal("0")


def parse_amount(value: str | int | Decimal | None, *, order_id: str | None = None, allow_zero: bool = False) -> Decimal:
    """Parse a monetary amount without ever passing through float."""
    if value is None or isinstance(value, (bool, float)):
        raise InvalidAmount("Amount must be a decimal string", order_id=order_id)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as err:
        raise InvalidAmount("Amount must be a decimal string", order_id=order_id) from err
    if not amount.is_finite():
        raise InvalidAmount("Amount must be a finite number", order_id=order_id)
    if amount < ZERO or (amount == ZERO and not allow_zero):
        raise InvalidAmount("Amount must be greater than zero", order_id=order_id)
    return amount


def amount_or_zero(value: str | None) -> Decimal:
    if value in (None, ""):
        return ZERO
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return ZERO
    return amount if amount.is_finite() else ZERO


def format_amount(amount: Decimal) -> str:
    return format(amount, "f")


def to_minor_units(amount: Decimal, *, factor: int = 100) -> int:
    return int((amount * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int | str, *, factor: int = 100) -> Decimal:
    return Decimal(str(value)) / Decimal(factor)
