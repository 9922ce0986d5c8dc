"""
Money math for carts, orders and earnings.

All functions are pure and work on ``Decimal`` quantized to cents.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from .exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Flat platform fee charged on every order subtotal.
SERVICE_FEE_RATE = Decimal("0.10")


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_positive_money(value, field: str) -> Decimal:
    """Parse caller input into a strictly positive amount or raise ValidationError."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive number")
    try:
        amount = to_money(str(value).strip() if isinstance(value, str) else value)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a positive number, got '{value}'")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be a positive number, got '{value}'")
    return amount


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value, field: str) -> datetime:
    """Parse a datetime or ISO-8601 string into naive UTC, the way timestamps are stored."""
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return _naive_utc(datetime.fromisoformat(raw))
        except ValueError:
            pass
    raise ValidationError(f"{field} must be a valid timestamp, got '{value}'")


def line_total(quantity: int, unit_price) -> Decimal:
    return to_money(Decimal(quantity) * to_money(unit_price))


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    service_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


def compute_totals(item_totals: Iterable, discount_amount=None) -> OrderTotals:
    """Recompute subtotal, platform fee and total from line totals."""
    subtotal = to_money(sum((to_money(t) for t in item_totals), ZERO))
    service_amount = to_money(subtotal * SERVICE_FEE_RATE)
    discount = to_money(discount_amount)
    if discount < 0:
        raise ValidationError("Discount amount cannot be negative")
    total = subtotal + service_amount - discount
    if discount and total < 0:
        raise ValidationError(
            f"Discount {discount} exceeds order value {subtotal + service_amount}"
        )
    return OrderTotals(
        subtotal=subtotal,
        service_amount=service_amount,
        discount_amount=discount,
        total_amount=to_money(total),
    )


@dataclass(frozen=True)
class CommissionSplit:
    total_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    provider_amount: Decimal


def split_commission(total_amount, commission_rate) -> CommissionSplit:
    """Split a total at a percentage rate; the stored rate is the one the commission was computed with."""
    total = to_money(total_amount)
    rate = Decimal(commission_rate).quantize(CENT, rounding=ROUND_HALF_UP)
    commission = to_money(total * rate / Decimal(100))
    return CommissionSplit(
        total_amount=total,
        commission_rate=rate,
        commission_amount=commission,
        provider_amount=total - commission,
    )


def format_money(amount: Optional[Decimal]) -> str:
    return f"{to_money(amount):.2f}"
