"""Lenient numeric parsing for stored fields."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any


def to_decimal(value: Any) -> Decimal | None:
    """Parse a stored number; None for absent, blank or non-numeric values."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip().replace(",", ""))
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite():
        return None
    return result


def to_int(value: Any) -> int | None:
    number = to_decimal(value)
    if number is None:
        return None
    return int(number)


def text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value: Decimal) -> int:
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent(part, whole) -> int:
    """Integer share of `whole`; 0 when `whole` is 0."""
    if not whole:
        return 0
    return round_percent(Decimal(part) / Decimal(whole) * 100)


def ratio(numerator, denominator) -> Decimal:
    """Rounded quotient, 0 when the denominator is 0."""
    if not denominator:
        return Decimal("0.00")
    return round_money(Decimal(numerator) / Decimal(denominator))
