"""
Fixed-precision helpers for token amounts and prices.

Every value that reaches the chain is expressed with exactly the number of
fraction digits of its token. Rounding is always explicit; floats are converted
through ``str`` so binary rounding never leaks into a price or quantity.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_UP
from typing import Any

from dex_errors import PrecisionError
from dex_models import OrderSide, Token


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        if isinstance(value, bool) or value is None:
            raise PrecisionError(f"Not a numeric value: {value!r}")
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise PrecisionError(f"Not a numeric value: {value!r}") from exc
    if not result.is_finite():
        raise PrecisionError(f"Non-finite value: {value!r}")
    return result


def _checked(value: Any) -> Decimal:
    result = to_decimal(value)
    if result < 0:
        raise PrecisionError(f"Negative value: {value!r}")
    return result


def quantum(precision: int) -> Decimal:
    if precision < 0:
        raise PrecisionError(f"Invalid precision {precision}")
    return Decimal(1).scaleb(-precision)


def to_fixed(value: Any, precision: int, rounding: str = ROUND_DOWN) -> Decimal:
    """Round ``value`` to exactly ``precision`` fraction digits."""
    amount = _checked(value)
    try:
        return amount.quantize(quantum(precision), rounding=rounding)
    except InvalidOperation as exc:
        raise PrecisionError(f"Cannot quantize {value!r} to {precision} digits") from exc


def round_price(value: Any, precision: int, side: OrderSide) -> Decimal:
    # Buys round away from the ask, sells away from the bid.
    rounding = ROUND_DOWN if side is OrderSide.BUY else ROUND_UP
    return to_fixed(value, precision, rounding)


def normalize(value: Any, multiplier: int) -> int:
    """Convert a human amount to integer on-chain units, truncating."""
    amount = _checked(value)
    return int((amount * Decimal(multiplier)).to_integral_value(rounding=ROUND_DOWN))


def format_fixed(value: Any, precision: int, rounding: str = ROUND_DOWN) -> str:
    return format(to_fixed(value, precision, rounding), "f")


def asset_text(value: Any, token: Token, rounding: str = ROUND_DOWN) -> str:
    return f"{format_fixed(value, token.precision, rounding)} {token.code}"


def decimal_to_str(value: Decimal) -> str:
    return format(value.normalize(), "f")
