"""Balance check applied to every batch of rungs before it is submitted."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from dex_errors import InsufficientBalance
from dex_models import DesiredOrder, Market, OrderSide


@dataclass(frozen=True, slots=True)
class AdmissionSummary:
    required_base: Decimal
    required_quote: Decimal
    available_base: Decimal
    available_quote: Decimal


def required_exposure(orders: Iterable[DesiredOrder]) -> tuple[Decimal, Decimal]:
    """Base quantity escrowed by sells and quote notional escrowed by buys."""
    base = Decimal("0")
    quote = Decimal("0")
    for order in orders:
        if order.side is OrderSide.SELL:
            base += order.quantity
        else:
            quote += order.total
    return base, quote


def check_admission(
    orders: Iterable[DesiredOrder],
    market: Market,
    base_balance: Decimal,
    quote_balance: Decimal,
) -> AdmissionSummary:
    required_base, required_quote = required_exposure(orders)
    if required_base > base_balance or required_quote > quote_balance:
        raise InsufficientBalance(
            market.symbol,
            required_base=required_base,
            available_base=base_balance,
            required_quote=required_quote,
            available_quote=quote_balance,
            base_code=market.bid_token.code,
            quote_code=market.ask_token.code,
        )
    return AdmissionSummary(
        required_base=required_base,
        required_quote=required_quote,
        available_base=base_balance,
        available_quote=quote_balance,
    )
