"""
Ladder generation for the grid and market-maker strategies.

Everything here is pure: given market metadata, pair parameters and a market
snapshot, it returns the rungs that should rest on the book. Intermediate math
runs on full-precision Decimals; only final prices and quantities are rounded
to token precision, buys downwards and sells upwards, so a rung never crosses
the reference it was derived from.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import Iterable, Optional, Protocol, Sequence

from dex_config import GridPairConfig, MarketMakerPairConfig
from dex_errors import PrecisionError
from dex_models import DesiredOrder, Market, MarketSnapshot, OrderSide, ReferenceBase
from precision import quantum, round_price, to_decimal, to_fixed

TWO = Decimal("2")


class PricedOrder(Protocol):
    side: OrderSide
    price: Decimal


def reference_price(snapshot: MarketSnapshot, base: ReferenceBase) -> Decimal:
    if base is ReferenceBase.BID:
        price = snapshot.highest_bid
    elif base is ReferenceBase.ASK:
        price = snapshot.lowest_ask
    elif base is ReferenceBase.LAST:
        price = snapshot.last_price
    else:
        price = snapshot.midpoint
    price = to_decimal(price)
    if price <= 0:
        raise PrecisionError(f"Reference price {base.value} must be positive, got {price}")
    return price


def crosses_book(side: OrderSide, price: Decimal, snapshot: MarketSnapshot) -> bool:
    # A post-only order that would match immediately is rejected by the dex.
    if side is OrderSide.BUY:
        return snapshot.lowest_ask > 0 and price >= snapshot.lowest_ask
    return snapshot.highest_bid > 0 and price <= snapshot.highest_bid


def _enforce_minimum(
    market: Market, price: Decimal, quantity: Decimal, total: Decimal
) -> tuple[Decimal, Decimal]:
    if market.order_min <= 0:
        return quantity, total
    min_total = Decimal(market.order_min) / Decimal(market.ask_token.multiplier)
    if quantity * price >= min_total:
        return quantity, total
    quantity = to_fixed(min_total / price, market.quantity_precision, ROUND_UP)
    total = max(total, to_fixed(quantity * price, market.price_precision, ROUND_UP))
    return quantity, total


def size_rung(
    market: Market, side: OrderSide, price: Decimal, notional: Decimal, *, spend: bool = False
) -> Optional[DesiredOrder]:
    """Size a rung worth ``notional`` quote units at ``price``.

    With ``spend`` the rung escrows exactly ``notional`` (rounded down to quote
    precision). Otherwise the base quantity is rounded up so the rung is worth
    at least ``notional``.
    """
    if price <= 0:
        return None
    if spend:
        total = to_fixed(notional, market.price_precision, ROUND_DOWN)
        quantity = to_fixed(total / price, market.quantity_precision, ROUND_DOWN)
    else:
        quantity = to_fixed(notional / price, market.quantity_precision, ROUND_UP)
        total = to_fixed(quantity * price, market.price_precision, ROUND_UP)
    quantity, total = _enforce_minimum(market, price, quantity, total)
    if quantity <= 0 or total <= 0:
        return None
    return DesiredOrder(side=side, price=price, quantity=quantity, total=total, symbol=market.symbol)


# Grid strategy


def grid_step(pair: GridPairConfig) -> Decimal:
    return (pair.upper_limit - pair.lower_limit) / Decimal(pair.grid_levels)


def grid_step_price(market: Market, pair: GridPairConfig) -> Decimal:
    step = to_fixed(grid_step(pair), market.price_precision, ROUND_DOWN)
    if step <= 0:
        raise PrecisionError(
            f"Grid step for {pair.symbol} is below the price precision of {market.price_precision} digits"
        )
    return step


def grid_level_range(pair: GridPairConfig, last_price: Decimal) -> range:
    first, last = 0, pair.grid_levels
    # Drop the band edge the last trade sits on (or beyond).
    if last_price >= pair.upper_limit:
        first = 1
    if last_price <= pair.lower_limit:
        last -= 1
    return range(first, last + 1)


def grid_rung(
    market: Market, pair: GridPairConfig, snapshot: MarketSnapshot, index: int
) -> Optional[DesiredOrder]:
    last_price = to_decimal(snapshot.last_price)
    if last_price <= 0:
        raise PrecisionError(f"Last trade price for {pair.symbol} must be positive, got {last_price}")
    if index not in grid_level_range(pair, last_price):
        return None

    step = grid_step(pair)
    boundary = pair.upper_limit - step * index
    if abs(boundary - last_price) < step / TWO:
        return None
    side = OrderSide.SELL if boundary > last_price else OrderSide.BUY
    price = round_price(boundary, market.price_precision, side)
    if price <= 0 or crosses_book(side, price, snapshot):
        return None
    return size_rung(market, side, price, pair.bid_amount_per_level, spend=side is OrderSide.BUY)


def seed_grid_ladder(market: Market, pair: GridPairConfig, snapshot: MarketSnapshot) -> list[DesiredOrder]:
    last_price = to_decimal(snapshot.last_price)
    orders: list[DesiredOrder] = []
    for index in grid_level_range(pair, last_price):
        order = grid_rung(market, pair, snapshot, index)
        if order is not None:
            orders.append(order)
    return orders


def lowest_price(orders: Iterable[PricedOrder], side: OrderSide) -> Optional[Decimal]:
    prices = [order.price for order in orders if order.side is side]
    return min(prices) if prices else None


def highest_price(orders: Iterable[PricedOrder], side: OrderSide) -> Optional[Decimal]:
    prices = [order.price for order in orders if order.side is side]
    return max(prices) if prices else None


def clear_of_book(side: OrderSide, price: Decimal, snapshot: MarketSnapshot, precision: int) -> Decimal:
    """Move a crossing price one tick behind the best opposite quote."""
    if not crosses_book(side, price, snapshot):
        return price
    tick = quantum(precision)
    if side is OrderSide.SELL:
        return to_fixed(snapshot.highest_bid, precision, ROUND_UP) + tick
    return to_fixed(snapshot.lowest_ask, precision, ROUND_DOWN) - tick


def grid_counter_order(
    market: Market,
    pair: GridPairConfig,
    filled: DesiredOrder,
    resting: Sequence[PricedOrder],
    snapshot: Optional[MarketSnapshot] = None,
) -> Optional[DesiredOrder]:
    """Counter-order for a filled rung, one grid step inside the opposite side.

    A filled buy becomes a sell one step below the lowest resting sell; a filled
    sell becomes a buy one step above the highest resting buy. Without any order
    on the opposite side the counter-order sits one step from the filled price.
    When ``snapshot`` is given, a counter-order that would cross the book is
    moved to one price tick above the best bid (sells) or below the best ask (buys).
    """
    step = grid_step_price(market, pair)
    side = filled.side.opposite
    if side is OrderSide.SELL:
        anchor = lowest_price(resting, OrderSide.SELL)
        price = anchor - step if anchor is not None else filled.price + step
    else:
        anchor = highest_price(resting, OrderSide.BUY)
        price = anchor + step if anchor is not None else filled.price - step
    if price <= 0:
        return None
    price = round_price(price, market.price_precision, side)
    if snapshot is not None:
        price = clear_of_book(side, price, snapshot, market.price_precision)
        if price <= 0:
            return None
    return size_rung(market, side, price, pair.bid_amount_per_level, spend=side is OrderSide.BUY)


def grid_retry_rung(
    market: Market, pair: GridPairConfig, order: DesiredOrder, snapshot: MarketSnapshot
) -> Optional[DesiredOrder]:
    price = clear_of_book(order.side, order.price, snapshot, market.price_precision)
    if price == order.price:
        return order
    if price <= 0:
        return None
    return size_rung(market, order.side, price, pair.bid_amount_per_level, spend=order.side is OrderSide.BUY)


# Market-maker strategy


def market_maker_price(
    market: Market, pair: MarketMakerPairConfig, reference: Decimal, side: OrderSide, index: int
) -> Decimal:
    offset = pair.grid_interval * Decimal(index + 1)
    factor = Decimal(1) - offset if side is OrderSide.BUY else Decimal(1) + offset
    return round_price(reference * factor, market.price_precision, side)


def market_maker_rung(
    market: Market,
    pair: MarketMakerPairConfig,
    snapshot: MarketSnapshot,
    side: OrderSide,
    index: int,
) -> Optional[DesiredOrder]:
    if index < 0 or index >= pair.grid_levels or not pair.order_side.allows(side):
        return None
    reference = reference_price(snapshot, pair.reference_base)
    price = market_maker_price(market, pair, reference, side, index)
    if price <= 0 or crosses_book(side, price, snapshot):
        return None
    return size_rung(market, side, price, pair.bid_amount_per_level)


def seed_market_maker_ladder(
    market: Market,
    pair: MarketMakerPairConfig,
    snapshot: MarketSnapshot,
    resting: Sequence[PricedOrder] = (),
) -> list[DesiredOrder]:
    """Rungs needed to bring each side up to ``grid_levels`` orders.

    Levels are filled from the reference outwards; a level whose price already
    rests on that side is not placed again.
    """
    missing: dict[OrderSide, int] = {}
    taken: dict[OrderSide, set[Decimal]] = {}
    for side in (OrderSide.BUY, OrderSide.SELL):
        prices = {order.price for order in resting if order.side is side}
        taken[side] = prices
        count = sum(1 for order in resting if order.side is side)
        missing[side] = max(pair.grid_levels - count, 0)

    orders: list[DesiredOrder] = []
    for index in range(pair.grid_levels):
        for side in (OrderSide.BUY, OrderSide.SELL):
            if missing[side] <= 0:
                continue
            order = market_maker_rung(market, pair, snapshot, side, index)
            if order is None or order.price in taken[side]:
                continue
            orders.append(order)
            missing[side] -= 1
    return orders
