"""Value types shared by the ladder, reconciliation and DEX adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Iterable, Optional

from dex_errors import MarketNotFound


class OrderSide(IntEnum):
    # Values match the dex contract's order_side field.
    BUY = 1
    SELL = 2

    @property
    def opposite(self) -> OrderSide:
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(IntEnum):
    LIMIT = 1


class FillType(IntEnum):
    POST_ONLY = 2


class ReferenceBase(str, Enum):
    BID = "BID"
    ASK = "ASK"
    LAST = "LAST"
    AVERAGE = "AVERAGE"


class OrderSideFilter(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    BOTH = "BOTH"

    def allows(self, side: OrderSide) -> bool:
        return self is OrderSideFilter.BOTH or self.value == side.name


@dataclass(frozen=True, slots=True)
class Token:
    code: str
    contract: str
    precision: int

    @property
    def multiplier(self) -> int:
        return 10**self.precision

    @property
    def symbol_code(self) -> str:
        return f"{self.precision},{self.code}"


@dataclass(frozen=True, slots=True)
class Market:
    market_id: int
    symbol: str
    bid_token: Token
    ask_token: Token
    order_min: int = 0
    status_code: int = 1

    @property
    def is_active(self) -> bool:
        return self.status_code == 1

    @property
    def price_precision(self) -> int:
        return self.ask_token.precision

    @property
    def quantity_precision(self) -> int:
        return self.bid_token.precision


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    highest_bid: Decimal
    lowest_ask: Decimal
    last_price: Decimal

    @property
    def midpoint(self) -> Decimal:
        return (self.highest_bid + self.lowest_ask) / Decimal("2")


@dataclass(frozen=True, slots=True)
class OpenOrder:
    order_id: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    market_id: int


@dataclass(frozen=True, slots=True)
class DesiredOrder:
    """One ladder rung.

    ``quantity`` is always in base (bid token) units; ``total`` is the quote
    (ask token) notional. Buy orders escrow ``total``, sell orders escrow
    ``quantity``.
    """

    side: OrderSide
    price: Decimal
    quantity: Decimal
    total: Decimal
    symbol: str


@dataclass(slots=True)
class MarketRegistry:
    by_id: dict[int, Market] = field(default_factory=dict)
    by_symbol: dict[str, Market] = field(default_factory=dict)

    @classmethod
    def from_markets(cls, markets: Iterable[Market]) -> MarketRegistry:
        registry = cls()
        for market in markets:
            registry.add(market)
        return registry

    def add(self, market: Market) -> None:
        self.by_id[market.market_id] = market
        self.by_symbol[market.symbol] = market

    def get(self, symbol: str) -> Market:
        market = self.by_symbol.get(symbol)
        if market is None:
            raise MarketNotFound(symbol)
        return market

    def get_by_id(self, market_id: int) -> Optional[Market]:
        return self.by_id.get(market_id)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self.by_symbol

    def __len__(self) -> int:
        return len(self.by_symbol)
