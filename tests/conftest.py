"""Shared fixtures and fakes for the bot tests."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

import pytest

from dex_config import BotConfig, GridPairConfig, MarketMakerPairConfig
from dex_errors import SubmissionFailure
from dex_models import (
    Market,
    MarketRegistry,
    MarketSnapshot,
    OpenOrder,
    OrderSideFilter,
    ReferenceBase,
    Token,
)

XPR = Token(code="XPR", contract="eosio.token", precision=4)
XMD = Token(code="XMD", contract="xmd.token", precision=6)
XUSDC = Token(code="XUSDC", contract="xtokens", precision=6)

MARKET_XPR_XMD = Market(market_id=3, symbol="XPR_XMD", bid_token=XPR, ask_token=XMD, order_min=10)
MARKET_XPR_XUSDC = Market(market_id=1, symbol="XPR_XUSDC", bid_token=XPR, ask_token=XUSDC, order_min=100000)


def D(value: str) -> Decimal:
    return Decimal(value)


@pytest.fixture
def xmd_market() -> Market:
    return MARKET_XPR_XMD


@pytest.fixture
def xusdc_market() -> Market:
    return MARKET_XPR_XUSDC


@pytest.fixture
def registry() -> MarketRegistry:
    return MarketRegistry.from_markets([MARKET_XPR_XMD, MARKET_XPR_XUSDC])


@pytest.fixture
def grid_pair() -> GridPairConfig:
    return GridPairConfig(
        symbol="XPR_XMD",
        upper_limit=D("0.20"),
        lower_limit=D("0.10"),
        grid_levels=4,
        bid_amount_per_level=D("10"),
    )


@pytest.fixture
def grid_snapshot() -> MarketSnapshot:
    return MarketSnapshot(highest_bid=D("0.149"), lowest_ask=D("0.151"), last_price=D("0.15"))


@pytest.fixture
def mm_pair() -> MarketMakerPairConfig:
    return MarketMakerPairConfig(
        symbol="XPR_XUSDC",
        grid_levels=2,
        grid_interval=D("0.1"),
        reference_base=ReferenceBase.LAST,
        order_side=OrderSideFilter.BOTH,
        bid_amount_per_level=D("10"),
    )


@pytest.fixture
def mm_snapshot() -> MarketSnapshot:
    return MarketSnapshot(highest_bid=D("0.49"), lowest_ask=D("0.51"), last_price=D("0.5"))


def open_orders_for(rungs, market: Market) -> list[OpenOrder]:
    return [
        OpenOrder(
            order_id=str(100 + index),
            side=rung.side,
            price=rung.price,
            quantity=rung.quantity,
            market_id=market.market_id,
        )
        for index, rung in enumerate(rungs)
    ]


class FakeMarketData:
    def __init__(
        self,
        snapshots: dict[str, MarketSnapshot],
        open_orders: Optional[list[OpenOrder]] = None,
        balances: Optional[dict[str, Decimal]] = None,
    ):
        self.snapshots = snapshots
        self.open_orders = list(open_orders or [])
        self.balances = balances if balances is not None else {}
        self.open_order_fetches: dict[str, int] = {}
        self.on_snapshot: Optional[Any] = None
        self.fail_open_orders = False

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        if self.on_snapshot is not None:
            self.on_snapshot(symbol)
        return self.snapshots[symbol]

    async def fetch_pair_open_orders(self, account: str, market: Market) -> list[OpenOrder]:
        self.open_order_fetches[market.symbol] = self.open_order_fetches.get(market.symbol, 0) + 1
        return [order for order in self.open_orders if order.market_id == market.market_id]

    async def fetch_all_open_orders(self, account: str) -> list[OpenOrder]:
        if self.fail_open_orders:
            raise RuntimeError("open orders unavailable")
        return list(self.open_orders)

    async def fetch_token_balance(self, account: str, contract: str, code: str) -> Decimal:
        return self.balances.get(code, Decimal("0"))


class RecordingSubmitter:
    def __init__(self, fail_on_call: Optional[int] = None):
        self.calls: list[list[dict[str, Any]]] = []
        self.fail_on_call = fail_on_call

    async def submit_actions(self, actions: list[dict[str, Any]]) -> dict[str, Any]:
        self.calls.append(actions)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise SubmissionFailure("assertion failure: overdrawn balance")
        return {"transaction_id": f"tx-{len(self.calls)}"}


def bot_config(pairs, **overrides) -> BotConfig:
    values: dict[str, Any] = dict(
        username="gridtrader",
        strategy=pairs[0].kind if pairs else "gridBot",
        pairs=list(pairs),
        dry_run=True,
        trade_interval_seconds=0.0,
        batch_size=30,
        batch_delay_seconds=0.0,
    )
    values.update(overrides)
    return BotConfig(**values)
