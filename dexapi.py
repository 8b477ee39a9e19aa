"""
Read-only client for the Proton DEX REST API and the light API balance service.

Market metadata, order book depth, recent trades, open orders and token
balances are fetched here and converted into the bot's value types. Prices and
amounts are parsed from their string form so no float rounding is introduced.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

import aiohttp

from dex_errors import DexApiError, PrecisionError
from dex_models import Market, MarketRegistry, MarketSnapshot, OpenOrder, OrderSide, Token
from precision import to_decimal

LOGGER = logging.getLogger("proton-grid.dexapi")

OPEN_ORDERS_PAGE_SIZE = 250
OPEN_ORDERS_MAX_PAGES = 40


def _decimal(value: Any, default: Optional[Decimal] = None) -> Decimal:
    try:
        return to_decimal(value)
    except PrecisionError:
        if default is not None:
            return default
        raise DexApiError(f"Invalid numeric value in API response: {value!r}") from None


def token_from_payload(payload: dict[str, Any]) -> Token:
    try:
        return Token(
            code=str(payload["code"]),
            contract=str(payload["contract"]),
            precision=int(payload["precision"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DexApiError(f"Malformed token entry: {payload!r}") from exc


def market_from_payload(payload: dict[str, Any]) -> Market:
    try:
        return Market(
            market_id=int(payload["market_id"]),
            symbol=str(payload["symbol"]),
            bid_token=token_from_payload(payload["bid_token"]),
            ask_token=token_from_payload(payload["ask_token"]),
            order_min=int(_decimal(payload.get("order_min", 0), Decimal("0"))),
            status_code=int(payload.get("status_code", 1)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DexApiError(f"Malformed market entry: {payload!r}") from exc


def open_order_from_payload(payload: dict[str, Any]) -> OpenOrder:
    try:
        side = OrderSide(int(payload["order_side"]))
        return OpenOrder(
            order_id=str(payload["order_id"]),
            side=side,
            price=_decimal(payload["price"]),
            quantity=_decimal(payload.get("quantity_curr", payload.get("quantity", 0)), Decimal("0")),
            market_id=int(payload["market_id"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DexApiError(f"Malformed open order entry: {payload!r}") from exc


class DexApiClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_root: str,
        light_api_root: str,
        chain: str = "proton",
    ):
        self.session = session
        self.api_root = api_root.rstrip("/")
        self.light_api_root = light_api_root.rstrip("/")
        self.chain = chain

    async def _get_text(self, url: str, params: Optional[dict[str, Any]] = None) -> str:
        try:
            async with self.session.get(url, params=params) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise DexApiError(f"HTTP {resp.status} from {url}: {text}")
                return text
        except aiohttp.ClientError as exc:
            raise DexApiError(f"Request to {url} failed: {exc}") from exc

    async def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        try:
            async with self.session.get(url, params=params) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise DexApiError(f"HTTP {resp.status} from {url}: {text}")
                return await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise DexApiError(f"Request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise DexApiError(f"Invalid JSON from {url}: {exc}") from exc

    async def _get_data(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        payload = await self._get_json(f"{self.api_root}{path}", params)
        if not isinstance(payload, dict) or "data" not in payload:
            raise DexApiError(f"Response from {path} has no data field: {payload!r}")
        return payload["data"]

    async def fetch_markets(self) -> list[Market]:
        data = await self._get_data("/v1/markets/all")
        return [market_from_payload(entry) for entry in data or []]

    async def load_market_registry(self) -> MarketRegistry:
        markets = await self.fetch_markets()
        for market in markets:
            if not market.is_active:
                LOGGER.warning("Market %s is not active (status %s); ignoring it", market.symbol, market.status_code)
        registry = MarketRegistry.from_markets(market for market in markets if market.is_active)
        LOGGER.info("Loaded %s dex markets", len(registry))
        return registry

    async def fetch_order_book(
        self, symbol: str, limit: int = 100, step: int = 100000
    ) -> dict[str, list[dict[str, Any]]]:
        data = await self._get_data("/v1/orders/depth", {"symbol": symbol, "limit": limit, "step": step})
        data = data or {}
        return {"bids": list(data.get("bids") or []), "asks": list(data.get("asks") or [])}

    async def fetch_trades(self, symbol: str, count: int = 100, offset: int = 0) -> list[dict[str, Any]]:
        data = await self._get_data("/v1/trades/recent", {"symbol": symbol, "limit": count, "offset": offset})
        return list(data or [])

    async def fetch_latest_price(self, symbol: str) -> Decimal:
        trades = await self.fetch_trades(symbol, 1)
        if not trades:
            raise DexApiError(f"No recent trades for {symbol}")
        return _decimal(trades[0].get("price"))

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        price = await self.fetch_latest_price(symbol)
        book = await self.fetch_order_book(symbol, 1)
        # Empty book sides fall back to the last trade price.
        lowest_ask = _decimal(book["asks"][0].get("level")) if book["asks"] else price
        highest_bid = _decimal(book["bids"][0].get("level")) if book["bids"] else price
        return MarketSnapshot(highest_bid=highest_bid, lowest_ask=lowest_ask, last_price=price)

    async def fetch_open_orders(
        self, account: str, limit: int = OPEN_ORDERS_PAGE_SIZE, offset: int = 0
    ) -> list[OpenOrder]:
        data = await self._get_data("/v1/orders/open", {"limit": limit, "offset": offset, "account": account})
        return [open_order_from_payload(entry) for entry in data or []]

    async def fetch_all_open_orders(
        self, account: str, page_size: int = OPEN_ORDERS_PAGE_SIZE, max_pages: int = OPEN_ORDERS_MAX_PAGES
    ) -> list[OpenOrder]:
        orders: list[OpenOrder] = []
        previous_ids: list[str] = []
        for number in range(max_pages):
            page = await self.fetch_open_orders(account, page_size, number * page_size)
            page_ids = [order.order_id for order in page]
            if page_ids and page_ids == previous_ids:
                LOGGER.warning("Open orders page at offset %s repeats the previous page; stopping", number * page_size)
                return orders
            orders.extend(page)
            if len(page) < page_size:
                return orders
            previous_ids = page_ids
        LOGGER.warning("Stopped reading open orders for %s after %s pages", account, max_pages)
        return orders

    async def fetch_pair_open_orders(self, account: str, market: Market) -> list[OpenOrder]:
        orders = await self.fetch_all_open_orders(account)
        pair_orders = [order for order in orders if order.market_id == market.market_id]
        LOGGER.info("Open orders size for pair %s %s", market.symbol, len(pair_orders))
        return pair_orders

    async def fetch_token_balance(self, account: str, contract: str, code: str) -> Decimal:
        url = f"{self.light_api_root}/tokenbalance/{self.chain}/{account}/{contract}/{code}"
        text = (await self._get_text(url)).strip().strip('"')
        if not text:
            return Decimal("0")
        return _decimal(text)
