"""
Proton DEX grid / market-maker bot.

Every tick the bot walks the configured pairs in order. For each pair it fetches
a market snapshot and the account's open orders, reconciles them against the
ladder it placed last time, checks balances, and submits the resulting orders
in paced batches. A failing pair is logged and skipped for that tick only.

Configuration comes from the JSON pair file plus environment variables; see
``dex_config`` for the full list. The most common ones:
    PROTON_USERNAME (required)
    PROTON_STRATEGY (gridBot or marketMaker)
    PROTON_SIGNER_URL (required unless PROTON_DRY_RUN=true)
    PROTON_TRADE_INTERVAL_MS (default: 5000)
    PROTON_CANCEL_ON_EXIT (default: false)

SIGINT / SIGTERM / SIGQUIT stop the loop after the current tick; when
PROTON_CANCEL_ON_EXIT is set the bot then cancels its open orders on every
configured pair before exiting.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from contextlib import suppress
from decimal import Decimal
from typing import Optional, Protocol, Sequence

import aiohttp
from dotenv import load_dotenv

from admission import check_admission
from dex_config import BotConfig, PairConfig, load_config
from dex_errors import (
    ConfigurationError,
    DexApiError,
    InsufficientBalance,
    MarketNotFound,
    PrecisionError,
    SubmissionFailure,
)
from dex_models import Market, MarketRegistry, MarketSnapshot, OpenOrder
from dexapi import DexApiClient
from dexrpc import ActionBuilder, DryRunSubmitter, OrderBatcher, SignerServiceSubmitter, TransactionSubmitter
from reconcile import Reconciler

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger("proton-grid")


class MarketData(Protocol):
    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        ...

    async def fetch_pair_open_orders(self, account: str, market: Market) -> list[OpenOrder]:
        ...

    async def fetch_all_open_orders(self, account: str) -> list[OpenOrder]:
        ...

    async def fetch_token_balance(self, account: str, contract: str, code: str) -> Decimal:
        ...


class ProtonDexBot:
    def __init__(
        self,
        api: MarketData,
        batcher: OrderBatcher,
        registry: MarketRegistry,
        config: BotConfig,
        reconciler: Optional[Reconciler] = None,
    ):
        self.api = api
        self.batcher = batcher
        self.registry = registry
        self.cfg = config
        self.reconciler = reconciler or Reconciler()
        self.username = config.username

    @property
    def pairs(self) -> Sequence[PairConfig]:
        return self.cfg.pairs

    def check_markets(self) -> list[str]:
        missing = [pair.symbol for pair in self.pairs if pair.symbol not in self.registry]
        for symbol in missing:
            LOGGER.warning("Market %s does not exist on the dex; the pair will be skipped", symbol)
        return missing

    async def run_tick(self) -> None:
        for pair in self.pairs:
            await self.process_pair(pair)

    async def process_pair(self, pair: PairConfig) -> bool:
        symbol = pair.symbol
        try:
            await self._process_pair(pair)
            return True
        except MarketNotFound as exc:
            LOGGER.error("%s; skipping pair", exc)
        except InsufficientBalance as exc:
            LOGGER.error("%s", exc)
            LOGGER.info("Overdrawn balance - not placing orders for %s", symbol)
        except PrecisionError as exc:
            LOGGER.error("Arithmetic error on %s: %s", symbol, exc)
        except SubmissionFailure as exc:
            LOGGER.error("Order submission failed on %s, ladder kept for retry: %s", symbol, exc)
        except DexApiError as exc:
            LOGGER.error("Dex API error on %s: %s", symbol, exc)
        except Exception as exc:
            LOGGER.exception("Unexpected error on %s: %s", symbol, exc)
        return False

    async def _process_pair(self, pair: PairConfig) -> None:
        market = self.registry.get(pair.symbol)
        LOGGER.info("Checking %s %s orders on account %s", pair.symbol, pair.kind, self.username)
        snapshot = await self.api.fetch_snapshot(pair.symbol)
        open_orders = await self.api.fetch_pair_open_orders(self.username, market)

        plan = self.reconciler.plan(pair, market, snapshot, open_orders)
        if plan.to_place:
            base_balance = await self.api.fetch_token_balance(
                self.username, market.bid_token.contract, market.bid_token.code
            )
            quote_balance = await self.api.fetch_token_balance(
                self.username, market.ask_token.contract, market.ask_token.code
            )
            summary = check_admission(plan.to_place, market, base_balance, quote_balance)
            LOGGER.info(
                "Placing %s orders on %s (needs %s %s / %s %s)",
                len(plan.to_place),
                pair.symbol,
                summary.required_base,
                market.bid_token.code,
                summary.required_quote,
                market.ask_token.code,
            )
            try:
                await self.batcher.place_orders(market, plan.to_place)
            except SubmissionFailure as exc:
                if exc.completed:
                    LOGGER.warning(
                        "%s of %s orders on %s were placed before the failure",
                        len(exc.completed),
                        len(plan.to_place),
                        pair.symbol,
                    )
                    self.reconciler.commit(plan, placed=exc.completed)
                raise
        elif plan.is_noop:
            LOGGER.info("No change - ladder for %s is intact", pair.symbol)
        self.reconciler.commit(plan)

    async def run(self, stop: asyncio.Event) -> None:
        interval = self.cfg.trade_interval_seconds
        while not stop.is_set():
            started = time.monotonic()
            await self.run_tick()
            remaining = interval - (time.monotonic() - started)
            if remaining > 0:
                with suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop.wait(), timeout=remaining)

    async def shutdown(self) -> None:
        if self.cfg.cancel_open_orders_on_exit:
            try:
                await self.cancel_open_orders()
            except Exception as exc:
                LOGGER.error("Cancel-all sweep failed: %s", exc)
        self.reconciler.cancel_all_states(pair.symbol for pair in self.pairs)

    def _is_configured(self, order: OpenOrder) -> bool:
        market = self.registry.get_by_id(order.market_id)
        return market is not None and any(pair.symbol == market.symbol for pair in self.pairs)

    async def cancel_open_orders(self) -> None:
        orders = await self.api.fetch_all_open_orders(self.username)
        await self.batcher.cancel_orders([order for order in orders if self._is_configured(order)])


def build_submitter(config: BotConfig, session: aiohttp.ClientSession) -> TransactionSubmitter:
    if config.dry_run:
        LOGGER.info("Dry run enabled; transactions are logged, not broadcast")
        return DryRunSubmitter()
    if not config.signer_url:
        raise ConfigurationError(["Set PROTON_SIGNER_URL or enable PROTON_DRY_RUN"])
    return SignerServiceSubmitter(session, config.signer_url, config.signer_token)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for name in ("SIGINT", "SIGTERM", "SIGQUIT"):
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)


async def main() -> None:
    load_dotenv()
    config = load_config()

    timeout = aiohttp.ClientTimeout(total=10)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        api = DexApiClient(session, config.api_root, config.light_api_root, config.chain)
        batcher = OrderBatcher(
            build_submitter(config, session),
            ActionBuilder(config.username, config.permission),
            batch_size=config.batch_size,
            batch_delay=config.batch_delay_seconds,
        )
        registry = await api.load_market_registry()
        bot = ProtonDexBot(api, batcher, registry, config)
        bot.check_markets()

        stop = asyncio.Event()
        _install_signal_handlers(stop)
        LOGGER.info(
            "Proton %s bot running for %s on %s pair(s)",
            config.strategy,
            config.username,
            len(config.pairs),
        )
        try:
            await bot.run(stop)
        except asyncio.CancelledError:  # pragma: no cover - runtime shutdown
            pass
        finally:
            LOGGER.info("Stopping bot")
            await bot.shutdown()


def cli() -> int:
    try:
        asyncio.run(main())
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(cli())
