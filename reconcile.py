"""
Per-pair ladder state and reconciliation against the live book.

Each configured pair moves UNSEEDED -> SEEDED on its first successful placement
and stays SEEDED until shutdown, when it becomes CANCELLED. Planning never
mutates the stored state; ``commit`` is only called once the plan's orders have
been placed, so a failed tick retries from the last known-good ladder. When
only some batches went through, the placed prefix is committed and the rest of
a grid plan is kept pending for the next tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Sequence

from dex_config import GridPairConfig, MarketMakerPairConfig, PairConfig
from dex_models import DesiredOrder, Market, MarketSnapshot, OpenOrder
from ladder import (
    PricedOrder,
    grid_counter_order,
    grid_retry_rung,
    seed_grid_ladder,
    seed_market_maker_ladder,
)

LOGGER = logging.getLogger("proton-grid.reconcile")


class PairPhase(str, Enum):
    UNSEEDED = "UNSEEDED"
    SEEDED = "SEEDED"
    CANCELLED = "CANCELLED"


@dataclass(slots=True)
class LadderState:
    symbol: str
    phase: PairPhase = PairPhase.UNSEEDED
    rungs: list[DesiredOrder] = field(default_factory=list)
    # Planned rungs whose batch failed after earlier batches went through.
    pending: list[DesiredOrder] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ReconciliationPlan:
    symbol: str
    to_place: tuple[DesiredOrder, ...] = ()
    carried: tuple[DesiredOrder, ...] = ()
    filled: tuple[DesiredOrder, ...] = ()
    reseed: bool = False

    @property
    def next_rungs(self) -> list[DesiredOrder]:
        return [*self.carried, *self.to_place]

    @property
    def is_noop(self) -> bool:
        return not self.to_place and not self.filled and not self.reseed


class Reconciler:
    def __init__(self) -> None:
        self._states: dict[str, LadderState] = {}

    def state(self, symbol: str) -> LadderState:
        state = self._states.get(symbol)
        if state is None:
            state = LadderState(symbol=symbol)
            self._states[symbol] = state
        return state

    @property
    def states(self) -> dict[str, LadderState]:
        return self._states

    def plan(
        self,
        pair: PairConfig,
        market: Market,
        snapshot: MarketSnapshot,
        open_orders: Sequence[OpenOrder],
    ) -> ReconciliationPlan:
        state = self.state(pair.symbol)
        if state.phase is PairPhase.CANCELLED:
            return ReconciliationPlan(symbol=pair.symbol)

        resting = [order for order in open_orders if order.market_id == market.market_id]
        if state.phase is PairPhase.UNSEEDED or not state.rungs or not resting:
            if state.phase is PairPhase.SEEDED:
                LOGGER.info("No resting orders left for %s; seeding the ladder again", pair.symbol)
            return ReconciliationPlan(
                symbol=pair.symbol,
                to_place=tuple(self._seed(pair, market, snapshot, resting)),
                reseed=True,
            )

        if isinstance(pair, GridPairConfig):
            return self._plan_grid(pair, market, snapshot, state, resting)
        return self._plan_market_maker(pair, market, snapshot, state, resting)

    def commit(self, plan: ReconciliationPlan, placed: Optional[Sequence[DesiredOrder]] = None) -> LadderState:
        """Store the plan once its orders are on the book.

        ``placed`` is the prefix of ``plan.to_place`` that went through when a
        later batch failed; the rest is kept as pending and retried next tick.
        """
        state = self.state(plan.symbol)
        if state.phase is PairPhase.CANCELLED:
            return state
        if placed is None:
            state.rungs = plan.next_rungs
            state.pending = []
        else:
            state.rungs = [*plan.carried, *placed]
            state.pending = list(plan.to_place[len(placed) :])
        state.phase = PairPhase.SEEDED
        return state

    def mark_cancelled(self, symbol: str) -> None:
        state = self.state(symbol)
        state.phase = PairPhase.CANCELLED
        state.rungs = []
        state.pending = []

    def cancel_all_states(self, symbols: Iterable[str] = ()) -> None:
        for symbol in {*self._states, *symbols}:
            self.mark_cancelled(symbol)

    @staticmethod
    def _seed(
        pair: PairConfig,
        market: Market,
        snapshot: MarketSnapshot,
        resting: Sequence[OpenOrder],
    ) -> list[DesiredOrder]:
        if isinstance(pair, GridPairConfig):
            return seed_grid_ladder(market, pair, snapshot)
        return seed_market_maker_ladder(market, pair, snapshot, resting)

    @staticmethod
    def _plan_grid(
        pair: GridPairConfig,
        market: Market,
        snapshot: MarketSnapshot,
        state: LadderState,
        resting: Sequence[OpenOrder],
    ) -> ReconciliationPlan:
        open_prices = {order.price for order in resting}
        book: list[PricedOrder] = list(resting)
        carried: list[DesiredOrder] = []
        filled: list[DesiredOrder] = []
        counters: list[DesiredOrder] = []
        for order in state.pending:
            if order.price in open_prices:
                carried.append(order)
                continue
            retry = grid_retry_rung(market, pair, order, snapshot)
            if retry is None:
                LOGGER.warning("Dropping unplaced %s rung at %s on %s", order.side.name, order.price, pair.symbol)
                continue
            LOGGER.info("Retrying unplaced %s rung at %s on %s", retry.side.name, retry.price, pair.symbol)
            counters.append(retry)
            book.append(retry)
        for rung in state.rungs:
            if rung.price in open_prices:
                carried.append(rung)
                continue
            filled.append(rung)
            counter = grid_counter_order(market, pair, rung, book, snapshot)
            if counter is None:
                LOGGER.warning(
                    "No counter-order possible for filled %s rung at %s on %s",
                    rung.side.name,
                    rung.price,
                    pair.symbol,
                )
                continue
            LOGGER.info(
                "%s rung at %s on %s filled; counter %s at %s",
                rung.side.name,
                rung.price,
                pair.symbol,
                counter.side.name,
                counter.price,
            )
            counters.append(counter)
            book.append(counter)
        return ReconciliationPlan(
            symbol=pair.symbol,
            to_place=tuple(counters),
            carried=tuple(carried),
            filled=tuple(filled),
        )

    @staticmethod
    def _plan_market_maker(
        pair: MarketMakerPairConfig,
        market: Market,
        snapshot: MarketSnapshot,
        state: LadderState,
        resting: Sequence[OpenOrder],
    ) -> ReconciliationPlan:
        open_keys = {(order.side, order.price) for order in resting}
        carried = [rung for rung in state.rungs if (rung.side, rung.price) in open_keys]
        filled = [rung for rung in state.rungs if (rung.side, rung.price) not in open_keys]
        top_up = seed_market_maker_ladder(market, pair, snapshot, resting)
        return ReconciliationPlan(
            symbol=pair.symbol,
            to_place=tuple(top_up),
            carried=tuple(carried),
            filled=tuple(filled),
        )
