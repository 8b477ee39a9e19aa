from conftest import D, open_orders_for
from dex_models import MarketSnapshot, OpenOrder, OrderSide
from ladder import seed_grid_ladder, seed_market_maker_ladder
from reconcile import PairPhase, Reconciler


def _seeded(reconciler, pair, market, snapshot):
    plan = reconciler.plan(pair, market, snapshot, [])
    reconciler.commit(plan)
    return plan


class TestGridReconciliation:
    def test_first_plan_seeds_full_ladder(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()

        plan = reconciler.plan(grid_pair, xmd_market, grid_snapshot, [])

        assert plan.reseed
        assert list(plan.to_place) == seed_grid_ladder(xmd_market, grid_pair, grid_snapshot)
        assert reconciler.state(grid_pair.symbol).phase is PairPhase.UNSEEDED

    def test_commit_stores_ladder(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()

        plan = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)

        state = reconciler.state(grid_pair.symbol)
        assert state.phase is PairPhase.SEEDED
        assert state.rungs == list(plan.to_place)

    def test_empty_book_reseeds_the_same_ladder(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        first = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)

        again = reconciler.plan(grid_pair, xmd_market, grid_snapshot, [])

        assert again.reseed
        assert again.to_place == first.to_place

    def test_intact_ladder_needs_no_orders(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        book = open_orders_for(seed.to_place, xmd_market)

        for _ in range(2):
            plan = reconciler.plan(grid_pair, xmd_market, grid_snapshot, book)
            reconciler.commit(plan)
            assert plan.to_place == ()
            assert plan.is_noop
            assert list(plan.carried) == list(seed.to_place)

    def test_filled_buy_becomes_one_sell(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        remaining = [rung for rung in seed.to_place if rung.price != D("0.125")]

        plan = reconciler.plan(grid_pair, xmd_market, grid_snapshot, open_orders_for(remaining, xmd_market))

        assert len(plan.to_place) == 1
        counter = plan.to_place[0]
        assert counter.side is OrderSide.SELL
        assert counter.price == D("0.15")
        assert [rung.price for rung in plan.filled] == [D("0.125")]
        assert plan.next_rungs == [*remaining, counter]

    def test_filled_sell_becomes_one_buy(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        remaining = [rung for rung in seed.to_place if rung.price != D("0.175")]

        plan = reconciler.plan(grid_pair, xmd_market, grid_snapshot, open_orders_for(remaining, xmd_market))

        assert [(order.side, order.price) for order in plan.to_place] == [(OrderSide.BUY, D("0.15"))]

    def test_counter_order_is_kept_clear_of_the_book(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        remaining = [rung for rung in seed.to_place if rung.price != D("0.125")]
        moved = MarketSnapshot(highest_bid=D("0.159"), lowest_ask=D("0.161"), last_price=D("0.16"))

        plan = reconciler.plan(grid_pair, xmd_market, moved, open_orders_for(remaining, xmd_market))

        (counter,) = plan.to_place
        assert counter.side is OrderSide.SELL
        assert counter.price > moved.highest_bid
        assert counter.price == D("0.159001")

    def test_buy_counter_order_stays_below_the_ask(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        remaining = [rung for rung in seed.to_place if rung.price != D("0.175")]
        moved = MarketSnapshot(highest_bid=D("0.139"), lowest_ask=D("0.141"), last_price=D("0.14"))

        plan = reconciler.plan(grid_pair, xmd_market, moved, open_orders_for(remaining, xmd_market))

        assert [(order.side, order.price) for order in plan.to_place] == [(OrderSide.BUY, D("0.140999"))]

    def test_counter_orders_stack_within_one_tick(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        remaining = [rung for rung in seed.to_place if rung.side is OrderSide.SELL]

        plan = reconciler.plan(grid_pair, xmd_market, grid_snapshot, open_orders_for(remaining, xmd_market))

        assert [(order.side, order.price) for order in plan.to_place] == [
            (OrderSide.SELL, D("0.15")),
            (OrderSide.SELL, D("0.149001")),
        ]

    def test_counter_order_without_opposite_side_uses_filled_price(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        remaining = [rung for rung in seed.to_place if rung.price == D("0.1")]

        plan = reconciler.plan(grid_pair, xmd_market, grid_snapshot, open_orders_for(remaining, xmd_market))

        # Both sells filled into buys; the 0.125 buy then finds no resting sell.
        sells = [order.price for order in plan.to_place if order.side is OrderSide.SELL]
        buys = [order.price for order in plan.to_place if order.side is OrderSide.BUY]
        assert D("0.15") in sells
        assert buys == [D("0.125"), D("0.15")]

    def test_partial_commit_retries_only_unplaced_rungs(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = reconciler.plan(grid_pair, xmd_market, grid_snapshot, [])
        placed = seed.to_place[:2]

        state = reconciler.commit(seed, placed=placed)

        assert state.phase is PairPhase.SEEDED
        assert state.rungs == list(placed)
        assert state.pending == list(seed.to_place[2:])

        plan = reconciler.plan(grid_pair, xmd_market, grid_snapshot, open_orders_for(placed, xmd_market))

        assert plan.to_place == seed.to_place[2:]
        assert plan.filled == ()
        reconciler.commit(plan)
        assert reconciler.state(grid_pair.symbol).rungs == list(seed.to_place)
        assert reconciler.state(grid_pair.symbol).pending == []

    def test_plan_does_not_touch_state(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        remaining = list(seed.to_place[1:])

        reconciler.plan(grid_pair, xmd_market, grid_snapshot, open_orders_for(remaining, xmd_market))

        assert reconciler.state(grid_pair.symbol).rungs == list(seed.to_place)

    def test_orders_from_other_markets_are_ignored(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)
        foreign = [OpenOrder(order_id="9", side=OrderSide.BUY, price=D("0.2"), quantity=D("1"), market_id=99)]

        plan = reconciler.plan(grid_pair, xmd_market, grid_snapshot, foreign)

        assert plan.reseed

    def test_cancelled_pairs_plan_nothing(self, xmd_market, grid_pair, grid_snapshot):
        reconciler = Reconciler()
        _seeded(reconciler, grid_pair, xmd_market, grid_snapshot)

        reconciler.cancel_all_states()

        state = reconciler.state(grid_pair.symbol)
        assert state.phase is PairPhase.CANCELLED
        assert state.rungs == []
        assert reconciler.plan(grid_pair, xmd_market, grid_snapshot, []).to_place == ()


class TestMarketMakerReconciliation:
    def test_full_book_is_left_alone(self, xusdc_market, mm_pair, mm_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, mm_pair, xusdc_market, mm_snapshot)

        plan = reconciler.plan(mm_pair, xusdc_market, mm_snapshot, open_orders_for(seed.to_place, xusdc_market))

        assert plan.is_noop
        assert list(plan.carried) == list(seed.to_place)

    def test_filled_level_is_topped_up(self, xusdc_market, mm_pair, mm_snapshot):
        reconciler = Reconciler()
        seed = _seeded(reconciler, mm_pair, xusdc_market, mm_snapshot)
        remaining = [rung for rung in seed.to_place if rung.price != D("0.45")]

        plan = reconciler.plan(mm_pair, xusdc_market, mm_snapshot, open_orders_for(remaining, xusdc_market))

        assert [(order.side, order.price) for order in plan.to_place] == [(OrderSide.BUY, D("0.45"))]
        assert [rung.price for rung in plan.filled] == [D("0.45")]

    def test_first_plan_accounts_for_existing_orders(self, xusdc_market, mm_pair, mm_snapshot):
        reconciler = Reconciler()
        existing = [
            rung for rung in seed_market_maker_ladder(xusdc_market, mm_pair, mm_snapshot) if rung.side is OrderSide.SELL
        ]

        plan = reconciler.plan(mm_pair, xusdc_market, mm_snapshot, open_orders_for(existing, xusdc_market))

        assert {order.side for order in plan.to_place} == {OrderSide.BUY}
