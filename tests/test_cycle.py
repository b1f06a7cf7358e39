"""
Tests for the per-market trading cycle.
"""

import asyncio
from datetime import datetime, timedelta, timezone
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.clients.clob_client import CLOBClient
from src.clients.websocket_client import WebSocketClient
from src.execution.fills import FillReconciler
from src.execution.merger import MergeResult, TokenMerger
from src.execution.order_tracker import OrderTracker
from src.execution.simulation import SimulatedExecution
from src.market_maker.config import TradingConfig
from src.market_maker.cycle import CycleStatus, TradingCycleOrchestrator
from src.market_maker.errors import CancellationFailed
from src.market_maker.inventory import InventoryTracker
from src.market_maker.models import (
    BookSnapshot,
    MarketInfo,
    MergeIntent,
    Outcome,
    PriceLevel,
    PriceTick,
    Side,
)


@pytest.fixture
def now():
    return time.time()


@pytest.fixture
def market(now):
    return MarketInfo(
        market_id="m1",
        condition_id="0xcond",
        up_token_id="up",
        down_token_id="down",
        end_time=datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(minutes=10),
        slug="btc-updown-15m-1767225600",
        asset="BTC"
    )


def make_book(now: float, bids=None, asks=None) -> BookSnapshot:
    return BookSnapshot(
        token_id="up",
        bids=bids if bids is not None else [PriceLevel(0.49, 100), PriceLevel(0.48, 100)],
        asks=asks if asks is not None else [PriceLevel(0.51, 100), PriceLevel(0.52, 100)],
        timestamp=now
    )


@pytest.fixture
def feed(now):
    """Streaming feed with a fresh 0.50 price and a two-level book."""
    client = MagicMock(spec=WebSocketClient)
    client.get_last_price.return_value = PriceTick("up", 0.50, now)
    client.get_order_book.return_value = make_book(now)
    return client


@pytest.fixture
def execution():
    client = AsyncMock(spec=CLOBClient)
    client.cancel_all.return_value = 0
    client.get_balance.return_value = 100.0
    client.place.side_effect = ["order-1", "order-2", "order-3", "order-4"]
    return client


@pytest.fixture
def price_source():
    client = AsyncMock(spec=CLOBClient)
    client.fetch_price.return_value = None
    client.fetch_order_book.return_value = None
    return client


@pytest.fixture
def inventory():
    return InventoryTracker()


@pytest.fixture
def orchestrator(inventory, execution, feed, price_source, now):
    return TradingCycleOrchestrator(
        cfg=TradingConfig(),
        inventory=inventory,
        execution=execution,
        feed=feed,
        price_source=price_source,
        clock=lambda: now
    )


def placed_intents(execution):
    return [call.args[0] for call in execution.place.call_args_list]


class TestHappyPath:
    """Tests for a normal two-sided cycle."""

    @pytest.mark.asyncio
    async def test_places_both_sides(self, orchestrator, execution, market):
        """Should cancel both tokens then place a bid on each."""
        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.COMPLETED
        assert result.placements == 2
        assert not result.quote.degraded
        execution.cancel_all.assert_any_await("up")
        execution.cancel_all.assert_any_await("down")

        up_bid, down_bid = placed_intents(execution)
        assert (up_bid.token_id, up_bid.side, up_bid.outcome) == ("up", Side.BUY, Outcome.UP)
        assert up_bid.price == pytest.approx(0.49)
        assert up_bid.size == 1.0
        assert (down_bid.token_id, down_bid.side, down_bid.outcome) == ("down", Side.BUY, Outcome.DOWN)
        assert down_bid.price == pytest.approx(0.49)

    @pytest.mark.asyncio
    async def test_tracks_placed_orders(self, orchestrator, market):
        """Should remember placed orders for fill reconciliation."""
        await orchestrator.run_cycle(market)

        assert len(orchestrator.order_tracker) == 2
        assert orchestrator.stats.orders_placed == 2
        assert orchestrator.stats.cycles_completed == 1


class TestCancellation:
    """Tests for cancel-before-place."""

    @pytest.mark.asyncio
    async def test_cancel_failure_places_nothing(self, orchestrator, execution, market):
        """Should abort with zero placements when a cancel fails."""
        execution.cancel_all.side_effect = CancellationFailed("down", "not canceled: order-9")

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.ABORTED
        assert "order-9" in result.reason
        assert execution.place.call_count == 0

    @pytest.mark.asyncio
    async def test_cancel_exception_places_nothing(self, orchestrator, execution, market):
        """Should treat any cancel error as a cancellation failure."""
        execution.cancel_all.side_effect = ConnectionError("connection reset")

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.ABORTED
        assert execution.place.call_count == 0
        assert orchestrator.stats.cycles_aborted == 1


class TestPriceAcquisition:
    """Tests for reference price sourcing and validation."""

    @pytest.mark.asyncio
    async def test_no_price_skips(self, orchestrator, feed, execution, market):
        """Should skip when no streaming or queried price is available."""
        feed.get_last_price.return_value = None

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.SKIPPED
        assert "insufficient_data" in result.reason
        execution.cancel_all.assert_not_called()
        execution.place.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_tick_uses_query(self, orchestrator, feed, price_source, market, now):
        """Should fall back to a synchronous price query for stale ticks."""
        feed.get_last_price.return_value = PriceTick("up", 0.50, now - 30)
        price_source.fetch_price.return_value = 0.50

        result = await orchestrator.run_cycle(market)

        price_source.fetch_price.assert_awaited_once_with("up")
        assert result.status is CycleStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_price_out_of_bounds_skips(self, orchestrator, feed, execution, market, now):
        """Should skip when the price is outside the tradable bounds."""
        feed.get_last_price.return_value = PriceTick("up", 0.995, now)

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.SKIPPED
        assert "out_of_range" in result.reason
        execution.place.assert_not_called()

    @pytest.mark.asyncio
    async def test_outside_safe_range_still_quotes(self, orchestrator, feed, market, now):
        """Should only warn for prices outside the safe range."""
        feed.get_last_price.return_value = PriceTick("up", 0.05, now)

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.COMPLETED
        assert len(orchestrator.warnings) == 1


class TestQuoting:
    """Tests for quote sourcing."""

    @pytest.mark.asyncio
    async def test_single_bid_level_degrades(self, orchestrator, feed, execution, market, now):
        """Should quote around the reference price when depth is unusable."""
        feed.get_order_book.return_value = make_book(now, bids=[PriceLevel(0.45, 100)])

        result = await orchestrator.run_cycle(market)

        assert result.quote.degraded
        assert result.quote.bid == pytest.approx(0.49)
        assert result.quote.ask == pytest.approx(0.51)
        assert orchestrator.stats.degraded_quotes == 1
        assert execution.place.call_count == 2

    @pytest.mark.asyncio
    async def test_rest_book_fallback(self, orchestrator, feed, price_source, market, now):
        """Should use the queried book when the streaming book is missing."""
        feed.get_order_book.return_value = None
        price_source.fetch_order_book.return_value = make_book(
            now,
            bids=[PriceLevel(0.59, 100), PriceLevel(0.58, 100)],
            asks=[PriceLevel(0.61, 100), PriceLevel(0.62, 100)]
        )

        result = await orchestrator.run_cycle(market)

        assert not result.quote.degraded
        assert result.quote.bid == pytest.approx(0.59)


class TestPlacement:
    """Tests for two-sided submission."""

    @pytest.mark.asyncio
    async def test_one_side_failing(self, orchestrator, execution, market):
        """Should keep the other side when one placement fails."""
        execution.place.side_effect = ["order-1", Exception("not enough balance / allowance")]

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.COMPLETED
        assert len(result.placed) == 1
        assert len(result.failed) == 1
        assert result.failed[0].category == "BALANCE"
        assert orchestrator.stats.orders_failed == 1
        assert len(orchestrator.order_tracker) == 1

    @pytest.mark.asyncio
    async def test_insufficient_balance_skips(self, orchestrator, execution, market):
        """Should skip placement when the balance does not cover the orders."""
        execution.get_balance.return_value = 0.5

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.SKIPPED
        assert "insufficient_balance" in result.reason
        execution.place.assert_not_called()


class TestInventoryGating:
    """Tests for exposure, skew and limits."""

    @pytest.mark.asyncio
    async def test_total_exposure_gate(self, orchestrator, inventory, execution, market):
        """Should skip the cycle at the aggregate position limit."""
        await inventory.update_position("other", Outcome.UP, 100, 0.30)

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.SKIPPED
        assert "total position" in result.reason
        execution.cancel_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_heavy_up_skips_buy(self, orchestrator, inventory, execution, market):
        """Should only quote the DOWN side when long UP beyond the skip threshold."""
        await inventory.update_position("m1", Outcome.UP, 4, 0.50)

        result = await orchestrator.run_cycle(market)

        assert Side.BUY in result.skipped_sides
        intents = placed_intents(execution)
        assert [i.token_id for i in intents] == ["down"]

    @pytest.mark.asyncio
    async def test_size_capped_by_limit(self, orchestrator, inventory, execution, market):
        """Should size an order to the room left under the limit."""
        cfg = TradingConfig(max_position=4.0)
        orchestrator.cfg = cfg
        await inventory.update_position("m1", Outcome.UP, 3.5, 0.50)
        await inventory.update_position("m1", Outcome.DOWN, 3.5, 0.50)

        await orchestrator.run_cycle(market)

        sizes = {i.token_id: i.size for i in placed_intents(execution)}
        assert sizes == {"up": 0.5, "down": 0.5}

    @pytest.mark.asyncio
    async def test_both_sides_at_limit_skips(self, orchestrator, inventory, execution, market):
        """Should skip when neither side has room."""
        await inventory.update_position("m1", Outcome.UP, 5, 0.50)
        await inventory.update_position("m1", Outcome.DOWN, 5, 0.50)

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.SKIPPED
        assert "position limit" in result.reason
        execution.place.assert_not_called()


class TestExits:
    """Tests for exit unwinding inside the cycle."""

    @pytest.mark.asyncio
    async def test_take_profit_places_sell(self, orchestrator, inventory, execution, market):
        """Should sell a winning position instead of quoting."""
        await inventory.update_position("m1", Outcome.UP, 2, 0.40)

        result = await orchestrator.run_cycle(market)

        assert result.reason == "exit"
        assert len(result.exits) == 1
        (intent,) = placed_intents(execution)
        assert intent.side is Side.SELL
        assert intent.token_id == "up"
        assert intent.size == 2
        assert intent.price == pytest.approx(0.50)
        execution.cancel_all.assert_any_await("up")

    @pytest.mark.asyncio
    async def test_expiring_market_without_positions_skips(self, orchestrator, execution, market, now):
        """Should stop quoting close to expiry once resting orders are cancelled."""
        market.end_time = datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(seconds=60)

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.SKIPPED
        assert "expiring" in result.reason
        assert execution.cancel_all.await_count == 2
        execution.place.assert_not_called()


class TestMerge:
    """Tests for merge dispatch."""

    @pytest.mark.asyncio
    async def test_dispatches_merge_and_records(self, inventory, execution, feed, price_source, market, now):
        """Should merge offsetting inventory in the background and keep quoting."""
        merger = AsyncMock(spec=TokenMerger)
        merger.merge.return_value = MergeResult(
            success=True,
            market_id="m1",
            tx_hash="0xabc",
            gas_used=80000,
            gas_cost_usd=0.02,
            amount_merged=2.0
        )
        orchestrator = TradingCycleOrchestrator(
            cfg=TradingConfig(),
            inventory=inventory,
            execution=execution,
            feed=feed,
            price_source=price_source,
            merge_handler=merger,
            clock=lambda: now
        )
        await inventory.update_position("m1", Outcome.UP, 2, 0.50)
        await inventory.update_position("m1", Outcome.DOWN, 2, 0.50)

        result = await orchestrator.run_cycle(market)
        await orchestrator.drain_merges()

        assert result.merge_amount == 2
        merger.merge.assert_awaited_once_with(MergeIntent("m1", "0xcond", 2.0))
        assert await inventory.positions("m1") == []
        assert orchestrator.stats.merge_count == 1
        assert result.status is CycleStatus.COMPLETED


class TestIsolation:
    """Tests for failure isolation."""

    @pytest.mark.asyncio
    async def test_unexpected_error_aborts(self, orchestrator, feed, market):
        """Should return an aborted result instead of raising."""
        feed.get_last_price.side_effect = RuntimeError("feed exploded")

        result = await orchestrator.run_cycle(market)

        assert result.status is CycleStatus.ABORTED
        assert "feed exploded" in result.reason

    @pytest.mark.asyncio
    async def test_overlapping_cycle_skipped(self, orchestrator, execution, market):
        """Should skip a market whose previous cycle is still running."""
        gate = asyncio.Event()

        async def slow_cancel(token_id):
            await gate.wait()
            return 0

        execution.cancel_all.side_effect = slow_cancel
        first = asyncio.create_task(orchestrator.run_cycle(market))
        while not execution.cancel_all.called:
            await asyncio.sleep(0)

        second = await orchestrator.run_cycle(market)
        gate.set()
        first_result = await first

        assert second.status is CycleStatus.SKIPPED
        assert second.reason == "cycle_in_progress"
        assert first_result.status is CycleStatus.COMPLETED


class TestFillReconciliation:
    """Tests for fills flowing into inventory across cycles."""

    @pytest.mark.asyncio
    async def test_fill_updates_inventory(self, inventory, feed, market, now):
        """Should apply fills of cancelled orders before the next quote."""
        sim = SimulatedExecution(starting_balance=100)
        tracker = OrderTracker()
        orchestrator = TradingCycleOrchestrator(
            cfg=TradingConfig(),
            inventory=inventory,
            execution=sim,
            feed=feed,
            fill_source=FillReconciler(sim, tracker),
            order_tracker=tracker,
            clock=lambda: now
        )

        await orchestrator.run_cycle(market)
        (up_order,) = sim.open_orders("up")
        sim.simulate_fill(up_order.order_id)

        result = await orchestrator.run_cycle(market)

        assert result.fills == 1
        held = await inventory.get_position("m1", Outcome.UP)
        assert held.size == pytest.approx(1.0)
        assert held.average_price == pytest.approx(0.49)
        assert Side.BUY in result.skipped_sides
        assert [o.intent.token_id for o in sim.open_orders()] == ["down"]

    @pytest.mark.asyncio
    async def test_unreadable_order_kept_until_polled(self, inventory, feed, market, now):
        """Should keep an order whose status poll failed and count its fill later."""
        sim = SimulatedExecution(starting_balance=100)
        tracker = OrderTracker()
        orchestrator = TradingCycleOrchestrator(
            cfg=TradingConfig(),
            inventory=inventory,
            execution=sim,
            feed=feed,
            fill_source=FillReconciler(sim, tracker),
            order_tracker=tracker,
            clock=lambda: now
        )

        await orchestrator.run_cycle(market)
        (up_order,) = sim.open_orders("up")
        sim.simulate_fill(up_order.order_id)

        read_order = sim.get_order
        failures = [up_order.order_id]

        async def flaky_get_order(order_id):
            if order_id in failures:
                failures.remove(order_id)
                raise ConnectionError("connection reset")
            return await read_order(order_id)

        sim.get_order = flaky_get_order

        result = await orchestrator.run_cycle(market)
        assert result.fills == 0
        assert tracker.get(up_order.order_id) is not None
        assert await inventory.get_position("m1", Outcome.UP) is None

        result = await orchestrator.run_cycle(market)
        assert result.fills == 1
        assert tracker.get(up_order.order_id) is None
        held = await inventory.get_position("m1", Outcome.UP)
        assert held.size == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_shared_empty_tracker_is_used(self, inventory, execution, feed):
        """Should record placements in the tracker it was given, even when empty."""
        tracker = OrderTracker()
        orchestrator = TradingCycleOrchestrator(
            cfg=TradingConfig(),
            inventory=inventory,
            execution=execution,
            feed=feed,
            order_tracker=tracker
        )

        assert orchestrator.order_tracker is tracker
