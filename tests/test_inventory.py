"""
Tests for inventory tracking, skew and risk throttling.
"""

import asyncio
import pytest

from src.market_maker.inventory import (
    InventoryTracker,
    compute_status,
    dynamic_position_limit,
    merge_amount,
    skip_side,
)
from src.market_maker.models import FillEvent, Outcome, Position, Side


MARKET = "market-1"


@pytest.fixture
def tracker():
    return InventoryTracker()


def position(outcome: Outcome, size: float, price: float, market_id: str = MARKET) -> Position:
    return Position(market_id=market_id, outcome=outcome, size=size, average_price=price)


class TestSkew:
    """Tests for skew computation."""

    def test_zero_when_flat(self):
        """Should report zero skew with no inventory."""
        status = compute_status([])
        assert status.skew == 0
        assert status.total_value == 0

    def test_value_based_skew(self):
        """Should compute skew from position values."""
        status = compute_status([
            position(Outcome.UP, 40, 0.5),
            position(Outcome.DOWN, 20, 0.5),
        ])

        assert status.up_value == 20
        assert status.down_value == 10
        assert status.skew == pytest.approx(1 / 3)
        assert not status.is_balanced

    def test_one_sided_extremes(self):
        """Should reach +1 and -1 with one-sided inventory."""
        assert compute_status([position(Outcome.UP, 10, 0.5)]).skew == 1.0
        assert compute_status([position(Outcome.DOWN, 10, 0.5)]).skew == -1.0


class TestSkipSide:
    """Tests for side skipping."""

    def test_boundary_does_not_skip(self):
        """Should not skip at exactly +/-0.7."""
        assert skip_side(Side.BUY, 0.7) == (False, "")
        assert skip_side(Side.SELL, -0.7) == (False, "")

    def test_skips_above_threshold(self):
        """Should skip BUY above 0.7 and SELL below -0.7 with a reason."""
        skip, reason = skip_side(Side.BUY, 0.71)
        assert skip
        assert "UP" in reason

        skip, reason = skip_side(Side.SELL, -0.71)
        assert skip
        assert "DOWN" in reason

    def test_opposite_side_not_skipped(self):
        """Should never skip the side that reduces the imbalance."""
        assert not skip_side(Side.SELL, 0.95)[0]
        assert not skip_side(Side.BUY, -0.95)[0]


class TestPositionLimit:
    """Tests for dynamic per-side limits."""

    @pytest.mark.parametrize("skew,expected", [
        (0.0, 5.0),
        (0.3, 5.0),
        (0.31, 2.5),
        (0.5, 2.5),
        (0.51, 1.0),
        (1.0, 1.0),
    ])
    def test_buy_tiers(self, skew, expected):
        """Should apply the tiers with strict boundaries."""
        assert dynamic_position_limit(Side.BUY, skew, 5.0) == pytest.approx(expected)

    def test_only_same_direction_skew_throttles(self):
        """Should not throttle buying when skew is strongly negative."""
        assert dynamic_position_limit(Side.BUY, -0.9, 5.0) == 5.0
        assert dynamic_position_limit(Side.SELL, -0.9, 5.0) == pytest.approx(1.0)
        assert dynamic_position_limit(Side.SELL, 0.9, 5.0) == 5.0


class TestMergeAmount:
    """Tests for merge detection."""

    def test_requires_both_sides(self):
        """Should not merge a one-sided position."""
        assert merge_amount(10, 0, 0.5) is None

    def test_threshold_is_strict(self):
        """Should only merge above the threshold."""
        assert merge_amount(0.5, 3, 0.5) is None
        assert merge_amount(0.6, 3, 0.5) == pytest.approx(0.6)

    def test_returns_smaller_side(self):
        """Should merge the smaller of the two sides."""
        assert merge_amount(7, 4, 0.5) == 4


class TestInventoryTracker:
    """Tests for InventoryTracker."""

    @pytest.mark.asyncio
    async def test_scenario_up_heavy(self, tracker):
        """Should allow BUY with a halved limit at skew 1/3."""
        await tracker.update_position(MARKET, Outcome.UP, 40, 0.5)
        await tracker.update_position(MARKET, Outcome.DOWN, 20, 0.5)

        status = await tracker.inventory_status(MARKET)
        assert status.skew == pytest.approx(0.3333, abs=1e-4)

        skip, _ = await tracker.should_skip_side(Side.BUY, MARKET)
        assert not skip
        assert await tracker.position_limit(Side.BUY, 5.0, MARKET) == pytest.approx(2.5)

    @pytest.mark.asyncio
    async def test_weighted_average_price(self, tracker):
        """Should recompute a weighted-average entry price on adds."""
        await tracker.update_position(MARKET, Outcome.UP, 10, 0.40)
        updated = await tracker.update_position(MARKET, Outcome.UP, 10, 0.60)

        assert updated.size == 20
        assert updated.average_price == pytest.approx(0.50)

    @pytest.mark.asyncio
    async def test_reduce_keeps_average(self, tracker):
        """Should keep the entry price when reducing."""
        await tracker.update_position(MARKET, Outcome.UP, 10, 0.40)
        updated = await tracker.update_position(MARKET, Outcome.UP, -4, 0.70)

        assert updated.size == 6
        assert updated.average_price == pytest.approx(0.40)

    @pytest.mark.asyncio
    async def test_position_removed_when_flat(self, tracker):
        """Should delete a position once fully unwound."""
        await tracker.update_position(MARKET, Outcome.DOWN, 5, 0.5)
        result = await tracker.update_position(MARKET, Outcome.DOWN, -5, 0.5)

        assert result is None
        assert await tracker.get_position(MARKET, Outcome.DOWN) is None
        assert await tracker.positions(MARKET) == []

    @pytest.mark.asyncio
    async def test_reduce_on_flat_is_ignored(self, tracker):
        """Should not create a negative position."""
        assert await tracker.update_position(MARKET, Outcome.UP, -3, 0.5) is None
        assert await tracker.positions() == []

    @pytest.mark.asyncio
    async def test_apply_fill_sides(self, tracker):
        """Should add on BUY fills and reduce on SELL fills."""
        await tracker.apply_fill(FillEvent(MARKET, Outcome.UP, Side.BUY, 0.5, 8))
        await tracker.apply_fill(FillEvent(MARKET, Outcome.UP, Side.SELL, 0.55, 3))

        held = await tracker.get_position(MARKET, Outcome.UP)
        assert held.size == pytest.approx(5)

    @pytest.mark.asyncio
    async def test_markets_are_isolated(self, tracker):
        """Should compute per-market skew independently of other markets."""
        await tracker.update_position(MARKET, Outcome.UP, 10, 0.5)
        await tracker.update_position("market-2", Outcome.DOWN, 10, 0.5)

        assert (await tracker.inventory_status(MARKET)).skew == 1.0
        assert (await tracker.inventory_status("market-2")).skew == -1.0
        aggregate = await tracker.inventory_status()
        assert aggregate.skew == 0
        assert aggregate.total_value == 10

    @pytest.mark.asyncio
    async def test_merge_opportunity_and_record(self, tracker):
        """Should detect a merge and reduce both sides when recorded."""
        await tracker.update_position(MARKET, Outcome.UP, 6, 0.5)
        await tracker.update_position(MARKET, Outcome.DOWN, 4, 0.45)

        amount = await tracker.check_merge_opportunity(MARKET, 0.5)
        assert amount == 4

        await tracker.record_merge(MARKET, amount)

        up = await tracker.get_position(MARKET, Outcome.UP)
        assert up.size == pytest.approx(2)
        assert await tracker.get_position(MARKET, Outcome.DOWN) is None

    @pytest.mark.asyncio
    async def test_snapshot_is_consistent(self, tracker):
        """Should return market, aggregate and positions from one read."""
        await tracker.update_position(MARKET, Outcome.UP, 40, 0.5)
        await tracker.update_position(MARKET, Outcome.DOWN, 20, 0.5)
        await tracker.update_position("market-2", Outcome.UP, 10, 0.5)

        snapshot = await tracker.snapshot(MARKET)

        assert snapshot.market.total_value == 30
        assert snapshot.aggregate.total_value == 35
        assert snapshot.size(Outcome.UP) == 40
        assert snapshot.position_limit(Side.BUY, 5.0) == pytest.approx(2.5)
        assert snapshot.should_skip_side(Side.SELL) == (False, "")
        assert snapshot.merge_opportunity(0.5) == 20

    @pytest.mark.asyncio
    async def test_clear_market(self, tracker):
        """Should drop every position of a market."""
        await tracker.update_position(MARKET, Outcome.UP, 1, 0.5)
        await tracker.update_position(MARKET, Outcome.DOWN, 1, 0.5)

        assert await tracker.clear_market(MARKET) == 2
        assert await tracker.positions() == []

    @pytest.mark.asyncio
    async def test_balance_adjustment(self, tracker):
        """Should favour the light side once skew exceeds the threshold."""
        await tracker.update_position(MARKET, Outcome.UP, 30, 0.5)
        await tracker.update_position(MARKET, Outcome.DOWN, 10, 0.5)

        adjustment = await tracker.balance_adjustment(2.0, 0.3, MARKET)

        assert adjustment.buy_multiplier == 0.5
        assert adjustment.sell_multiplier == pytest.approx(1.2)
        assert adjustment.buy_size == 1.0
        assert adjustment.sell_size == pytest.approx(2.4)

    @pytest.mark.asyncio
    async def test_balance_adjustment_neutral(self, tracker):
        """Should keep the configured size on both sides when balanced."""
        await tracker.update_position(MARKET, Outcome.UP, 10, 0.5)
        await tracker.update_position(MARKET, Outcome.DOWN, 10, 0.5)

        adjustment = await tracker.balance_adjustment(2.0, 0.3, MARKET)

        assert (adjustment.buy_size, adjustment.sell_size) == (2.0, 2.0)
        assert adjustment.recommendation == "balanced"

    @pytest.mark.asyncio
    async def test_concurrent_fills(self, tracker):
        """Should not lose updates under concurrent writers."""
        await asyncio.gather(*(
            tracker.update_position(MARKET, Outcome.UP, 1, 0.5) for _ in range(50)
        ))

        held = await tracker.get_position(MARKET, Outcome.UP)
        assert held.size == pytest.approx(50)
