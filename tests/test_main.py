"""
Tests for the bot wiring in main.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.config import load_config
from src.execution.simulation import SimulatedExecution
from src.main import PolymarketMakerBot
from src.market_maker.cycle import CycleStatus
from src.market_maker.models import MarketInfo, Outcome


ENV_KEYS = [
    "SIMULATION_MODE", "KILL_SWITCH", "SIMULATION_BALANCE", "MM_MERGE_THRESHOLD",
    "MM_ORDER_SIZE", "MM_MIN_LEVEL_SIZE", "MM_PRICE_STALENESS",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def market():
    return MarketInfo(
        market_id="m1",
        condition_id="0xcond",
        up_token_id="up",
        down_token_id="down",
        end_time=datetime.now(timezone.utc) + timedelta(minutes=10)
    )


BOOK_MESSAGE = {
    "event_type": "book",
    "asset_id": "up",
    "bids": [{"price": "0.49", "size": "100"}, {"price": "0.48", "size": "100"}],
    "asks": [{"price": "0.51", "size": "100"}, {"price": "0.52", "size": "100"}],
}


class TestBotWiring:
    """Tests for PolymarketMakerBot construction."""

    @pytest.mark.asyncio
    async def test_simulation_shares_order_tracker(self, clean_env):
        """Should give the cycle and the fill reconciler the same order tracker."""
        bot = PolymarketMakerBot(load_config())

        assert isinstance(bot.execution, SimulatedExecution)
        assert bot.merger is None
        assert bot.orchestrator.order_tracker is bot.order_tracker
        assert bot.orchestrator.fill_source.tracker is bot.order_tracker
        assert bot.orchestrator.inventory is bot.inventory

    @pytest.mark.asyncio
    async def test_simulated_fill_reaches_inventory(self, clean_env, market):
        """Should apply a paper fill to the inventory on the next cycle."""
        bot = PolymarketMakerBot(load_config())
        await bot.ws_client.handle_message(BOOK_MESSAGE)

        first = await bot.orchestrator.run_cycle(market)
        assert first.status is CycleStatus.COMPLETED
        assert len(bot.order_tracker) == 2

        (up_order,) = bot.execution.open_orders("up")
        bot.execution.simulate_fill(up_order.order_id)
        await bot.ws_client.handle_message(BOOK_MESSAGE)

        second = await bot.orchestrator.run_cycle(market)

        assert second.fills == 1
        held = await bot.inventory.get_position("m1", Outcome.UP)
        assert held.size == pytest.approx(bot.config.trading.order_size)

    @pytest.mark.asyncio
    async def test_live_merger_uses_merge_threshold(self, clean_env):
        """Should let the merger accept every amount the cycle dispatches."""
        clean_env.setenv("SIMULATION_MODE", "false")
        clean_env.setenv("POLYMARKET_API_KEY", "key")
        clean_env.setenv("POLYMARKET_API_SECRET", "secret")
        clean_env.setenv("POLYMARKET_API_PASSPHRASE", "pass")
        clean_env.setenv("PRIVATE_KEY", "0x" + "11" * 32)
        clean_env.setenv("WALLET_ADDRESS", "0x" + "ab" * 20)
        clean_env.setenv("MM_MERGE_THRESHOLD", "0.5")

        bot = PolymarketMakerBot(load_config())

        assert bot.execution is bot.clob_client
        assert bot.merger.min_merge_amount == 0.5
        assert bot.orchestrator.merge_handler is bot.merger
