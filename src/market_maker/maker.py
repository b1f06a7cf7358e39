"""
Market Maker loop.

Keeps the set of active Up/Down markets and runs one trading cycle per
market on every tick. Markets run concurrently; one market's failure never
touches another's cycle.
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional

from src.market_maker.config import TradingConfig, config
from src.market_maker.cycle import CycleResult, CycleStatus, TradingCycleOrchestrator
from src.market_maker.models import MarketInfo
from src.utils.logger import get_logger

logger = get_logger("market_maker")


class MarketMaker:
    """
    Market Maker Orchestrator

    Responsibilities:
    - Track active markets and drop expired ones
    - Run cycles for all markets concurrently
    - Run main loop
    - Handle lifecycle (start/stop)

    No trading logic - delegates to TradingCycleOrchestrator.
    """

    def __init__(self, orchestrator: TradingCycleOrchestrator, cfg: TradingConfig = None):
        self.orchestrator = orchestrator
        self.cfg = cfg or orchestrator.cfg or config
        self._markets: dict[str, MarketInfo] = {}
        self._running = False
        self._cycles = 0

    @property
    def markets(self) -> list[MarketInfo]:
        return list(self._markets.values())

    @property
    def stats(self):
        return self.orchestrator.stats

    def update_markets(self, markets: list[MarketInfo]) -> list[MarketInfo]:
        """Add markets not already active. Returns the new ones."""
        added = []
        for market in markets:
            if market.market_id not in self._markets and not market.is_expired():
                self._markets[market.market_id] = market
                added.append(market)
        if added:
            logger.info(f"➕ Added {len(added)} markets ({len(self._markets)} active)")
        return added

    def prune_expired(self, now: Optional[datetime] = None) -> list[MarketInfo]:
        """Drop markets whose window has closed. Returns the removed ones."""
        now = now or datetime.now(timezone.utc)
        expired = [m for m in self._markets.values() if m.is_expired(now)]
        for market in expired:
            del self._markets[market.market_id]
            self.orchestrator.forget_market(market.market_id)
            logger.info(f"Market expired: {market.slug or market.market_id}")
        return expired

    async def start(self):
        """Start the market maker."""
        self._running = True

        logger.info("=" * 70)
        logger.info("  MARKET MAKER")
        logger.info("=" * 70)
        logger.info(f"  Order size: {self.cfg.order_size:.2f}")
        logger.info(f"  Max position: {self.cfg.max_position:.2f} per side, {self.cfg.max_total_position:.2f} total")
        logger.info(f"  Spread: {self.cfg.min_spread:.3f} - {self.cfg.max_spread:.3f}")
        logger.info(f"  Cycle: {self.cfg.refresh_interval:.0f}s")
        logger.info("=" * 70)

    async def stop(self):
        """Stop the market maker and wait for in-flight merges."""
        self._running = False
        await self.orchestrator.drain_merges()
        logger.info("Market maker stopped")
        logger.info(self.stats.summary())

    async def run_once(self, markets: Optional[list[MarketInfo]] = None) -> list[CycleResult]:
        """Run one cycle for every market concurrently."""
        if markets is None:
            self.prune_expired()
            markets = self.markets
        if not markets:
            logger.debug("No active markets")
            return []

        results = await asyncio.gather(
            *(self.orchestrator.run_cycle(market) for market in markets)
        )
        self._cycles += 1
        self.orchestrator.warnings.cleanup()

        completed = sum(1 for r in results if r.status is CycleStatus.COMPLETED)
        placed = sum(r.placements for r in results)
        logger.info(
            f"Cycle {self._cycles}: {completed}/{len(results)} markets quoted, {placed} orders placed"
        )
        logger.info(self.stats.summary())
        return list(results)

    async def run(self):
        """Run the market maker continuously."""
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in market maker cycle: {e}", exc_info=True)
            await asyncio.sleep(self.cfg.refresh_interval)
