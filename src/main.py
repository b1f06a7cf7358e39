"""
Main entry point for the Polymarket Up/Down Market Maker.
Wires the clients into the trading cycle and runs the main event loop.
"""

import asyncio
import signal
import sys
from typing import Optional

# Use uvloop for better performance on Linux
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass  # uvloop not available (Windows)

from .config import load_config, Config
from .clients.websocket_client import WebSocketClient
from .clients.clob_client import CLOBClient
from .clients.gamma_client import GammaClient
from .clients.polygon_client import PolygonClient
from .execution.fills import FillReconciler
from .execution.merger import TokenMerger
from .execution.order_tracker import OrderTracker
from .execution.simulation import SimulatedExecution
from .market_maker.cycle import TradingCycleOrchestrator
from .market_maker.errors import ConfigInvalid
from .market_maker.inventory import InventoryTracker
from .market_maker.maker import MarketMaker
from .market_maker.models import MarketInfo
from .utils.logger import setup_logging, get_logger
from .utils.rate_limiter import RateLimiter

logger = get_logger("main")


class PolymarketMakerBot:
    """
    Main bot orchestrator.

    Coordinates:
    - Market discovery (Gamma)
    - WebSocket connection for real-time books and prices
    - The per-market trading cycle
    - Token merging
    - Risk controls
    """

    def __init__(self, config: Config):
        """Initialize bot with configuration."""
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._closed = False
        self._tracked: dict[str, MarketInfo] = {}

        self.gamma_client = GammaClient(base_url=config.polymarket.gamma_url)

        self.clob_client = CLOBClient(
            api_key=config.polymarket.api_key,
            api_secret=config.polymarket.api_secret,
            api_passphrase=config.polymarket.api_passphrase,
            private_key=config.wallet.private_key,
            chain_id=config.wallet.chain_id,
            funder=config.polymarket.funder or None,
            signature_type=config.polymarket.signature_type,
            rate_limiter=RateLimiter(config.polymarket.min_request_interval),
            host=config.polymarket.clob_url
        )

        self.polygon_client: Optional[PolygonClient] = None
        self.merger: Optional[TokenMerger] = None
        if not config.risk.simulation_mode:
            self.polygon_client = PolygonClient(
                rpc_url=config.wallet.polygon_rpc_url,
                private_key=config.wallet.private_key,
                wallet_address=config.wallet.wallet_address
            )
            self.merger = TokenMerger(
                polygon_client=self.polygon_client,
                min_merge_amount=config.trading.merge_threshold
            )

        if config.risk.simulation_mode:
            self.execution = SimulatedExecution(starting_balance=config.risk.simulation_balance)
        else:
            self.execution = self.clob_client

        self.ws_client = WebSocketClient(
            url=config.polymarket.ws_url,
            stale_after_seconds=config.trading.price_staleness_seconds
        )

        self.inventory = InventoryTracker()
        self.order_tracker = OrderTracker()
        self.orchestrator = TradingCycleOrchestrator(
            cfg=config.trading,
            inventory=self.inventory,
            execution=self.execution,
            feed=self.ws_client,
            price_source=self.clob_client,
            merge_handler=self.merger,
            fill_source=FillReconciler(self.execution, self.order_tracker),
            order_tracker=self.order_tracker
        )
        self.maker = MarketMaker(self.orchestrator, config.trading)

    async def initialize(self) -> None:
        """Initialize all components."""
        logger.info("Initializing Polymarket Market Maker")

        if self.config.risk.kill_switch:
            logger.warning("Kill switch is enabled - bot will not trade")

        await self.gamma_client.initialize()
        await self.clob_client.initialize()

        if self.polygon_client:
            await self.polygon_client.initialize()

        balance = await self.execution.get_balance()
        logger.info("Wallet balance", extra={"usdc": balance})
        if balance < self.config.risk.min_wallet_balance:
            logger.warning(
                f"Low USDC balance: {balance} < {self.config.risk.min_wallet_balance}"
            )

        if self.config.risk.simulation_mode:
            logger.info("[SIMULATION] Orders are recorded, not sent")

        logger.info("Bot initialized successfully")

    async def run(self) -> None:
        """Run the main bot loop."""
        self._running = True

        logger.info("Starting Polymarket Market Maker")

        try:
            await self.ws_client.connect()
            await self._discover_markets()

            tasks = [
                self._run_websocket(),
                self._run_market_refresh(),
                self._wait_for_shutdown()
            ]
            if not self.config.risk.kill_switch:
                await self.maker.start()
                tasks.append(self._run_maker())

            await asyncio.gather(*tasks)

        except Exception as e:
            logger.error(f"Bot error: {e}")
            raise

        finally:
            await self.shutdown()

    async def _run_websocket(self) -> None:
        """Run WebSocket message processing."""
        try:
            await self.ws_client.run()
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            if self._running:
                raise

    async def _run_maker(self) -> None:
        """Run trading cycles until shutdown."""
        while self._running:
            try:
                await self.maker.run_once()
            except Exception as e:
                logger.error(f"Market maker cycle error: {e}")
            await self._sleep(self.config.trading.refresh_interval)

    async def _run_market_refresh(self) -> None:
        """Periodically pick up the next window's markets."""
        while self._running:
            await self._sleep(self.config.markets.discovery_interval)
            if not self._running:
                break
            try:
                await self._discover_markets()
            except Exception as e:
                logger.error(f"Market refresh error: {e}")

    async def _discover_markets(self) -> list[MarketInfo]:
        markets = await self.gamma_client.fetch_updown_markets(
            self.config.markets.assets,
            self.config.markets.window_minutes
        )

        self.maker.prune_expired()
        active = {m.market_id for m in self.maker.markets}
        expired = [m for m in self._tracked.values() if m.market_id not in active]
        if expired:
            tokens = [t for m in expired for t in (m.up_token_id, m.down_token_id)]
            await self.ws_client.unsubscribe(tokens)
            for market in expired:
                self._tracked.pop(market.market_id, None)
                await self.inventory.clear_market(market.market_id)

        added = self.maker.update_markets(markets)
        for market in added:
            self._tracked[market.market_id] = market
        if added:
            tokens = [t for m in added for t in (m.up_token_id, m.down_token_id)]
            await self.ws_client.subscribe(tokens)
        return added

    async def _sleep(self, seconds: float) -> None:
        """Sleep that wakes early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _wait_for_shutdown(self) -> None:
        """Wait for shutdown signal."""
        await self._shutdown_event.wait()
        self._running = False
        await self.ws_client.disconnect()

    async def _cancel_resting_orders(self) -> None:
        for market in self.maker.markets:
            for token_id in (market.up_token_id, market.down_token_id):
                try:
                    await self.execution.cancel_all(token_id)
                except Exception as e:
                    logger.error(f"Failed to cancel orders for {token_id} on shutdown: {e}")

    async def shutdown(self) -> None:
        """Gracefully shutdown the bot."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down bot")
        self._running = False
        self._shutdown_event.set()

        await self._cancel_resting_orders()
        await self.maker.stop()

        await self.ws_client.disconnect()
        await self.gamma_client.close()

        if self.merger:
            logger.info("Merger statistics", extra=self.merger.get_stats())

        logger.info("Bot shutdown complete")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def setup_signal_handlers(bot: PolymarketMakerBot) -> None:
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        bot.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main() -> None:
    """Main entry point."""
    try:
        config = load_config()
    except ConfigInvalid as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(
        level=config.logging.log_level,
        json_format=config.logging.json_logging
    )

    logger.info("Starting Polymarket Market Maker")

    bot = PolymarketMakerBot(config)
    setup_signal_handlers(bot)

    try:
        await bot.initialize()
        await bot.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
