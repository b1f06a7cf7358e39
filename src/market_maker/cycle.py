"""
Per-market trading cycle.

One cycle runs strictly in order: exposure gate, merge check, reference
price, price validation, cancel resting orders, fill reconciliation, exits,
side skips and limits, quote, balance check, two-sided submission. A cancel
failure aborts the market's cycle before anything is placed.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
import time

from src.execution.order_tracker import OrderTracker
from src.market_maker.config import TradingConfig
from src.market_maker.errors import (
    CancellationFailed,
    InsufficientData,
    OutOfRange,
    classify_error,
)
from src.market_maker.exits import ExitEvaluator, ExitSignal
from src.market_maker.inventory import InventorySnapshot, InventoryTracker
from src.market_maker.models import (
    BookSnapshot,
    MarketInfo,
    MergeIntent,
    OrderIntent,
    Outcome,
    Side,
)
from src.market_maker.orderbook import OrderBookAnalyzer
from src.market_maker.price_warning import PriceWarningTracker
from src.market_maker.quoting import Quote, QuoteEngine
from src.market_maker.stats import TradingStats
from src.utils.logger import get_logger, TradeLogger

logger = get_logger("cycle")
trade_logger = TradeLogger()

PRICE_DECIMALS = 4
SIZE_DECIMALS = 2


class CycleStatus(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


@dataclass
class SideOutcome:
    """What happened to one submitted order."""
    intent: OrderIntent
    order_id: Optional[str] = None
    error: Optional[str] = None
    category: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.order_id is not None


@dataclass
class CycleResult:
    """Terminal state of one market's cycle."""
    market_id: str
    status: CycleStatus
    reason: str = ""
    reference_price: Optional[float] = None
    quote: Optional[Quote] = None
    cancelled: int = 0
    fills: int = 0
    placed: list[SideOutcome] = field(default_factory=list)
    failed: list[SideOutcome] = field(default_factory=list)
    skipped_sides: dict[Side, str] = field(default_factory=dict)
    merge_amount: Optional[float] = None
    exits: list[ExitSignal] = field(default_factory=list)

    @property
    def placements(self) -> int:
        return len(self.placed)


class TradingCycleOrchestrator:
    """
    Drives one decision cycle per market.

    Collaborators:
        execution: `cancel_all(token_id)`, `place(intent)`, `get_balance()`
        feed: `get_order_book(token_id)`, `get_last_price(token_id)` (streaming)
        price_source: `fetch_price(token_id)`, `fetch_order_book(token_id)` (REST)
        merge_handler: `merge(MergeIntent)` returning a result with
            `success` and `amount_merged`
        fill_source: `collect(market_id)` returning a batch with `fills` and
            the `unpolled` order ids
    """

    def __init__(
        self,
        cfg: TradingConfig,
        inventory: InventoryTracker,
        execution: Any,
        feed: Any = None,
        price_source: Any = None,
        merge_handler: Any = None,
        fill_source: Any = None,
        order_tracker: Optional[OrderTracker] = None,
        stats: Optional[TradingStats] = None,
        clock: Callable[[], float] = time.time
    ):
        self.cfg = cfg
        self.inventory = inventory
        self.execution = execution
        self.feed = feed
        self.price_source = price_source
        self.merge_handler = merge_handler
        self.fill_source = fill_source
        self.order_tracker = order_tracker if order_tracker is not None else OrderTracker()
        self.stats = stats if stats is not None else TradingStats()
        self.clock = clock

        self.analyzer = OrderBookAnalyzer()
        self.quote_engine = QuoteEngine()
        self.exit_evaluator = ExitEvaluator(cfg)
        self.warnings = PriceWarningTracker(cfg.price_warn_cooldown)

        self._market_locks: dict[str, asyncio.Lock] = {}
        self._merge_tasks: dict[str, asyncio.Task] = {}

    async def run_cycle(self, market: MarketInfo) -> CycleResult:
        """
        Run one full cycle for a market.

        Never raises for per-market failures; they come back as an aborted
        CycleResult so other markets are unaffected.
        """
        lock = self._market_locks.setdefault(market.market_id, asyncio.Lock())
        if lock.locked():
            return self._finish(self._skipped(market, "cycle_in_progress"))

        async with lock:
            try:
                result = await self._run(market)
            except InsufficientData as e:
                result = self._skipped(market, f"insufficient_data: {e}")
            except OutOfRange as e:
                result = self._skipped(market, f"out_of_range: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in cycle for {market.market_id}: {e}", exc_info=True)
                result = CycleResult(
                    market_id=market.market_id,
                    status=CycleStatus.ABORTED,
                    reason=f"unexpected error: {e}"
                )
        return self._finish(result)

    async def _run(self, market: MarketInfo) -> CycleResult:
        cfg = self.cfg
        market_id = market.market_id

        # 1. Exposure gate
        snapshot = await self.inventory.snapshot(market_id)
        total = snapshot.aggregate.total_value
        if total >= cfg.max_total_position:
            return self._skipped(
                market,
                f"total position {total:.2f} >= max {cfg.max_total_position:.2f}"
            )

        # 2. Merge check
        merge_amount = snapshot.merge_opportunity(cfg.merge_threshold)
        if merge_amount is not None:
            self._dispatch_merge(market, merge_amount)

        # 3. Reference price
        reference = await self._reference_price(market)
        if reference is None:
            raise InsufficientData("no reference price")

        # 4. Price validation
        if not cfg.min_price <= reference <= cfg.max_price:
            raise OutOfRange(
                f"price {reference:.4f} outside [{cfg.min_price}, {cfg.max_price}]",
                value=reference
            )
        self.warnings.check(
            reference, cfg.safe_range_low, cfg.safe_range_high,
            context=market.slug or market_id
        )

        result = CycleResult(
            market_id=market_id,
            status=CycleStatus.COMPLETED,
            reference_price=reference,
            merge_amount=merge_amount
        )

        # 5. Cancel resting orders, then account for anything they filled
        try:
            result.cancelled = await self._cancel_resting(market)
        except CancellationFailed as e:
            result.status = CycleStatus.ABORTED
            result.reason = str(e)
            return result
        result.fills = await self._reconcile_fills(market)

        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        snapshot = await self.inventory.snapshot(market_id)

        # 6. Exits reuse the same cancel-then-place path
        exits = self._evaluate_exits(market, snapshot, reference, now)
        if exits:
            result.exits = [signal for signal, _ in exits]
            result.reason = "exit"
            await self._submit([intent for _, intent in exits], result)
            return result

        time_to_expiry = market.time_to_expiry(now)
        if time_to_expiry is not None and time_to_expiry < cfg.exit_before_expiry:
            result.status = CycleStatus.SKIPPED
            result.reason = f"market expiring in {time_to_expiry:.0f}s"
            return result

        # 7. Side skips and limits, once per cycle
        sizes = self._plan_sizes(snapshot, result)
        if not sizes:
            result.status = CycleStatus.SKIPPED
            result.reason = "; ".join(
                f"{side.value}: {why}" for side, why in result.skipped_sides.items()
            )
            return result

        # 8. Quote
        quote = await self._quote(market, snapshot.market.skew, reference)
        result.quote = quote
        trade_logger.quote_computed(
            market_id=market_id,
            bid=quote.bid,
            ask=quote.ask,
            skew=snapshot.market.skew,
            degraded=quote.degraded
        )

        intents = self._build_intents(market, quote, sizes, result)
        if not intents:
            result.status = CycleStatus.SKIPPED
            result.reason = "out_of_range: no side inside price bounds"
            return result

        # 9. Balance
        required = sum(intent.notional for intent in intents) * (1 + cfg.balance_buffer)
        balance = await self.execution.get_balance()
        if balance < required:
            result.status = CycleStatus.SKIPPED
            result.reason = f"insufficient_balance: {balance:.2f} < {required:.2f}"
            return result

        # 10. Submit both sides independently
        await self._submit(intents, result)
        return result

    async def _reference_price(self, market: MarketInfo) -> Optional[float]:
        """Fresh streaming price, else a synchronous query."""
        token_id = market.up_token_id
        if self.feed is not None:
            tick = self.feed.get_last_price(token_id)
            if tick is not None and tick.age(self.clock()) < self.cfg.price_staleness_seconds:
                return tick.price

        if self.price_source is None:
            return None
        try:
            return await self.price_source.fetch_price(token_id)
        except Exception as e:
            logger.warning(f"Price query failed for {market.market_id}: {e}")
            return None

    async def _cancel_resting(self, market: MarketInfo) -> int:
        cancelled = 0
        for token_id in (market.up_token_id, market.down_token_id):
            try:
                count = await self.execution.cancel_all(token_id)
            except CancellationFailed:
                raise
            except Exception as e:
                raise CancellationFailed(token_id, str(e)) from e
            cancelled += count or 0
            trade_logger.orders_cancelled(market.market_id, token_id, count or 0)
        self.stats.record_orders_cancelled(cancelled)
        return cancelled

    async def _reconcile_fills(self, market: MarketInfo) -> int:
        fills = []
        unpolled: set[str] = set()
        if self.fill_source is not None:
            try:
                batch = await self.fill_source.collect(market.market_id)
                fills, unpolled = batch.fills, batch.unpolled
            except Exception as e:
                logger.warning(f"Fill reconciliation failed for {market.market_id}: {e}")
                unpolled = {o.order_id for o in self.order_tracker.orders_for_market(market.market_id)}

        for fill in fills:
            await self.inventory.apply_fill(fill)
            self.stats.record_order_filled(fill.size)

        # Cancelled orders stay tracked until their status has been read once
        for token_id in (market.up_token_id, market.down_token_id):
            for order in self.order_tracker.orders_for_token(token_id):
                if order.order_id not in unpolled:
                    self.order_tracker.remove(order.order_id)
        if unpolled:
            logger.info(f"Keeping {len(unpolled)} unpolled orders for {market.market_id}")
        return len(fills)

    def _evaluate_exits(
        self,
        market: MarketInfo,
        snapshot: InventorySnapshot,
        reference: float,
        now: datetime
    ) -> list[tuple[ExitSignal, OrderIntent]]:
        time_to_expiry = market.time_to_expiry(now)
        exits = []
        for outcome, position in snapshot.positions.items():
            current = reference if outcome is Outcome.UP else 1 - reference
            signal = self.exit_evaluator.check_exit(position, current, time_to_expiry, now)
            if signal is None:
                continue

            size = round(position.size, SIZE_DECIMALS)
            if size < self.cfg.min_order_size:
                continue

            price = round(
                min(max(current, self.cfg.min_price), self.cfg.max_price),
                PRICE_DECIMALS
            )
            trade_logger.exit_triggered(
                market_id=market.market_id,
                outcome=outcome.value,
                reason=signal.reason.value,
                trigger_value=signal.trigger_value,
                pnl=signal.pnl
            )
            self.stats.record_exit()
            exits.append((signal, OrderIntent(
                market_id=market.market_id,
                token_id=market.token_for(outcome),
                outcome=outcome,
                side=Side.SELL,
                price=price,
                size=size
            )))
        return exits

    def _plan_sizes(self, snapshot: InventorySnapshot, result: CycleResult) -> dict[Side, float]:
        sizes = {}
        for side in (Side.BUY, Side.SELL):
            skip, why = snapshot.should_skip_side(side)
            if skip:
                result.skipped_sides[side] = why
                continue

            limit = snapshot.position_limit(side, self.cfg.max_position)
            held = snapshot.size(Outcome.UP if side is Side.BUY else Outcome.DOWN)
            size = round(min(self.cfg.order_size, limit - held), SIZE_DECIMALS)
            if size < self.cfg.min_order_size:
                result.skipped_sides[side] = f"position limit {limit:.2f} reached (held {held:.2f})"
                continue
            sizes[side] = size
        return sizes

    async def _quote(self, market: MarketInfo, skew: float, reference: float) -> Quote:
        depth = None
        book = self.feed.get_order_book(market.up_token_id) if self.feed is not None else None
        if book is not None and not self._book_is_stale(book):
            depth = self._analyze(book)

        if depth is None and self.price_source is not None:
            try:
                book = await self.price_source.fetch_order_book(market.up_token_id)
            except Exception as e:
                logger.warning(f"Order book query failed for {market.market_id}: {e}")
                book = None
            if book is not None:
                depth = self._analyze(book)

        if depth is not None:
            return self.quote_engine.quote(depth, skew, self.cfg.min_spread, self.cfg.max_spread)

        logger.warning(
            f"No usable depth for {market.market_id}, quoting {reference:.4f} ± {self.cfg.spread / 2:.4f}"
        )
        self.stats.record_degraded_quote()
        return self.quote_engine.quote_from_reference(reference, self.cfg.spread)

    def _book_is_stale(self, book: BookSnapshot) -> bool:
        return self.clock() - book.timestamp >= self.cfg.price_staleness_seconds

    def _analyze(self, book: BookSnapshot):
        return self.analyzer.analyze(
            book.bids, book.asks, self.cfg.min_level_size, self.cfg.depth_lookback
        )

    def _build_intents(
        self,
        market: MarketInfo,
        quote: Quote,
        sizes: dict[Side, float],
        result: CycleResult
    ) -> list[OrderIntent]:
        intents = []
        for side, size in sizes.items():
            if side is Side.BUY:
                outcome, price = Outcome.UP, quote.bid
            else:
                # The ask on UP is worked as a bid on DOWN
                outcome, price = Outcome.DOWN, round(1 - quote.ask, PRICE_DECIMALS)

            if not self.cfg.min_price <= price <= self.cfg.max_price:
                result.skipped_sides[side] = f"out_of_range: price {price:.4f}"
                continue

            intents.append(OrderIntent(
                market_id=market.market_id,
                token_id=market.token_for(outcome),
                outcome=outcome,
                side=Side.BUY,
                price=price,
                size=size
            ))
        return intents

    async def _submit(self, intents: list[OrderIntent], result: CycleResult) -> None:
        outcomes = await asyncio.gather(*(self._place_one(intent) for intent in intents))
        for outcome in outcomes:
            if outcome.success:
                result.placed.append(outcome)
            else:
                result.failed.append(outcome)

    async def _place_one(self, intent: OrderIntent) -> SideOutcome:
        try:
            order_id = await self.execution.place(intent)
        except Exception as e:
            error = classify_error(e)
            trade_logger.order_failed(
                market_id=intent.market_id,
                side=f"{intent.side.value} {intent.outcome.value}",
                category=error.category,
                error=str(error)
            )
            self.stats.record_order_failed()
            return SideOutcome(intent=intent, error=str(error), category=error.category)

        self.order_tracker.track(order_id, intent)
        self.stats.record_order_placed(intent.size)
        trade_logger.order_placed(
            order_id=order_id,
            market_id=intent.market_id,
            token_id=intent.token_id,
            side=f"{intent.side.value} {intent.outcome.value}",
            size=intent.size,
            price=intent.price
        )
        return SideOutcome(intent=intent, order_id=order_id)

    def _dispatch_merge(self, market: MarketInfo, amount: float) -> None:
        if self.merge_handler is None:
            logger.info(f"Merge opportunity of {amount:.2f} in {market.market_id} (no merge handler)")
            return
        if market.market_id in self._merge_tasks:
            return

        intent = MergeIntent(
            market_id=market.market_id,
            condition_id=market.condition_id,
            amount=round(amount, SIZE_DECIMALS)
        )
        task = asyncio.create_task(self._run_merge(intent))
        self._merge_tasks[market.market_id] = task
        task.add_done_callback(lambda _: self._merge_tasks.pop(market.market_id, None))

    async def _run_merge(self, intent: MergeIntent) -> None:
        try:
            merge_result = await self.merge_handler.merge(intent)
        except Exception as e:
            logger.error(f"Merge for {intent.market_id} failed: {e}")
            return
        if merge_result.success:
            await self.inventory.record_merge(intent.market_id, merge_result.amount_merged)
            self.stats.record_merge(merge_result.amount_merged)

    def forget_market(self, market_id: str) -> None:
        """Drop per-market state once a market leaves the active set."""
        lock = self._market_locks.get(market_id)
        if lock is not None and not lock.locked():
            del self._market_locks[market_id]

    async def drain_merges(self) -> None:
        """Wait for in-flight merges to finish."""
        tasks = list(self._merge_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _skipped(self, market: MarketInfo, reason: str) -> CycleResult:
        return CycleResult(
            market_id=market.market_id,
            status=CycleStatus.SKIPPED,
            reason=reason
        )

    def _finish(self, result: CycleResult) -> CycleResult:
        if result.status is CycleStatus.SKIPPED:
            trade_logger.cycle_skipped(result.market_id, result.reason)
        elif result.status is CycleStatus.ABORTED:
            trade_logger.cycle_aborted(result.market_id, result.reason)
        self.stats.record_cycle(result.status.value)
        return result
