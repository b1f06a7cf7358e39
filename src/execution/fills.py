"""
Fill reconciliation.

Polls the exchange for the matched size of each tracked resting order and
turns newly matched size into FillEvents for the inventory tracker.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

from ..market_maker.models import FillEvent
from ..utils.logger import get_logger, TradeLogger
from .order_tracker import OrderTracker, TrackedOrder

logger = get_logger("fills")
trade_logger = TradeLogger()


@dataclass
class FillBatch:
    """Fills found in one poll, plus the orders whose status could not be read."""
    fills: list[FillEvent] = field(default_factory=list)
    unpolled: set[str] = field(default_factory=set)


class FillReconciler:
    """
    Detects fills on resting orders.

    The execution collaborator must expose `get_order(order_id)` returning an
    object with `size_matched` (None when the order is unknown).
    """

    def __init__(self, execution: Any, tracker: OrderTracker):
        self.execution = execution
        self.tracker = tracker

    async def collect(self, market_id: str) -> FillBatch:
        """Return fills for the market's tracked orders since the last poll."""
        batch = FillBatch()
        orders = self.tracker.orders_for_market(market_id)
        if not orders:
            return batch

        results = await asyncio.gather(
            *(self._poll(order) for order in orders),
            return_exceptions=True
        )

        for order, result in zip(orders, results):
            if isinstance(result, Exception):
                logger.warning(f"Could not poll order {order.order_id}: {result}")
                batch.unpolled.add(order.order_id)
                continue
            if result is not None:
                batch.fills.append(result)
        return batch

    async def _poll(self, order: TrackedOrder) -> Optional[FillEvent]:
        status = await self.execution.get_order(order.order_id)
        if status is None:
            return None

        matched = min(float(status.size_matched), order.size)
        delta = matched - order.size_matched
        if delta <= 0:
            return None

        order.size_matched = matched
        trade_logger.order_filled(
            order_id=order.order_id,
            market_id=order.market_id,
            outcome=order.outcome.value,
            fill_price=order.price,
            fill_size=delta
        )
        return FillEvent(
            market_id=order.market_id,
            outcome=order.outcome,
            side=order.side,
            price=order.price,
            size=delta,
            order_id=order.order_id
        )
