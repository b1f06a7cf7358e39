"""
Bookkeeping for resting orders placed by the trading cycle.
"""

from dataclasses import dataclass, field
from typing import Optional
import time

from ..market_maker.models import OrderIntent, Outcome, Side
from ..utils.logger import get_logger

logger = get_logger("order_tracker")


@dataclass
class TrackedOrder:
    """A resting order and how much of it we have already seen matched."""
    order_id: str
    market_id: str
    token_id: str
    outcome: Outcome
    side: Side
    price: float
    size: float
    size_matched: float = 0.0
    placed_at: float = field(default_factory=time.time)

    @property
    def remaining(self) -> float:
        return max(self.size - self.size_matched, 0.0)

    @property
    def age_seconds(self) -> float:
        return time.time() - self.placed_at


class OrderTracker:
    """Resting orders indexed by order id."""

    def __init__(self):
        self._orders: dict[str, TrackedOrder] = {}

    def track(self, order_id: str, intent: OrderIntent) -> TrackedOrder:
        order = TrackedOrder(
            order_id=order_id,
            market_id=intent.market_id,
            token_id=intent.token_id,
            outcome=intent.outcome,
            side=intent.side,
            price=intent.price,
            size=intent.size
        )
        self._orders[order_id] = order
        logger.debug(f"📋 Tracking order {order_id} for token {intent.token_id}")
        return order

    def get(self, order_id: str) -> Optional[TrackedOrder]:
        return self._orders.get(order_id)

    def remove(self, order_id: str) -> Optional[TrackedOrder]:
        return self._orders.pop(order_id, None)

    def orders_for_market(self, market_id: str) -> list[TrackedOrder]:
        return [o for o in self._orders.values() if o.market_id == market_id]

    def orders_for_token(self, token_id: str) -> list[TrackedOrder]:
        return [o for o in self._orders.values() if o.token_id == token_id]

    def clear_token(self, token_id: str) -> int:
        """Forget every order resting on a token (after a successful cancel)."""
        stale = [oid for oid, o in self._orders.items() if o.token_id == token_id]
        for order_id in stale:
            del self._orders[order_id]
        if stale:
            logger.debug(f"Cleared {len(stale)} tracked orders for token {token_id}")
        return len(stale)

    def find_old_orders(self, threshold_seconds: float) -> list[TrackedOrder]:
        return [o for o in self._orders.values() if o.age_seconds > threshold_seconds]

    def clear(self) -> None:
        self._orders.clear()

    def __len__(self) -> int:
        return len(self._orders)
