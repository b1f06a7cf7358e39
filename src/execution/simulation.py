"""
Paper-trading execution collaborator.

Implements the same interface as CLOBClient for order flow (place,
cancel_all, get_balance, get_order) without touching the exchange.
"""

import itertools
from dataclasses import dataclass, field
from typing import Optional
import time

from ..clients.clob_client import OrderStatus
from ..market_maker.models import OrderIntent
from ..utils.logger import get_logger

logger = get_logger("simulation")


@dataclass
class SimulatedOrder:
    """An order resting in the paper book."""
    order_id: str
    intent: OrderIntent
    size_matched: float = 0.0
    status: str = "LIVE"
    timestamp: float = field(default_factory=time.time)


class SimulatedExecution:
    """Records orders instead of sending them."""

    def __init__(self, starting_balance: float = 1000.0):
        self.balance = starting_balance
        self._orders: dict[str, SimulatedOrder] = {}
        self._ids = itertools.count(1)
        self.history: list[SimulatedOrder] = []

    async def place(self, intent: OrderIntent) -> str:
        order_id = f"sim-{next(self._ids)}"
        order = SimulatedOrder(order_id=order_id, intent=intent)
        self._orders[order_id] = order
        self.history.append(order)
        logger.info(
            f"[SIMULATION] {intent.side.value} {intent.size} @ {intent.price} for {intent.token_id}",
            extra={"order_id": order_id, "market_id": intent.market_id}
        )
        return order_id

    async def cancel_all(self, token_id: str) -> int:
        live = [
            o for o in self._orders.values()
            if o.intent.token_id == token_id and o.status == "LIVE"
        ]
        for order in live:
            order.status = "CANCELED"
        return len(live)

    async def get_balance(self) -> float:
        return self.balance

    async def get_order(self, order_id: str) -> Optional[OrderStatus]:
        order = self._orders.get(order_id)
        if order is None:
            return None
        return OrderStatus(
            order_id=order_id,
            status=order.status,
            size_matched=order.size_matched,
            size_remaining=order.intent.size - order.size_matched,
            price=order.intent.price
        )

    def simulate_fill(self, order_id: str, size: Optional[float] = None) -> float:
        """Match part or all of a live order. Returns the matched amount."""
        order = self._orders.get(order_id)
        if order is None or order.status != "LIVE":
            return 0.0
        remaining = order.intent.size - order.size_matched
        amount = remaining if size is None else min(size, remaining)
        order.size_matched += amount
        self.balance -= amount * order.intent.price
        if order.size_matched >= order.intent.size:
            order.status = "MATCHED"
        return amount

    def open_orders(self, token_id: Optional[str] = None) -> list[SimulatedOrder]:
        return [
            o for o in self._orders.values()
            if o.status == "LIVE" and (token_id is None or o.intent.token_id == token_id)
        ]
