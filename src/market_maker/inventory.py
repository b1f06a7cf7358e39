"""
Inventory tracking for paired UP/DOWN outcome tokens.

All positions live in one arena keyed by (market_id, outcome) behind a single
reader/writer lock. Fills and merges take the write side; cycles read
everything they need in one `snapshot()` call.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from src.market_maker.models import (
    FillEvent,
    InventoryStatus,
    Outcome,
    Position,
    Side,
)
from src.utils.logger import get_logger
from src.utils.rwlock import ReadWriteLock

logger = get_logger("inventory")

SKIP_SKEW_THRESHOLD = 0.7
HEAVY_SKEW_THRESHOLD = 0.5
MODERATE_SKEW_THRESHOLD = 0.3
HEAVY_LIMIT_FACTOR = 0.2
MODERATE_LIMIT_FACTOR = 0.5

# Sizes below this are treated as flat
DUST = 1e-9


# Pure helpers

def compute_status(positions: list[Position]) -> InventoryStatus:
    """Value each side and derive skew, clamped to [-1, 1]."""
    up_value = sum(p.value for p in positions if p.outcome is Outcome.UP)
    down_value = sum(p.value for p in positions if p.outcome is Outcome.DOWN)
    total = up_value + down_value
    if total > 0:
        skew = max(-1.0, min(1.0, (up_value - down_value) / total))
    else:
        skew = 0.0
    return InventoryStatus(
        up_value=up_value,
        down_value=down_value,
        total_value=total,
        skew=skew
    )


def skip_side(side: Side, skew: float) -> tuple[bool, str]:
    """Whether adding to `side` is prohibited at this skew."""
    if side is Side.BUY:
        if skew > SKIP_SKEW_THRESHOLD:
            return True, f"skew {skew:.2f} > {SKIP_SKEW_THRESHOLD}: too much UP inventory"
        return False, ""
    if side is Side.SELL:
        if skew < -SKIP_SKEW_THRESHOLD:
            return True, f"skew {skew:.2f} < -{SKIP_SKEW_THRESHOLD}: too much DOWN inventory"
        return False, ""
    raise ValueError(f"Unknown side: {side}")


def relevant_skew(side: Side, skew: float) -> float:
    """Skew component in the direction `side` would add to."""
    if side is Side.BUY:
        return max(skew, 0.0)
    if side is Side.SELL:
        return max(-skew, 0.0)
    raise ValueError(f"Unknown side: {side}")


def dynamic_position_limit(side: Side, skew: float, max_position: float) -> float:
    """Tiered per-side limit. Boundaries use strict inequality."""
    exposure = relevant_skew(side, skew)
    if exposure > HEAVY_SKEW_THRESHOLD:
        return max_position * HEAVY_LIMIT_FACTOR
    if exposure > MODERATE_SKEW_THRESHOLD:
        return max_position * MODERATE_LIMIT_FACTOR
    return max_position


def merge_amount(up_size: float, down_size: float, threshold: float) -> Optional[float]:
    """Offsettable amount when both sides are held and the smaller exceeds threshold."""
    if up_size <= 0 or down_size <= 0:
        return None
    amount = min(up_size, down_size)
    if amount > threshold:
        return amount
    return None


@dataclass(frozen=True)
class InventorySnapshot:
    """Everything a cycle needs from the tracker, read under one lock."""
    market_id: str
    market: InventoryStatus
    aggregate: InventoryStatus
    positions: dict[Outcome, Position] = field(default_factory=dict)

    def size(self, outcome: Outcome) -> float:
        position = self.positions.get(outcome)
        return position.size if position else 0.0

    def should_skip_side(self, side: Side) -> tuple[bool, str]:
        return skip_side(side, self.market.skew)

    def position_limit(self, side: Side, max_position: float) -> float:
        return dynamic_position_limit(side, self.market.skew, max_position)

    def merge_opportunity(self, threshold: float) -> Optional[float]:
        return merge_amount(self.size(Outcome.UP), self.size(Outcome.DOWN), threshold)


@dataclass(frozen=True)
class BalanceAdjustment:
    """Per-side order sizes that steer inventory back to neutral."""
    buy_multiplier: float
    sell_multiplier: float
    buy_size: float
    sell_size: float
    recommendation: str


class InventoryTracker:
    """
    Position arena for all markets.

    Positions are created on the first confirmed fill, updated with a
    weighted-average price on subsequent fills and removed once flat.
    """

    def __init__(self):
        self._positions: dict[tuple[str, Outcome], Position] = {}
        self._lock = ReadWriteLock()

    # Writes

    async def update_position(
        self,
        market_id: str,
        outcome: Outcome,
        fill_size: float,
        fill_price: float,
        timestamp: Optional[datetime] = None
    ) -> Optional[Position]:
        """
        Apply a signed fill to a position.

        Args:
            market_id: Market identifier
            outcome: UP or DOWN
            fill_size: Positive to add, negative to reduce
            fill_price: Execution price
            timestamp: Fill time, used as opened_at for new positions

        Returns:
            The updated position, or None if it was closed
        """
        async with self._lock.write():
            return self._apply(market_id, outcome, fill_size, fill_price, timestamp)

    async def apply_fill(self, fill: FillEvent) -> Optional[Position]:
        """Consume a fill notification. BUY adds, SELL reduces."""
        signed = fill.size if fill.side is Side.BUY else -fill.size
        opened_at = datetime.fromtimestamp(fill.timestamp, tz=timezone.utc)
        return await self.update_position(
            fill.market_id, fill.outcome, signed, fill.price, opened_at
        )

    async def record_merge(self, market_id: str, amount: float) -> None:
        """Reduce both sides by a merged amount."""
        async with self._lock.write():
            for outcome in (Outcome.UP, Outcome.DOWN):
                position = self._positions.get((market_id, outcome))
                if position:
                    self._apply(market_id, outcome, -amount, position.average_price, None)
        logger.info(f"Recorded merge of {amount:.2f} for {market_id}")

    async def clear_market(self, market_id: str) -> int:
        """Drop all positions of a market (settled elsewhere)."""
        async with self._lock.write():
            keys = [key for key in self._positions if key[0] == market_id]
            for key in keys:
                del self._positions[key]
        return len(keys)

    def _apply(
        self,
        market_id: str,
        outcome: Outcome,
        fill_size: float,
        fill_price: float,
        timestamp: Optional[datetime]
    ) -> Optional[Position]:
        key = (market_id, outcome)
        current = self._positions.get(key)

        if current is None:
            if fill_size <= DUST:
                if fill_size < 0:
                    logger.warning(
                        f"Reduce of {-fill_size:.4f} on flat {outcome.value} position in {market_id}"
                    )
                return None
            position = Position(
                market_id=market_id,
                outcome=outcome,
                size=fill_size,
                average_price=fill_price,
                opened_at=timestamp or datetime.now(timezone.utc)
            )
            self._positions[key] = position
            logger.debug(f"Opened {outcome.value} position in {market_id}: {fill_size:.4f} @ {fill_price:.4f}")
            return position

        new_size = current.size + fill_size
        if new_size <= DUST:
            del self._positions[key]
            logger.debug(f"Closed {outcome.value} position in {market_id}")
            return None

        if fill_size > 0:
            average = (current.size * current.average_price + fill_size * fill_price) / new_size
        else:
            average = current.average_price

        position = replace(current, size=new_size, average_price=average)
        self._positions[key] = position
        return position

    # Reads

    def _market_positions(self, market_id: str) -> list[Position]:
        return [p for (m, _), p in self._positions.items() if m == market_id]

    def _status(self, market_id: Optional[str]) -> InventoryStatus:
        if market_id is None:
            return compute_status(list(self._positions.values()))
        return compute_status(self._market_positions(market_id))

    async def inventory_status(self, market_id: Optional[str] = None) -> InventoryStatus:
        """Status for one market, or aggregated across all markets."""
        async with self._lock.read():
            return self._status(market_id)

    async def should_skip_side(
        self,
        side: Side,
        market_id: Optional[str] = None
    ) -> tuple[bool, str]:
        """Skip BUY above +0.7 skew and SELL below -0.7."""
        async with self._lock.read():
            skew = self._status(market_id).skew
        return skip_side(side, skew)

    async def position_limit(
        self,
        side: Side,
        max_position: float,
        market_id: Optional[str] = None
    ) -> float:
        """Dynamic per-side limit from the current skew."""
        async with self._lock.read():
            skew = self._status(market_id).skew
        return dynamic_position_limit(side, skew, max_position)

    async def check_merge_opportunity(
        self,
        market_id: str,
        threshold: float
    ) -> Optional[float]:
        """Amount of UP+DOWN that can be merged back into collateral."""
        async with self._lock.read():
            up = self._positions.get((market_id, Outcome.UP))
            down = self._positions.get((market_id, Outcome.DOWN))
            up_size = up.size if up else 0.0
            down_size = down.size if down else 0.0
        return merge_amount(up_size, down_size, threshold)

    async def snapshot(self, market_id: str) -> InventorySnapshot:
        """Batched read of the market and aggregate state."""
        async with self._lock.read():
            positions = {
                outcome: position
                for (m, outcome), position in self._positions.items()
                if m == market_id
            }
            return InventorySnapshot(
                market_id=market_id,
                market=compute_status(list(positions.values())),
                aggregate=self._status(None),
                positions=positions
            )

    async def get_position(self, market_id: str, outcome: Outcome) -> Optional[Position]:
        async with self._lock.read():
            return self._positions.get((market_id, outcome))

    async def positions(self, market_id: Optional[str] = None) -> list[Position]:
        async with self._lock.read():
            if market_id is None:
                return list(self._positions.values())
            return self._market_positions(market_id)

    async def balance_adjustment(
        self,
        order_size: float,
        imbalance_threshold: float,
        market_id: Optional[str] = None
    ) -> BalanceAdjustment:
        """
        Recommend per-side order sizes to steer back toward neutral.

        Above the threshold the heavy side is halved and the light side is
        boosted by up to 50% in proportion to the excess skew.
        """
        status = await self.inventory_status(market_id)
        skew = status.skew

        if abs(skew) <= imbalance_threshold:
            buy, sell, recommendation = 1.0, 1.0, "balanced"
        elif skew > 0:
            buy = 0.5
            sell = 1.0 + min(0.5, skew - imbalance_threshold)
            recommendation = f"long UP ({skew:+.2f}): favour DOWN"
        else:
            buy = 1.0 + min(0.5, -skew - imbalance_threshold)
            sell = 0.5
            recommendation = f"long DOWN ({skew:+.2f}): favour UP"

        return BalanceAdjustment(
            buy_multiplier=buy,
            sell_multiplier=sell,
            buy_size=round(order_size * buy, 2),
            sell_size=round(order_size * sell, 2),
            recommendation=recommendation
        )
