"""
Shared data models for the market maker.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import time


class Side(Enum):
    """
    Order side.

    As a quote side, BUY is the bid on the UP token and SELL is the ask,
    which is worked as a bid on the DOWN token at the complementary price.
    """
    BUY = "BUY"
    SELL = "SELL"


class Outcome(Enum):
    """Paired outcome token of an Up/Down market."""
    UP = "UP"
    DOWN = "DOWN"

    @property
    def opposite(self) -> "Outcome":
        return Outcome.DOWN if self is Outcome.UP else Outcome.UP


@dataclass(frozen=True)
class PriceLevel:
    """Single level in the order book."""
    price: float
    size: float


@dataclass
class BookSnapshot:
    """Raw order book levels for one token as delivered by a feed."""
    token_id: str
    bids: list[PriceLevel] = field(default_factory=list)
    asks: list[PriceLevel] = field(default_factory=list)
    timestamp: float = 0.0


@dataclass(frozen=True)
class PriceTick:
    """Streaming reference price with its receive time."""
    token_id: str
    price: float
    timestamp: float

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.timestamp


@dataclass
class MarketInfo:
    """A short-lived Up/Down market and its two outcome tokens."""
    market_id: str
    condition_id: str
    up_token_id: str
    down_token_id: str
    end_time: Optional[datetime] = None
    slug: str = ""
    asset: str = ""
    title: str = ""

    def token_for(self, outcome: Outcome) -> str:
        return self.up_token_id if outcome is Outcome.UP else self.down_token_id

    def time_to_expiry(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds until the market closes, or None when unknown."""
        if self.end_time is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (self.end_time - now).total_seconds()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        remaining = self.time_to_expiry(now)
        return remaining is not None and remaining <= 0


@dataclass
class Position:
    """Held inventory for one (market, outcome) pair."""
    market_id: str
    outcome: Outcome
    size: float
    average_price: float
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def value(self) -> float:
        return self.size * self.average_price


@dataclass(frozen=True)
class InventoryStatus:
    """Derived inventory balance for a market or across all markets."""
    up_value: float
    down_value: float
    total_value: float
    skew: float

    @property
    def is_balanced(self) -> bool:
        return abs(self.skew) < 0.3


@dataclass(frozen=True)
class OrderIntent:
    """An order the cycle wants placed. Has no id until the exchange accepts it."""
    market_id: str
    token_id: str
    outcome: Outcome
    side: Side
    price: float
    size: float

    @property
    def notional(self) -> float:
        return self.price * self.size


@dataclass(frozen=True)
class FillEvent:
    """A confirmed fill on one of our orders."""
    market_id: str
    outcome: Outcome
    side: Side
    price: float
    size: float
    order_id: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MergeIntent:
    """Request to merge equal UP and DOWN amounts back into collateral."""
    market_id: str
    condition_id: str
    amount: float
