"""
Order book analysis.

Turns raw bid/ask levels into a DepthSnapshot: best and second-best prices,
depth over a lookback window and a signed imbalance ratio.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from src.market_maker.models import PriceLevel

RawLevel = Union[PriceLevel, tuple, dict]


@dataclass(frozen=True)
class DepthSnapshot:
    """Depth summary of one order book."""
    best_bid: PriceLevel
    second_bid: PriceLevel
    best_ask: PriceLevel
    second_ask: PriceLevel
    bid_depth: float
    ask_depth: float
    imbalance: float

    @property
    def mid(self) -> float:
        return (self.best_bid.price + self.best_ask.price) / 2

    @property
    def raw_spread(self) -> float:
        return self.best_ask.price - self.best_bid.price


def _to_level(raw: RawLevel) -> PriceLevel:
    if isinstance(raw, PriceLevel):
        return raw
    if isinstance(raw, dict):
        return PriceLevel(price=float(raw["price"]), size=float(raw["size"]))
    price, size = raw
    return PriceLevel(price=float(price), size=float(size))


def _filter(levels: Iterable[RawLevel], min_size: float) -> list[PriceLevel]:
    parsed = (_to_level(level) for level in levels)
    return [level for level in parsed if level.size >= min_size]


class OrderBookAnalyzer:
    """
    Pure order book analyzer.

    Never assumes the feed delivers sorted levels. Returns None instead of
    guessing when a side has fewer than two usable levels or the book is
    crossed.
    """

    MIN_LEVELS = 2

    def analyze(
        self,
        bids: Iterable[RawLevel],
        asks: Iterable[RawLevel],
        min_size: float,
        lookback: int
    ) -> Optional[DepthSnapshot]:
        """
        Analyze one book.

        Args:
            bids: Bid levels in any order
            asks: Ask levels in any order
            min_size: Levels smaller than this are ignored
            lookback: Number of levels per side summed into depth

        Returns:
            DepthSnapshot, or None when the book is unusable
        """
        valid_bids = sorted(_filter(bids, min_size), key=lambda l: l.price, reverse=True)
        valid_asks = sorted(_filter(asks, min_size), key=lambda l: l.price)

        if len(valid_bids) < self.MIN_LEVELS or len(valid_asks) < self.MIN_LEVELS:
            return None

        if valid_bids[0].price >= valid_asks[0].price:
            return None

        lookback = max(lookback, 1)
        bid_depth = sum(level.size for level in valid_bids[:lookback])
        ask_depth = sum(level.size for level in valid_asks[:lookback])
        total = bid_depth + ask_depth
        imbalance = (bid_depth - ask_depth) / total if total > 0 else 0.0

        return DepthSnapshot(
            best_bid=valid_bids[0],
            second_bid=valid_bids[1],
            best_ask=valid_asks[0],
            second_ask=valid_asks[1],
            bid_depth=bid_depth,
            ask_depth=ask_depth,
            imbalance=imbalance
        )


_default_analyzer = OrderBookAnalyzer()


def analyze(
    bids: Iterable[RawLevel],
    asks: Iterable[RawLevel],
    min_size: float,
    lookback: int
) -> Optional[DepthSnapshot]:
    """Module-level shortcut for OrderBookAnalyzer().analyze."""
    return _default_analyzer.analyze(bids, asks, min_size, lookback)
