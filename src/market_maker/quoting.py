"""
Quote pricing.

Converts a depth snapshot plus inventory skew into a bid/ask pair inside the
configured spread bounds and the exchange's [0.01, 0.99] tick range.
"""
from dataclasses import dataclass

from src.market_maker.orderbook import DepthSnapshot

PRICE_FLOOR = 0.01
PRICE_CEILING = 0.99

INVENTORY_SKEW_FACTOR = 0.01
IMBALANCE_FACTOR = 0.005

PRICE_DECIMALS = 4


@dataclass(frozen=True)
class Quote:
    """Two-sided quote for the UP token."""
    bid: float
    ask: float
    spread: float
    degraded: bool = False

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _build(center: float, spread: float, degraded: bool) -> Quote:
    # Spread wider than the tradable range collapses to the full range.
    spread = min(spread, PRICE_CEILING - PRICE_FLOOR)
    half = spread / 2
    # Shifting the center keeps bid < ask and the spread intact at the bounds.
    center = clamp(center, PRICE_FLOOR + half, PRICE_CEILING - half)
    bid = clamp(round(center - half, PRICE_DECIMALS), PRICE_FLOOR, PRICE_CEILING)
    ask = clamp(round(center + half, PRICE_DECIMALS), PRICE_FLOOR, PRICE_CEILING)
    return Quote(bid=bid, ask=ask, spread=spread, degraded=degraded)


class QuoteEngine:
    """
    Inventory-aware quote engine.

    Both quotes move together by `skew * skew_factor` (positive skew moves them
    up) and by `-imbalance * imbalance_factor`, which leans the quotes toward
    the side with less resting liquidity.
    """

    def __init__(
        self,
        skew_factor: float = INVENTORY_SKEW_FACTOR,
        imbalance_factor: float = IMBALANCE_FACTOR
    ):
        self.skew_factor = skew_factor
        self.imbalance_factor = imbalance_factor

    def quote(
        self,
        depth: DepthSnapshot,
        inventory_skew: float,
        min_spread: float,
        max_spread: float
    ) -> Quote:
        """
        Price a two-sided quote from book depth.

        Args:
            depth: Analyzed order book
            inventory_skew: Market skew in [-1, 1]
            min_spread: Narrowest allowed spread
            max_spread: Widest allowed spread

        Returns:
            Quote with bid < ask, both within [0.01, 0.99]
        """
        spread = clamp(depth.raw_spread, min_spread, max_spread)
        inventory_adj = inventory_skew * self.skew_factor
        imbalance_adj = -depth.imbalance * self.imbalance_factor
        center = depth.mid + inventory_adj + imbalance_adj
        return _build(center, spread, degraded=False)

    def quote_from_reference(self, reference_price: float, spread: float) -> Quote:
        """Degraded quote: reference price plus or minus a fixed half spread."""
        return _build(reference_price, spread, degraded=True)
