"""
Centralized trading parameters for the market maker.
"""
from dataclasses import dataclass, fields

from src.market_maker.errors import ConfigInvalid


@dataclass(frozen=True)
class TradingConfig:
    """Trading configuration. Read-only once the bot is running."""
    # Sizing
    order_size: float = 1.0
    max_position: float = 5.0  # Per side, per market
    max_total_position: float = 30.0  # Aggregate value across markets
    min_order_size: float = 0.1

    # Spread
    min_spread: float = 0.005
    max_spread: float = 0.02
    spread: float = 0.02  # Degraded-mode spread around the reference price

    # Price bounds
    min_price: float = 0.01
    max_price: float = 0.99
    safe_range_low: float = 0.10
    safe_range_high: float = 0.90
    price_warn_cooldown: float = 60.0

    # Inventory
    merge_threshold: float = 0.5
    imbalance_threshold: float = 0.3

    # Exits
    max_hold_time: float = 180.0  # seconds
    exit_before_expiry: float = 120.0  # seconds
    take_profit: float = 0.03
    stop_loss: float = 0.05

    # Order book
    depth_lookback: int = 5
    min_level_size: float = 10.0

    # Loop
    refresh_interval: float = 45.0
    price_staleness_seconds: float = 5.0
    balance_buffer: float = 0.15

    def validate(self) -> "TradingConfig":
        """Raise ConfigInvalid when parameters are inconsistent."""
        for f in fields(self):
            value = getattr(self, f.name)
            if value < 0:
                raise ConfigInvalid(f"{f.name} must be non-negative, got {value}")

        if self.order_size <= 0:
            raise ConfigInvalid("order_size must be positive")
        if self.max_position <= 0 or self.max_total_position <= 0:
            raise ConfigInvalid("position limits must be positive")
        if not 0 < self.min_spread <= self.max_spread:
            raise ConfigInvalid(
                f"spread bounds invalid: min_spread={self.min_spread}, max_spread={self.max_spread}"
            )
        if self.spread <= 0:
            raise ConfigInvalid("spread must be positive")
        if not 0 < self.min_price < self.max_price < 1:
            raise ConfigInvalid(
                f"price bounds invalid: [{self.min_price}, {self.max_price}]"
            )
        if self.max_spread >= self.max_price - self.min_price:
            raise ConfigInvalid("max_spread does not fit inside the price bounds")
        if not self.min_price <= self.safe_range_low < self.safe_range_high <= self.max_price:
            raise ConfigInvalid(
                f"safe range [{self.safe_range_low}, {self.safe_range_high}] "
                f"must sit inside [{self.min_price}, {self.max_price}]"
            )
        if self.depth_lookback < 1:
            raise ConfigInvalid("depth_lookback must be at least 1")
        if self.price_staleness_seconds <= 0 or self.refresh_interval <= 0:
            raise ConfigInvalid("intervals must be positive")
        return self


# Default configuration instance
config = TradingConfig()
