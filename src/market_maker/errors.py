"""
Error taxonomy for the market maker.

Per-cycle errors (InsufficientData, OutOfRange, CancellationFailed,
PlacementFailed) are scoped to one market; ConfigInvalid is only raised at
startup.
"""
from typing import Optional


class MarketMakerError(Exception):
    """Base class for market maker errors."""
    category = "UNKNOWN"
    retryable = False


class InsufficientData(MarketMakerError):
    """Order book or reference price unavailable. The cycle is skipped."""
    category = "DATA"


class OutOfRange(MarketMakerError):
    """Price or size outside the configured bounds."""
    category = "PRICE"

    def __init__(self, message: str, value: Optional[float] = None):
        super().__init__(message)
        self.value = value


class CancellationFailed(MarketMakerError):
    """Resting orders could not be cancelled. The market's cycle aborts."""
    category = "CANCEL"
    retryable = True

    def __init__(self, token_id: str, message: str):
        super().__init__(f"Cancel failed for {token_id}: {message}")
        self.token_id = token_id


class PlacementFailed(MarketMakerError):
    """A single order could not be placed."""

    RETRYABLE_CATEGORIES = {"RATE_LIMIT", "NETWORK", "TIMEOUT"}

    def __init__(self, message: str, category: str = "UNKNOWN"):
        super().__init__(message)
        self.category = category
        self.retryable = category in self.RETRYABLE_CATEGORIES


class ConfigInvalid(MarketMakerError):
    """Configuration is missing or inconsistent."""
    category = "CONFIG"


def classify_error(exc: Exception) -> PlacementFailed:
    """Map an exchange exception onto a PlacementFailed with a category."""
    if isinstance(exc, PlacementFailed):
        return exc

    message = str(exc)
    lowered = message.lower()

    if "rate limit" in lowered or "429" in lowered:
        category = "RATE_LIMIT"
    elif "balance" in lowered or "allowance" in lowered:
        category = "BALANCE"
    elif "timeout" in lowered or "timed out" in lowered:
        category = "TIMEOUT"
    elif "network" in lowered or "connection" in lowered:
        category = "NETWORK"
    elif "order" in lowered or "invalid" in lowered:
        category = "ORDER_REJECTED"
    else:
        category = "UNKNOWN"

    return PlacementFailed(message or type(exc).__name__, category=category)
