"""
Rate-limited warnings for prices outside the safe range.
"""
import time
from typing import Callable, Optional

from src.utils.logger import get_logger

logger = get_logger("price_warning")


class PriceWarningTracker:
    """
    Emits at most one warning per (side, price bucket) per cooldown window.

    `side` is "below" or "above" the safe range; the bucket is the price
    rounded to two decimals.
    """

    def __init__(self, cooldown_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_warnings: dict[tuple[str, float], float] = {}

    @staticmethod
    def bucket(price: float) -> float:
        return round(price, 2)

    def should_warn(self, price: float, side: str) -> bool:
        key = (side, self.bucket(price))
        now = self._clock()
        last = self._last_warnings.get(key)
        if last is not None and now - last < self.cooldown_seconds:
            return False
        self._last_warnings[key] = now
        return True

    def check(
        self,
        price: float,
        safe_low: float,
        safe_high: float,
        context: str = ""
    ) -> Optional[str]:
        """
        Warn if `price` is outside [safe_low, safe_high].

        Returns:
            "below" or "above" when the price is outside the safe range
            (whether or not a warning was logged), else None
        """
        if price < safe_low:
            side = "below"
        elif price > safe_high:
            side = "above"
        else:
            return None

        if self.should_warn(price, side):
            logger.warning(
                f"⚠️ {context} Price {price:.4f} {side} safe range [{safe_low:.2f}, {safe_high:.2f}]",
                extra={"price": price, "side": side, "context": context}
            )
        return side

    def cleanup(self) -> None:
        """Forget entries older than two cooldown windows."""
        now = self._clock()
        horizon = self.cooldown_seconds * 2
        self._last_warnings = {
            key: at for key, at in self._last_warnings.items() if now - at < horizon
        }

    def clear(self) -> None:
        self._last_warnings.clear()

    def __len__(self) -> int:
        return len(self._last_warnings)
