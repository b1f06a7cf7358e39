"""
Trading statistics and price freshness tracking.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional
import time


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TradingStats:
    """Process-lifetime counters for monitoring."""
    start_time: str = field(default_factory=_now_iso)
    cycles_completed: int = 0
    cycles_skipped: int = 0
    cycles_aborted: int = 0
    orders_placed: int = 0
    orders_failed: int = 0
    orders_filled: int = 0
    orders_cancelled: int = 0
    exits_triggered: int = 0
    merge_count: int = 0
    total_volume: float = 0.0
    filled_volume: float = 0.0
    merged_amount: float = 0.0
    degraded_quotes: int = 0
    last_update: str = field(default_factory=_now_iso)

    def _touch(self) -> None:
        self.last_update = _now_iso()

    def record_order_placed(self, size: float) -> None:
        self.orders_placed += 1
        self.total_volume += size
        self._touch()

    def record_order_failed(self) -> None:
        self.orders_failed += 1
        self._touch()

    def record_order_filled(self, size: float) -> None:
        self.orders_filled += 1
        self.filled_volume += size
        self._touch()

    def record_orders_cancelled(self, count: int) -> None:
        self.orders_cancelled += count
        self._touch()

    def record_exit(self) -> None:
        self.exits_triggered += 1
        self._touch()

    def record_merge(self, amount: float) -> None:
        self.merge_count += 1
        self.merged_amount += amount
        self._touch()

    def record_degraded_quote(self) -> None:
        self.degraded_quotes += 1
        self._touch()

    def record_cycle(self, status: str) -> None:
        if status == "completed":
            self.cycles_completed += 1
        elif status == "skipped":
            self.cycles_skipped += 1
        elif status == "aborted":
            self.cycles_aborted += 1
        self._touch()

    def to_dict(self) -> dict:
        return asdict(self)

    def summary(self) -> str:
        return (
            f"📊 Stats: cycles={self.cycles_completed}/{self.cycles_skipped}/{self.cycles_aborted} "
            f"(ok/skip/abort), orders placed={self.orders_placed}, failed={self.orders_failed}, "
            f"filled={self.orders_filled}, cancelled={self.orders_cancelled}, "
            f"exits={self.exits_triggered}, merges={self.merge_count}, "
            f"volume={self.total_volume:.2f}, degraded={self.degraded_quotes}"
        )


class PriceFreshness:
    """Tracks whether a streaming price is recent enough to trade on."""

    def __init__(self, max_age_seconds: float = 5.0):
        self.max_age_seconds = max_age_seconds
        self._last_update: Optional[float] = None

    def record_update(self, timestamp: Optional[float] = None) -> None:
        self._last_update = timestamp if timestamp is not None else time.time()

    def is_fresh(self, now: Optional[float] = None) -> bool:
        if self._last_update is None:
            return False
        age = (now if now is not None else time.time()) - self._last_update
        return 0 <= age < self.max_age_seconds

    def age(self, now: Optional[float] = None) -> Optional[float]:
        if self._last_update is None:
            return None
        return (now if now is not None else time.time()) - self._last_update
