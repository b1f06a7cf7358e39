"""
Position exit rules: time stop, expiry, take profit and stop loss.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from src.market_maker.config import TradingConfig
from src.market_maker.models import Position


class ExitReason(Enum):
    TIME_STOP = "time_stop"
    EXPIRY = "expiry"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"


@dataclass(frozen=True)
class ExitSignal:
    """An exit recommendation with the value that triggered it."""
    reason: ExitReason
    trigger_value: float
    pnl: float
    message: str


def position_pnl(position: Position, current_price: float) -> float:
    """Return on entry price, 0 when the entry price is unknown."""
    if position.average_price <= 0:
        return 0.0
    return (current_price - position.average_price) / position.average_price


class ExitEvaluator:
    """
    Evaluates exit conditions for one open position.

    Checks run in a fixed order and the first match wins. The evaluator only
    recommends; unwinding is done by the trading cycle.
    """

    def __init__(self, cfg: TradingConfig):
        self.cfg = cfg

    def check_exit(
        self,
        position: Position,
        current_price: float,
        time_to_expiry: Optional[float],
        now: Optional[datetime] = None
    ) -> Optional[ExitSignal]:
        """
        Check a position against the exit rules.

        Args:
            position: Open position
            current_price: Current price of the position's token
            time_to_expiry: Seconds until market close, None if unknown
            now: Evaluation time (defaults to current UTC time)

        Returns:
            ExitSignal for the first rule that fires, else None
        """
        now = now or datetime.now(timezone.utc)
        pnl = position_pnl(position, current_price)

        held = (now - position.opened_at).total_seconds()
        if held > self.cfg.max_hold_time:
            return ExitSignal(
                reason=ExitReason.TIME_STOP,
                trigger_value=held,
                pnl=pnl,
                message=f"Time stop ({held:.0f}s > {self.cfg.max_hold_time:.0f}s)"
            )

        if time_to_expiry is not None and time_to_expiry < self.cfg.exit_before_expiry:
            return ExitSignal(
                reason=ExitReason.EXPIRY,
                trigger_value=time_to_expiry,
                pnl=pnl,
                message=f"Expiry approaching ({time_to_expiry:.0f}s left)"
            )

        if pnl >= self.cfg.take_profit:
            return ExitSignal(
                reason=ExitReason.TAKE_PROFIT,
                trigger_value=pnl,
                pnl=pnl,
                message=f"Take profit ({pnl * 100:.2f}% >= {self.cfg.take_profit * 100:.2f}%)"
            )

        if pnl <= -self.cfg.stop_loss:
            return ExitSignal(
                reason=ExitReason.STOP_LOSS,
                trigger_value=pnl,
                pnl=pnl,
                message=f"Stop loss ({pnl * 100:.2f}% <= -{self.cfg.stop_loss * 100:.2f}%)"
            )

        return None


def check_exit(
    position: Position,
    current_price: float,
    time_to_expiry: Optional[float],
    cfg: TradingConfig,
    now: Optional[datetime] = None
) -> Optional[ExitSignal]:
    return ExitEvaluator(cfg).check_exit(position, current_price, time_to_expiry, now)
