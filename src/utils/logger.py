"""
Structured logging for the Polymarket market maker.
Supports JSON logging for log aggregation.
"""

import logging
import sys
from typing import Optional
from pythonjsonlogger import jsonlogger


ROOT_LOGGER = "polymarket_mm"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['timestamp'] = self.formatTime(record, self.datefmt)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Whether to emit one JSON object per line
        logger_name: Optional specific logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name or ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger with the given name."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class TradeLogger:
    """Specialized logger for quoting and order events."""

    def __init__(self):
        self.logger = get_logger("trades")

    def quote_computed(
        self,
        market_id: str,
        bid: float,
        ask: float,
        skew: float,
        degraded: bool
    ):
        """Log the quote chosen for a market this cycle."""
        self.logger.info(
            "Quote computed",
            extra={
                "event": "quote_computed",
                "market_id": market_id,
                "bid": bid,
                "ask": ask,
                "skew": skew,
                "degraded": degraded
            }
        )

    def order_placed(
        self,
        order_id: str,
        market_id: str,
        token_id: str,
        side: str,
        size: float,
        price: float
    ):
        """Log when an order is placed."""
        self.logger.info(
            "Order placed",
            extra={
                "event": "order_placed",
                "order_id": order_id,
                "market_id": market_id,
                "token_id": token_id,
                "side": side,
                "size": size,
                "price": price
            }
        )

    def order_failed(
        self,
        market_id: str,
        side: str,
        category: str,
        error: Optional[str] = None
    ):
        """Log when a single order side fails."""
        self.logger.error(
            "Order failed",
            extra={
                "event": "order_failed",
                "market_id": market_id,
                "side": side,
                "category": category,
                "error": error
            }
        )

    def order_filled(
        self,
        order_id: str,
        market_id: str,
        outcome: str,
        fill_price: float,
        fill_size: float
    ):
        """Log when a resting order picks up a fill."""
        self.logger.info(
            "Order filled",
            extra={
                "event": "order_filled",
                "order_id": order_id,
                "market_id": market_id,
                "outcome": outcome,
                "fill_price": fill_price,
                "fill_size": fill_size
            }
        )

    def orders_cancelled(self, market_id: str, token_id: str, count: int):
        """Log resting orders removed before requoting."""
        self.logger.debug(
            "Orders cancelled",
            extra={
                "event": "orders_cancelled",
                "market_id": market_id,
                "token_id": token_id,
                "count": count
            }
        )

    def cycle_skipped(self, market_id: str, reason: str):
        """Log a skipped cycle with its reason."""
        self.logger.info(
            "Cycle skipped",
            extra={
                "event": "cycle_skipped",
                "market_id": market_id,
                "reason": reason
            }
        )

    def cycle_aborted(self, market_id: str, cause: str):
        """Log an aborted cycle."""
        self.logger.error(
            "Cycle aborted",
            extra={
                "event": "cycle_aborted",
                "market_id": market_id,
                "cause": cause
            }
        )

    def exit_triggered(
        self,
        market_id: str,
        outcome: str,
        reason: str,
        trigger_value: float,
        pnl: float
    ):
        """Log an exit recommendation that is being acted on."""
        self.logger.warning(
            "Exit triggered",
            extra={
                "event": "exit_triggered",
                "market_id": market_id,
                "outcome": outcome,
                "reason": reason,
                "trigger_value": trigger_value,
                "pnl": pnl
            }
        )

    def merge_completed(
        self,
        market_id: str,
        tx_hash: str,
        amount: float,
        gas_used: int,
        gas_cost_usd: float
    ):
        """Log when tokens are merged on-chain."""
        self.logger.info(
            "Token merge completed",
            extra={
                "event": "merge_completed",
                "market_id": market_id,
                "tx_hash": tx_hash,
                "amount": amount,
                "gas_used": gas_used,
                "gas_cost_usd": gas_cost_usd
            }
        )
