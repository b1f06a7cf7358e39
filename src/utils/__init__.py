# Utilities
from .logger import setup_logging, get_logger, TradeLogger
from .rate_limiter import RateLimiter
from .rwlock import ReadWriteLock

__all__ = ["setup_logging", "get_logger", "TradeLogger", "RateLimiter", "ReadWriteLock"]
