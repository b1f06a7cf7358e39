from src.market_maker.maker import MarketMaker
from src.market_maker.cycle import CycleResult, CycleStatus, TradingCycleOrchestrator
from src.market_maker.models import MarketInfo, Outcome, Side
from src.market_maker.config import TradingConfig, config
from src.market_maker.inventory import InventoryTracker

__all__ = [
    "MarketMaker",
    "TradingCycleOrchestrator",
    "CycleResult",
    "CycleStatus",
    "MarketInfo",
    "Outcome",
    "Side",
    "TradingConfig",
    "config",
    "InventoryTracker",
]
