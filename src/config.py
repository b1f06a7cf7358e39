"""
Configuration module for the Polymarket Market Maker.
Loads settings from environment variables with validation.
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

from .market_maker.config import TradingConfig
from .market_maker.errors import ConfigInvalid

# Load .env file if present
load_dotenv()


@dataclass
class PolymarketConfig:
    """Polymarket API configuration."""
    api_key: str
    api_secret: str
    api_passphrase: str
    funder: str = ""
    signature_type: int = 0

    # API endpoints
    clob_url: str = "https://clob.polymarket.com"
    gamma_url: str = "https://gamma-api.polymarket.com"
    ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"

    # Minimum spacing between exchange calls
    min_request_interval: float = 0.2


@dataclass
class WalletConfig:
    """Wallet and blockchain configuration."""
    private_key: str
    wallet_address: str
    polygon_rpc_url: str

    # Chain ID for Polygon Mainnet
    chain_id: int = 137


@dataclass
class RiskConfig:
    """Risk control settings."""
    kill_switch: bool
    simulation_mode: bool  # Paper trading - quote but don't send orders
    min_wallet_balance: float
    simulation_balance: float = 1000.0


@dataclass
class MarketConfig:
    """Which Up/Down markets to quote."""
    assets: list[str] = field(default_factory=lambda: ["BTC", "ETH"])
    window_minutes: int = 15
    discovery_interval: float = 60.0


@dataclass
class LogConfig:
    """Logging configuration."""
    log_level: str
    json_logging: bool


@dataclass
class Config:
    """Main configuration container."""
    polymarket: PolymarketConfig
    wallet: WalletConfig
    trading: TradingConfig
    risk: RiskConfig
    markets: MarketConfig
    logging: LogConfig


def get_env(key: str, default: Optional[str] = None, required: bool = True) -> str:
    """Get environment variable with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigInvalid(f"Required environment variable {key} is not set")
    return value or ""


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes")


def get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    value = os.getenv(key, str(default))
    try:
        return int(value)
    except ValueError:
        raise ConfigInvalid(f"{key} must be an integer, got {value!r}")


def get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    value = os.getenv(key, str(default))
    try:
        return float(value)
    except ValueError:
        raise ConfigInvalid(f"{key} must be a number, got {value!r}")


def get_env_list(key: str, default: list[str]) -> list[str]:
    """Get comma-separated environment variable."""
    value = os.getenv(key)
    if not value:
        return list(default)
    return [item.strip().upper() for item in value.split(",") if item.strip()]


def load_trading_config() -> TradingConfig:
    """Trading parameters from MM_* variables, falling back to defaults."""
    defaults = TradingConfig()
    return TradingConfig(
        order_size=get_env_float("MM_ORDER_SIZE", defaults.order_size),
        max_position=get_env_float("MM_MAX_POSITION", defaults.max_position),
        max_total_position=get_env_float("MM_MAX_TOTAL_POSITION", defaults.max_total_position),
        min_order_size=get_env_float("MM_MIN_ORDER_SIZE", defaults.min_order_size),
        min_spread=get_env_float("MM_MIN_SPREAD", defaults.min_spread),
        max_spread=get_env_float("MM_MAX_SPREAD", defaults.max_spread),
        spread=get_env_float("MM_SPREAD", defaults.spread),
        min_price=get_env_float("MM_MIN_PRICE", defaults.min_price),
        max_price=get_env_float("MM_MAX_PRICE", defaults.max_price),
        safe_range_low=get_env_float("MM_SAFE_RANGE_LOW", defaults.safe_range_low),
        safe_range_high=get_env_float("MM_SAFE_RANGE_HIGH", defaults.safe_range_high),
        price_warn_cooldown=get_env_float("MM_PRICE_WARN_COOLDOWN", defaults.price_warn_cooldown),
        merge_threshold=get_env_float("MM_MERGE_THRESHOLD", defaults.merge_threshold),
        imbalance_threshold=get_env_float("MM_IMBALANCE_THRESHOLD", defaults.imbalance_threshold),
        max_hold_time=get_env_float("MM_MAX_HOLD_TIME", defaults.max_hold_time),
        exit_before_expiry=get_env_float("MM_EXIT_BEFORE_EXPIRY", defaults.exit_before_expiry),
        take_profit=get_env_float("MM_TAKE_PROFIT", defaults.take_profit),
        stop_loss=get_env_float("MM_STOP_LOSS", defaults.stop_loss),
        depth_lookback=get_env_int("MM_DEPTH_LOOKBACK", defaults.depth_lookback),
        min_level_size=get_env_float("MM_MIN_LEVEL_SIZE", defaults.min_level_size),
        refresh_interval=get_env_float("MM_REFRESH_INTERVAL", defaults.refresh_interval),
        price_staleness_seconds=get_env_float("MM_PRICE_STALENESS", defaults.price_staleness_seconds),
        balance_buffer=get_env_float("MM_BALANCE_BUFFER", defaults.balance_buffer),
    ).validate()


def load_config() -> Config:
    """Load and validate configuration from environment."""
    simulation_mode = get_env_bool("SIMULATION_MODE", True)  # Default to simulation
    live = not simulation_mode

    return Config(
        polymarket=PolymarketConfig(
            api_key=get_env("POLYMARKET_API_KEY", required=live),
            api_secret=get_env("POLYMARKET_API_SECRET", required=live),
            api_passphrase=get_env("POLYMARKET_API_PASSPHRASE", required=live),
            funder=get_env("POLYMARKET_FUNDER", required=False),
            signature_type=get_env_int("POLYMARKET_SIGNATURE_TYPE", 0),
            min_request_interval=get_env_float("MIN_REQUEST_INTERVAL", 0.2),
        ),
        wallet=WalletConfig(
            private_key=get_env("PRIVATE_KEY", required=live),
            wallet_address=get_env("WALLET_ADDRESS", required=live),
            polygon_rpc_url=get_env("POLYGON_RPC_URL", "https://polygon-rpc.com", required=False),
        ),
        trading=load_trading_config(),
        risk=RiskConfig(
            kill_switch=get_env_bool("KILL_SWITCH", False),
            simulation_mode=simulation_mode,
            min_wallet_balance=get_env_float("MIN_WALLET_BALANCE", 50),
            simulation_balance=get_env_float("SIMULATION_BALANCE", 1000),
        ),
        markets=MarketConfig(
            assets=get_env_list("MARKET_ASSETS", ["BTC", "ETH"]),
            window_minutes=get_env_int("MARKET_WINDOW_MINUTES", 15),
            discovery_interval=get_env_float("MARKET_DISCOVERY_INTERVAL", 60),
        ),
        logging=LogConfig(
            log_level=get_env("LOG_LEVEL", "INFO", required=False),
            json_logging=get_env_bool("JSON_LOGGING", True),
        ),
    )
