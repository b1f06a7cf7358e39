"""
CLOB client wrapper for Polymarket order operations.
Wraps py-clob-client with async support, rate limiting and error mapping.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Callable, TypeVar
import time

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    OrderArgs,
    OrderType,
)
from py_clob_client.order_builder.constants import BUY, SELL

from ..market_maker.errors import CancellationFailed, classify_error
from ..market_maker.models import BookSnapshot, OrderIntent, PriceLevel, Side
from ..utils.logger import get_logger
from ..utils.rate_limiter import RateLimiter

logger = get_logger("clob")

T = TypeVar("T")

USDC_DECIMALS = 6


@dataclass
class OrderStatus:
    """Current status of an order."""
    order_id: str
    status: str  # LIVE, MATCHED, CANCELED
    size_matched: float
    size_remaining: float
    price: Optional[float] = None


class CLOBClient:
    """
    Async execution adapter for the Polymarket CLOB.

    Places and cancels orders, reads balance, order status, midpoints and
    order books. Every request waits on the adapter's RateLimiter; errors are
    raised as the market maker's error types.
    """

    HOST = "https://clob.polymarket.com"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        api_passphrase: str,
        private_key: str,
        chain_id: int = 137,  # Polygon Mainnet
        funder: Optional[str] = None,
        signature_type: Optional[int] = None,
        rate_limiter: Optional[RateLimiter] = None,
        host: str = HOST
    ):
        """
        Initialize CLOB client.

        Args:
            api_key: Polymarket API key
            api_secret: Polymarket API secret
            api_passphrase: Polymarket API passphrase
            private_key: Wallet private key
            chain_id: Blockchain chain ID (137 for Polygon)
            funder: Proxy wallet holding funds, if different from the signer
            signature_type: 0 EOA, 1 email/magic proxy, 2 browser proxy
            rate_limiter: Request throttle (200ms between calls by default)
            host: CLOB REST endpoint
        """
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_passphrase = api_passphrase
        self.private_key = private_key
        self.chain_id = chain_id
        self.funder = funder
        self.signature_type = signature_type
        self.host = host
        self.rate_limiter = rate_limiter or RateLimiter(0.2)

        self._client: Optional[ClobClient] = None

    async def initialize(self) -> None:
        """Initialize the CLOB client."""
        logger.info("Initializing CLOB client")

        # Client construction may do blocking I/O
        loop = asyncio.get_event_loop()
        self._client = await loop.run_in_executor(None, self._create_client)

        logger.info("CLOB client initialized successfully")

    def _create_client(self) -> ClobClient:
        return ClobClient(
            host=self.host,
            key=self.private_key or None,
            chain_id=self.chain_id,
            creds=ApiCreds(
                api_key=self.api_key,
                api_secret=self.api_secret,
                api_passphrase=self.api_passphrase
            ) if self.api_key else None,
            signature_type=self.signature_type,
            funder=self.funder
        )

    def _require_client(self) -> ClobClient:
        if not self._client:
            raise RuntimeError("CLOB client not initialized")
        return self._client

    async def _call(self, fn: Callable[[], T]) -> T:
        """Run a blocking client call after waiting for a rate-limit slot."""
        await self.rate_limiter.wait()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, fn)

    async def place(self, intent: OrderIntent) -> str:
        """
        Place a GTC limit order.

        Args:
            intent: Order to place

        Returns:
            Exchange order id

        Raises:
            PlacementFailed: The exchange rejected or the request failed
        """
        self._require_client()
        logger.debug(
            f"Placing order: {intent.side.value} {intent.size} @ {intent.price} for {intent.token_id}"
        )

        order_args = OrderArgs(
            token_id=intent.token_id,
            price=intent.price,
            size=intent.size,
            side=BUY if intent.side is Side.BUY else SELL
        )

        try:
            signed_order = await self._call(lambda: self._client.create_order(order_args))
            result = await self._call(
                lambda: self._client.post_order(signed_order, OrderType.GTC)
            )
        except Exception as e:
            raise classify_error(e) from e

        if not result or not result.get("success", True) or not result.get("orderID"):
            message = (result or {}).get("errorMsg") or "order rejected"
            raise classify_error(Exception(f"Order rejected: {message}"))

        order_id = result["orderID"]
        logger.info(
            "Order placed successfully",
            extra={
                "order_id": order_id,
                "token_id": intent.token_id,
                "side": intent.side.value,
                "size": intent.size,
                "price": intent.price
            }
        )
        return order_id

    async def cancel_all(self, token_id: str) -> int:
        """
        Cancel every resting order on a token.

        Returns:
            Number of orders cancelled

        Raises:
            CancellationFailed: The request failed or some orders stayed live
        """
        self._require_client()
        try:
            result = await self._call(
                lambda: self._client.cancel_market_orders(asset_id=token_id)
            )
        except Exception as e:
            raise CancellationFailed(token_id, str(e)) from e

        result = result or {}
        not_canceled = result.get("not_canceled") or {}
        if not_canceled:
            raise CancellationFailed(token_id, f"{len(not_canceled)} orders not cancelled: {not_canceled}")

        cancelled = len(result.get("canceled") or [])
        if cancelled:
            logger.info(f"Cancelled {cancelled} orders on {token_id}")
        return cancelled

    async def get_balance(self) -> float:
        """USDC collateral balance available for trading."""
        self._require_client()
        result = await self._call(
            lambda: self._client.get_balance_allowance(
                params=BalanceAllowanceParams(asset_type=AssetType.COLLATERAL)
            )
        )
        return float(result.get("balance", 0)) / 10 ** USDC_DECIMALS

    async def get_order(self, order_id: str) -> Optional[OrderStatus]:
        """
        Get status of an order.

        Returns:
            OrderStatus or None if not found
        """
        self._require_client()
        result = await self._call(lambda: self._client.get_order(order_id))
        if not result:
            return None

        original = float(result.get("original_size", 0))
        matched = float(result.get("size_matched", 0))
        return OrderStatus(
            order_id=order_id,
            status=result.get("status", "UNKNOWN"),
            size_matched=matched,
            size_remaining=original - matched,
            price=float(result["price"]) if result.get("price") else None
        )

    async def fetch_price(self, token_id: str) -> Optional[float]:
        """Midpoint price from the REST API, None when unavailable."""
        self._require_client()
        try:
            result = await self._call(lambda: self._client.get_midpoint(token_id))
        except Exception as e:
            logger.warning(f"Midpoint query failed for {token_id}: {e}")
            return None

        mid = (result or {}).get("mid")
        return float(mid) if mid is not None else None

    async def fetch_order_book(self, token_id: str) -> Optional[BookSnapshot]:
        """Order book from the REST API, None when unavailable."""
        self._require_client()
        try:
            book = await self._call(lambda: self._client.get_order_book(token_id))
        except Exception as e:
            logger.warning(f"Order book query failed for {token_id}: {e}")
            return None

        if book is None:
            return None

        return BookSnapshot(
            token_id=token_id,
            bids=[PriceLevel(price=float(l.price), size=float(l.size)) for l in book.bids or []],
            asks=[PriceLevel(price=float(l.price), size=float(l.size)) for l in book.asks or []],
            timestamp=time.time()
        )
