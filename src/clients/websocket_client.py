"""
WebSocket client for Polymarket CLOB real-time data.
Maintains order books and reference prices per token with receive timestamps.
"""

import asyncio
import json
import time
from typing import Optional, Callable, Any

import websockets
from websockets.protocol import State

from ..market_maker.models import BookSnapshot, PriceLevel, PriceTick
from ..market_maker.stats import PriceFreshness
from ..utils.logger import get_logger

logger = get_logger("websocket")


class _LiveBook:
    """Mutable price -> size maps for one token."""

    def __init__(self):
        self.bids: dict[float, float] = {}
        self.asks: dict[float, float] = {}
        self.timestamp: float = 0.0

    def replace(self, bids: list[dict], asks: list[dict]) -> None:
        self.bids = {float(b["price"]): float(b["size"]) for b in bids}
        self.asks = {float(a["price"]): float(a["size"]) for a in asks}

    def update(self, side: str, price: float, size: float) -> None:
        levels = self.bids if side == "BUY" else self.asks
        if size <= 0:
            levels.pop(price, None)
        else:
            levels[price] = size

    def snapshot(self, token_id: str) -> BookSnapshot:
        return BookSnapshot(
            token_id=token_id,
            bids=[PriceLevel(price=p, size=s) for p, s in self.bids.items()],
            asks=[PriceLevel(price=p, size=s) for p, s in self.asks.items()],
            timestamp=self.timestamp
        )


class WebSocketClient:
    """
    Async WebSocket client for the CLOB market channel.

    Streams order book updates and prices for subscribed tokens. Implements
    automatic reconnection with exponential backoff.
    """

    BASE_URL = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    BATCH_SIZE = 100

    def __init__(
        self,
        url: str = BASE_URL,
        on_book_update: Optional[Callable[[BookSnapshot], Any]] = None,
        on_price_update: Optional[Callable[[PriceTick], Any]] = None,
        max_reconnect_attempts: int = 10,
        initial_reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        stale_after_seconds: float = 5.0
    ):
        """
        Initialize WebSocket client.

        Args:
            url: Market channel endpoint
            on_book_update: Callback for order book updates
            on_price_update: Callback for reference price updates
            max_reconnect_attempts: Maximum reconnection attempts
            initial_reconnect_delay: Initial delay between reconnections
            max_reconnect_delay: Maximum delay between reconnections
            stale_after_seconds: Feed is stale after this long without messages
        """
        self.url = url
        self.on_book_update = on_book_update
        self.on_price_update = on_price_update
        self.max_reconnect_attempts = max_reconnect_attempts
        self.initial_reconnect_delay = initial_reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

        self._ws = None
        self._subscribed_assets: set[str] = set()
        self._books: dict[str, _LiveBook] = {}
        self._prices: dict[str, PriceTick] = {}
        self._running = False
        self._reconnect_attempts = 0
        self.freshness = PriceFreshness(stale_after_seconds)

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state == State.OPEN

    @property
    def is_fresh(self) -> bool:
        return self.freshness.is_fresh()

    async def connect(self) -> None:
        """Establish WebSocket connection."""
        logger.info("Connecting to Polymarket WebSocket", extra={"url": self.url})

        try:
            self._ws = await websockets.connect(
                self.url,
                ping_interval=30,
                ping_timeout=10,
                close_timeout=5
            )
            self._reconnect_attempts = 0
            logger.info("WebSocket connected successfully")

            if self._subscribed_assets:
                await self._resubscribe()

        except Exception as e:
            logger.error(f"Failed to connect to WebSocket: {e}")
            raise

    async def disconnect(self) -> None:
        """Close WebSocket connection."""
        self._running = False
        if self._ws:
            await self._ws.close()
            self._ws = None
        logger.info("WebSocket disconnected")

    async def _send_batches(self, assets: list[str], initial: bool) -> None:
        for i in range(0, len(assets), self.BATCH_SIZE):
            batch = assets[i:i + self.BATCH_SIZE]
            # First message on a connection uses "type", later ones "operation"
            if initial and i == 0:
                message = {"assets_ids": batch, "type": "market"}
            else:
                message = {"assets_ids": batch, "operation": "subscribe"}
            await self._ws.send(json.dumps(message))
            self._subscribed_assets.update(batch)
            if i + self.BATCH_SIZE < len(assets):
                await asyncio.sleep(0.1)

    async def subscribe(self, asset_ids: list[str]) -> None:
        """
        Subscribe to market data for the given token ids.

        Args:
            asset_ids: Token IDs to subscribe to
        """
        if not self._ws:
            raise RuntimeError("WebSocket not connected")

        new_assets = [a for a in asset_ids if a not in self._subscribed_assets]
        if not new_assets:
            return

        await self._send_batches(new_assets, initial=not self._subscribed_assets)
        logger.info(f"Subscribed to {len(new_assets)} new assets (total: {len(self._subscribed_assets)})")

    async def unsubscribe(self, asset_ids: list[str]) -> None:
        """Unsubscribe from tokens and drop their cached data."""
        assets_to_remove = [a for a in asset_ids if a in self._subscribed_assets]
        for asset_id in assets_to_remove:
            self._subscribed_assets.discard(asset_id)
            self._books.pop(asset_id, None)
            self._prices.pop(asset_id, None)

        if self._ws and assets_to_remove:
            await self._ws.send(json.dumps({
                "assets_ids": assets_to_remove,
                "operation": "unsubscribe"
            }))

    async def _resubscribe(self) -> None:
        """Resubscribe to all assets after reconnection."""
        assets = list(self._subscribed_assets)
        self._subscribed_assets.clear()
        await self._send_batches(assets, initial=True)
        logger.info(f"Resubscribed to {len(assets)} assets")

    async def run(self) -> None:
        """
        Main loop - connect and process messages.
        Handles reconnection on disconnect.
        """
        self._running = True

        while self._running:
            try:
                if not self.is_connected:
                    await self.connect()

                await self._process_messages()

            except websockets.ConnectionClosed as e:
                logger.warning(f"WebSocket connection closed: {e}")
                await self._handle_reconnect()

            except Exception as e:
                logger.error(f"WebSocket error: {e}")
                await self._handle_reconnect()

    async def _process_messages(self) -> None:
        if not self._ws:
            return

        async for message in self._ws:
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON message: {message[:100]}")
                continue
            await self.handle_message(data)

    async def handle_message(self, data) -> None:
        """Route a decoded message (or array of messages) to its handler."""
        now = time.time()
        self.freshness.record_update(now)

        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                await self._handle_single_message(item, now)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Malformed {item.get('event_type')} message: {e}")

    async def _handle_single_message(self, data: dict, now: float) -> None:
        msg_type = data.get("event_type") or data.get("type")

        if msg_type == "book":
            asset_id = data["asset_id"]
            book = self._books.setdefault(asset_id, _LiveBook())
            book.replace(data.get("bids", []), data.get("asks", []))
            book.timestamp = now
            await self._book_changed(asset_id, book)

        elif msg_type == "price_change":
            touched = set()
            for change in data.get("price_changes", []):
                asset_id = change["asset_id"]
                book = self._books.setdefault(asset_id, _LiveBook())
                book.update(change.get("side"), float(change["price"]), float(change.get("size", 0)))
                book.timestamp = now
                touched.add(asset_id)
            for asset_id in touched:
                await self._book_changed(asset_id, self._books[asset_id])

        elif msg_type == "last_trade_price":
            await self._set_price(data["asset_id"], float(data["price"]), now)

        elif msg_type == "best_bid_ask":
            best_bid = data.get("best_bid")
            best_ask = data.get("best_ask")
            if best_bid and best_ask:
                await self._set_price(data["asset_id"], (float(best_bid) + float(best_ask)) / 2, now)

        elif msg_type in ("subscribed", "unsubscribed", "tick_size_change"):
            logger.debug(f"Control message: {msg_type}")
        else:
            logger.debug(f"Unknown message type: {msg_type}")

    async def _book_changed(self, asset_id: str, book: _LiveBook) -> None:
        if book.bids and book.asks:
            mid = (max(book.bids) + min(book.asks)) / 2
            self._prices[asset_id] = PriceTick(asset_id, mid, book.timestamp)
        if self.on_book_update:
            await self._call_handler(self.on_book_update, book.snapshot(asset_id))

    async def _set_price(self, asset_id: str, price: float, now: float) -> None:
        tick = PriceTick(token_id=asset_id, price=price, timestamp=now)
        self._prices[asset_id] = tick
        if self.on_price_update:
            await self._call_handler(self.on_price_update, tick)

    async def _call_handler(self, handler: Callable, *args) -> None:
        """Call handler, supporting both sync and async callbacks."""
        result = handler(*args)
        if asyncio.iscoroutine(result):
            await result

    async def _handle_reconnect(self) -> None:
        """Handle reconnection with exponential backoff."""
        self._ws = None
        self._reconnect_attempts += 1

        if self._reconnect_attempts > self.max_reconnect_attempts:
            logger.error("Max reconnection attempts exceeded")
            self._running = False
            raise RuntimeError("Failed to reconnect to WebSocket")

        delay = min(
            self.initial_reconnect_delay * (2 ** (self._reconnect_attempts - 1)),
            self.max_reconnect_delay
        )
        logger.info(f"Reconnecting in {delay:.1f}s (attempt {self._reconnect_attempts})")
        await asyncio.sleep(delay)

    def get_order_book(self, asset_id: str) -> Optional[BookSnapshot]:
        """Latest book for a token, None if never received."""
        book = self._books.get(asset_id)
        if book is None:
            return None
        return book.snapshot(asset_id)

    def get_last_price(self, asset_id: str) -> Optional[PriceTick]:
        """Latest reference price tick for a token."""
        return self._prices.get(asset_id)
