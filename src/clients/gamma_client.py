"""
Gamma API client for discovering short-lived Up/Down markets.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Optional
import time

import aiohttp

from ..market_maker.models import MarketInfo
from ..utils.logger import get_logger

logger = get_logger("gamma")


def window_end(slug: str) -> Optional[datetime]:
    """Window end derived from a `<asset>-updown-<N>m-<ts>` slug."""
    parts = slug.split("-")
    try:
        minutes = int(parts[-2].rstrip("m"))
        start = int(parts[-1])
    except (IndexError, ValueError):
        return None
    return datetime.fromtimestamp(start, tz=timezone.utc) + timedelta(minutes=minutes)


def _parse_list(raw) -> list:
    """Gamma encodes some list fields as JSON strings."""
    if isinstance(raw, list):
        return raw
    if not raw:
        return []
    if raw.startswith("["):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            pass
    return [part.strip() for part in raw.split(",")]


class GammaClient:
    """
    Client for the Polymarket Gamma API.

    Up/Down markets follow the slug pattern
    `<asset>-updown-<minutes>m-<window start unix ts>`.
    """

    BASE_URL = "https://gamma-api.polymarket.com"

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self._session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if not self._session:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=10)
            )
        logger.info("Gamma client initialized")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(self, endpoint: str, params: Optional[dict] = None):
        if not self._session:
            await self.initialize()

        url = f"{self.base_url}{endpoint}"
        try:
            async with self._session.get(url, params=params) as response:
                response.raise_for_status()
                return await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"Gamma API request failed: {e}")
            raise

    @staticmethod
    def window_slugs(asset: str, window_minutes: int, now: Optional[float] = None) -> list[str]:
        """Slugs of the current and next window for an asset."""
        window = window_minutes * 60
        now = int(now if now is not None else time.time())
        current = now - (now % window)
        prefix = f"{asset.lower()}-updown-{window_minutes}m"
        return [f"{prefix}-{current}", f"{prefix}-{current + window}"]

    async def fetch_market_by_slug(self, slug: str) -> Optional[MarketInfo]:
        """Fetch one open Up/Down market by event slug."""
        data = await self._request("/events", params={"slug": slug})
        if not data:
            return None

        event = data[0]
        if event.get("closed"):
            return None

        markets = event.get("markets", [])
        if not markets or markets[0].get("closed"):
            return None

        return self.parse_market(markets[0], slug)

    @staticmethod
    def parse_market(market: dict, slug: str = "") -> Optional[MarketInfo]:
        """Build MarketInfo from a Gamma market payload."""
        outcomes = [str(o).strip().lower() for o in _parse_list(market.get("outcomes", ""))]
        token_ids = [str(t).strip() for t in _parse_list(market.get("clobTokenIds", ""))]

        if "up" not in outcomes or "down" not in outcomes:
            logger.debug(f"Market {slug} is not an Up/Down market: {outcomes}")
            return None

        up_idx = outcomes.index("up")
        down_idx = outcomes.index("down")
        if max(up_idx, down_idx) >= len(token_ids):
            return None

        end_time = None
        end_date = market.get("endDate")
        if end_date:
            try:
                end_time = datetime.fromisoformat(end_date.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable endDate for {slug}: {end_date}")
        if end_time is None and slug:
            end_time = window_end(slug)

        return MarketInfo(
            market_id=str(market.get("id", "")),
            condition_id=market.get("conditionId", ""),
            up_token_id=token_ids[up_idx],
            down_token_id=token_ids[down_idx],
            end_time=end_time,
            slug=slug,
            asset=slug.split("-", 1)[0].upper() if slug else "",
            title=market.get("question", "")
        )

    async def fetch_updown_markets(
        self,
        assets: list[str],
        window_minutes: int = 15,
        now: Optional[float] = None
    ) -> list[MarketInfo]:
        """
        Find the open Up/Down markets for the current and next window.

        Args:
            assets: Asset symbols, e.g. ["BTC", "ETH"]
            window_minutes: Market duration (5, 15, 60)
            now: Unix time used to compute the window

        Returns:
            Open markets, deduplicated by market id
        """
        slugs = [
            slug
            for asset in assets
            for slug in self.window_slugs(asset, window_minutes, now)
        ]
        results = await asyncio.gather(
            *(self.fetch_market_by_slug(slug) for slug in slugs),
            return_exceptions=True
        )

        markets: dict[str, MarketInfo] = {}
        for slug, result in zip(slugs, results):
            if isinstance(result, Exception):
                logger.debug(f"Error fetching market {slug}: {result}")
                continue
            if result is not None:
                markets[result.market_id] = result

        logger.info(f"Found {len(markets)} active {window_minutes}-minute markets")
        return list(markets.values())

