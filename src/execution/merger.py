"""
Token merger for offsetting inventory.
Merges equal UP and DOWN amounts back into USDC collateral.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from ..clients.polygon_client import PolygonClient
from ..market_maker.models import MergeIntent
from ..utils.logger import get_logger, TradeLogger

logger = get_logger("merger")
trade_logger = TradeLogger()


@dataclass
class MergeResult:
    """Result of a token merge operation."""
    success: bool
    market_id: str
    tx_hash: str
    gas_used: int
    gas_cost_usd: float
    amount_merged: float
    error: Optional[str] = None


class TokenMerger:
    """
    Merges conditional tokens to receive USDC.

    Holding both UP and DOWN of the same market is a riskless $1.00 per
    pair once merged via the CTF contract, which frees capital for quoting.
    """

    def __init__(
        self,
        polygon_client: PolygonClient,
        min_merge_amount: float = 1.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0
    ):
        """
        Initialize token merger.

        Args:
            polygon_client: Polygon blockchain client
            min_merge_amount: Minimum amount to merge
            max_retries: Maximum attempts for a merge
            retry_base_delay: First backoff delay, doubled per attempt
        """
        self.polygon_client = polygon_client
        self.min_merge_amount = min_merge_amount
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

        self._pending_merges: dict[str, MergeIntent] = {}
        self._merge_results: list[MergeResult] = []

    async def merge(self, intent: MergeIntent) -> MergeResult:
        """
        Execute a merge intent.

        Args:
            intent: Market, condition and amount to merge

        Returns:
            MergeResult with transaction details
        """
        if intent.amount < self.min_merge_amount:
            return self._failed(
                intent,
                f"Merge amount {intent.amount} below minimum {self.min_merge_amount}"
            )

        if intent.market_id in self._pending_merges:
            return self._failed(intent, "Merge already pending for market")

        logger.info(
            f"Starting merge for market {intent.market_id}",
            extra={"condition_id": intent.condition_id, "amount": intent.amount}
        )

        self._pending_merges[intent.market_id] = intent
        try:
            result = await self._execute_merge_with_retry(intent)

            if result.success:
                trade_logger.merge_completed(
                    market_id=intent.market_id,
                    tx_hash=result.tx_hash,
                    amount=result.amount_merged,
                    gas_used=result.gas_used,
                    gas_cost_usd=result.gas_cost_usd
                )
            else:
                logger.error(
                    f"Merge failed for market {intent.market_id}: {result.error}"
                )

            self._merge_results.append(result)
            return result

        finally:
            self._pending_merges.pop(intent.market_id, None)

    async def _execute_merge_with_retry(self, intent: MergeIntent) -> MergeResult:
        """Execute merge with retries on failure."""
        last_error = None

        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Merge attempt {attempt + 1}/{self.max_retries}",
                    extra={"market_id": intent.market_id, "amount": intent.amount}
                )

                tx_result = await self.polygon_client.merge_positions(
                    condition_id=intent.condition_id,
                    amount=intent.amount
                )

                if tx_result.success:
                    return MergeResult(
                        success=True,
                        market_id=intent.market_id,
                        tx_hash=tx_result.tx_hash,
                        gas_used=tx_result.gas_used,
                        gas_cost_usd=tx_result.gas_cost_usd,
                        amount_merged=intent.amount
                    )
                last_error = tx_result.error

            except Exception as e:
                last_error = str(e)
                logger.warning(
                    f"Merge attempt {attempt + 1} failed: {e}",
                    extra={"market_id": intent.market_id}
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.retry_base_delay * (2 ** attempt))

        return self._failed(
            intent,
            f"Merge failed after {self.max_retries} attempts: {last_error}"
        )

    def _failed(self, intent: MergeIntent, error: str) -> MergeResult:
        return MergeResult(
            success=False,
            market_id=intent.market_id,
            tx_hash="",
            gas_used=0,
            gas_cost_usd=0.0,
            amount_merged=0.0,
            error=error
        )

    def get_pending_merges(self) -> list[MergeIntent]:
        """Get merges currently in flight."""
        return list(self._pending_merges.values())

    def get_stats(self) -> dict:
        """Get merge statistics."""
        if not self._merge_results:
            return {
                "total_merges": 0,
                "successful_merges": 0,
                "failed_merges": 0,
                "total_merged": 0.0,
                "total_gas_cost": 0.0,
                "success_rate": 0.0
            }

        successful = [r for r in self._merge_results if r.success]
        failed = [r for r in self._merge_results if not r.success]

        return {
            "total_merges": len(self._merge_results),
            "successful_merges": len(successful),
            "failed_merges": len(failed),
            "total_merged": sum(r.amount_merged for r in successful),
            "total_gas_cost": sum(r.gas_cost_usd for r in successful),
            "success_rate": len(successful) / len(self._merge_results)
        }
