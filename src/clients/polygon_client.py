"""
Polygon client for on-chain merges of Up/Down outcome tokens.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware
from eth_account import Account

from ..utils.logger import get_logger

logger = get_logger("polygon")


# Gnosis ConditionalTokens contract used by Polymarket on Polygon
CONDITIONAL_TOKENS_ADDRESS = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"

# USDC.e collateral on Polygon
USDC_ADDRESS = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"

# Binary markets partition the outcome slots as {0b01, 0b10}
BINARY_PARTITION = [1, 2]

PARENT_COLLECTION_ID = b"\x00" * 32

TOKEN_DECIMALS = 6

CONDITIONAL_TOKENS_ABI = [
    {
        "inputs": [
            {"name": "collateralToken", "type": "address"},
            {"name": "parentCollectionId", "type": "bytes32"},
            {"name": "conditionId", "type": "bytes32"},
            {"name": "partition", "type": "uint256[]"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "mergePositions",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


@dataclass
class TransactionResult:
    """Result of a blockchain transaction."""
    success: bool
    tx_hash: str
    gas_used: int
    gas_cost_wei: int
    gas_cost_usd: float
    error: Optional[str] = None


def condition_id_to_bytes32(condition_id: str) -> bytes:
    """Hex condition id (with or without 0x) as 32 bytes."""
    raw = condition_id[2:] if condition_id.startswith("0x") else condition_id
    return bytes.fromhex(raw).rjust(32, b"\x00")


class PolygonClient:
    """
    Client for the ConditionalTokens contract.

    Blocking web3 calls run in the default executor.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        wallet_address: str,
        matic_price_usd: float = 0.50
    ):
        self.rpc_url = rpc_url
        self.private_key = private_key
        self.wallet_address = Web3.to_checksum_address(wallet_address)
        self.matic_price_usd = matic_price_usd

        self._web3: Optional[Web3] = None
        self._account = None
        self._ctf_contract = None

    async def initialize(self) -> None:
        """Initialize Web3 connection and contracts."""
        logger.info("Initializing Polygon client")
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._setup_web3)
        logger.info("Polygon client initialized")

    def _setup_web3(self) -> None:
        self._web3 = Web3(Web3.HTTPProvider(self.rpc_url))
        self._web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        if not self._web3.is_connected():
            raise RuntimeError(f"Failed to connect to Polygon RPC: {self.rpc_url}")

        self._account = Account.from_key(self.private_key)
        self._ctf_contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(CONDITIONAL_TOKENS_ADDRESS),
            abi=CONDITIONAL_TOKENS_ABI
        )

    async def merge_positions(
        self,
        condition_id: str,
        amount: float
    ) -> TransactionResult:
        """
        Merge `amount` UP+DOWN pairs back into USDC.

        Args:
            condition_id: Market condition ID (hex string)
            amount: Number of pairs to merge

        Returns:
            TransactionResult with tx hash and costs
        """
        if not self._ctf_contract:
            raise RuntimeError("Polygon client not initialized")

        logger.info(f"Merging {amount} pairs for condition {condition_id}")
        loop = asyncio.get_event_loop()

        try:
            amount_units = int(amount * 10 ** TOKEN_DECIMALS)
            merge_call = self._ctf_contract.functions.mergePositions(
                Web3.to_checksum_address(USDC_ADDRESS),
                PARENT_COLLECTION_ID,
                condition_id_to_bytes32(condition_id),
                BINARY_PARTITION,
                amount_units
            )

            nonce = await loop.run_in_executor(
                None,
                lambda: self._web3.eth.get_transaction_count(self.wallet_address)
            )
            gas_price = await loop.run_in_executor(None, lambda: self._web3.eth.gas_price)

            gas_estimate = await loop.run_in_executor(
                None,
                lambda: merge_call.estimate_gas({"from": self.wallet_address})
            )

            tx = merge_call.build_transaction({
                "from": self.wallet_address,
                "nonce": nonce,
                "gas": int(gas_estimate * 1.2),
                "gasPrice": gas_price,
            })
            signed_tx = self._account.sign_transaction(tx)

            tx_hash = await loop.run_in_executor(
                None,
                lambda: self._web3.eth.send_raw_transaction(signed_tx.raw_transaction)
            )
            tx_hash_hex = tx_hash.hex()
            logger.info(f"Merge transaction sent: {tx_hash_hex}")

            receipt = await loop.run_in_executor(
                None,
                lambda: self._web3.eth.wait_for_transaction_receipt(tx_hash, timeout=120)
            )

            gas_used = receipt["gasUsed"]
            gas_cost_wei = gas_used * gas_price
            gas_cost_usd = float(self._web3.from_wei(gas_cost_wei, "ether")) * self.matic_price_usd

            if receipt["status"] != 1:
                return TransactionResult(
                    success=False,
                    tx_hash=tx_hash_hex,
                    gas_used=gas_used,
                    gas_cost_wei=gas_cost_wei,
                    gas_cost_usd=gas_cost_usd,
                    error="Transaction reverted"
                )

            logger.info(
                "Merge successful",
                extra={"tx_hash": tx_hash_hex, "gas_used": gas_used, "gas_cost_usd": gas_cost_usd}
            )
            return TransactionResult(
                success=True,
                tx_hash=tx_hash_hex,
                gas_used=gas_used,
                gas_cost_wei=gas_cost_wei,
                gas_cost_usd=gas_cost_usd
            )

        except Exception as e:
            logger.error(f"Merge failed: {e}")
            return TransactionResult(
                success=False,
                tx_hash="",
                gas_used=0,
                gas_cost_wei=0,
                gas_cost_usd=0.0,
                error=str(e)
            )
