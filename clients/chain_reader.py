"""
Read-only contract calls used to enrich events.

Thin async wrapper over web3 contract calls for four.meme tokens (total
supply, founder, pair) and PancakeSwap V2 pairs (reserves). No transactions.

Usage:
    from web3 import AsyncWeb3, AsyncHTTPProvider
    from clients.chain_reader import ChainReader

    w3 = AsyncWeb3(AsyncHTTPProvider(http_url))
    reader = ChainReader(w3)
    supply = await reader.total_supply(token_address)
"""

from __future__ import annotations

from web3 import AsyncWeb3, Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.types import PairReserves


class ChainReaderError(Exception):
    """Raised when a read-only contract call fails."""


class ChainReader:
    """
    Async read wrapper for token and pair contracts.

    Accepts an AsyncWeb3 instance via dependency injection so the same
    HTTP provider can be shared. Contract objects are built per call because
    every event names a different token.
    """

    def __init__(self, w3: AsyncWeb3) -> None:
        self._w3 = w3
        cfg = get_config()
        self._token_abi = cfg.get_abi("meme_token")
        self._pair_abi = cfg.get_abi("pancake_pair")

        self._logger = setup_module_logger(
            "chain_reader", "chain_reader.log", module_folder="Chain_Reader_Logs"
        )

    def _token(self, address: str):
        return self._w3.eth.contract(address=Web3.to_checksum_address(address), abi=self._token_abi)

    def _pair(self, address: str):
        return self._w3.eth.contract(address=Web3.to_checksum_address(address), abi=self._pair_abi)

    # ------------------------------------------------------------------
    # Token reads
    # ------------------------------------------------------------------

    async def total_supply(self, token: str) -> int:
        """Raw (unscaled) ERC-20 total supply."""
        try:
            return int(await self._token(token).functions.totalSupply().call())
        except Exception as e:
            self._logger.error("Failed to read totalSupply for %s: %s", token, e)
            raise ChainReaderError(f"totalSupply failed for {token}: {e}") from e

    async def founder(self, token: str) -> str:
        """Creator address recorded on a four.meme token (the migrator)."""
        try:
            return str(await self._token(token).functions.founder().call())
        except Exception as e:
            self._logger.error("Failed to read founder for %s: %s", token, e)
            raise ChainReaderError(f"founder failed for {token}: {e}") from e

    async def pair(self, token: str) -> str:
        """Liquidity pool the token migrated to."""
        try:
            return str(await self._token(token).functions.pair().call())
        except Exception as e:
            self._logger.error("Failed to read pair for %s: %s", token, e)
            raise ChainReaderError(f"pair failed for {token}: {e}") from e

    # ------------------------------------------------------------------
    # Pair reads
    # ------------------------------------------------------------------

    async def pair_reserves(self, pair: str) -> PairReserves:
        try:
            reserve0, reserve1, block_timestamp_last = await self._pair(pair).functions.getReserves().call()
        except Exception as e:
            self._logger.error("Failed to read reserves for %s: %s", pair, e)
            raise ChainReaderError(f"getReserves failed for {pair}: {e}") from e
        return PairReserves(
            reserve0=int(reserve0),
            reserve1=int(reserve1),
            block_timestamp_last=int(block_timestamp_last),
        )
