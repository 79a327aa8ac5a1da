"""
Bounded block-number -> timestamp cache with retrying fetch-on-miss.

Every event is stamped with its block's wall-clock time. Blocks never change,
so entries are insert-if-absent only. When an insert takes the cache over
capacity, the single entry with the smallest block number is evicted: block
numbers grow with chain time, so this approximates age-based eviction for the
live stream (it is not LRU; out-of-order historical lookups can evict a hot
low block).

Usage:
    cache = BlockTimestampCache(fetch_block=session.get_block)
    ts_ms = await cache.get_or_fetch(block_number)  # None if unresolvable
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping

from bot_logging.logger_manager import setup_module_logger
from core.backoff import BackoffPolicy
from shared.constants import (
    DEFAULT_BLOCK_CACHE_CAPACITY,
    DEFAULT_BLOCK_FETCH_RETRIES,
    MILLISECONDS_PER_SECOND,
)
from shared.serialization_utils import iso_from_seconds

BlockFetcher = Callable[[int], Awaitable[Mapping[str, Any] | None]]


class BlockTimestampCache:
    """
    Process-wide block timestamp cache, owned by its creator and passed to
    the dispatcher explicitly.

    Concurrent misses on the same block are not coalesced: each caller runs
    its own fetch loop. Fetches and inserts are idempotent, so this only
    costs extra RPC calls.
    """

    def __init__(
        self,
        fetch_block: BlockFetcher,
        capacity: int = DEFAULT_BLOCK_CACHE_CAPACITY,
        max_retries: int = DEFAULT_BLOCK_FETCH_RETRIES,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._fetch_block = fetch_block
        self._capacity = capacity
        self._max_retries = max(1, max_retries)
        self._backoff = backoff or BackoffPolicy()
        self._timestamps: dict[int, int] = {}

        self._fetch_count = 0

        self._logger = setup_module_logger(
            "block_cache", "block_cache.log", module_folder="Block_Cache_Logs"
        )

    # ------------------------------------------------------------------
    # Query interface
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def fetch_count(self) -> int:
        """Number of fetch attempts issued so far (hits never fetch)."""
        return self._fetch_count

    def __len__(self) -> int:
        return len(self._timestamps)

    def __contains__(self, block_number: object) -> bool:
        return block_number in self._timestamps

    def get(self, block_number: int) -> int | None:
        return self._timestamps.get(block_number)

    def put_if_absent(self, block_number: int, timestamp_ms: int) -> bool:
        """
        Insert a timestamp unless the block is already cached, then enforce
        capacity. Returns True if the entry was inserted.

        Synchronous on purpose: the capacity check must run in the same task
        step as the insert.
        """
        if block_number in self._timestamps:
            return False
        self._timestamps[block_number] = timestamp_ms
        if len(self._timestamps) > self._capacity:
            oldest = min(self._timestamps)
            del self._timestamps[oldest]
            self._logger.debug("Evicted block %d (size=%d)", oldest, len(self._timestamps))
        return True

    def clear(self) -> None:
        self._timestamps.clear()

    # ------------------------------------------------------------------
    # Fetch on miss
    # ------------------------------------------------------------------

    async def get_or_fetch(self, block_number: int, max_retries: int | None = None) -> int | None:
        """
        Return the block timestamp in milliseconds, fetching it on a miss.

        Each failed attempt (exception, or an absent/empty block) waits the
        backoff delay before the next one, except after the last. Returns
        None once every attempt has failed; callers fall back to wall-clock.
        """
        cached = self._timestamps.get(block_number)
        if cached is not None:
            return cached

        attempts = max(1, max_retries if max_retries is not None else self._max_retries)
        for attempt in range(1, attempts + 1):
            self._fetch_count += 1
            try:
                block = await self._fetch_block(block_number)
                timestamp_s = _block_timestamp(block)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error(
                    "Error fetching block %d (attempt %d/%d): %s",
                    block_number,
                    attempt,
                    attempts,
                    e,
                )
                timestamp_s = None

            if timestamp_s is not None:
                timestamp_ms = timestamp_s * MILLISECONDS_PER_SECOND
                self.put_if_absent(block_number, timestamp_ms)
                self._logger.info(
                    "Cached timestamp for block %d: %s",
                    block_number,
                    iso_from_seconds(timestamp_s),
                )
                # Another task may have inserted first; both values are identical
                return self._timestamps.get(block_number, timestamp_ms)

            if attempt < attempts:
                delay = self._backoff.delay_seconds(attempt)
                self._logger.warning(
                    "Block %d unavailable (attempt %d/%d), retrying in %.1fs",
                    block_number,
                    attempt,
                    attempts,
                    delay,
                )
                await asyncio.sleep(delay)

        self._logger.error("Failed to fetch block %d after %d attempts", block_number, attempts)
        return None


def _block_timestamp(block: Mapping[str, Any] | None) -> int | None:
    """Extract the unix-seconds timestamp from a block, or None if unusable."""
    if not block:
        return None
    raw = block.get("timestamp")
    if raw is None:
        return None
    if isinstance(raw, str):
        return int(raw, 16) if raw.startswith("0x") else int(raw)
    return int(raw)
