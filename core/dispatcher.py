"""
Event enrichment and dispatch.

Turns a DecodedEvent into a canonical record and publishes it:
    1. block time from the block timestamp cache (wall clock on miss)
    2. V2 trades with price > 0: total supply call -> market cap
    3. liquidity/migration: founder and pair calls ("N/A" on failure)
    4. canonical record with chain_id 0, slot, signature, kafka_timestamp
    5. JSON publish to the category topic keyed by the transaction hash

Enrichment and publish failures never propagate. They are logged and
reported as reasons on the DispatchResult (status DEGRADED or
PUBLISH_FAILED), so one bad event cannot interrupt the stream.

Usage:
    dispatcher = EventDispatcher(cache, reader, bus, token_index, topics)
    result = await dispatcher.dispatch(decoded_event, raw_log)
"""

from __future__ import annotations

import asyncio
import secrets
import time
from typing import Any, Mapping

from bot_logging.logger_manager import log_data_output, setup_module_logger
from core.block_cache import BlockTimestampCache
from core.token_index import CreatedTokenIndex
from shared.constants import (
    CANONICAL_CHAIN_ID,
    DEFAULT_TOKEN_DECIMALS,
    MILLISECONDS_PER_SECOND,
    NOT_AVAILABLE,
    TOPIC_TOKEN_CREATED,
    TOPIC_TOKEN_MIGRATED,
    TOPIC_TOKEN_TRADE,
)
from shared.serialization_utils import dumps, format_units, iso_now
from shared.types import (
    CanonicalEvent,
    DecodedEvent,
    DispatchResult,
    DispatchStatus,
    EventKind,
    RawLog,
    SchemaVersion,
    TokenCreate,
    TokenMigration,
    TokenTrade,
    TradeDirection,
    TradeStop,
)

_DEFAULT_TOPICS = {
    "created": TOPIC_TOKEN_CREATED,
    "trade": TOPIC_TOKEN_TRADE,
    "migrated": TOPIC_TOKEN_MIGRATED,
}

_TRADE_DIRECTIONS = {
    EventKind.TOKEN_PURCHASE: TradeDirection.BUY.value,
    EventKind.TOKEN_SALE: TradeDirection.SELL.value,
}


# ============================================================================
# CANONICAL RECORD BUILDERS (pure)
# ============================================================================


def build_token_create(
    decoded: DecodedEvent, raw_log: RawLog, block_time: int, kafka_timestamp: str
) -> TokenCreate:
    f = decoded.fields
    return TokenCreate(
        chain_id=CANONICAL_CHAIN_ID,
        token_mint=f["token"],
        token_name=f["name"],
        token_symbol=f["symbol"],
        creator_wallet=f["creator"],
        metadata_uri=NOT_AVAILABLE,  # not carried by the event
        initial_supply=f["total_supply"],
        block_time=block_time,
        slot=raw_log.block_number,
        signature=raw_log.transaction_hash,
        kafka_timestamp=kafka_timestamp,
    )


def build_token_trade(
    decoded: DecodedEvent,
    raw_log: RawLog,
    block_time: int,
    kafka_timestamp: str,
    market_cap: float = 0.0,
) -> TokenTrade:
    f = decoded.fields
    if decoded.kind is EventKind.PAIR_SWAP:
        # Pair swaps carry no quote amount or token address; the pair stands in for the token
        direction, wallet, token, quote_amount = f["direction"], f["sender"], raw_log.address, NOT_AVAILABLE
    else:
        direction = _TRADE_DIRECTIONS[decoded.kind]
        wallet, token, quote_amount = f["account"], f["token"], f["quote_amount"]
    return TokenTrade(
        chain_id=CANONICAL_CHAIN_ID,
        direction=direction,
        buyer_wallet=wallet,
        token_mint=token,
        token_amount=f["token_amount"],
        token_decimals=DEFAULT_TOKEN_DECIMALS,
        sol_amount=quote_amount,
        market_cap=market_cap,
        block_time=block_time,
        slot=raw_log.block_number,
        signature=raw_log.transaction_hash,
        kafka_timestamp=kafka_timestamp,
    )


def build_token_migration(
    decoded: DecodedEvent,
    raw_log: RawLog,
    block_time: int,
    kafka_timestamp: str,
    migrator_wallet: str = NOT_AVAILABLE,
    liquidity_pool: str = NOT_AVAILABLE,
) -> TokenMigration:
    f = decoded.fields
    return TokenMigration(
        chain_id=CANONICAL_CHAIN_ID,
        token_mint=f["base"],
        migrator_wallet=migrator_wallet,
        liquidity_pool=liquidity_pool,
        migration_fee=f["funds"],
        block_time=block_time,
        slot=raw_log.block_number,
        signature=raw_log.transaction_hash,
        kafka_timestamp=kafka_timestamp,
    )


def build_trade_stop(decoded: DecodedEvent, raw_log: RawLog, kafka_timestamp: str) -> TradeStop:
    return TradeStop(
        chain_id=CANONICAL_CHAIN_ID,
        token_mint=decoded.fields["token"],
        slot=raw_log.block_number,
        signature=raw_log.transaction_hash,
        kafka_timestamp=kafka_timestamp,
    )


def calculate_market_cap(price: str, supply: str) -> float:
    """price * supply over the 18-decimal formatted values."""
    return float(price) * float(supply)


# ============================================================================
# DISPATCHER
# ============================================================================


class EventDispatcher:
    """
    Enriches decoded events and publishes canonical records.

    Collaborators are injected so tests can substitute any of them:
    block_cache (get_or_fetch), chain_reader (total_supply, founder, pair,
    pair_reserves), bus (publish), token_index (append).
    """

    def __init__(
        self,
        block_cache: BlockTimestampCache,
        chain_reader: Any,
        bus: Any,
        token_index: CreatedTokenIndex,
        topics: Mapping[str, str] | None = None,
        publish_pair_swaps: bool = False,
    ) -> None:
        self._block_cache = block_cache
        self._chain_reader = chain_reader
        self._bus = bus
        self._token_index = token_index
        self._topics = {**_DEFAULT_TOPICS, **(topics or {})}
        self._publish_pair_swaps = publish_pair_swaps

        self._logger = setup_module_logger(
            "dispatcher", "dispatcher.log", module_folder="Dispatcher_Logs"
        )

    async def dispatch(
        self, decoded: DecodedEvent, raw_log: RawLog, trace_id: str | None = None
    ) -> DispatchResult:
        trace_id = trace_id or f"{raw_log.transaction_hash}:{raw_log.log_index}"
        reasons = [f"defaulted field: {name}" for name in decoded.missing]
        kind = decoded.kind

        if kind is EventKind.TRADE_STOP:
            record = build_trade_stop(decoded, raw_log, iso_now())
            self._log_record(kind, record)
            return DispatchResult(DispatchStatus.LOGGED_ONLY, record=record.to_dict(), reasons=tuple(reasons))

        block_time = await self._resolve_block_time(raw_log.block_number, reasons)

        if kind is EventKind.TOKEN_CREATE:
            record = build_token_create(decoded, raw_log, block_time, iso_now())
            self._token_index.append(record.token_mint)
            topic = self._topics["created"]
        elif kind in (EventKind.TOKEN_PURCHASE, EventKind.TOKEN_SALE):
            market_cap = await self._market_cap(decoded, reasons)
            record = build_token_trade(decoded, raw_log, block_time, iso_now(), market_cap)
            topic = self._topics["trade"]
        elif kind is EventKind.LIQUIDITY_ADDED:
            migrator, pool = await self._migration_parties(decoded.fields["base"], reasons)
            record = build_token_migration(decoded, raw_log, block_time, iso_now(), migrator, pool)
            topic = self._topics["migrated"]
        elif kind is EventKind.PAIR_SWAP:
            return await self._dispatch_pair_swap(decoded, raw_log, block_time, reasons, trace_id)
        else:
            raise ValueError(f"unhandled event kind: {kind}")

        self._log_record(kind, record)
        return await self._publish(topic, record, reasons, trace_id)

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    async def _resolve_block_time(self, block_number: int, reasons: list[str]) -> int:
        """Block time in unix seconds; the wall clock when the block is unresolvable."""
        timestamp_ms = await self._block_cache.get_or_fetch(block_number)
        if timestamp_ms is None:
            reasons.append(f"block {block_number} timestamp unavailable, used wall clock")
            return int(time.time())
        return timestamp_ms // MILLISECONDS_PER_SECOND

    async def _market_cap(self, decoded: DecodedEvent, reasons: list[str]) -> float:
        if decoded.version is not SchemaVersion.V2:
            return 0.0
        price = decoded.fields.get("price", "0")
        if float(price) <= 0:
            return 0.0
        token = decoded.fields["token"]
        if token == NOT_AVAILABLE:
            reasons.append("market cap skipped: token address missing")
            return 0.0
        try:
            supply = await self._chain_reader.total_supply(token)
            return calculate_market_cap(price, format_units(supply, DEFAULT_TOKEN_DECIMALS))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.warning("Could not calculate market cap for %s: %s", token, e)
            reasons.append(f"total supply unavailable: {e}")
            return 0.0

    async def _migration_parties(self, token: str, reasons: list[str]) -> tuple[str, str]:
        """(founder, pair) for a migrated token; each falls back to "N/A" independently."""
        if token == NOT_AVAILABLE:
            reasons.append("migration lookups skipped: token address missing")
            return NOT_AVAILABLE, NOT_AVAILABLE
        founder, pair = await asyncio.gather(
            self._chain_reader.founder(token),
            self._chain_reader.pair(token),
            return_exceptions=True,
        )
        resolved = []
        for name, value in (("founder", founder), ("pair", pair)):
            if isinstance(value, asyncio.CancelledError):
                raise value
            if isinstance(value, BaseException):
                self._logger.warning("Could not read %s for %s: %s", name, token, value)
                reasons.append(f"{name} unavailable: {value}")
                resolved.append(NOT_AVAILABLE)
            else:
                resolved.append(str(value))
        return resolved[0], resolved[1]

    async def _dispatch_pair_swap(
        self,
        decoded: DecodedEvent,
        raw_log: RawLog,
        block_time: int,
        reasons: list[str],
        trace_id: str,
    ) -> DispatchResult:
        record = build_token_trade(decoded, raw_log, block_time, iso_now())
        liquidity = NOT_AVAILABLE
        try:
            reserves = await self._chain_reader.pair_reserves(raw_log.address)
            liquidity = f"{float(format_units(reserves.reserve1)):.4f} BNB"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.warning("Could not fetch pair reserves for %s: %s", raw_log.address, e)
            reasons.append(f"pair reserves unavailable: {e}")

        self._logger.info("[PairSwap %s] liquidity=%s %s", record.direction, liquidity, dumps(record.to_dict()))
        if self._publish_pair_swaps and record.direction != TradeDirection.UNKNOWN.value:
            return await self._publish(self._topics["trade"], record, reasons, trace_id)
        return DispatchResult(DispatchStatus.LOGGED_ONLY, record=record.to_dict(), reasons=tuple(reasons))

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def _publish(
        self, topic: str, record: CanonicalEvent, reasons: list[str], trace_id: str
    ) -> DispatchResult:
        payload = record.to_dict()
        key = record.signature or f"{topic}-{secrets.token_hex(8)}"
        try:
            await self._bus.publish(topic, key, payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(
                "Failed to publish to %s (key=%s): %s", topic, key, e,
                extra={"trace_id": trace_id, "topic": topic},
            )
            return DispatchResult(
                DispatchStatus.PUBLISH_FAILED,
                topic=topic,
                record=payload,
                reasons=tuple(reasons) + (f"publish failed: {e}",),
            )

        log_data_output(
            trace_id,
            "dispatcher",
            f"{type(record).__name__} record",
            "canonical record published to the bus",
            type(record).__name__,
            payload,
            topic,
        )
        status = DispatchStatus.DEGRADED if reasons else DispatchStatus.PUBLISHED
        return DispatchResult(status, topic=topic, record=payload, reasons=tuple(reasons))

    def _log_record(self, kind: EventKind, record: CanonicalEvent) -> None:
        self._logger.info("[%s] %s", kind.value, dumps(record.to_dict()))
