"""
Shared data types for BSC Token Monitor.

Centralized dataclasses and enums used across all modules. Canonical records
carry the exact field names of the JSON published to Kafka.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class SchemaVersion(Enum):
    V1 = "V1"  # TokenManager (legacy): no price / offers / funds fields
    V2 = "V2"  # TokenManager2: explicit price, fee, offers, funds


class EventKind(Enum):
    TOKEN_CREATE = "TokenCreate"
    TOKEN_PURCHASE = "TokenPurchase"
    TOKEN_SALE = "TokenSale"
    LIQUIDITY_ADDED = "LiquidityAdded"
    TRADE_STOP = "TradeStop"
    PAIR_SWAP = "Swap"  # PancakeSwap V2 pair


class TradeDirection(Enum):
    BUY = "buy"
    SELL = "sell"
    UNKNOWN = "unknown"


class DispatchStatus(Enum):
    PUBLISHED = "published"
    DEGRADED = "degraded"  # published, but with fallback values
    LOGGED_ONLY = "logged_only"
    PUBLISH_FAILED = "publish_failed"


# ---------------------------------------------------------------------------
# Chain Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawLog:
    """A log entry as delivered by an eth_subscribe("logs") notification."""

    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    log_index: int = 0
    removed: bool = False

    @classmethod
    def from_rpc(cls, payload: dict[str, Any]) -> RawLog:
        """Build from a JSON-RPC log object (hex-encoded quantities)."""
        return cls(
            address=str(payload.get("address", "")),
            topics=tuple(str(t) for t in payload.get("topics", [])),
            data=str(payload.get("data", "0x")),
            block_number=_hex_to_int(payload.get("blockNumber", 0)),
            transaction_hash=str(payload.get("transactionHash", "") or ""),
            log_index=_hex_to_int(payload.get("logIndex", 0)),
            removed=bool(payload.get("removed", False)),
        )


@dataclass(frozen=True)
class LogFilter:
    """A single (address, topic0) selector for eth_subscribe."""

    address: str
    topic: str
    kind: EventKind
    version: SchemaVersion | None = None  # None for third-party pair contracts

    def to_params(self) -> dict[str, Any]:
        return {"address": self.address, "topics": [self.topic]}


@dataclass(frozen=True)
class PairReserves:
    """Raw uint112 reserves of a PancakeSwap V2 pair."""

    reserve0: int
    reserve1: int
    block_timestamp_last: int


@dataclass(frozen=True)
class TransactionDetails:
    hash: str
    block_number: int
    block_hash: str
    sender: str
    to: str
    value: str  # BNB
    gas_limit: str
    gas_price: str  # BNB
    gas_used: str
    transaction_fee: str  # BNB
    status: str
    timestamp: str  # ISO-8601
    logs: int


# ---------------------------------------------------------------------------
# Decoder output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DecodedEvent:
    """Variant-specific field set produced by the event decoder (no I/O)."""

    kind: EventKind
    version: SchemaVersion | None
    fields: dict[str, Any]
    missing: tuple[str, ...] = ()  # fields that fell back to their default


# ---------------------------------------------------------------------------
# Canonical records (published to Kafka)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenCreate:
    chain_id: int
    token_mint: str
    token_name: str
    token_symbol: str
    creator_wallet: str
    metadata_uri: str
    initial_supply: str
    block_time: int
    slot: int
    signature: str
    kafka_timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TokenTrade:
    """Purchase and sale share one schema, distinguished by direction."""

    chain_id: int
    direction: str
    buyer_wallet: str
    token_mint: str
    token_amount: str
    token_decimals: int
    sol_amount: str  # quote-currency (BNB) amount
    market_cap: float
    block_time: int
    slot: int
    signature: str
    kafka_timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TokenMigration:
    chain_id: int
    token_mint: str
    migrator_wallet: str
    liquidity_pool: str
    migration_fee: str
    block_time: int
    slot: int
    signature: str
    kafka_timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TradeStop:
    """Logged only, never published."""

    chain_id: int
    token_mint: str
    slot: int
    signature: str
    kafka_timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


CanonicalEvent = TokenCreate | TokenTrade | TokenMigration | TradeStop


@dataclass(frozen=True)
class CreatedTokenRecord:
    token_mint: str
    created_at: int  # wall clock, ms since epoch


@dataclass(frozen=True)
class DispatchResult:
    status: DispatchStatus
    topic: str | None = None
    record: dict[str, Any] | None = None
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def published(self) -> bool:
        return self.status in (DispatchStatus.PUBLISHED, DispatchStatus.DEGRADED)


# ---------------------------------------------------------------------------
# Bus Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BusMessage:
    topic: str
    key: str | None
    payload: dict[str, Any]


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value:
        return int(value, 16) if value.startswith("0x") else int(value)
    return 0
