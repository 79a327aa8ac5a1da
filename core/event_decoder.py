"""
Event decoding for four.meme TokenManager (V1/V2) and PancakeSwap V2 pair logs.

Two layers:
    1. ABI layer: decode_log() turns a RawLog into (EventKind, EventArgs) using
       the event signature table below and eth_abi for topics + data.
    2. Field layer: decode() maps EventArgs (or any named/positional argument
       container) onto a per-(kind, version) field table and normalizes values.

The field layer resolves every field by name first, then by its declared
position, then falls back to a default ("N/A" for addresses and strings, "0"
for amounts). It never performs I/O and keeps no state, so decoding the same
arguments twice yields equal results.

Usage:
    decoded_log = decode_log(raw_log, SchemaVersion.V2)
    if decoded_log is not None:
        kind, args = decoded_log
        event = decode(kind, SchemaVersion.V2, args)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

from eth_abi.abi import decode as abi_decode
from web3 import Web3

from shared.constants import NOT_AVAILABLE
from shared.serialization_utils import format_units, to_hex
from shared.types import DecodedEvent, EventKind, RawLog, SchemaVersion, TradeDirection


class UnsupportedEventError(ValueError):
    """Raised for an (event kind, schema version) pair with no field table."""


class LogDecodeError(ValueError):
    """Raised when a log matches a known topic but its payload cannot be ABI-decoded."""


# ============================================================================
# ABI LAYER
# ============================================================================


@dataclass(frozen=True)
class AbiInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventAbi:
    kind: EventKind
    inputs: tuple[AbiInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.kind.value}({','.join(i.type for i in self.inputs)})"

    @property
    def topic(self) -> str:
        return to_hex(Web3.keccak(text=self.signature)).lower()


def _inputs(*declarations: str) -> tuple[AbiInput, ...]:
    """Build inputs from "type name" strings; a trailing "indexed" marks topics."""
    inputs = []
    for item in declarations:
        parts = item.split()
        inputs.append(AbiInput(name=parts[-1], type=parts[0], indexed="indexed" in parts))
    return tuple(inputs)


_V1_TRADE = _inputs("address token", "address account", "uint256 tokenAmount", "uint256 etherAmount")
_V2_TRADE = _inputs(
    "address token",
    "address account",
    "uint256 price",
    "uint256 amount",
    "uint256 cost",
    "uint256 fee",
    "uint256 offers",
    "uint256 funds",
)
_V1_CREATE = _inputs(
    "address creator",
    "address token",
    "uint256 requestId",
    "string name",
    "string symbol",
    "uint256 totalSupply",
    "uint256 launchTime",
)

# (version, kind) -> event ABI. Pair contracts are not versioned (key version None).
EVENT_ABIS: dict[tuple[SchemaVersion | None, EventKind], EventAbi] = {
    (SchemaVersion.V1, EventKind.TOKEN_CREATE): EventAbi(EventKind.TOKEN_CREATE, _V1_CREATE),
    (SchemaVersion.V1, EventKind.TOKEN_PURCHASE): EventAbi(EventKind.TOKEN_PURCHASE, _V1_TRADE),
    (SchemaVersion.V1, EventKind.TOKEN_SALE): EventAbi(EventKind.TOKEN_SALE, _V1_TRADE),
    (SchemaVersion.V2, EventKind.TOKEN_CREATE): EventAbi(
        EventKind.TOKEN_CREATE, _V1_CREATE + _inputs("uint256 launchFee")
    ),
    (SchemaVersion.V2, EventKind.TOKEN_PURCHASE): EventAbi(EventKind.TOKEN_PURCHASE, _V2_TRADE),
    (SchemaVersion.V2, EventKind.TOKEN_SALE): EventAbi(EventKind.TOKEN_SALE, _V2_TRADE),
    (SchemaVersion.V2, EventKind.LIQUIDITY_ADDED): EventAbi(
        EventKind.LIQUIDITY_ADDED,
        _inputs("address base", "uint256 offers", "address quote", "uint256 funds"),
    ),
    (SchemaVersion.V2, EventKind.TRADE_STOP): EventAbi(EventKind.TRADE_STOP, _inputs("address token")),
    (None, EventKind.PAIR_SWAP): EventAbi(
        EventKind.PAIR_SWAP,
        _inputs(
            "address indexed sender",
            "uint256 amount0In",
            "uint256 amount1In",
            "uint256 amount0Out",
            "uint256 amount1Out",
            "address indexed to",
        ),
    ),
}

# (version, topic0) -> event ABI, for O(1) identification of incoming logs
_TOPIC_INDEX: dict[tuple[SchemaVersion | None, str], EventAbi] = {
    (version, abi.topic): abi for (version, _), abi in EVENT_ABIS.items()
}


def topic_for(version: SchemaVersion | None, kind: EventKind) -> str:
    """topic0 (keccak of the event signature) for a monitored event."""
    abi = EVENT_ABIS.get((version, kind))
    if abi is None:
        raise UnsupportedEventError(f"{kind.value} is not emitted by schema {_version_name(version)}")
    return abi.topic


class EventArgs(Mapping):
    """
    Decoded event arguments addressable by name (args["token"]) or by
    position (args[0]). Iteration yields names, like a dict.
    """

    def __init__(self, names: Sequence[str], values: Sequence[Any]) -> None:
        self._names = tuple(names)
        self._values = tuple(values)
        self._index = {name: i for i, name in enumerate(self._names)}

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return self._values[key]
        return self._values[self._index[key]]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def positional(self, position: int) -> Any:
        return self._values[position] if 0 <= position < len(self._values) else None

    def __repr__(self) -> str:
        return f"EventArgs({dict(zip(self._names, self._values))!r})"


def decode_log(raw_log: RawLog, version: SchemaVersion | None) -> tuple[EventKind, EventArgs] | None:
    """
    Identify and ABI-decode a raw log emitted by a contract of the given schema.

    Returns None for logs whose topic0 is not a monitored event of that schema.
    Raises LogDecodeError if topics or data do not match the event ABI.
    """
    if not raw_log.topics:
        return None
    abi = _TOPIC_INDEX.get((version, raw_log.topics[0].lower()))
    if abi is None:
        return None

    indexed = [i for i in abi.inputs if i.indexed]
    non_indexed = [i for i in abi.inputs if not i.indexed]
    if len(raw_log.topics) - 1 < len(indexed):
        raise LogDecodeError(
            f"{abi.signature}: expected {len(indexed)} indexed topics, got {len(raw_log.topics) - 1}"
        )

    values: dict[str, Any] = {}
    try:
        for abi_input, topic in zip(indexed, raw_log.topics[1:]):
            values[abi_input.name] = abi_decode([abi_input.type], _hex_bytes(topic))[0]
        data = _hex_bytes(raw_log.data)
        if non_indexed:
            decoded = abi_decode([i.type for i in non_indexed], data)
            for abi_input, value in zip(non_indexed, decoded):
                values[abi_input.name] = value
    except Exception as e:
        raise LogDecodeError(f"{abi.signature} at {raw_log.address}: {e}") from e

    names = [i.name for i in abi.inputs]
    return abi.kind, EventArgs(names, [values[name] for name in names])


def _hex_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


# ============================================================================
# FIELD LAYER
# ============================================================================


class FieldKind(Enum):
    ADDRESS = "address"
    STRING = "string"
    AMOUNT = "amount"  # uint256 scaled by 18 decimals, decimal string
    INTEGER = "integer"  # plain integer (ids, unix times)


_DEFAULTS = {
    FieldKind.ADDRESS: NOT_AVAILABLE,
    FieldKind.STRING: NOT_AVAILABLE,
    FieldKind.AMOUNT: "0",
    FieldKind.INTEGER: 0,
}


@dataclass(frozen=True)
class FieldSpec:
    output: str
    arg_name: str
    position: int
    kind: FieldKind
    default: Any = None

    @property
    def fallback(self) -> Any:
        return _DEFAULTS[self.kind] if self.default is None else self.default


def _f(output: str, arg_name: str, position: int, kind: FieldKind) -> FieldSpec:
    return FieldSpec(output, arg_name, position, kind)


_A, _S, _N, _I = FieldKind.ADDRESS, FieldKind.STRING, FieldKind.AMOUNT, FieldKind.INTEGER

_CREATE_FIELDS = (
    _f("creator", "creator", 0, _A),
    _f("token", "token", 1, _A),
    _f("request_id", "requestId", 2, _I),
    _f("name", "name", 3, _S),
    _f("symbol", "symbol", 4, _S),
    _f("total_supply", "totalSupply", 5, _N),
    _f("launch_time", "launchTime", 6, _I),
)
_V1_TRADE_FIELDS = (
    _f("token", "token", 0, _A),
    _f("account", "account", 1, _A),
    _f("token_amount", "tokenAmount", 2, _N),
    _f("quote_amount", "etherAmount", 3, _N),
)
_V2_TRADE_FIELDS = (
    _f("token", "token", 0, _A),
    _f("account", "account", 1, _A),
    _f("price", "price", 2, _N),
    _f("token_amount", "amount", 3, _N),
    _f("quote_amount", "cost", 4, _N),
    _f("fee", "fee", 5, _N),
    _f("offers", "offers", 6, _N),
    _f("funds", "funds", 7, _N),
)

FIELD_TABLES: dict[tuple[EventKind, SchemaVersion | None], tuple[FieldSpec, ...]] = {
    (EventKind.TOKEN_CREATE, SchemaVersion.V1): _CREATE_FIELDS,
    (EventKind.TOKEN_CREATE, SchemaVersion.V2): _CREATE_FIELDS + (_f("launch_fee", "launchFee", 7, _N),),
    (EventKind.TOKEN_PURCHASE, SchemaVersion.V1): _V1_TRADE_FIELDS,
    (EventKind.TOKEN_SALE, SchemaVersion.V1): _V1_TRADE_FIELDS,
    (EventKind.TOKEN_PURCHASE, SchemaVersion.V2): _V2_TRADE_FIELDS,
    (EventKind.TOKEN_SALE, SchemaVersion.V2): _V2_TRADE_FIELDS,
    (EventKind.LIQUIDITY_ADDED, SchemaVersion.V2): (
        _f("base", "base", 0, _A),
        _f("offers", "offers", 1, _N),
        _f("quote", "quote", 2, _A),
        _f("funds", "funds", 3, _N),
    ),
    (EventKind.TRADE_STOP, SchemaVersion.V2): (_f("token", "token", 0, _A),),
    (EventKind.PAIR_SWAP, None): (
        _f("sender", "sender", 0, _A),
        _f("amount0_in", "amount0In", 1, _N),
        _f("amount1_in", "amount1In", 2, _N),
        _f("amount0_out", "amount0Out", 3, _N),
        _f("amount1_out", "amount1Out", 4, _N),
        _f("to", "to", 5, _A),
    ),
}


def decode(kind: EventKind, version: SchemaVersion | None, raw_args: Any) -> DecodedEvent:
    """
    Map raw event arguments onto the field table for (kind, version).

    ``raw_args`` may be an EventArgs, a dict of named args, a list/tuple of
    positional args, or a dict mixing both (int keys for positions).
    """
    table = FIELD_TABLES.get((kind, version))
    if table is None:
        raise UnsupportedEventError(f"no field table for {kind.value} on schema {_version_name(version)}")

    fields: dict[str, Any] = {}
    raw_values: dict[str, Any] = {}
    missing: list[str] = []
    for field_spec in table:
        raw = _lookup(raw_args, field_spec)
        value = _normalize(raw, field_spec.kind) if raw is not None else None
        if value is None:
            missing.append(field_spec.output)
            value = field_spec.fallback
        fields[field_spec.output] = value
        raw_values[field_spec.output] = raw

    if kind is EventKind.PAIR_SWAP:
        fields.update(_swap_direction(raw_values))

    return DecodedEvent(kind=kind, version=version, fields=fields, missing=tuple(missing))


def _lookup(raw_args: Any, field_spec: FieldSpec) -> Any:
    """Named lookup first, then the declared position. None if neither resolves."""
    if isinstance(raw_args, EventArgs):
        value = raw_args.get(field_spec.arg_name)
        return value if value is not None else raw_args.positional(field_spec.position)
    if isinstance(raw_args, Mapping):
        value = raw_args.get(field_spec.arg_name)
        return value if value is not None else raw_args.get(field_spec.position)
    if isinstance(raw_args, Sequence) and not isinstance(raw_args, (str, bytes)):
        return raw_args[field_spec.position] if field_spec.position < len(raw_args) else None
    return None


def _normalize(raw: Any, kind: FieldKind) -> Any:
    """Normalize a raw value to its output form, or None if it is unusable."""
    try:
        if kind is FieldKind.AMOUNT:
            return format_units(raw)
        if kind is FieldKind.INTEGER:
            if raw is None or isinstance(raw, bool):
                return None
            if isinstance(raw, str):
                return int(raw, 16) if raw.startswith("0x") else int(raw)
            return int(raw)
        if kind is FieldKind.ADDRESS:
            return _address(raw)
        if isinstance(raw, (bytes, bytearray)):
            return bytes(raw).decode("utf-8", errors="replace")
        return str(raw)
    except (TypeError, ValueError):
        return None


def _address(raw: Any) -> str:
    if isinstance(raw, (bytes, bytearray)):
        raw = "0x" + bytes(raw).hex()[-40:]
    text = str(raw)
    if not text:
        raise ValueError("empty address")
    try:
        return Web3.to_checksum_address(text)
    except ValueError:
        return text


def _swap_direction(raw_values: dict[str, Any]) -> dict[str, Any]:
    """
    Token0 flowing in against token1 out is a sell of token0; the reverse is
    a buy. The traded amount is the token0 side of the swap.
    """
    amounts = {}
    for name in ("amount0_in", "amount1_in", "amount0_out", "amount1_out"):
        value = _normalize(raw_values.get(name), FieldKind.INTEGER)
        amounts[name] = value if isinstance(value, int) else 0

    if amounts["amount0_in"] > 0 and amounts["amount1_out"] > 0:
        return {"direction": TradeDirection.SELL.value, "token_amount": format_units(amounts["amount0_in"])}
    if amounts["amount1_in"] > 0 and amounts["amount0_out"] > 0:
        return {"direction": TradeDirection.BUY.value, "token_amount": format_units(amounts["amount0_out"])}
    return {"direction": TradeDirection.UNKNOWN.value, "token_amount": "0"}


def _version_name(version: SchemaVersion | None) -> str:
    return version.value if version is not None else "pair"
