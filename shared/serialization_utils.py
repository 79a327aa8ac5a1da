"""
Serialization utilities for BSC Token Monitor.

Provides JSON encoding for Decimal, HexBytes, large integers, and web3 types,
plus the unit formatting used for every on-chain quantity in a canonical record.

Usage:
    from shared.serialization_utils import DecimalEncoder, format_units
    json.dumps(data, cls=DecimalEncoder)
    format_units(10**24)  # "1000000"
"""

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, localcontext
from json import JSONEncoder
from typing import Any

from hexbytes import HexBytes

from shared.constants import DEFAULT_TOKEN_DECIMALS

# uint256 has 78 decimal digits; keep headroom for the fractional part
_FORMAT_PRECISION = 100


class DecimalEncoder(JSONEncoder):
    """
    Custom JSON encoder handling Decimal, HexBytes, large integers, and web3.py types.

    Sources:
    - RFC 7159 section 6 (JSON number limits)
    - IEEE 754-2008 (double precision safe integer limit: 2^53 - 1)
    """

    # IEEE 754 double precision safe integer limit
    _MAX_SAFE_INTEGER = 2**53 - 1

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        # Handle HexBytes from web3.py (addresses, tx hashes, raw bytes)
        if isinstance(obj, (HexBytes, bytes)):
            return to_hex(obj)
        # Handle web3.py AttributeDict (common in transaction/block responses)
        if hasattr(obj, "__iter__") and hasattr(obj, "keys"):
            return dict(obj)
        return super().default(obj)

    def encode(self, obj: Any) -> str:
        """Override encode to convert large integers to strings before JSON serialization."""
        return super().encode(self._convert_large_ints(obj))

    def _convert_large_ints(self, obj: Any) -> Any:
        """Recursively convert integers exceeding IEEE 754 safe limits to strings."""
        if isinstance(obj, dict):
            return {k: self._convert_large_ints(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self._convert_large_ints(item) for item in obj]
        elif isinstance(obj, bool):
            return obj
        elif isinstance(obj, int) and (obj > self._MAX_SAFE_INTEGER or obj < -self._MAX_SAFE_INTEGER):
            return str(obj)
        return obj


def to_hex(value: Any) -> str:
    """Render bytes-like values as 0x-prefixed hex; pass strings through."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value).hex()
        return raw if raw.startswith("0x") else "0x" + raw
    return str(value)


def format_units(value: Any, decimals: int = DEFAULT_TOKEN_DECIMALS) -> str:
    """
    Scale an integer on-chain quantity down by ``decimals`` and render it as
    a plain decimal string without exponent or trailing zeros.

    Raises ValueError if ``value`` is not an integer quantity.
    """
    if isinstance(value, bool):
        raise ValueError(f"not a quantity: {value!r}")
    try:
        if isinstance(value, str):
            raw = int(value, 16) if value.startswith("0x") else int(value)
        else:
            raw = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"not a quantity: {value!r}") from e

    with localcontext() as ctx:
        ctx.prec = _FORMAT_PRECISION
        try:
            scaled = Decimal(raw).scaleb(-decimals)
        except InvalidOperation as e:
            raise ValueError(f"cannot scale {value!r}") from e
        text = format(scaled, "f")

    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def iso_now() -> str:
    """Current wall-clock time as an ISO-8601 UTC string (kafka_timestamp)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_from_seconds(seconds: int) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def dumps(payload: Any) -> str:
    """JSON-encode a payload the way every bus message is encoded."""
    return json.dumps(payload, cls=DecimalEncoder)
