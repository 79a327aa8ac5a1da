"""
Log and argument builders shared by the unit tests.

make_raw_log ABI-encodes event arguments into topics + data exactly the way
a node delivers them in an eth_subscription notification.
"""

from __future__ import annotations

from typing import Any

from eth_abi import encode as abi_encode

from core.event_decoder import EVENT_ABIS
from shared.types import EventKind, RawLog, SchemaVersion

# ---------------------------------------------------------------------------
# Sample addresses / hashes
# ---------------------------------------------------------------------------

CREATOR = "0x" + "aa" * 20
TOKEN = "0x" + "bb" * 20
ACCOUNT = "0x" + "cc" * 20
QUOTE = "0x" + "dd" * 20
PAIR = "0x473d8f4e7f63389cd7cb44837bad01b754de772a"
MANAGER_V1 = "0xEC4549caDcE5DA21Df6E6422d448034B5233bFbC"
MANAGER_V2 = "0x5c952063c7fc8610FFDB798152D69F0B9550762b"
TX_HASH = "0x" + "12" * 32
BLOCK_NUMBER = 45_000_000
BLOCK_TIMESTAMP_MS = 1_700_000_000_000

WEI = 10**18


# ---------------------------------------------------------------------------
# Log builder
# ---------------------------------------------------------------------------


def make_raw_log(
    version: SchemaVersion | None,
    kind: EventKind,
    values: dict[str, Any],
    address: str = MANAGER_V2,
    block_number: int = BLOCK_NUMBER,
    tx_hash: str = TX_HASH,
    log_index: int = 0,
) -> RawLog:
    """ABI-encode ``values`` into topics + data for the given event."""
    abi = EVENT_ABIS[(version, kind)]
    topics = [abi.topic]
    data_types, data_values = [], []
    for abi_input in abi.inputs:
        if abi_input.indexed:
            topics.append("0x" + abi_encode([abi_input.type], [values[abi_input.name]]).hex())
        else:
            data_types.append(abi_input.type)
            data_values.append(values[abi_input.name])
    return RawLog(
        address=address,
        topics=tuple(topics),
        data="0x" + abi_encode(data_types, data_values).hex(),
        block_number=block_number,
        transaction_hash=tx_hash,
        log_index=log_index,
    )


def token_create_values(**overrides: Any) -> dict[str, Any]:
    values = {
        "creator": CREATOR,
        "token": TOKEN,
        "requestId": 7,
        "name": "Pepe",
        "symbol": "PEPE",
        "totalSupply": 1_000_000 * WEI,
        "launchTime": 1_700_000_000,
        "launchFee": 0,
    }
    values.update(overrides)
    return values


def v2_trade_values(**overrides: Any) -> dict[str, Any]:
    values = {
        "token": TOKEN,
        "account": ACCOUNT,
        "price": 5 * 10**9,  # 0.000000005 BNB per token
        "amount": 2_000 * WEI,
        "cost": WEI // 10,
        "fee": WEI // 1000,
        "offers": 800_000_000 * WEI,
        "funds": 3 * WEI,
    }
    values.update(overrides)
    return values



# ---------------------------------------------------------------------------
# Standard configs
# ---------------------------------------------------------------------------

STANDARD_MONITOR_FLAGS = {
    "token_create": True,
    "token_purchase": True,
    "token_sale": True,
    "liquidity_added": True,
    "trade_stop": False,
    "pair_swap": True,
}

STANDARD_TOPICS = {
    "created": "token.raw.created",
    "trade": "token.raw.trade",
    "migrated": "token.raw.migrated",
}
