#!/usr/bin/env python3
"""
Print a transaction summary (fee, status, block time, log count).

Usage:
    python scripts/tx_details.py 0x<transaction hash>
"""

import argparse
import asyncio
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.loader import get_config  # noqa: E402
from data.ws_session import WebSocketSession  # noqa: E402


async def _run(tx_hash: str) -> int:
    ws_url = get_config().get_ws_url()
    if not ws_url:
        print("❌ No WebSocket endpoint configured (BSC_RPC_URL_WS / ALCHEMY_API_KEY)")
        return 1

    session = WebSocketSession(ws_url)
    await session.open()
    try:
        details = await session.get_transaction_details(tx_hash)
    finally:
        await session.close()

    if details is None:
        print(f"❌ Transaction not found: {tx_hash}")
        return 1

    print("📄 Transaction Details")
    print(f"  Hash            : {details.hash}")
    print(f"  Block           : {details.block_number} ({details.block_hash})")
    print(f"  Timestamp       : {details.timestamp}")
    print(f"  Status          : {details.status}")
    print(f"  From            : {details.sender}")
    print(f"  To              : {details.to or '(contract creation)'}")
    print(f"  Value           : {details.value} BNB")
    print(f"  Gas limit       : {details.gas_limit}")
    print(f"  Gas used        : {details.gas_used}")
    print(f"  Gas price       : {details.gas_price} BNB")
    print(f"  Transaction fee : {details.transaction_fee} BNB")
    print(f"  Logs            : {details.logs}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Print BSC transaction details")
    parser.add_argument("tx_hash", type=str, help="Transaction hash (0x...)")
    args = parser.parse_args()
    sys.exit(asyncio.run(_run(args.tx_hash)))


if __name__ == "__main__":
    main()
