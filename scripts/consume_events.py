#!/usr/bin/env python3
"""
Console consumer for the token topics.

Prints one line per canonical record and running per-topic statistics every
10 messages and at exit.

Usage:
    python scripts/consume_events.py
    python scripts/consume_events.py --from-beginning --group my-group
"""

import argparse
import os
import sys
import time

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clients.kafka_bus import KafkaBus  # noqa: E402
from config.loader import get_config, get_env_var  # noqa: E402
from shared.constants import DEFAULT_KAFKA_BROKER  # noqa: E402


def format_event(payload: dict) -> str:
    """One-line summary of a canonical record."""
    if payload.get("token_name"):
        creator = str(payload.get("creator_wallet", ""))[:10]
        return f"🎯 Token: {payload['token_name']} ({payload.get('token_symbol')}) by {creator}..."
    if payload.get("direction"):
        action = "bought" if payload["direction"] == "buy" else "sold"
        wallet = str(payload.get("buyer_wallet", ""))[:10]
        return f"💰 {wallet}... {action} {payload.get('token_amount')} tokens"
    if payload.get("liquidity_pool"):
        return f"✅ Token {str(payload.get('token_mint', ''))[:10]}... migrated to {payload['liquidity_pool']}"
    return f"📄 {str(payload)[:100]}..."


def print_stats(stats: dict, total: int, started_at: float) -> None:
    runtime = max(int(time.time() - started_at), 1)
    print("\n📊 Consumer Statistics:")
    print(f"  Runtime      : {runtime}s")
    print(f"  Total events : {total}")
    for topic, count in stats.items():
        print(f"  {topic:<20}: {count}")
    print(f"  Events/sec   : {total / runtime:.2f}\n")


def main():
    cfg = get_config()
    kafka_cfg = cfg.get_kafka_config()
    consumer_cfg = kafka_cfg.get("consumer", {})

    parser = argparse.ArgumentParser(description="Consume token.raw.* topics and print records")
    parser.add_argument("--group", type=str, default=consumer_cfg.get("group_id", "token-monitor-console"),
                        help="Consumer group id")
    parser.add_argument("--from-beginning", action="store_true", help="Start at the earliest offset")
    args = parser.parse_args()

    topics = [cfg.get_topic_name(key) for key in ("created", "trade", "migrated")]
    broker = get_env_var("KAFKA_BROKER", kafka_cfg.get("bootstrap_servers", DEFAULT_KAFKA_BROKER), str)
    bus = KafkaBus(broker, f"{kafka_cfg.get('client_id', 'token-monitor')}-console")

    print("🔍 Listening to topics:")
    for topic in topics:
        print(f"  • {topic}")
    print("---")

    stats = {topic: 0 for topic in topics}
    total = 0
    started_at = time.time()
    try:
        for message in bus.consume(
            topics,
            args.group,
            from_beginning=args.from_beginning,
            consumer_config={
                "session.timeout.ms": consumer_cfg.get("session_timeout_ms", 30000),
                "heartbeat.interval.ms": consumer_cfg.get("heartbeat_interval_ms", 3000),
            },
        ):
            total += 1
            stats[message.topic] = stats.get(message.topic, 0) + 1
            print(f"[{time.strftime('%H:%M:%S')}] {message.topic}: {format_event(message.payload)}")
            if total % 10 == 0:
                print_stats(stats, total, started_at)
    except KeyboardInterrupt:
        print("\n🛑 Stopping consumer...")
    print_stats(stats, total, started_at)


if __name__ == "__main__":
    main()
