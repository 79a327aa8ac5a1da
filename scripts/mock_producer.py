#!/usr/bin/env python3
"""
Publish simulated token events to Kafka.

Rates: one token creation every 5s, one trade every 2s (against a token
created earlier), one migration every 30s. Stop with Ctrl+C.

Usage:
    python scripts/mock_producer.py
    python scripts/mock_producer.py --seed 42 --trade-interval 0.5
"""

import argparse
import asyncio
import os
import random
import signal
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clients.kafka_bus import BusError, KafkaBus  # noqa: E402
from config.loader import get_config, get_env_var  # noqa: E402
from core.simulation import DEFAULT_INTERVALS, MockEventGenerator, run_simulation  # noqa: E402
from core.token_index import CreatedTokenIndex  # noqa: E402
from shared.constants import DEFAULT_KAFKA_BROKER  # noqa: E402


async def _run(args) -> None:
    cfg = get_config()
    kafka_cfg = cfg.get_kafka_config()
    topics = {key: cfg.get_topic_name(key) for key in ("created", "trade", "migrated")}
    broker = get_env_var("KAFKA_BROKER", kafka_cfg.get("bootstrap_servers", DEFAULT_KAFKA_BROKER), str)

    bus = KafkaBus(broker, f"{kafka_cfg.get('client_id', 'token-monitor')}-mock")
    try:
        await bus.ensure_topics(list(topics.values()))
    except BusError as e:
        print(f"⚠️ Could not ensure topics: {e}")

    token_index = CreatedTokenIndex()
    generator = MockEventGenerator(token_index, rng=random.Random(args.seed))

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    print("🚀 Mock event producer started")
    print(f"  • created every {args.create_interval}s")
    print(f"  • trade every {args.trade_interval}s")
    print(f"  • migrated every {args.migration_interval}s")
    print("---")

    counts = await run_simulation(
        generator,
        bus,
        topics,
        stop_event,
        intervals={
            "created": args.create_interval,
            "trade": args.trade_interval,
            "migrated": args.migration_interval,
        },
    )
    await asyncio.to_thread(bus.close)

    print("\n🛑 Stopped")
    print(f"📈 Tokens created: {token_index.count()}")
    for topic, count in counts.items():
        print(f"  {topic:<20}: {count}")


def main():
    parser = argparse.ArgumentParser(description="Publish simulated token events to Kafka")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")
    parser.add_argument("--create-interval", type=float, default=DEFAULT_INTERVALS["created"])
    parser.add_argument("--trade-interval", type=float, default=DEFAULT_INTERVALS["trade"])
    parser.add_argument("--migration-interval", type=float, default=DEFAULT_INTERVALS["migrated"])
    asyncio.run(_run(parser.parse_args()))


if __name__ == "__main__":
    main()
