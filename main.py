"""
BSC Token Monitor: Main Entrypoint.

Single-process asyncio service that bridges a BSC node's log stream to Kafka:
    1. ConnectionManager  : one WebSocket session, health probe, bounded reconnect
    2. SubscriptionRouter : log filters for four.meme TokenManager V1/V2 + PancakeSwap pairs
    3. EventDispatcher    : decode, enrich (block time, supply, founder/pair), publish

Every service is constructed here and passed explicitly to the components
that use it; nothing is a module-level singleton.

Exit codes:
    0  graceful shutdown (SIGINT / SIGTERM)
    1  configuration error, startup failure, or reconnect attempts exhausted

Usage:
    python main.py
"""

from __future__ import annotations

import asyncio
import signal
import sys

from dotenv import load_dotenv

from bot_logging.logger_manager import create_module_log_directories, setup_module_logger
from config.loader import get_config, get_env_var
from config.validate import ConfigValidationError, validate_all_configs
from shared.constants import (
    BSC_CHAIN_ID,
    DEFAULT_KAFKA_BROKER,
    DEFAULT_KAFKA_CLIENT_ID,
    DEFAULT_PANCAKE_PAIRS,
    TOKEN_MANAGER_V1,
    TOKEN_MANAGER_V2,
)
from shared.types import SchemaVersion

_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(ws_url: str, http_url: str, kafka_broker: str, topics: dict, flags: dict) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("BSC Token Monitor starting")
    _logger.info("=" * 60)
    _logger.info("  ws_rpc          : %s...%s", ws_url[:30], ws_url[-6:] if len(ws_url) > 36 else "")
    _logger.info("  http_rpc        : %s", http_url[:40])
    _logger.info("  kafka           : %s", kafka_broker)
    _logger.info("  topics          : %s", ", ".join(topics.values()))
    _logger.info("  events          : %s", ", ".join(k for k, v in flags.items() if v))
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> int:
    """Wire all components, run until shutdown, return the process exit code."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        return 1

    create_module_log_directories()

    cfg = get_config()
    chain_cfg = cfg.get_chain_config(BSC_CHAIN_ID)
    conn_cfg = cfg.get_connection_config()
    cache_cfg = cfg.get_cache_config()["block_timestamps"]
    kafka_cfg = cfg.get_kafka_config()
    monitor_cfg = cfg.get_monitor_config()

    ws_url = cfg.get_ws_url()
    http_url = cfg.get_http_url()
    kafka_broker: str = get_env_var(
        "KAFKA_BROKER", kafka_cfg.get("bootstrap_servers", DEFAULT_KAFKA_BROKER), str
    )
    client_id: str = get_env_var(
        "KAFKA_CLIENT_ID", kafka_cfg.get("client_id", DEFAULT_KAFKA_CLIENT_ID), str
    )
    topics = {key: cfg.get_topic_name(key) for key in ("created", "trade", "migrated")}
    flags = monitor_cfg["events"]

    if not ws_url:
        _logger.critical("No WebSocket RPC endpoint configured (BSC_RPC_URL_WS / ALCHEMY_API_KEY)")
        return 1

    _log_banner(ws_url, http_url, kafka_broker, topics, flags)

    # ------------------------------------------------------------------
    # 2. Construct services (dependency order)
    # ------------------------------------------------------------------
    from web3 import AsyncWeb3
    from web3.providers import AsyncHTTPProvider

    from clients.chain_reader import ChainReader
    from clients.kafka_bus import BusError, KafkaBus
    from core.backoff import BackoffPolicy
    from core.block_cache import BlockTimestampCache
    from core.connection_manager import ConnectionManager
    from core.dispatcher import EventDispatcher
    from core.subscription_router import SubscriptionRouter
    from core.token_index import CreatedTokenIndex

    shutdown_event = asyncio.Event()
    fatal = False

    def _on_fatal(exc: BaseException) -> None:
        nonlocal fatal
        fatal = True
        _logger.critical("Unrecoverable connection loss: %s", exc)
        shutdown_event.set()

    connection = ConnectionManager(
        ws_url,
        max_reconnect_attempts=int(conn_cfg["max_reconnect_attempts"]),
        reconnect_backoff=BackoffPolicy(
            int(conn_cfg["reconnect_delay_ms"]),
            int(conn_cfg.get("reconnect_max_delay_ms", conn_cfg["reconnect_delay_ms"])),
        ),
        health_check_interval=float(conn_cfg["health_check_interval_seconds"]),
        connection_timeout=float(conn_cfg["connection_timeout_seconds"]),
        on_fatal=_on_fatal,
        session_options={
            "request_timeout": float(conn_cfg.get("request_timeout_seconds", 15)),
            "ping_interval": conn_cfg.get("ping_interval_seconds"),
            "ping_timeout": conn_cfg.get("ping_timeout_seconds"),
            "close_timeout": float(conn_cfg.get("close_timeout_seconds", 10)),
            "max_message_bytes": int(conn_cfg.get("max_message_bytes", 10 * 1024 * 1024)),
        },
    )

    async def _fetch_block(block_number: int):
        return await connection.get_session().get_block(block_number)

    block_cache = BlockTimestampCache(
        _fetch_block,
        capacity=int(cache_cfg["capacity"]),
        max_retries=int(cache_cfg["max_retries"]),
        backoff=BackoffPolicy(
            int(cache_cfg.get("backoff_base_ms", 1000)), int(cache_cfg.get("backoff_max_ms", 30000))
        ),
    )
    token_index = CreatedTokenIndex()

    w3 = AsyncWeb3(AsyncHTTPProvider(http_url))
    chain_reader = ChainReader(w3)
    bus = KafkaBus(
        kafka_broker, client_id, delivery_timeout=float(kafka_cfg.get("delivery_timeout_seconds", 10))
    )

    dispatcher = EventDispatcher(
        block_cache,
        chain_reader,
        bus,
        token_index,
        topics=topics,
        publish_pair_swaps=bool(monitor_cfg.get("publish_pair_swaps", False)),
    )
    contracts = chain_cfg.get("contracts", {})
    router = SubscriptionRouter(
        connection,
        dispatcher,
        token_managers={
            SchemaVersion.V1: contracts.get("token_manager_v1", TOKEN_MANAGER_V1),
            SchemaVersion.V2: contracts.get("token_manager_v2", TOKEN_MANAGER_V2),
        },
        pancake_pairs=chain_cfg.get("pancake_pairs", list(DEFAULT_PANCAKE_PAIRS)),
        monitor_flags=flags,
    )

    # ------------------------------------------------------------------
    # 3. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 4. Start: topics, connection, subscriptions
    # ------------------------------------------------------------------
    exit_code = 0
    try:
        topic_defaults = kafka_cfg.get("topic_defaults", {})
        try:
            created = await bus.ensure_topics(
                list(topics.values()),
                num_partitions=int(topic_defaults.get("num_partitions", 1)),
                replication_factor=int(topic_defaults.get("replication_factor", 1)),
            )
            if created:
                _logger.info("Created Kafka topics: %s", ", ".join(created))
        except BusError as exc:
            # Publishing degrades per event; monitoring continues without the bus
            _logger.error("Kafka topic setup failed: %s", exc)

        # A signal during the initial connect or its reconnect loop aborts it
        connected = await connection.connect_interruptible(shutdown_event)
        if connected and not connection.is_fatal:
            await router.start()
            _logger.info("Monitoring started")
            await shutdown_event.wait()
        if fatal:
            exit_code = 1
    except Exception as exc:
        _logger.critical("Unhandled startup error: %s", exc, exc_info=exc)
        exit_code = 1
    finally:
        # ------------------------------------------------------------------
        # 5. Teardown
        # ------------------------------------------------------------------
        _logger.info("Shutting down")
        await router.stop()
        await connection.disconnect()
        await asyncio.to_thread(bus.close)
        block_cache.clear()
        token_index.clear()
        _logger.info("Shutdown complete (exit code %d)", exit_code)

    return exit_code


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    try:
        exit_code = asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
