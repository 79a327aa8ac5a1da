"""
Subscription router: installs log filters on the live session and hands
every matched log to the decoder and dispatcher.

One filter per (TokenManager address, event topic) for each enabled event
of that schema version, plus one Swap filter per monitored PancakeSwap pair.
Filters are reinstalled whenever the connection manager replaces the session.
Filters the node rejects are retried with backoff; if they still fail, the
router asks the connection manager for a fresh session.
Each log is handled in its own task so a slow enrichment never delays the
next log; a failure while handling one log is logged and contained.

Usage:
    router = SubscriptionRouter(connection, dispatcher, token_managers, pairs, flags)
    await router.start()
    ...
    await router.stop()
"""

from __future__ import annotations

import asyncio
import itertools
import time
from typing import Any, Callable, Mapping, Sequence

from bot_logging.logger_manager import log_data_entry, setup_module_logger
from core.backoff import BackoffPolicy
from core.dispatcher import EventDispatcher
from core.event_decoder import EVENT_ABIS, decode, decode_log, topic_for
from shared.constants import DEFAULT_RESUBSCRIBE_ATTEMPTS
from shared.types import DispatchResult, EventKind, LogFilter, RawLog, SchemaVersion

# monitor.json "events" flag -> event kind
MONITOR_FLAGS: dict[str, EventKind] = {
    "token_create": EventKind.TOKEN_CREATE,
    "token_purchase": EventKind.TOKEN_PURCHASE,
    "token_sale": EventKind.TOKEN_SALE,
    "liquidity_added": EventKind.LIQUIDITY_ADDED,
    "trade_stop": EventKind.TRADE_STOP,
}
PAIR_SWAP_FLAG = "pair_swap"


class SubscriptionRouter:
    def __init__(
        self,
        connection: Any,
        dispatcher: EventDispatcher,
        token_managers: Mapping[SchemaVersion, str],
        pancake_pairs: Sequence[str],
        monitor_flags: Mapping[str, bool],
        resubscribe_backoff: BackoffPolicy | None = None,
        max_resubscribe_attempts: int = DEFAULT_RESUBSCRIBE_ATTEMPTS,
    ) -> None:
        self._connection = connection
        self._dispatcher = dispatcher
        self._token_managers = dict(token_managers)
        self._pancake_pairs = list(pancake_pairs)
        self._monitor_flags = dict(monitor_flags)
        self._resubscribe_backoff = resubscribe_backoff or BackoffPolicy()
        self._max_resubscribe_attempts = max_resubscribe_attempts

        self._filters: list[LogFilter] = []
        self._readers: list[tuple[Any, asyncio.Task]] = []
        self._handlers: set[asyncio.Task] = set()
        self._retry_task: asyncio.Task | None = None
        self._unregister: Callable[[], None] | None = None
        self._trace_counter = itertools.count(1)

        self._logger = setup_module_logger("router", "router.log", module_folder="Router_Logs")

    @property
    def filters(self) -> list[LogFilter]:
        return list(self._filters)

    @property
    def active_subscriptions(self) -> int:
        return sum(1 for _, task in self._readers if not task.done())

    @property
    def in_flight(self) -> int:
        return len(self._handlers)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def build_filters(self) -> list[LogFilter]:
        filters = []
        for version, address in self._token_managers.items():
            for flag, kind in MONITOR_FLAGS.items():
                # LiquidityAdded and TradeStop only exist on V2
                if not self._monitor_flags.get(flag, False) or (version, kind) not in EVENT_ABIS:
                    continue
                filters.append(LogFilter(address, topic_for(version, kind), kind, version))

        if self._monitor_flags.get(PAIR_SWAP_FLAG, False):
            swap_topic = topic_for(None, EventKind.PAIR_SWAP)
            for pair in self._pancake_pairs:
                filters.append(LogFilter(pair, swap_topic, EventKind.PAIR_SWAP, None))
        return filters

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._filters = self.build_filters()
        self._logger.info(
            "Monitoring %d filters (%s)",
            len(self._filters),
            ", ".join(sorted({f.kind.value for f in self._filters})),
        )
        self._unregister = self._connection.add_listener(self._on_connection_replaced)
        await self._install(self._connection.get_session())

    async def stop(self) -> None:
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
        await self._cancel_retry()
        await self._cancel_readers()
        handlers = list(self._handlers)
        for task in handlers:
            task.cancel()
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)
        self._handlers.clear()
        self._logger.info("Router stopped (%d in-flight handlers abandoned)", len(handlers))

    async def _on_connection_replaced(self, session: Any) -> None:
        self._logger.info("Connection replaced, reinstalling %d filters", len(self._filters))
        await self._install(session)

    async def _install(self, session: Any) -> None:
        await self._cancel_retry()
        await self._cancel_readers()
        failed = await self._subscribe(session, self._filters)
        self._logger.info("%d/%d subscriptions active", len(self._readers), len(self._filters))
        if failed:
            self._retry_task = asyncio.create_task(self._retry_failed(session, failed))

    async def _subscribe(self, session: Any, filters: Sequence[LogFilter]) -> list[LogFilter]:
        """Install each filter on session; returns the filters that were rejected."""
        failed = []
        for log_filter in filters:
            try:
                subscription = await session.subscribe_logs(log_filter)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error(
                    "Failed to subscribe %s on %s: %s", log_filter.kind.value, log_filter.address, e
                )
                failed.append(log_filter)
                continue
            task = asyncio.create_task(self._read(subscription))
            self._readers.append((subscription, task))
        return failed

    async def _retry_failed(self, session: Any, failed: list[LogFilter]) -> None:
        for attempt in range(1, self._max_resubscribe_attempts + 1):
            await asyncio.sleep(self._resubscribe_backoff.delay_seconds(attempt))
            failed = await self._subscribe(session, failed)
            if not failed:
                self._logger.info("All %d subscriptions active", len(self._filters))
                return
        self._logger.error(
            "%d filters still rejected after %d retries, requesting a new session",
            len(failed),
            self._max_resubscribe_attempts,
        )
        self._connection.request_reconnect()

    async def _cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cancel_readers(self) -> None:
        readers, self._readers = self._readers, []
        for subscription, task in readers:
            task.cancel()
            try:
                await subscription.cancel()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.debug("Error cancelling subscription: %s", e)
        if readers:
            await asyncio.gather(*(task for _, task in readers), return_exceptions=True)

    async def _read(self, subscription: Any) -> None:
        log_filter = subscription.log_filter
        async for raw_log in subscription:
            task = asyncio.create_task(self.handle_log(log_filter, raw_log))
            self._handlers.add(task)
            task.add_done_callback(self._handlers.discard)
        self._logger.debug("Subscription ended: %s on %s", log_filter.kind.value, log_filter.address)

    # ------------------------------------------------------------------
    # Per-log pipeline
    # ------------------------------------------------------------------

    async def handle_log(self, log_filter: LogFilter, raw_log: RawLog) -> DispatchResult | None:
        """Decode and dispatch one log. Never raises (except cancellation)."""
        trace_id = f"{int(time.time() * 1000)}-RTR-{next(self._trace_counter):08d}"
        log_data_entry(
            trace_id,
            "router",
            f"{log_filter.kind.value} log",
            "matched a monitored filter",
            "RawLog",
            {
                "address": raw_log.address,
                "block_number": raw_log.block_number,
                "tx_hash": raw_log.transaction_hash,
                "log_index": raw_log.log_index,
            },
        )
        try:
            if raw_log.removed:
                self._logger.info("Skipping removed log %s (reorg)", raw_log.transaction_hash)
                return None
            decoded_log = decode_log(raw_log, log_filter.version)
            if decoded_log is None:
                self._logger.debug("Unrecognized topic on %s: %s", raw_log.address, raw_log.topics[:1])
                return None
            kind, args = decoded_log
            decoded = decode(kind, log_filter.version, args)
            return await self._dispatcher.dispatch(decoded, raw_log, trace_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(
                "Error handling %s log (tx=%s, block=%d): %s",
                log_filter.kind.value,
                raw_log.transaction_hash,
                raw_log.block_number,
                e,
            )
            return None
