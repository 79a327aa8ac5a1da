"""
Unit tests for core/subscription_router.py.

Tests cover filter construction from monitor flags, subscription install
and reinstall on session replacement, per-log failure isolation, and the
decode -> dispatch hand-off.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.backoff import BackoffPolicy
from core.event_decoder import topic_for
from core.subscription_router import SubscriptionRouter
from shared.types import DispatchResult, DispatchStatus, EventKind, LogFilter, RawLog, SchemaVersion
from tests.factories import (
    MANAGER_V1,
    MANAGER_V2,
    PAIR,
    STANDARD_MONITOR_FLAGS,
    make_raw_log,
    v2_trade_values,
)

V1, V2 = SchemaVersion.V1, SchemaVersion.V2
TOKEN_MANAGERS = {V1: MANAGER_V1, V2: MANAGER_V2}


class FakeSubscription:
    def __init__(self, log_filter):
        self.log_filter = log_filter
        self.queue: asyncio.Queue = asyncio.Queue()
        self.cancelled = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def cancel(self):
        self.cancelled = True
        self.queue.put_nowait(None)


class FakeSession:
    """Rejects filters of fail_kinds; only the first ``rejections`` times when given."""

    def __init__(self, fail_kinds=(), rejections=None):
        self.fail_kinds = set(fail_kinds)
        self.rejections = rejections
        self.subscriptions: list[FakeSubscription] = []

    async def subscribe_logs(self, log_filter):
        if log_filter.kind in self.fail_kinds and self.rejections != 0:
            if self.rejections is not None:
                self.rejections -= 1
            raise RuntimeError("subscription rejected")
        subscription = FakeSubscription(log_filter)
        self.subscriptions.append(subscription)
        return subscription


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.session = FakeSession()
    conn.get_session.side_effect = lambda: conn.session
    conn.unregister = MagicMock()
    conn.add_listener.return_value = conn.unregister
    return conn


@pytest.fixture
def dispatcher():
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=DispatchResult(DispatchStatus.PUBLISHED))
    return mock


@pytest.fixture
def make_router(connection, dispatcher):
    with patch("core.subscription_router.setup_module_logger") as mock_logger, patch(
        "core.subscription_router.log_data_entry"
    ):
        mock_logger.return_value = MagicMock()

        def _make(flags=None, pairs=(PAIR,), **kwargs):
            kwargs.setdefault("resubscribe_backoff", BackoffPolicy.fixed(0))
            return SubscriptionRouter(
                connection,
                dispatcher,
                token_managers=TOKEN_MANAGERS,
                pancake_pairs=list(pairs),
                monitor_flags=flags if flags is not None else dict(STANDARD_MONITOR_FLAGS),
                **kwargs,
            )

        yield _make


# ===========================================================================
# Filters
# ===========================================================================


class TestBuildFilters:
    def test_standard_flags(self, make_router):
        filters = make_router().build_filters()

        # V1: create/purchase/sale; V2: create/purchase/sale/liquidity; 1 pair
        assert len(filters) == 8
        kinds_v1 = {f.kind for f in filters if f.version is V1}
        assert kinds_v1 == {EventKind.TOKEN_CREATE, EventKind.TOKEN_PURCHASE, EventKind.TOKEN_SALE}
        assert all(f.address == MANAGER_V1 for f in filters if f.version is V1)

    def test_filter_topics_match_versions(self, make_router):
        filters = make_router().build_filters()

        v2_purchase = next(f for f in filters if f.version is V2 and f.kind is EventKind.TOKEN_PURCHASE)
        assert v2_purchase.topic == topic_for(V2, EventKind.TOKEN_PURCHASE)
        assert v2_purchase.address == MANAGER_V2

    def test_trade_stop_only_on_v2(self, make_router):
        flags = {"trade_stop": True}
        filters = make_router(flags, pairs=()).build_filters()

        assert [(f.version, f.kind) for f in filters] == [(V2, EventKind.TRADE_STOP)]

    def test_one_swap_filter_per_pair(self, make_router):
        pairs = (PAIR, "0x9Fbd9892821efE8022881427EA6f03384080F351")
        filters = make_router({"pair_swap": True}, pairs=pairs).build_filters()

        assert [f.address for f in filters] == list(pairs)
        assert all(f.version is None for f in filters)

    def test_everything_disabled(self, make_router):
        assert make_router({}, pairs=(PAIR,)).build_filters() == []


# ===========================================================================
# Lifecycle
# ===========================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_installs_every_filter(self, make_router, connection):
        router = make_router()

        await router.start()

        assert len(connection.session.subscriptions) == 8
        assert router.active_subscriptions == 8
        connection.add_listener.assert_called_once()
        await router.stop()

    @pytest.mark.asyncio
    async def test_failed_subscription_does_not_block_others(self, make_router, connection):
        connection.session = FakeSession(fail_kinds={EventKind.PAIR_SWAP}, rejections=1)
        router = make_router()

        await router.start()
        assert router.active_subscriptions == 7

        await router._retry_task

        assert router.active_subscriptions == 8
        assert connection.session.subscriptions[-1].log_filter.kind is EventKind.PAIR_SWAP
        connection.request_reconnect.assert_not_called()
        await router.stop()

    @pytest.mark.asyncio
    async def test_rejected_filter_retried_with_backoff(self, make_router, connection):
        connection.session = FakeSession(fail_kinds={EventKind.PAIR_SWAP}, rejections=3)
        router = make_router(resubscribe_backoff=BackoffPolicy(1000, 30000))

        with patch("core.subscription_router.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await router.start()
            await router._retry_task

        assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0, 4.0]
        assert router.active_subscriptions == 8
        await router.stop()

    @pytest.mark.asyncio
    async def test_persistent_rejection_requests_reconnect(self, make_router, connection):
        connection.session = FakeSession(fail_kinds={EventKind.PAIR_SWAP})
        router = make_router(max_resubscribe_attempts=2)

        await router.start()
        await router._retry_task

        assert router.active_subscriptions == 7
        connection.request_reconnect.assert_called_once()
        await router.stop()

    @pytest.mark.asyncio
    async def test_reinstall_cancels_pending_retry(self, make_router, connection):
        connection.session = FakeSession(fail_kinds={EventKind.PAIR_SWAP})
        router = make_router(resubscribe_backoff=BackoffPolicy.fixed(60_000))
        await router.start()
        pending_retry = router._retry_task
        listener = connection.add_listener.call_args.args[0]

        new_session = FakeSession()
        await listener(new_session)

        assert pending_retry.cancelled()
        assert router._retry_task is None
        assert len(new_session.subscriptions) == 8
        await router.stop()

    @pytest.mark.asyncio
    async def test_reinstall_on_connection_replaced(self, make_router, connection):
        router = make_router()
        await router.start()
        old_subscriptions = list(connection.session.subscriptions)
        listener = connection.add_listener.call_args.args[0]

        new_session = FakeSession()
        await listener(new_session)

        assert all(s.cancelled for s in old_subscriptions)
        assert len(new_session.subscriptions) == 8
        assert router.active_subscriptions == 8
        await router.stop()

    @pytest.mark.asyncio
    async def test_stop_unregisters_and_cancels(self, make_router, connection):
        router = make_router()
        await router.start()

        await router.stop()

        connection.unregister.assert_called_once()
        assert all(s.cancelled for s in connection.session.subscriptions)
        assert router.active_subscriptions == 0

    @pytest.mark.asyncio
    async def test_logs_flow_to_dispatcher(self, make_router, connection, dispatcher):
        delivered = asyncio.Event()
        dispatcher.dispatch.side_effect = lambda *args: delivered.set()
        router = make_router({"token_purchase": True}, pairs=())
        await router.start()
        v2_subscription = next(s for s in connection.session.subscriptions if s.log_filter.version is V2)

        v2_subscription.queue.put_nowait(make_raw_log(V2, EventKind.TOKEN_PURCHASE, v2_trade_values()))
        await asyncio.wait_for(delivered.wait(), timeout=1)

        decoded = dispatcher.dispatch.call_args.args[0]
        assert decoded.kind is EventKind.TOKEN_PURCHASE
        assert decoded.version is V2
        await router.stop()


# ===========================================================================
# handle_log
# ===========================================================================


class TestHandleLog:
    def _filter(self, version=V2, kind=EventKind.TOKEN_PURCHASE):
        return LogFilter(MANAGER_V2, topic_for(version, kind), kind, version)

    @pytest.mark.asyncio
    async def test_decodes_and_dispatches(self, make_router, dispatcher):
        raw_log = make_raw_log(V2, EventKind.TOKEN_SALE, v2_trade_values())

        result = await make_router().handle_log(self._filter(), raw_log)

        assert result.status is DispatchStatus.PUBLISHED
        decoded, passed_log, trace_id = dispatcher.dispatch.await_args.args
        # Identified by topic, not by the filter it arrived on
        assert decoded.kind is EventKind.TOKEN_SALE
        assert passed_log is raw_log
        assert "-RTR-" in trace_id

    @pytest.mark.asyncio
    async def test_dispatch_error_contained(self, make_router, dispatcher):
        dispatcher.dispatch.side_effect = RuntimeError("unexpected")
        router = make_router()
        raw_log = make_raw_log(V2, EventKind.TOKEN_PURCHASE, v2_trade_values())

        assert await router.handle_log(self._filter(), raw_log) is None
        # next log is still handled
        dispatcher.dispatch.side_effect = None
        assert await router.handle_log(self._filter(), raw_log) is not None

    @pytest.mark.asyncio
    async def test_undecodable_payload_contained(self, make_router, dispatcher):
        raw_log = make_raw_log(V2, EventKind.TOKEN_PURCHASE, v2_trade_values())
        broken = RawLog(raw_log.address, raw_log.topics, "0x1234", raw_log.block_number, raw_log.transaction_hash)

        assert await make_router().handle_log(self._filter(), broken) is None
        dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_topic_ignored(self, make_router, dispatcher):
        raw_log = RawLog(MANAGER_V2, ("0x" + "ab" * 32,), "0x", 1, "0x1")

        assert await make_router().handle_log(self._filter(), raw_log) is None
        dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_removed_log_skipped(self, make_router, dispatcher):
        raw_log = make_raw_log(V2, EventKind.TOKEN_PURCHASE, v2_trade_values())
        removed = RawLog(
            raw_log.address, raw_log.topics, raw_log.data, raw_log.block_number, raw_log.transaction_hash,
            removed=True,
        )

        assert await make_router().handle_log(self._filter(), removed) is None
        dispatcher.dispatch.assert_not_awaited()
