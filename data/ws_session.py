"""
WebSocket JSON-RPC session to a BSC node.

One session wraps one socket. A background reader task routes JSON-RPC
responses to the coroutine awaiting them and eth_subscription notifications
to per-subscription queues. When the socket dies the session fails every
pending request, ends every subscription and reports the error once through
``on_error``; it never reconnects by itself (that is the connection
manager's job).

Usage:
    session = WebSocketSession(ws_url, on_error=handle_error)
    await session.open()
    block_number = await session.get_block_number()
    subscription = await session.subscribe_logs(log_filter)
    async for raw_log in subscription:
        ...
"""

from __future__ import annotations

import asyncio
import itertools
import json
from datetime import datetime, timezone
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from bot_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_REQUEST_TIMEOUT_SECONDS
from shared.serialization_utils import format_units
from shared.types import LogFilter, RawLog, TransactionDetails

# Sentinel pushed into subscription queues when the session goes away
_END_OF_STREAM = object()


class RPCError(Exception):
    """Raised when the node answers a request with a JSON-RPC error object."""

    def __init__(self, method: str, error: Any) -> None:
        self.method = method
        self.code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message", error) if isinstance(error, dict) else error
        super().__init__(f"{method} failed: {message}")


class SessionClosedError(Exception):
    """Raised for requests issued on (or pending at) a closed session."""


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================


class LogSubscription:
    """
    Async iterator over the logs delivered to one eth_subscribe("logs") id.

    Iteration ends when the subscription is cancelled or the session closes.
    """

    def __init__(self, session: WebSocketSession, subscription_id: str, log_filter: LogFilter,
                 queue: asyncio.Queue) -> None:
        self._session = session
        self.subscription_id = subscription_id
        self.log_filter = log_filter
        self._queue = queue
        self._cancelled = False

    def __aiter__(self) -> LogSubscription:
        return self

    async def __anext__(self) -> RawLog:
        if self._cancelled:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END_OF_STREAM:
            raise StopAsyncIteration
        return item

    async def cancel(self) -> None:
        """Stop delivery and send eth_unsubscribe (best-effort)."""
        if self._cancelled:
            return
        self._cancelled = True
        self._queue.put_nowait(_END_OF_STREAM)
        await self._session.unsubscribe(self.subscription_id)


# ============================================================================
# SESSION
# ============================================================================


class WebSocketSession:
    """Single WebSocket JSON-RPC connection with request and subscription routing."""

    def __init__(
        self,
        ws_url: str,
        on_error: Callable[[BaseException], None] | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        ping_interval: float | None = 20.0,
        ping_timeout: float | None = 30.0,
        close_timeout: float = 10.0,
        max_message_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        self._ws_url = ws_url
        self._on_error = on_error
        self._request_timeout = request_timeout
        self._connect_kwargs = {
            "ping_interval": ping_interval,
            "ping_timeout": ping_timeout,
            "close_timeout": close_timeout,
            "max_size": max_message_bytes,
        }

        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._ids = itertools.count(1)
        # request id -> (method, future)
        self._pending: dict[int, tuple[str, asyncio.Future]] = {}
        self._subscriptions: dict[str, asyncio.Queue] = {}
        self._closed = False
        self._error_reported = False

        self._logger = setup_module_logger(
            "ws_session", "ws_session.log", module_folder="Connection_Logs"
        )

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open the socket and start the reader task."""
        if self._closed:
            raise SessionClosedError("session already closed")
        self._logger.info("Connecting to %s", _redact(self._ws_url))
        self._ws = await websockets.connect(self._ws_url, **self._connect_kwargs)
        self._reader_task = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        """Close the socket. Never reports through on_error."""
        if self._closed:
            return
        self._closed = True
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._fail_pending(SessionClosedError("session closed"))
        self._end_subscriptions()
        if self._ws is not None:
            await self._ws.close()
        self._logger.info("Session closed")

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            async for raw_message in self._ws:
                try:
                    message = json.loads(raw_message)
                except json.JSONDecodeError as e:
                    self._logger.warning("Invalid JSON message: %s", e)
                    continue
                self._route(message)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            self._logger.warning("Connection closed: %s", e)
            self._abort(e)
            return
        except Exception as e:
            self._logger.error("Reader crashed: %s", e)
            self._abort(e)
            return
        # Iterator ended normally: peer closed the socket
        self._abort(SessionClosedError("connection closed by peer"))

    def _route(self, message: dict[str, Any]) -> None:
        if message.get("method") == "eth_subscription":
            params = message.get("params", {})
            queue = self._subscriptions.get(params.get("subscription"))
            result = params.get("result")
            if queue is None or not result:
                return
            queue.put_nowait(RawLog.from_rpc(result))
            return

        request_id = message.get("id")
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        method, future = entry
        if future.done():
            return
        if "error" in message:
            future.set_exception(RPCError(method, message["error"]))
            return
        result = message.get("result")
        if method == "eth_subscribe" and isinstance(result, str):
            # Register before the caller resumes; notifications may follow immediately
            self._subscriptions.setdefault(result, asyncio.Queue())
        future.set_result(result)

    def _abort(self, exc: BaseException) -> None:
        if self._closed:
            return
        self._closed = True
        self._fail_pending(exc)
        self._end_subscriptions()
        if self._on_error is not None and not self._error_reported:
            self._error_reported = True
            self._on_error(exc)

    def _fail_pending(self, exc: BaseException) -> None:
        pending, self._pending = self._pending, {}
        for _, future in pending.values():
            if not future.done():
                future.set_exception(exc)

    def _end_subscriptions(self) -> None:
        for queue in self._subscriptions.values():
            queue.put_nowait(_END_OF_STREAM)
        self._subscriptions.clear()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(self, method: str, params: list | None = None) -> Any:
        """Send a JSON-RPC request and await its result."""
        if not self.is_open:
            raise SessionClosedError(f"cannot send {method}: session is not open")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (method, future)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        try:
            await self._ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        finally:
            self._pending.pop(request_id, None)

    async def get_block_number(self) -> int:
        return int(await self.request("eth_blockNumber"), 16)

    async def get_block(self, block_number: int) -> dict[str, Any] | None:
        return await self.request("eth_getBlockByNumber", [hex(block_number), False])

    async def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.request("eth_getTransactionByHash", [tx_hash])

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction_details(self, tx_hash: str) -> TransactionDetails | None:
        """
        Join receipt, transaction and block header into a readable summary.

        Returns None when the node does not know the transaction (yet).
        """
        receipt, tx = await asyncio.gather(
            self.get_transaction_receipt(tx_hash), self.get_transaction(tx_hash)
        )
        if not receipt or not tx:
            return None

        block_number = int(receipt["blockNumber"], 16)
        block = await self.get_block(block_number)

        gas_used = int(receipt.get("gasUsed", "0x0"), 16)
        gas_price = int(receipt.get("effectiveGasPrice") or tx.get("gasPrice") or "0x0", 16)
        timestamp = ""
        if block and block.get("timestamp"):
            timestamp = datetime.fromtimestamp(
                int(block["timestamp"], 16), tz=timezone.utc
            ).isoformat()

        return TransactionDetails(
            hash=tx_hash,
            block_number=block_number,
            block_hash=receipt.get("blockHash", ""),
            sender=tx.get("from", ""),
            to=tx.get("to") or "",
            value=format_units(tx.get("value", "0x0")),
            gas_limit=str(int(tx.get("gas", "0x0"), 16)),
            gas_price=format_units(gas_price),
            gas_used=str(gas_used),
            transaction_fee=format_units(gas_used * gas_price),
            status="Success" if receipt.get("status") == "0x1" else "Failed",
            timestamp=timestamp,
            logs=len(receipt.get("logs", [])),
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe_logs(self, log_filter: LogFilter) -> LogSubscription:
        subscription_id = await self.request("eth_subscribe", ["logs", log_filter.to_params()])
        queue = self._subscriptions.setdefault(subscription_id, asyncio.Queue())
        self._logger.info(
            "Subscribed to %s on %s (id=%s)",
            log_filter.kind.value,
            log_filter.address,
            subscription_id,
        )
        return LogSubscription(self, subscription_id, log_filter, queue)

    async def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)
        if not self.is_open:
            return
        try:
            await self.request("eth_unsubscribe", [subscription_id])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.debug("eth_unsubscribe %s failed: %s", subscription_id, e)


def _redact(url: str) -> str:
    """Hide API keys embedded in the endpoint path."""
    scheme, sep, rest = url.partition("://")
    host = rest.split("/", 1)[0]
    return f"{scheme}{sep}{host}/..." if "/" in rest.strip("/") else url
