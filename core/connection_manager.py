"""
Connection lifecycle manager for the node WebSocket.

Owns exactly one live session at a time: connects with a bounded timeout,
probes health periodically, rebuilds the session on failure with a bounded
number of attempts, and tells registered listeners whenever the session is
replaced so they can reinstall their subscriptions.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> RECONNECTING (probe failure or transport error)
    RECONNECTING -> CONNECTED | RECONNECTING (retry) | DISCONNECTED (exhausted, fatal)

Usage:
    manager = ConnectionManager(ws_url, on_fatal=handle_fatal)
    await manager.connect()
    session = manager.get_session()
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable

from bot_logging.logger_manager import setup_module_logger
from core.backoff import BackoffPolicy
from data.ws_session import WebSocketSession
from shared.constants import (
    DEFAULT_CONNECTION_TIMEOUT_SECONDS,
    DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_DELAY_MS,
)
from shared.types import ConnectionState

ConnectionListener = Callable[[Any], Awaitable[None] | None]


class NotConnectedError(Exception):
    """Raised when a session is requested while no live session exists."""


class ReconnectExhaustedError(Exception):
    """Passed to on_fatal once the reconnect attempt ceiling is exceeded."""


class ConnectionManager:
    """
    Single owner of the node session.

    Only one reconnect loop runs at a time: reconnect() is a no-op while the
    state is RECONNECTING, so a probe failure racing a transport error starts
    a single loop. The fatal condition is raised at most once per manager.
    """

    def __init__(
        self,
        ws_url: str,
        session_factory: Callable[..., Any] = WebSocketSession,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        reconnect_backoff: BackoffPolicy | None = None,
        health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
        connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT_SECONDS,
        on_fatal: Callable[[BaseException], None] | None = None,
        session_options: dict[str, Any] | None = None,
    ) -> None:
        self._ws_url = ws_url
        self._session_factory = session_factory
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_backoff = reconnect_backoff or BackoffPolicy.fixed(DEFAULT_RECONNECT_DELAY_MS)
        self._health_check_interval = health_check_interval
        self._connection_timeout = connection_timeout
        self._on_fatal = on_fatal
        self._session_options = session_options or {}

        self._state = ConnectionState.DISCONNECTED
        self._session: Any = None
        self._reconnect_attempts = 0
        self._listeners: list[ConnectionListener] = []
        self._health_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_pending = False
        self._closing = False
        self._fatal = asyncio.Event()
        self._last_healthy_at: float | None = None

        self._logger = setup_module_logger(
            "connection", "connection.log", module_folder="Connection_Logs"
        )

    # ------------------------------------------------------------------
    # Query interface
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def is_healthy(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._session is not None

    @property
    def is_fatal(self) -> bool:
        return self._fatal.is_set()

    @property
    def last_healthy_at(self) -> float | None:
        """Monotonic time of the last successful liveness check."""
        return self._last_healthy_at

    def get_session(self) -> Any:
        if self._session is None or self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError(f"no live session (state={self._state.value})")
        return self._session

    async def wait_fatal(self) -> None:
        await self._fatal.wait()

    def add_listener(self, listener: ConnectionListener) -> Callable[[], None]:
        """Register a connection-replaced listener; returns its unregister handle."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Establish the first session. On failure the reconnect loop takes
        over; this returns once connected or once the failure is fatal.
        """
        if self._state is ConnectionState.CONNECTED or self._fatal.is_set():
            return
        self._closing = False
        self._state = ConnectionState.CONNECTING
        try:
            await self._open_session()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error("Initial connection failed: %s", e)
            await self.reconnect()

    async def connect_interruptible(self, stop_event: asyncio.Event) -> bool:
        """
        connect(), abandoned as soon as stop_event is set (e.g. by a signal
        handler while the reconnect loop is still backing off).

        Returns:
            True if connect() ran to completion (connected or fatal), False if
            stop_event won and the manager was torn down.
        """
        connect_task = asyncio.create_task(self.connect())
        stop_task = asyncio.create_task(stop_event.wait())
        try:
            await asyncio.wait({connect_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            connect_task.cancel()
            raise
        finally:
            stop_task.cancel()

        if connect_task.done():
            connect_task.result()
            return True

        self._logger.info("Stop requested while connecting (state=%s)", self._state.value)
        connect_task.cancel()
        try:
            await connect_task
        except asyncio.CancelledError:
            pass
        await self.disconnect()
        return False

    async def reconnect(self) -> None:
        if self._state is ConnectionState.RECONNECTING:
            self._logger.debug("Reconnect already in progress")
            return
        if self._fatal.is_set() or self._closing:
            return

        while True:
            self._reconnect_pending = False
            await self._reconnect_loop()
            # The new session failed while listeners were still being notified
            if not self._reconnect_pending or self._closing or self._fatal.is_set():
                return
            self._logger.warning("Replacement session failed during listener notification")

    async def _reconnect_loop(self) -> None:
        self._state = ConnectionState.RECONNECTING
        self._stop_health_check()
        stale, self._session = self._session, None
        await self._close_quietly(stale)

        while not self._closing:
            self._reconnect_attempts += 1
            if self._reconnect_attempts > self._max_reconnect_attempts:
                self._state = ConnectionState.DISCONNECTED
                self._raise_fatal()
                return

            delay = self._reconnect_backoff.delay_seconds(self._reconnect_attempts)
            self._logger.warning(
                "Reconnect attempt %d/%d in %.1fs",
                self._reconnect_attempts,
                self._max_reconnect_attempts,
                delay,
            )
            await asyncio.sleep(delay)
            if self._closing:
                break
            try:
                await self._open_session()
                self._logger.info("Reconnected")
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.warning("Reconnect attempt failed: %s", e)

        self._state = ConnectionState.DISCONNECTED

    async def disconnect(self) -> None:
        """Tear everything down. Idempotent."""
        self._closing = True
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None
        self._stop_health_check()
        stale, self._session = self._session, None
        await self._close_quietly(stale)
        if self._state is not ConnectionState.DISCONNECTED:
            self._logger.info("Disconnected")
        self._state = ConnectionState.DISCONNECTED

    def request_reconnect(self) -> None:
        """Replace the live session in the background (a consumer found it unusable)."""
        if self._state is ConnectionState.CONNECTED:
            self._logger.warning("Reconnect requested")
            self._schedule_reconnect()

    async def check_health(self) -> bool:
        """
        One liveness probe against the live session. A failure schedules a
        reconnect; returns whether the probe succeeded.
        """
        session = self._session
        if session is None or self._state is not ConnectionState.CONNECTED:
            return False
        try:
            block_number = await asyncio.wait_for(
                session.get_block_number(), timeout=self._connection_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if session is not self._session:
                return False
            self._logger.warning("Health check failed: %s", e)
            self._schedule_reconnect()
            return False
        self._last_healthy_at = time.monotonic()
        self._logger.debug("Health check ok (block %d)", block_number)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _open_session(self) -> None:
        session: Any = None

        def _on_error(exc: BaseException) -> None:
            self._handle_session_error(session, exc)

        session = self._session_factory(self._ws_url, on_error=_on_error, **self._session_options)
        try:
            await asyncio.wait_for(self._open_and_confirm(session), timeout=self._connection_timeout)
        except asyncio.TimeoutError as e:
            await self._close_quietly(session)
            raise TimeoutError(
                f"connection not confirmed within {self._connection_timeout}s"
            ) from e
        except BaseException:
            await self._close_quietly(session)
            raise

        self._session = session
        self._state = ConnectionState.CONNECTED
        self._reconnect_attempts = 0
        self._last_healthy_at = time.monotonic()
        self._start_health_check()
        self._logger.info("Connected")
        await self._notify_listeners(session)

    @staticmethod
    async def _open_and_confirm(session: Any) -> None:
        await session.open()
        await session.get_block_number()

    async def _notify_listeners(self, session: Any) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(session)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error("Connection listener failed: %s", e)

    def _handle_session_error(self, session: Any, exc: BaseException) -> None:
        if session is None or session is not self._session:
            self._logger.debug("Ignoring error from stale session: %s", exc)
            return
        self._logger.warning("Session error: %s", exc)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._state is ConnectionState.RECONNECTING or self._fatal.is_set() or self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            # Still notifying listeners about the session that just failed
            self._reconnect_pending = True
            return
        self._reconnect_task = asyncio.create_task(self.reconnect())

    def _start_health_check(self) -> None:
        self._stop_health_check()
        if self._health_check_interval > 0:
            self._health_task = asyncio.create_task(self._health_check_loop())

    def _stop_health_check(self) -> None:
        task, self._health_task = self._health_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _health_check_loop(self) -> None:
        while True:
            await asyncio.sleep(self._health_check_interval)
            if not await self.check_health():
                return

    def _raise_fatal(self) -> None:
        if self._fatal.is_set():
            return
        self._fatal.set()
        error = ReconnectExhaustedError(
            f"gave up after {self._max_reconnect_attempts} reconnect attempts"
        )
        self._logger.critical("%s", error)
        if self._on_fatal is not None:
            self._on_fatal(error)

    async def _close_quietly(self, session: Any) -> None:
        if session is None:
            return
        try:
            await session.close()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.debug("Error closing stale session: %s", e)
