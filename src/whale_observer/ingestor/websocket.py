"""Ethereum log subscription over a persistent WebSocket.

The SwapLogStream owns the single live StreamSession. It subscribes to
Swap logs for one pool via `eth_subscribe` and yields RawEvents in arrival
order. Any session-level failure tears the session down and schedules a
reconnect after a non-zero, capped exponential delay. Failures never
propagate to the caller; they show up only as a gap in the event sequence.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from whale_observer.ingestor.models import (
    RawEvent,
    RawEventParseError,
    StreamSession,
    SubscriptionFilter,
)

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 5.0  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 60.0  # seconds
DEFAULT_SUBSCRIBE_TIMEOUT = 10.0  # seconds
DEFAULT_IDLE_TIMEOUT = 120.0  # seconds
DEFAULT_PING_INTERVAL = 20  # seconds


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    events_received: int = 0
    events_skipped: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class StreamError(Exception):
    """Base exception for log stream errors."""


class StreamConnectionError(StreamError):
    """Raised when the WebSocket connection cannot be established."""


class SubscriptionError(StreamError):
    """Raised when the node rejects or never confirms the subscription."""


class StreamConfigurationError(StreamError):
    """Raised for unrecoverable configuration problems (e.g. bad endpoint URL)."""


StateCallback = Callable[[ConnectionState], Awaitable[None]]
Connector = Callable[[str], Awaitable[ClientConnection]]


def next_reconnect_delay(current: float, *, maximum: float) -> float:
    """Double the delay, capped at `maximum`."""
    return min(maximum, current * 2)


class SwapLogStream:
    """Supervised `eth_subscribe` log stream for a single pool.

    Example:
        ```python
        stream = SwapLogStream(
            host="wss://eth-mainnet.example/ws",
            subscription=SubscriptionFilter(address=pool_address),
        )
        async for raw in stream.events():
            handle(raw)
        ```
    """

    def __init__(
        self,
        *,
        host: str,
        subscription: SubscriptionFilter,
        on_state_change: StateCallback | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnect_delay: float = DEFAULT_MAX_RECONNECT_DELAY,
        subscribe_timeout: float = DEFAULT_SUBSCRIBE_TIMEOUT,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        connector: Connector | None = None,
    ) -> None:
        """Initialize the stream.

        Args:
            host: WebSocket JSON-RPC endpoint (ws:// or wss://).
            subscription: Address/topic filter to subscribe to.
            on_state_change: Optional async callback for state transitions.
            reconnect_delay: Initial delay before reconnecting (must be > 0).
            max_reconnect_delay: Upper bound for the exponential backoff.
            subscribe_timeout: How long to wait for the subscription id.
            idle_timeout: Recycle the session if nothing arrives for this long.
            ping_interval: WebSocket keepalive ping interval.
            connector: Override for opening connections (tests).

        Raises:
            StreamConfigurationError: If the endpoint or delays are invalid.
        """
        if not host.startswith(("ws://", "wss://")):
            raise StreamConfigurationError(f"WebSocket URL must start with ws:// or wss://: {host!r}")
        if reconnect_delay <= 0:
            raise StreamConfigurationError("reconnect_delay must be > 0")
        if max_reconnect_delay < reconnect_delay:
            raise StreamConfigurationError("max_reconnect_delay must be >= reconnect_delay")

        self._host = host
        self._subscription = subscription
        self._on_state_change = on_state_change
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._subscribe_timeout = subscribe_timeout
        self._idle_timeout = idle_timeout
        self._ping_interval = ping_interval
        self._connector = connector or self._default_connector

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()
        self._session: StreamSession | None = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._request_ids = itertools.count(1)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def session(self) -> StreamSession | None:
        return self._session

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Log stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def _default_connector(self, host: str) -> ClientConnection:
        return await websockets.connect(
            host,
            ping_interval=self._ping_interval,
            ping_timeout=self._ping_interval * 2,
            max_size=10 * 1024 * 1024,
        )

    async def _connect(self) -> StreamSession:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await asyncio.wait_for(self._connector(self._host), timeout=self._subscribe_timeout)
        except Exception as e:
            raise StreamConnectionError(f"Failed to connect to {self._host}: {e}") from e

        try:
            subscription_id = await self._subscribe(ws)
        except BaseException:
            with contextlib.suppress(Exception):
                await ws.close()
            raise

        session = StreamSession(
            connection=ws,
            filter=self._subscription,
            subscription_id=subscription_id,
        )
        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        logger.info(
            "Subscribed to swap logs for %s (subscription=%s)",
            self._subscription.address,
            subscription_id,
        )
        return session

    async def _subscribe(self, ws: ClientConnection) -> str:
        request_id = next(self._request_ids)
        request = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "eth_subscribe",
            "params": self._subscription.to_rpc_params(),
        }
        await ws.send(json.dumps(request))

        deadline = time.monotonic() + self._subscribe_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SubscriptionError("Timed out waiting for subscription confirmation")
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=remaining)
            except TimeoutError as e:
                raise SubscriptionError("Timed out waiting for subscription confirmation") from e

            try:
                data = json.loads(message)
            except (json.JSONDecodeError, TypeError):
                logger.warning("Ignoring non-JSON frame while subscribing")
                continue

            if not isinstance(data, dict) or data.get("id") != request_id:
                continue
            if "error" in data:
                raise SubscriptionError(f"Subscription rejected: {data['error']}")
            result = data.get("result")
            if not isinstance(result, str) or not result:
                raise SubscriptionError(f"Subscription reply has no id: {data!r}")
            return result

    def _parse_notification(self, message: str | bytes, session: StreamSession) -> RawEvent | None:
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
            logger.warning("Invalid JSON message on log stream")
            self._stats.events_skipped += 1
            return None

        if not isinstance(data, dict) or data.get("method") != "eth_subscription":
            logger.debug("Ignoring non-subscription message")
            return None

        params: Any = data.get("params")
        if not isinstance(params, dict) or params.get("subscription") != session.subscription_id:
            logger.debug("Ignoring notification for unknown subscription")
            return None

        try:
            raw = RawEvent.from_log(params.get("result"))
        except RawEventParseError as e:
            logger.warning("Failed to parse log notification: %s", e)
            self._stats.events_skipped += 1
            return None

        if raw.removed:
            logger.warning("Skipping log removed by reorg: tx=%s", raw.tx_hash)
            self._stats.events_skipped += 1
            return None
        return raw

    async def _listen(self, session: StreamSession) -> AsyncIterator[RawEvent]:
        ws = session.connection
        while self._running:
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=self._idle_timeout)
            except TimeoutError as e:
                raise StreamError(f"No messages for {self._idle_timeout:.0f}s, recycling session") from e
            except websockets.ConnectionClosed as e:
                logger.warning("Log stream connection closed: %s", e)
                raise

            self._stats.last_message_time = time.time()
            raw = self._parse_notification(message, session)
            if raw is None:
                continue
            self._stats.events_received += 1
            yield raw

    async def _close_session(self) -> None:
        session = self._session
        self._session = None
        if session is not None:
            with contextlib.suppress(Exception):
                await session.connection.close()

    async def _sleep_before_reconnect(self, delay: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)

    async def events(self) -> AsyncIterator[RawEvent]:
        """Yield RawEvents forever, reconnecting as needed.

        Returns only after stop() is called.
        """
        if self._running:
            raise RuntimeError("Log stream already running")
        self._running = True
        self._stop_event.clear()

        delay = self._reconnect_delay
        try:
            while self._running and not self._stop_event.is_set():
                try:
                    self._session = await self._connect()
                    delay = self._reconnect_delay
                    async for raw in self._listen(self._session):
                        yield raw
                except Exception as e:
                    if not self._running:
                        break
                    self._stats.reconnect_count += 1
                    self._stats.last_error = str(e)
                    await self._set_state(ConnectionState.RECONNECTING)
                    logger.warning("Log stream error: %s. Reconnecting in %.1fs...", e, delay)
                    await self._close_session()
                    await self._sleep_before_reconnect(delay)
                    delay = next_reconnect_delay(delay, maximum=self._max_reconnect_delay)
                finally:
                    await self._close_session()
        finally:
            self._running = False
            await self._close_session()
            await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        """Stop accepting events and close the active session."""
        self._running = False
        self._stop_event.set()
        await self._close_session()
