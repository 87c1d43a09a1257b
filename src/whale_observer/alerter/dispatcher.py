"""Rate-limited, decoupled alert dispatcher.

The dispatcher owns the notification channel and the process-wide
DispatchState. Callers enqueue alerts with `dispatch()` and return
immediately; a single background worker drains the backlog, waiting at
least `min_interval` after the last successful send before each attempt.

Failure isolation:
- A full backlog sheds the oldest non-critical alert (logged as an error).
  A normal alert arriving at an all-critical backlog is itself dropped.
- Transport failures are retried with exponential backoff up to
  `max_retries`, then the alert is dropped (logged as an error).
- Nothing raised by the channel ever propagates to the caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from whale_observer.alerter.channels.telegram import ChannelError
from whale_observer.alerter.formatter import AlertFormatter
from whale_observer.alerter.models import AlertMessage, AlertPriority
from whale_observer.detector.models import WhaleEvent

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_BACKLOG = 100
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_RETRY_DELAY_SECONDS = 30.0
DEFAULT_ALERT_TTL_SECONDS = 300.0
DEFAULT_CRITICAL_MULTIPLIER = 5
DEFAULT_SHUTDOWN_GRACE_SECONDS = 5.0


class AlertChannel(Protocol):
    """A destination that can deliver one formatted alert."""

    name: str

    async def send(self, message: AlertMessage) -> None: ...


DeliveredCallback = Callable[[AlertMessage], Awaitable[None]]
DroppedCallback = Callable[[AlertMessage], None]


@dataclass
class DispatchState:
    """Timestamp of the last successful send plus the pending backlog.

    Only the dispatcher touches this, always under `lock`.
    """

    last_sent_at: float | None = None
    backlog: deque[AlertMessage] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass
class DispatchStats:
    enqueued: int = 0
    sent: int = 0
    failed: int = 0
    dropped_backlog: int = 0
    dropped_expired: int = 0
    discarded_on_shutdown: int = 0


class RateLimitedDispatcher:
    """Leaky-bucket alert dispatcher with a bounded backlog.

    Example:
        ```python
        dispatcher = RateLimitedDispatcher(channel, formatter, min_interval=1.0)
        await dispatcher.start()
        await dispatcher.dispatch(whale_event)  # returns immediately
        ...
        await dispatcher.close(grace_period=5.0)
        ```
    """

    def __init__(
        self,
        channel: AlertChannel | None,
        formatter: AlertFormatter,
        *,
        min_interval: float = DEFAULT_MIN_INTERVAL_SECONDS,
        max_backlog: int = DEFAULT_MAX_BACKLOG,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY_SECONDS,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY_SECONDS,
        alert_ttl: float | None = DEFAULT_ALERT_TTL_SECONDS,
        critical_multiplier: int = DEFAULT_CRITICAL_MULTIPLIER,
        dry_run: bool = False,
        on_delivered: DeliveredCallback | None = None,
        on_dropped: DroppedCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            channel: Delivery channel. May be None only in dry-run mode.
            formatter: Formats WhaleEvents into AlertMessages.
            min_interval: Minimum seconds between successful sends.
            max_backlog: Maximum queued alerts before shedding.
            max_retries: Retries per alert after the first failed attempt.
            retry_base_delay: Initial retry delay (doubles per retry).
            max_retry_delay: Cap for the retry delay.
            alert_ttl: Seconds an alert stays deliverable; None disables expiry.
            critical_multiplier: Events at least this many times the threshold
                are queued as critical.
            dry_run: Log alerts instead of sending them.
            on_delivered: Async callback invoked after each successful send.
            on_dropped: Callback invoked for every alert that will never be sent
                (shed, expired, failed or discarded on shutdown).
            clock: Monotonic clock (seconds).
        """
        if channel is None and not dry_run:
            raise ValueError("channel is required unless dry_run is enabled")
        if min_interval <= 0:
            raise ValueError("min_interval must be > 0")
        if max_backlog < 1:
            raise ValueError("max_backlog must be >= 1")

        self._channel = channel
        self._formatter = formatter
        self._min_interval = min_interval
        self._max_backlog = max_backlog
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._max_retry_delay = max_retry_delay
        self._alert_ttl = alert_ttl
        self._critical_multiplier = critical_multiplier
        self._dry_run = dry_run
        self._on_delivered = on_delivered
        self._on_dropped = on_dropped
        self._clock = clock

        self._state = DispatchState()
        self._stats = DispatchStats()
        self._wakeup = asyncio.Event()
        self._worker: asyncio.Task[None] | None = None
        self._in_flight: AlertMessage | None = None
        self._closing = False

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    @property
    def pending(self) -> int:
        return len(self._state.backlog)

    @property
    def last_sent_at(self) -> float | None:
        return self._state.last_sent_at

    async def start(self) -> None:
        """Start the background delivery worker."""
        if self._worker is not None:
            raise RuntimeError("Dispatcher already started")
        self._closing = False
        self._worker = asyncio.create_task(self._run(), name="alert-dispatcher")

    def _priority_for(self, event: WhaleEvent) -> AlertPriority:
        if event.notional >= event.threshold * self._critical_multiplier:
            return AlertPriority.CRITICAL
        return AlertPriority.NORMAL

    async def dispatch(self, event: WhaleEvent) -> bool:
        """Format and enqueue an alert without waiting for delivery.

        Returns:
            True if the alert was queued, False if it was rejected because the
            dispatcher is closing or the backlog is full of critical alerts.
        """
        if self._closing:
            logger.error("Dispatcher is shutting down; alert for tx %s not queued", event.tx_hash)
            return False

        message = self._formatter.format(event)
        now = self._clock()
        message.priority = self._priority_for(event)
        message.enqueued_at = now
        message.deadline = now + self._alert_ttl if self._alert_ttl is not None else None

        async with self._state.lock:
            if len(self._state.backlog) >= self._max_backlog:
                victim = self._pick_victim(message)
                if victim is None:
                    self._stats.dropped_backlog += 1
                    logger.error(
                        "Alert backlog full of critical alerts (%d); dropped incoming normal alert for tx %s",
                        self._max_backlog,
                        message.tx_hash,
                    )
                    return False
                self._state.backlog.remove(victim)
                self._stats.dropped_backlog += 1
                logger.error(
                    "Alert backlog full (%d); dropped %s alert for tx %s",
                    self._max_backlog,
                    victim.priority.value,
                    victim.tx_hash,
                )
                self._notify_dropped(victim)
            self._state.backlog.append(message)
            self._stats.enqueued += 1

        self._wakeup.set()
        return True

    def _pick_victim(self, incoming: AlertMessage) -> AlertMessage | None:
        """Choose which queued alert to shed for `incoming`; None rejects `incoming`.

        Caller holds the lock.
        """
        backlog = self._state.backlog
        victim = next((m for m in backlog if not m.is_critical), None)
        if victim is None and incoming.is_critical:
            victim = backlog[0]
        return victim

    def _notify_dropped(self, message: AlertMessage) -> None:
        if self._on_dropped is None:
            return
        try:
            self._on_dropped(message)
        except Exception as e:
            logger.error("Dropped-callback failed for tx %s: %s", message.tx_hash, e)

    async def _next_message(self) -> AlertMessage | None:
        while True:
            async with self._state.lock:
                if self._state.backlog:
                    return self._state.backlog.popleft()
                if self._closing:
                    return None
                self._wakeup.clear()
            await self._wakeup.wait()

    async def _wait_for_slot(self) -> None:
        while True:
            async with self._state.lock:
                last = self._state.last_sent_at
            if last is None:
                return
            wait = self._min_interval - (self._clock() - last)
            if wait <= 0:
                return
            await asyncio.sleep(wait)

    async def _send(self, message: AlertMessage) -> None:
        if self._dry_run:
            logger.info("[DRY RUN] Would send alert:\n%s", message.plain_text)
            return
        if self._channel is None:
            raise RuntimeError("No alert channel configured")
        await self._channel.send(message)

    async def _deliver(self, message: AlertMessage) -> None:
        delay = self._retry_base_delay
        total_attempts = self._max_retries + 1

        while message.attempts < total_attempts:
            if message.is_expired(self._clock()):
                self._stats.dropped_expired += 1
                logger.error("Dropping stale alert for tx %s (deadline passed)", message.tx_hash)
                self._notify_dropped(message)
                return

            await self._wait_for_slot()
            message.attempts += 1
            try:
                await self._send(message)
            except Exception as e:
                retry_after = e.retry_after if isinstance(e, ChannelError) else None
                if message.attempts >= total_attempts:
                    break
                wait = min(self._max_retry_delay, max(delay, retry_after or 0.0))
                logger.warning(
                    "Alert delivery for tx %s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                    message.tx_hash,
                    message.attempts,
                    total_attempts,
                    e,
                    wait,
                )
                await asyncio.sleep(wait)
                delay *= 2
                continue

            async with self._state.lock:
                self._state.last_sent_at = self._clock()
                self._stats.sent += 1
            self._in_flight = None
            logger.info("Alert sent for tx %s", message.tx_hash)
            await self._notify_delivered(message)
            return

        self._stats.failed += 1
        logger.error(
            "Dropping alert for tx %s after %d failed attempts",
            message.tx_hash,
            message.attempts,
        )
        self._notify_dropped(message)

    async def _notify_delivered(self, message: AlertMessage) -> None:
        if self._on_delivered is None:
            return
        try:
            await self._on_delivered(message)
        except Exception as e:
            logger.error("Delivered-callback failed for tx %s: %s", message.tx_hash, e)

    async def _run(self) -> None:
        while True:
            message = await self._next_message()
            if message is None:
                return
            self._in_flight = message
            try:
                await self._deliver(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pragma: no cover
                self._stats.failed += 1
                logger.error("Unexpected error delivering alert for tx %s: %s", message.tx_hash, e)
                self._notify_dropped(message)
            self._in_flight = None

    async def close(self, grace_period: float = DEFAULT_SHUTDOWN_GRACE_SECONDS) -> None:
        """Stop accepting alerts and drain the backlog within a grace period.

        Alerts still queued when the grace period ends are discarded, as is
        an alert whose send was interrupted.
        """
        self._closing = True
        self._wakeup.set()
        worker = self._worker
        if worker is None:
            return

        try:
            await asyncio.wait_for(asyncio.shield(worker), timeout=grace_period)
        except TimeoutError:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker
        finally:
            self._worker = None

        interrupted = self._in_flight
        self._in_flight = None
        async with self._state.lock:
            discarded = list(self._state.backlog)
            self._state.backlog.clear()
        if interrupted is not None:
            logger.error("Alert for tx %s interrupted mid-delivery on shutdown", interrupted.tx_hash)
            discarded.insert(0, interrupted)
        if discarded:
            self._stats.discarded_on_shutdown += len(discarded)
            logger.error("Discarded %d undelivered alerts on shutdown", len(discarded))
            for message in discarded:
                self._notify_dropped(message)
