"""Main pipeline orchestrator for Whale Observer.

This module provides the Pipeline class that wires together the log
stream, decoder, whale detector, alert ledger and dispatcher, and
manages the event flow from ingestion to alerting.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from whale_observer.alerter.channels.telegram import TelegramChannel
from whale_observer.alerter.dispatcher import AlertChannel, RateLimitedDispatcher
from whale_observer.alerter.formatter import AlertFormatter, TokenInfo
from whale_observer.alerter.models import AlertMessage
from whale_observer.config import Settings, get_settings
from whale_observer.detector.whale import WhaleDetector
from whale_observer.ingestor.decoder import DecodeFailure, decode
from whale_observer.ingestor.models import RawEvent, SubscriptionFilter
from whale_observer.ingestor.websocket import SwapLogStream
from whale_observer.storage.ledger import (
    AlertLedger,
    AlertLedgerError,
    InMemoryAlertLedger,
    create_alert_ledger,
)

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class ProcessOutcome(str, Enum):
    """What happened to a single raw event."""

    DECODE_FAILED = "decode_failed"
    SMALL_SWAP = "small_swap"
    DUPLICATE = "duplicate"
    ALERT_QUEUED = "alert_queued"
    ALERT_REJECTED = "alert_rejected"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    events_received: int = 0
    decode_failures: int = 0
    whales_detected: int = 0
    alerts_enqueued: int = 0
    duplicates_suppressed: int = 0
    errors: int = 0
    last_event_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator for Whale Observer.

    Pipeline flow:
        Swap Log Stream → Decoder → Whale Detector → Alert Ledger → Dispatcher

    Decoding and classification run inline, one event at a time, so
    arrival order is preserved. Delivery happens on the dispatcher's
    own task; the pipeline never waits on a send.

    Example:
        ```python
        from whale_observer.config import get_settings
        from whale_observer.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        stream: SwapLogStream | None = None,
        channel: AlertChannel | None = None,
        ledger: AlertLedger | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log alerts instead of sending them. Overrides settings.dry_run.
            stream: Pre-built log stream (tests). Built from settings otherwise.
            channel: Pre-built alert channel (tests). Built from settings otherwise.
            ledger: Pre-built alert ledger. Built from settings otherwise.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        settings = self._settings
        self._detector = WhaleDetector(
            threshold=settings.whale.threshold,
            reference=settings.whale.reference_token,
            decimals=settings.reference_decimals(),
        )
        self._formatter = AlertFormatter(
            TokenInfo(settings.pool.token0_symbol, settings.pool.token0_decimals),
            TokenInfo(settings.pool.token1_symbol, settings.pool.token1_decimals),
            explorer_tx_url=settings.pool.explorer_tx_url,
        )

        # Components (initialized in start() unless injected)
        self._stream = stream
        self._channel = channel
        self._owns_channel = channel is None
        self._ledger = ledger
        self._dispatcher: RateLimitedDispatcher | None = None

        # Transactions queued for delivery but not yet in the ledger.
        self._pending_tx: set[str] = set()

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._stream_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def detector(self) -> WhaleDetector:
        return self._detector

    @property
    def dispatcher(self) -> RateLimitedDispatcher | None:
        return self._dispatcher

    async def start(self) -> None:
        """Start the pipeline.

        Initializes all components and begins consuming the log stream.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Closes the stream, then lets the dispatcher drain within the
        configured grace period.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info(
            "Pipeline stopped (events=%d, whales=%d, alerts=%d, decode_failures=%d, errors=%d)",
            self._stats.events_received,
            self._stats.whales_detected,
            self._stats.alerts_enqueued,
            self._stats.decode_failures,
            self._stats.errors,
        )

    def request_stop(self) -> None:
        """Ask a running `run()` to shut down. Safe to call from a signal handler."""
        if self._stop_event:
            self._stop_event.set()

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if self._ledger is None:
            self._ledger = create_alert_ledger(settings.ledger.url, pool_address=settings.pool.address)
        try:
            known = await self._ledger.load()
            logger.info("Alert ledger ready (%d known transactions)", len(known))
        except AlertLedgerError as e:
            logger.error("Alert ledger unavailable, deduplicating in memory only: %s", e)
            await self._close_ledger()
            self._ledger = InMemoryAlertLedger()

        if self._channel is None and not self._dry_run:
            self._channel = self._build_alert_channel()

        self._dispatcher = RateLimitedDispatcher(
            self._channel,
            self._formatter,
            min_interval=settings.dispatch.min_interval_seconds,
            max_backlog=settings.dispatch.max_backlog,
            max_retries=settings.dispatch.max_retries,
            retry_base_delay=settings.dispatch.retry_base_delay_seconds,
            alert_ttl=settings.dispatch.alert_ttl_seconds,
            critical_multiplier=settings.dispatch.critical_multiplier,
            dry_run=self._dry_run,
            on_delivered=self._on_alert_delivered,
            on_dropped=self._on_alert_dropped,
        )

        if self._stream is None:
            self._stream = SwapLogStream(
                host=settings.stream.ws_url,
                subscription=SubscriptionFilter(address=settings.pool.address),
                reconnect_delay=settings.stream.reconnect_delay_seconds,
                max_reconnect_delay=settings.stream.max_reconnect_delay_seconds,
                subscribe_timeout=settings.stream.subscribe_timeout_seconds,
                idle_timeout=settings.stream.idle_timeout_seconds,
            )

        logger.info(
            "Watching pool %s, whale threshold %s %s",
            settings.pool.address,
            settings.whale.threshold,
            settings.pool.token0_symbol
            if settings.whale.reference_token == "token0"
            else settings.pool.token1_symbol,
        )

    def _build_alert_channel(self) -> AlertChannel:
        """Build the configured alert channel."""
        telegram = self._settings.telegram
        if not (telegram.bot_token and telegram.chat_id):
            raise RuntimeError("Telegram is not configured")
        logger.info("Telegram channel enabled")
        return TelegramChannel(telegram.bot_token.get_secret_value(), telegram.chat_id)

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._dispatcher is None or self._stream is None:
            raise RuntimeError("Pipeline components are not initialized")
        logger.debug("Starting alert dispatcher...")
        await self._dispatcher.start()

        logger.debug("Starting swap log stream...")
        self._stream_task = asyncio.create_task(self._run_swap_stream(), name="swap-log-stream")

    async def _run_swap_stream(self) -> None:
        stream = self._stream
        if stream is None:
            raise RuntimeError("Swap log stream is not initialized")
        try:
            async for raw in stream.events():
                await self.process_event(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Swap log stream terminated: %s", e)
        finally:
            if self._stop_event and self._state != PipelineState.STOPPING:
                self._stop_event.set()

    async def process_event(self, raw: RawEvent) -> ProcessOutcome:
        """Process a single raw log event.

        decode -> classify -> ledger check -> enqueue. Never raises; a
        failure affects only this event.
        """
        self._stats.events_received += 1
        self._stats.last_event_time = datetime.now(UTC)
        try:
            return await self._process(raw)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Error processing event tx=%s: %s", raw.tx_hash, e, exc_info=True)
            return ProcessOutcome.ERROR

    async def _process(self, raw: RawEvent) -> ProcessOutcome:
        result = decode(raw)
        if isinstance(result, DecodeFailure):
            self._stats.decode_failures += 1
            logger.warning("Skipping undecodable event: %s", result)
            return ProcessOutcome.DECODE_FAILED

        event = self._detector.analyze(result)
        if event is None:
            logger.debug(
                "Small swap tx=%s amount0=%d amount1=%d",
                result.tx_hash,
                result.amount0,
                result.amount1,
            )
            return ProcessOutcome.SMALL_SWAP

        self._stats.whales_detected += 1
        logger.info(
            "Whale detected: tx=%s direction=%s notional=%d (%.2fx threshold)",
            event.tx_hash,
            event.direction,
            event.notional,
            event.multiple_of_threshold,
        )

        if await self._already_alerted(event.tx_hash):
            self._stats.duplicates_suppressed += 1
            logger.info("Alert for tx %s already sent or queued, skipping", event.tx_hash)
            return ProcessOutcome.DUPLICATE

        if self._dispatcher is None:
            raise RuntimeError("Pipeline is not running")
        self._pending_tx.add(event.tx_hash.lower())
        if not await self._dispatcher.dispatch(event):
            self._pending_tx.discard(event.tx_hash.lower())
            return ProcessOutcome.ALERT_REJECTED

        self._stats.alerts_enqueued += 1
        return ProcessOutcome.ALERT_QUEUED

    async def _already_alerted(self, tx_hash: str) -> bool:
        if tx_hash.lower() in self._pending_tx:
            return True
        if self._ledger is None:
            return False
        try:
            return await self._ledger.contains(tx_hash)
        except AlertLedgerError as e:
            logger.error("Alert ledger lookup failed for tx %s: %s", tx_hash, e)
            return False

    async def _on_alert_delivered(self, message: AlertMessage) -> None:
        self._pending_tx.discard(message.tx_hash.lower())
        if self._ledger is None:
            return
        try:
            await self._ledger.record(message.tx_hash, message.event)
        except AlertLedgerError as e:
            logger.error("Failed to record delivered alert for tx %s: %s", message.tx_hash, e)

    def _on_alert_dropped(self, message: AlertMessage) -> None:
        self._pending_tx.discard(message.tx_hash.lower())

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._stream:
            logger.debug("Stopping swap log stream...")
            await self._stream.stop()

        if self._stream_task:
            self._stream_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stream_task
            self._stream_task = None

        if self._dispatcher:
            logger.debug("Draining alert dispatcher...")
            await self._dispatcher.close(grace_period=self._settings.dispatch.shutdown_grace_seconds)

    async def _close_ledger(self) -> None:
        if self._ledger is None:
            return
        try:
            await self._ledger.close()
        except Exception as e:
            logger.warning("Error closing alert ledger: %s", e)

    async def _cleanup(self) -> None:
        """Clean up resources."""
        await self._close_ledger()

        if self._owns_channel and isinstance(self._channel, TelegramChannel):
            await self._channel.aclose()
            self._channel = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        This is a convenience method that starts the pipeline and
        blocks until a stop signal is received.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
