"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import pytest

from whale_observer.alerter.channels.telegram import ChannelError
from whale_observer.alerter.models import AlertMessage
from whale_observer.config import Settings
from whale_observer.ingestor.models import RawEvent
from whale_observer.pipeline import Pipeline, PipelineState, ProcessOutcome
from whale_observer.storage.ledger import AlertLedgerError, InMemoryAlertLedger


class FakeStream:
    """Stand-in for SwapLogStream yielding a fixed list of events."""

    def __init__(self, events: list[RawEvent] | None = None, *, end: bool = False) -> None:
        self._events = events or []
        self._end = end
        self._stopped = asyncio.Event()

    async def events(self) -> AsyncIterator[RawEvent]:
        for raw in self._events:
            yield raw
        if not self._end:
            await self._stopped.wait()

    async def stop(self) -> None:
        self._stopped.set()


class RecordingChannel:
    """Alert channel that keeps every message it is asked to send."""

    name = "recording"

    def __init__(self) -> None:
        self.sent: list[AlertMessage] = []

    async def send(self, message: AlertMessage) -> None:
        self.sent.append(message)



class FailingOnceChannel(RecordingChannel):
    """Fails the first send, then records like RecordingChannel."""

    def __init__(self) -> None:
        super().__init__()
        self._failed = False

    async def send(self, message: AlertMessage) -> None:
        if not self._failed:
            self._failed = True
            raise ChannelError("telegram unavailable")
        await super().send(message)

@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Settings:
    """Real settings built from a controlled environment."""
    monkeypatch.chdir(tmp_path)
    for var in ("TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "ALERT_LEDGER_URL", "DRY_RUN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("ETH_WS_URL", "ws://localhost:8546")
    monkeypatch.setenv("DISPATCH_MIN_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("DISPATCH_RETRY_BASE_DELAY_SECONDS", "0.01")
    monkeypatch.setenv("DISPATCH_SHUTDOWN_GRACE_SECONDS", "2")
    return Settings()


async def _drain(pipeline: Pipeline, timeout: float = 2.0) -> None:
    async def _wait() -> None:
        while pipeline.dispatcher is not None and pipeline.dispatcher.pending:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

    await asyncio.wait_for(_wait(), timeout=timeout)


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, settings: Settings) -> None:
        """Pipeline should start in stopped state."""
        pipeline = Pipeline(settings)
        assert pipeline.state == PipelineState.STOPPED
        assert pipeline.is_running is False

    def test_detector_uses_configured_threshold(self, settings: Settings) -> None:
        pipeline = Pipeline(settings)
        assert pipeline.detector.threshold_units == 20 * 10**18
        assert pipeline.detector.reference == "token1"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, settings: Settings) -> None:
        pipeline = Pipeline(settings, dry_run=True, stream=FakeStream())

        await pipeline.start()
        assert pipeline.state == PipelineState.RUNNING
        assert pipeline.stats.started_at is not None

        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, settings: Settings) -> None:
        pipeline = Pipeline(settings, dry_run=True, stream=FakeStream())
        await pipeline.start()
        try:
            with pytest.raises(RuntimeError):
                await pipeline.start()
        finally:
            await pipeline.stop()

    @pytest.mark.asyncio
    async def test_stop_when_stopped_is_noop(self, settings: Settings) -> None:
        pipeline = Pipeline(settings, dry_run=True)
        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_missing_channel_fails_start(self, settings: Settings) -> None:
        """Without dry-run or Telegram credentials there is nothing to send with."""
        pipeline = Pipeline(settings, dry_run=False, stream=FakeStream())

        with pytest.raises(RuntimeError, match="Telegram"):
            await pipeline.start()
        assert pipeline.state == PipelineState.ERROR

    @pytest.mark.asyncio
    async def test_ledger_load_failure_falls_back_to_memory(self, settings: Settings) -> None:
        ledger = AsyncMock()
        ledger.load.side_effect = AlertLedgerError("redis down")

        async with Pipeline(settings, dry_run=True, stream=FakeStream(), ledger=ledger) as pipeline:
            assert pipeline.is_running

        ledger.close.assert_awaited_once()


class TestProcessEvent:
    """Tests for per-event processing."""

    @pytest.mark.asyncio
    async def test_process_event_before_start_is_error(self, settings: Settings, make_swap_event) -> None:
        """Without a running dispatcher the event is counted as an error, not raised."""
        pipeline = Pipeline(settings, dry_run=True, stream=FakeStream())

        outcome = await pipeline.process_event(make_swap_event())

        assert outcome == ProcessOutcome.ERROR
        assert pipeline.stats.errors == 1
        assert pipeline.stats.last_error == "Pipeline is not running"

    @pytest.mark.asyncio
    async def test_whale_swap_is_queued_and_sent(self, settings: Settings, make_swap_event) -> None:
        """A 25 WETH sale produces exactly one alert."""
        channel = RecordingChannel()
        ledger = InMemoryAlertLedger()

        async with Pipeline(settings, stream=FakeStream(), channel=channel, ledger=ledger) as pipeline:
            outcome = await pipeline.process_event(make_swap_event(-75_000 * 10**6, 25 * 10**18))
            await _drain(pipeline)

        assert outcome == ProcessOutcome.ALERT_QUEUED
        assert pipeline.stats.whales_detected == 1
        assert pipeline.stats.alerts_enqueued == 1
        assert len(channel.sent) == 1
        assert "SOLD" in channel.sent[0].plain_text
        assert await ledger.contains(channel.sent[0].tx_hash) is True

    @pytest.mark.asyncio
    async def test_small_swap_is_ignored(self, settings: Settings, make_swap_event) -> None:
        channel = RecordingChannel()

        async with Pipeline(settings, stream=FakeStream(), channel=channel) as pipeline:
            outcome = await pipeline.process_event(make_swap_event(15_000 * 10**6, -5 * 10**18))
            await _drain(pipeline)

        assert outcome == ProcessOutcome.SMALL_SWAP
        assert pipeline.stats.whales_detected == 0
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_threshold_is_exclusive(self, settings: Settings, make_swap_event) -> None:
        async with Pipeline(settings, dry_run=True, stream=FakeStream()) as pipeline:
            at = await pipeline.process_event(make_swap_event(-60_000 * 10**6, 20 * 10**18, tx_hash="0x" + "01" * 32))
            above = await pipeline.process_event(
                make_swap_event(-60_000 * 10**6, 20 * 10**18 + 1, tx_hash="0x" + "02" * 32)
            )

        assert at == ProcessOutcome.SMALL_SWAP
        assert above == ProcessOutcome.ALERT_QUEUED

    @pytest.mark.asyncio
    async def test_decode_failure_does_not_stop_processing(self, settings: Settings, make_swap_event) -> None:
        """A malformed log is counted and the next event still alerts."""
        bad = RawEvent(data=b"\x00" * 10, topics=(), tx_hash="0x" + "ee" * 32)

        async with Pipeline(settings, dry_run=True, stream=FakeStream()) as pipeline:
            first = await pipeline.process_event(bad)
            second = await pipeline.process_event(make_swap_event())

        assert first == ProcessOutcome.DECODE_FAILED
        assert second == ProcessOutcome.ALERT_QUEUED
        assert pipeline.stats.decode_failures == 1
        assert pipeline.stats.events_received == 2

    @pytest.mark.asyncio
    async def test_same_transaction_alerts_once(self, settings: Settings, make_swap_event) -> None:
        channel = RecordingChannel()

        async with Pipeline(settings, stream=FakeStream(), channel=channel) as pipeline:
            first = await pipeline.process_event(make_swap_event(log_index=1))
            second = await pipeline.process_event(make_swap_event(log_index=2))
            await _drain(pipeline)
            third = await pipeline.process_event(make_swap_event(log_index=3))

        assert first == ProcessOutcome.ALERT_QUEUED
        assert second == ProcessOutcome.DUPLICATE
        assert third == ProcessOutcome.DUPLICATE
        assert pipeline.stats.duplicates_suppressed == 2
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_failed_alert_does_not_suppress_transaction(
        self, monkeypatch: pytest.MonkeyPatch, settings: Settings, make_swap_event
    ) -> None:
        """A transaction whose alert was never delivered can alert again."""
        monkeypatch.setenv("DISPATCH_MAX_RETRIES", "0")
        no_retry = Settings()
        channel = FailingOnceChannel()

        async with Pipeline(no_retry, stream=FakeStream(), channel=channel) as pipeline:
            first = await pipeline.process_event(make_swap_event(log_index=1))
            await _drain(pipeline)
            second = await pipeline.process_event(make_swap_event(log_index=2))
            await _drain(pipeline)

        assert first == ProcessOutcome.ALERT_QUEUED
        assert second == ProcessOutcome.ALERT_QUEUED
        assert pipeline.dispatcher is not None
        assert pipeline.dispatcher.stats.failed == 1
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_ledger_hit_from_previous_run(
        self, settings: Settings, make_swap_event, sample_tx_hash: str
    ) -> None:
        ledger = InMemoryAlertLedger()
        await ledger.record(sample_tx_hash)

        async with Pipeline(settings, dry_run=True, stream=FakeStream(), ledger=ledger) as pipeline:
            outcome = await pipeline.process_event(make_swap_event())

        assert outcome == ProcessOutcome.DUPLICATE

    @pytest.mark.asyncio
    async def test_ledger_lookup_error_still_alerts(self, settings: Settings, make_swap_event) -> None:
        ledger = AsyncMock()
        ledger.load.return_value = set()
        ledger.contains.side_effect = AlertLedgerError("timeout")

        async with Pipeline(settings, dry_run=True, stream=FakeStream(), ledger=ledger) as pipeline:
            outcome = await pipeline.process_event(make_swap_event())

        assert outcome == ProcessOutcome.ALERT_QUEUED

    @pytest.mark.asyncio
    async def test_token0_reference(self, monkeypatch: pytest.MonkeyPatch, settings: Settings, make_swap_event) -> None:
        """Sizing on the stablecoin leg uses USDC notional."""
        monkeypatch.setenv("WHALE_REFERENCE_TOKEN", "token0")
        monkeypatch.setenv("WHALE_THRESHOLD", "50000")
        token0_settings = Settings()

        async with Pipeline(token0_settings, dry_run=True, stream=FakeStream()) as pipeline:
            outcome = await pipeline.process_event(make_swap_event(-75_000 * 10**6, 25 * 10**18))

        assert pipeline.detector.threshold_units == 50_000 * 10**6
        assert outcome == ProcessOutcome.ALERT_QUEUED


class TestPipelineRun:
    """Tests for the stream-driven run loop."""

    @pytest.mark.asyncio
    async def test_run_processes_stream_in_order(self, settings: Settings, make_swap_event) -> None:
        """Events flow from the stream to the channel and run() returns when it ends."""
        events = [
            make_swap_event(-75_000 * 10**6, 25 * 10**18, tx_hash="0x" + "01" * 32),
            make_swap_event(3_000 * 10**6, -1 * 10**18, tx_hash="0x" + "02" * 32),
            make_swap_event(90_000 * 10**6, -30 * 10**18, tx_hash="0x" + "03" * 32),
        ]
        channel = RecordingChannel()
        ledger = InMemoryAlertLedger()
        pipeline = Pipeline(settings, stream=FakeStream(events, end=True), channel=channel, ledger=ledger)

        await asyncio.wait_for(pipeline.run(), timeout=5.0)

        assert pipeline.state == PipelineState.STOPPED
        assert pipeline.stats.events_received == 3
        assert [m.tx_hash for m in channel.sent] == ["0x" + "01" * 32, "0x" + "03" * 32]
        assert "BOUGHT" in channel.sent[1].plain_text
        assert len(ledger) == 2

    @pytest.mark.asyncio
    async def test_request_stop_ends_run(self, settings: Settings) -> None:
        pipeline = Pipeline(settings, dry_run=True, stream=FakeStream())
        task = asyncio.create_task(pipeline.run())

        while not pipeline.is_running:
            await asyncio.sleep(0.01)
        pipeline.request_stop()

        await asyncio.wait_for(task, timeout=3.0)
        assert pipeline.state == PipelineState.STOPPED
