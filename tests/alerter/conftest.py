"""Fixtures for alerter tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from whale_observer.alerter.formatter import AlertFormatter, TokenInfo
from whale_observer.detector.models import WhaleEvent
from whale_observer.detector.whale import classify
from whale_observer.ingestor.models import TradeRecord

SQRT_PRICE_3000 = 1446501726624926496477173928747177


@pytest.fixture
def formatter() -> AlertFormatter:
    """USDC/WETH formatter."""
    return AlertFormatter(TokenInfo("USDC", 6), TokenInfo("WETH", 18))


@pytest.fixture
def make_whale_event() -> Callable[..., WhaleEvent]:
    """Factory building WhaleEvents for a 20 WETH threshold."""

    def _make(
        amount0: int = -75_000 * 10**6,
        amount1: int = 25 * 10**18,
        *,
        tx_hash: str = "0x" + "ab" * 32,
        sqrt_price_x96: int = SQRT_PRICE_3000,
        threshold: int = 20 * 10**18,
    ) -> WhaleEvent:
        trade = TradeRecord(
            amount0=amount0,
            amount1=amount1,
            sqrt_price_x96=sqrt_price_x96,
            liquidity=1,
            tick=0,
            sender="0xE592427A0AEce92De3Edee1F18E0157C05861564",
            recipient="0x1111111111111111111111111111111111111111",
            tx_hash=tx_hash,
            block_number=19_000_000,
        )
        event = classify(trade, threshold)
        assert event is not None
        return event

    return _make
