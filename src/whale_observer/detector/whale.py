"""Whale trade classification.

This module provides the pure `classify` rule and the WhaleDetector
wrapper that binds it to a configured threshold.
"""

from __future__ import annotations

from decimal import Decimal

from whale_observer.detector.models import ReferenceLeg, WhaleEvent
from whale_observer.ingestor.models import TradeRecord

# Default configuration: 20 WETH on the token1 leg.
DEFAULT_THRESHOLD = Decimal("20")
DEFAULT_REFERENCE: ReferenceLeg = "token1"
DEFAULT_DECIMALS = 18


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a display-unit amount to integer base units.

    Raises:
        ValueError: If the amount is negative or has more precision than
            the token supports.
    """
    if amount < 0:
        raise ValueError("amount must be >= 0")
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} has more than {decimals} decimal places")
    return int(scaled)


def classify(
    record: TradeRecord,
    threshold: int,
    *,
    reference: ReferenceLeg = DEFAULT_REFERENCE,
) -> WhaleEvent | None:
    """Classify a trade as a whale trade.

    A trade is a whale iff abs(reference amount) > threshold. A trade sized
    exactly at the threshold is not a whale.

    Args:
        record: The decoded swap.
        threshold: Threshold in base units of the reference leg.
        reference: Which leg of the pair is used for sizing.

    Returns:
        WhaleEvent when the threshold is exceeded, None otherwise.
    """
    notional = abs(record.amount(reference))
    if notional > threshold:
        return WhaleEvent(
            trade=record,
            notional=notional,
            threshold=threshold,
            reference=reference,
        )
    return None


class WhaleDetector:
    """Threshold classifier bound to a configured reference leg.

    The threshold is given in display units (e.g. "20" WETH, or "50000"
    USDC when sizing on the stablecoin leg) and converted to base units once.

    Example:
        ```python
        detector = WhaleDetector(threshold=Decimal("20"), reference="token1", decimals=18)
        event = detector.analyze(record)
        if event is not None:
            print(f"Whale! {event.notional} wei")
        ```
    """

    def __init__(
        self,
        *,
        threshold: Decimal = DEFAULT_THRESHOLD,
        reference: ReferenceLeg = DEFAULT_REFERENCE,
        decimals: int = DEFAULT_DECIMALS,
    ) -> None:
        self._reference = reference
        self._decimals = decimals
        self._threshold_units = to_base_units(threshold, decimals)

    @property
    def threshold_units(self) -> int:
        return self._threshold_units

    @property
    def reference(self) -> ReferenceLeg:
        return self._reference

    def analyze(self, record: TradeRecord) -> WhaleEvent | None:
        """Classify a trade against the configured threshold."""
        return classify(record, self._threshold_units, reference=self._reference)
