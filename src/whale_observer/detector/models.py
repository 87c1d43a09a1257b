"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from whale_observer.ingestor.models import TradeDirection, TradeRecord

ReferenceLeg = Literal["token0", "token1"]


@dataclass(frozen=True)
class WhaleEvent:
    """A trade whose reference-leg magnitude exceeded the threshold.

    Attributes:
        trade: The decoded swap.
        notional: Absolute reference-leg amount in base units.
        threshold: The threshold (base units) that was exceeded.
        reference: Which leg of the pair was used for sizing.
        detected_at: When the classification happened.
    """

    trade: TradeRecord
    notional: int
    threshold: int
    reference: ReferenceLeg
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def tx_hash(self) -> str:
        return self.trade.tx_hash

    @property
    def direction(self) -> TradeDirection:
        return self.trade.direction

    @property
    def multiple_of_threshold(self) -> float:
        """How many times larger than the threshold the trade was."""
        if self.threshold <= 0:
            return float("inf")
        return self.notional / self.threshold

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "tx_hash": self.tx_hash,
            "amount0": str(self.trade.amount0),
            "amount1": str(self.trade.amount1),
            "notional": str(self.notional),
            "threshold": str(self.threshold),
            "reference": self.reference,
            "direction": self.direction,
            "block_number": self.trade.block_number,
            "detected_at": self.detected_at.isoformat(),
        }
