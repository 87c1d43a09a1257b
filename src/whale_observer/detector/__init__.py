"""Detection layer - Whale trade classification."""

from whale_observer.detector.models import ReferenceLeg, WhaleEvent
from whale_observer.detector.whale import WhaleDetector, classify, to_base_units

__all__ = [
    "ReferenceLeg",
    "WhaleDetector",
    "WhaleEvent",
    "classify",
    "to_base_units",
]
