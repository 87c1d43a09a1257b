"""Data ingestion layer - Live swap log streaming and decoding."""

from whale_observer.ingestor.decoder import DecodeFailure, DecodeResult, decode
from whale_observer.ingestor.models import (
    SWAP_EVENT_SIGNATURE,
    SWAP_TOPIC0,
    RawEvent,
    StreamSession,
    SubscriptionFilter,
    TradeRecord,
)
from whale_observer.ingestor.websocket import (
    ConnectionState,
    StreamError,
    SwapLogStream,
)

__all__ = [
    "SWAP_EVENT_SIGNATURE",
    "SWAP_TOPIC0",
    "ConnectionState",
    "DecodeFailure",
    "DecodeResult",
    "RawEvent",
    "StreamError",
    "StreamSession",
    "SubscriptionFilter",
    "SwapLogStream",
    "TradeRecord",
    "decode",
]
