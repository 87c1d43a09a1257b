"""Swap event decoder.

Turns a RawEvent into a TradeRecord. Decoding is total: every malformed
input produces a DecodeFailure value instead of an exception, so a single
bad log can never take down the ingestion loop.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from whale_observer.ingestor.models import SWAP_TOPIC0, RawEvent, TradeRecord

WORD_SIZE = 32
SWAP_TOPIC_COUNT = 3  # signature, sender, recipient
SWAP_DATA_TYPES = ("int256", "int256", "uint160", "uint128", "int24")
SWAP_DATA_LENGTH = WORD_SIZE * len(SWAP_DATA_TYPES)


@dataclass(frozen=True)
class DecodeFailure:
    """A RawEvent that could not be decoded into a TradeRecord."""

    reason: str
    tx_hash: str

    def __str__(self) -> str:
        return f"{self.reason} (tx={self.tx_hash})"


DecodeResult = TradeRecord | DecodeFailure


def _check_shape(raw: RawEvent) -> str | None:
    if len(raw.topics) != SWAP_TOPIC_COUNT:
        return f"expected {SWAP_TOPIC_COUNT} topics, got {len(raw.topics)}"
    for i, topic in enumerate(raw.topics):
        if len(topic) != WORD_SIZE:
            return f"topic {i} is {len(topic)} bytes, expected {WORD_SIZE}"
    if raw.topics[0] != SWAP_TOPIC0:
        return f"unexpected event signature 0x{raw.topics[0].hex()}"
    if len(raw.data) != SWAP_DATA_LENGTH:
        return f"data is {len(raw.data)} bytes, expected {SWAP_DATA_LENGTH}"
    return None


def decode(raw: RawEvent) -> DecodeResult:
    """Decode a Uniswap V3 Swap log.

    Length and topic shape are validated before any byte is interpreted.
    Numeric fields are decoded strictly, so padding that does not match the
    declared width (e.g. an int24 with garbage in its upper bytes) is
    rejected as out of range.

    Args:
        raw: The raw log entry.

    Returns:
        A TradeRecord, or a DecodeFailure describing why decoding failed.
    """
    problem = _check_shape(raw)
    if problem is not None:
        return DecodeFailure(problem, raw.tx_hash)

    try:
        (sender,) = abi_decode(["address"], raw.topics[1])
        (recipient,) = abi_decode(["address"], raw.topics[2])
        amount0, amount1, sqrt_price_x96, liquidity, tick = abi_decode(
            list(SWAP_DATA_TYPES), raw.data
        )
    except (DecodingError, ValueError) as e:
        return DecodeFailure(f"field out of range: {e}", raw.tx_hash)

    try:
        return TradeRecord(
            amount0=amount0,
            amount1=amount1,
            sqrt_price_x96=sqrt_price_x96,
            liquidity=liquidity,
            tick=tick,
            sender=Web3.to_checksum_address(sender),
            recipient=Web3.to_checksum_address(recipient),
            tx_hash=raw.tx_hash,
            block_number=raw.block_number,
            log_index=raw.log_index,
        )
    except ValueError as e:
        return DecodeFailure(str(e), raw.tx_hash)
