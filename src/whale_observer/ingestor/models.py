"""Data models for the ingestor module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from web3 import Web3

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

# Uniswap V3 pool Swap event.
SWAP_EVENT_SIGNATURE = "Swap(address,address,int256,int256,uint160,uint128,int24)"
SWAP_TOPIC0: bytes = bytes(Web3.keccak(text=SWAP_EVENT_SIGNATURE))

TradeDirection = Literal["BOUGHT", "SOLD"]


class RawEventParseError(ValueError):
    """Raised when a log notification cannot be turned into a RawEvent."""


def _to_bytes(value: Any, *, field_name: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise RawEventParseError(f"{field_name} must be a hex string, got {type(value).__name__}")
    try:
        return bytes(Web3.to_bytes(hexstr=value))
    except ValueError as e:
        raise RawEventParseError(f"{field_name} is not valid hex: {e}") from e


def _to_int(value: Any, *, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 16) if str(value).startswith("0x") else int(str(value))
    except ValueError as e:
        raise RawEventParseError(f"{field_name} is not an integer: {value!r}") from e


@dataclass(frozen=True)
class SubscriptionFilter:
    """Log filter for a single contract address and event signature."""

    address: str
    topic0: bytes = SWAP_TOPIC0

    def to_rpc_params(self) -> list[object]:
        """Render the `eth_subscribe` params for this filter."""
        return [
            "logs",
            {
                "address": Web3.to_checksum_address(self.address),
                "topics": ["0x" + self.topic0.hex()],
            },
        ]


@dataclass(frozen=True)
class StreamSession:
    """An established streaming connection plus its active subscription.

    Sessions are never mutated: a reconnect creates a new one.
    """

    connection: ClientConnection
    filter: SubscriptionFilter
    subscription_id: str
    established_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class RawEvent:
    """An undecoded log entry as delivered by the session.

    Attributes:
        data: ABI-encoded non-indexed event fields.
        topics: Indexed topics; topics[0] is the event signature hash.
        tx_hash: Originating transaction hash (0x-prefixed hex).
        address: Emitting contract address.
        block_number: Block the log was included in, if known.
        log_index: Position of the log within the block, if known.
        removed: True when the node retracts the log after a reorg.
    """

    data: bytes
    topics: tuple[bytes, ...]
    tx_hash: str
    address: str = ""
    block_number: int | None = None
    log_index: int | None = None
    removed: bool = False

    @classmethod
    def from_log(cls, log: dict[str, Any]) -> RawEvent:
        """Create a RawEvent from a JSON-RPC log object.

        Raises:
            RawEventParseError: If required fields are missing or malformed.
        """
        if not isinstance(log, dict):
            raise RawEventParseError("log notification result must be an object")

        topics_raw = log.get("topics")
        if not isinstance(topics_raw, list):
            raise RawEventParseError("log is missing 'topics'")

        tx_hash = log.get("transactionHash")
        if tx_hash is not None and not isinstance(tx_hash, str):
            raise RawEventParseError("transactionHash must be a hex string")

        return cls(
            data=_to_bytes(log.get("data", "0x"), field_name="data"),
            topics=tuple(_to_bytes(t, field_name="topic") for t in topics_raw),
            tx_hash=(tx_hash or "unknown").lower(),
            address=str(log.get("address", "")).lower(),
            block_number=_to_int(log.get("blockNumber"), field_name="blockNumber"),
            log_index=_to_int(log.get("logIndex"), field_name="logIndex"),
            removed=bool(log.get("removed", False)),
        )


@dataclass(frozen=True)
class TradeRecord:
    """A decoded pool swap.

    Amounts are signed from the pool's point of view: positive means the pool
    received the asset, negative means the pool paid it out. A valid swap
    always has exactly one inflow and one outflow.

    Attributes:
        amount0: Signed token0 amount in base units.
        amount1: Signed token1 amount in base units.
        sqrt_price_x96: Post-swap sqrt(price) as a Q64.96 fixed-point value.
        liquidity: In-range liquidity after the swap.
        tick: Post-swap tick.
        sender: Address that initiated the swap (usually a router).
        recipient: Address receiving the output.
        tx_hash: Originating transaction hash.
        block_number: Block number, if known.
        log_index: Log index, if known.
    """

    amount0: int
    amount1: int
    sqrt_price_x96: int
    liquidity: int
    tick: int
    sender: str
    recipient: str
    tx_hash: str
    block_number: int | None = None
    log_index: int | None = None

    def __post_init__(self) -> None:
        if (self.amount0 > 0 and self.amount1 < 0) or (self.amount0 < 0 and self.amount1 > 0):
            return
        raise ValueError(
            f"swap amounts must have opposite signs (amount0={self.amount0}, amount1={self.amount1})"
        )

    def amount(self, leg: Literal["token0", "token1"]) -> int:
        """Return the signed amount for one leg of the pair."""
        return self.amount0 if leg == "token0" else self.amount1

    @property
    def direction(self) -> TradeDirection:
        """Trade direction with respect to token1.

        The pool paying out token1 means the trader bought it.
        """
        return "BOUGHT" if self.amount1 < 0 else "SOLD"
