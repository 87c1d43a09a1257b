"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from eth_abi import encode as abi_encode

from whale_observer.ingestor.decoder import SWAP_DATA_TYPES
from whale_observer.ingestor.models import SWAP_TOPIC0, RawEvent

POOL_ADDRESS = "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"
ROUTER_ADDRESS = "0xE592427A0AEce92De3Edee1F18E0157C05861564"
RECIPIENT_ADDRESS = "0x1111111111111111111111111111111111111111"

# sqrtPriceX96 for ~3000 USDC per WETH in the USDC/WETH pool.
SAMPLE_SQRT_PRICE_X96 = 1446501726624926496477173928747177
SAMPLE_LIQUIDITY = 12_345_678_901_234_567
SAMPLE_TICK = 196_254

RawEventFactory = Callable[..., RawEvent]


def _address_topic(address: str) -> bytes:
    return abi_encode(["address"], [address])


@pytest.fixture
def sample_tx_hash() -> str:
    """Sample transaction hash for testing."""
    return "0x" + "ab" * 32


@pytest.fixture
def make_swap_event(sample_tx_hash: str) -> RawEventFactory:
    """Factory building ABI-encoded Swap RawEvents."""

    def _make(
        amount0: int = -75_000 * 10**6,
        amount1: int = 25 * 10**18,
        *,
        sqrt_price_x96: int = SAMPLE_SQRT_PRICE_X96,
        liquidity: int = SAMPLE_LIQUIDITY,
        tick: int = SAMPLE_TICK,
        sender: str = ROUTER_ADDRESS,
        recipient: str = RECIPIENT_ADDRESS,
        tx_hash: str | None = None,
        block_number: int | None = 19_000_000,
        log_index: int | None = 7,
    ) -> RawEvent:
        data = abi_encode(
            list(SWAP_DATA_TYPES),
            [amount0, amount1, sqrt_price_x96, liquidity, tick],
        )
        return RawEvent(
            data=data,
            topics=(SWAP_TOPIC0, _address_topic(sender), _address_topic(recipient)),
            tx_hash=tx_hash or sample_tx_hash,
            address=POOL_ADDRESS.lower(),
            block_number=block_number,
            log_index=log_index,
        )

    return _make


@pytest.fixture
def make_swap_log(make_swap_event: RawEventFactory) -> Callable[..., dict[str, object]]:
    """Factory building JSON-RPC log objects as delivered by `eth_subscribe`."""

    def _make(**kwargs: object) -> dict[str, object]:
        raw = make_swap_event(**kwargs)
        return {
            "address": raw.address,
            "topics": ["0x" + t.hex() for t in raw.topics],
            "data": "0x" + raw.data.hex(),
            "blockNumber": hex(raw.block_number or 0),
            "transactionHash": raw.tx_hash,
            "logIndex": hex(raw.log_index or 0),
            "removed": False,
        }

    return _make
