"""Tests for the Swap event decoder."""

import dataclasses

import pytest
from eth_abi import encode as abi_encode

from whale_observer.ingestor.decoder import SWAP_DATA_LENGTH, DecodeFailure, decode
from whale_observer.ingestor.models import RawEvent, TradeRecord


class TestDecodeValid:
    """Tests for well-formed Swap logs."""

    def test_decodes_all_fields(self, make_swap_event) -> None:
        """All five data fields and both indexed addresses are decoded."""
        raw = make_swap_event(
            -75_000 * 10**6,
            25 * 10**18,
            sqrt_price_x96=123456789,
            liquidity=42,
            tick=-887272,
        )
        result = decode(raw)

        assert isinstance(result, TradeRecord)
        assert result.amount0 == -75_000 * 10**6
        assert result.amount1 == 25 * 10**18
        assert result.sqrt_price_x96 == 123456789
        assert result.liquidity == 42
        assert result.tick == -887272
        assert result.tx_hash == raw.tx_hash
        assert result.block_number == raw.block_number
        assert result.log_index == raw.log_index

    def test_addresses_are_checksummed(self, make_swap_event) -> None:
        """Indexed addresses come back in checksum form."""
        result = decode(
            make_swap_event(
                sender="0xe592427a0aece92de3edee1f18e0157c05861564",
                recipient="0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640",
            )
        )

        assert isinstance(result, TradeRecord)
        assert result.sender == "0xE592427A0AEce92De3Edee1F18E0157C05861564"
        assert result.recipient == "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"

    def test_extreme_values(self, make_swap_event) -> None:
        """int256 and uint160 bounds survive decoding."""
        result = decode(make_swap_event(-(2**255), 2**255 - 1, sqrt_price_x96=2**160 - 1))

        assert isinstance(result, TradeRecord)
        assert result.amount0 == -(2**255)
        assert result.amount1 == 2**255 - 1
        assert result.sqrt_price_x96 == 2**160 - 1


class TestDecodeFailures:
    """Malformed logs produce DecodeFailure values, never exceptions."""

    def test_short_data(self, make_swap_event) -> None:
        """159 bytes of data is rejected before any field is read."""
        raw = make_swap_event()
        short = dataclasses.replace(raw, data=raw.data[:-1])
        result = decode(short)

        assert isinstance(result, DecodeFailure)
        assert f"expected {SWAP_DATA_LENGTH}" in result.reason
        assert result.tx_hash == raw.tx_hash

    def test_empty_data(self, make_swap_event) -> None:
        """No data at all."""
        raw = dataclasses.replace(make_swap_event(), data=b"")
        assert isinstance(decode(raw), DecodeFailure)

    def test_long_data(self, make_swap_event) -> None:
        """Trailing bytes are not silently ignored."""
        raw = make_swap_event()
        assert isinstance(decode(dataclasses.replace(raw, data=raw.data + b"\x00" * 32)), DecodeFailure)

    def test_missing_topic(self, make_swap_event) -> None:
        """Two topics instead of three."""
        raw = make_swap_event()
        result = decode(dataclasses.replace(raw, topics=raw.topics[:2]))

        assert isinstance(result, DecodeFailure)
        assert "3 topics" in result.reason

    def test_short_topic(self, make_swap_event) -> None:
        """A topic that is not a full word."""
        raw = make_swap_event()
        topics = (raw.topics[0], raw.topics[1][1:], raw.topics[2])
        result = decode(dataclasses.replace(raw, topics=topics))

        assert isinstance(result, DecodeFailure)
        assert "topic 1" in result.reason

    def test_wrong_event_signature(self, make_swap_event) -> None:
        """Logs for another event are rejected."""
        raw = make_swap_event()
        topics = (b"\x01" * 32, raw.topics[1], raw.topics[2])
        result = decode(dataclasses.replace(raw, topics=topics))

        assert isinstance(result, DecodeFailure)
        assert "signature" in result.reason

    def test_dirty_address_padding(self, make_swap_event) -> None:
        """An address topic with non-zero upper bytes is out of range."""
        raw = make_swap_event()
        dirty = b"\xff" + raw.topics[1][1:]
        result = decode(dataclasses.replace(raw, topics=(raw.topics[0], dirty, raw.topics[2])))

        assert isinstance(result, DecodeFailure)

    def test_tick_out_of_int24_range(self, make_swap_event) -> None:
        """A tick word that does not fit in int24 is rejected."""
        raw = make_swap_event()
        bad_tick = abi_encode(["int256"], [2**30])
        result = decode(dataclasses.replace(raw, data=raw.data[:128] + bad_tick))

        assert isinstance(result, DecodeFailure)
        assert "out of range" in result.reason

    def test_same_sign_amounts(self, make_swap_event) -> None:
        """Both legs flowing the same way is not a swap."""
        result = decode(make_swap_event(10, 10))

        assert isinstance(result, DecodeFailure)
        assert "opposite signs" in result.reason

    def test_failure_str_includes_tx(self) -> None:
        """DecodeFailure renders its reason and transaction."""
        failure = DecodeFailure("data is 0 bytes, expected 160", "0xabc")
        assert str(failure) == "data is 0 bytes, expected 160 (tx=0xabc)"

    def test_garbage_never_raises(self) -> None:
        """Arbitrary byte soup yields a failure value."""
        raw = RawEvent(data=b"\xde\xad" * 80, topics=(b"\x00" * 32,) * 3, tx_hash="0x1")
        assert isinstance(decode(raw), DecodeFailure)
