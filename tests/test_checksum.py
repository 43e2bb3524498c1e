import struct

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from mtf.checksum import (
    StreamChecksum,
    header_checksum,
    stream_checksum,
    stream_checksum_of,
    verify_header_checksum,
)
from mtf.cursor import ByteOrder


def test_header_checksum_is_word_xor() -> None:
    data = struct.pack("<HHH", 0x1234, 0x00FF, 0x1000)
    assert header_checksum(data) == 0x1234 ^ 0x00FF ^ 0x1000
    assert header_checksum(data[::-1], ByteOrder.BIG) == header_checksum(data)
    assert verify_header_checksum(data, 0x1234 ^ 0x00FF ^ 0x1000)


def test_header_checksum_requires_whole_words() -> None:
    with pytest.raises(ValueError):
        header_checksum(b"\x01\x02\x03")


def test_stream_checksum_pads_the_last_word() -> None:
    assert stream_checksum(b"") == 0
    assert stream_checksum(b"\x01\x00\x00\x00\x02") == 0x1 ^ 0x2
    assert stream_checksum(b"\x01\x00\x00\x00\x02", ByteOrder.BIG) == 0x01000000 ^ 0x02000000


@pytest.mark.property
@settings(max_examples=100)
@given(st.binary(min_size=50, max_size=50), st.integers(min_value=0, max_value=49), st.integers(1, 255))
def test_any_single_byte_change_breaks_the_header_checksum(preamble, position, flip) -> None:
    stored = header_checksum(preamble)
    damaged = bytearray(preamble)
    damaged[position] ^= flip
    assert not verify_header_checksum(bytes(damaged), stored)


@pytest.mark.property
@given(st.binary(max_size=512), st.lists(st.integers(min_value=0, max_value=512), max_size=6))
def test_incremental_stream_checksum_ignores_piece_boundaries(payload, cuts) -> None:
    bounds = sorted({0, len(payload), *(min(cut, len(payload)) for cut in cuts)})
    pieces = [payload[start:end] for start, end in zip(bounds, bounds[1:])]
    assert stream_checksum_of(pieces) == stream_checksum(payload)

    accumulator = StreamChecksum(ByteOrder.BIG)
    for piece in pieces:
        accumulator.update(piece)
    assert accumulator.value() == stream_checksum(payload, ByteOrder.BIG)
