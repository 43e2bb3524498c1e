import struct

import pytest

from mtf.config import get_decoder_config
from mtf.constants import FileSystemAttributes, StreamAttributes
from mtf.cursor import ByteOrder
from mtf.errors import ChecksumMismatchError, IssueKind, OutOfBoundsError
from mtf.source import BytesSource
from mtf.streams import ChainEnd, StreamIntegrity, align, decode_streams, parse_stream_header

from tests.imagebuilder import ImageBuilder, S, pattern


def _chain(builder: ImageBuilder, **kwargs):
    return decode_streams(BytesSource(builder.build()), 0, **kwargs)


def test_align() -> None:
    assert align(0, 4) == 0
    assert align(5, 4) == 8
    assert align(8, 4) == 8
    assert align(7, 1) == 7


def test_parse_stream_header_fields() -> None:
    raw = struct.pack("<4sHHQHH", b"STAN", 3, 1, 1234, 0, 0)
    raw += struct.pack("<H", 0)
    header = parse_stream_header(raw, 100, ByteOrder.LITTLE)
    assert header.stream_id == "STAN"
    assert header.length == 1234
    expected = FileSystemAttributes.MODIFIED_BY_READ | FileSystemAttributes.CONTAINS_SECURITY
    assert header.file_system_attributes == expected
    assert header.media_attributes is StreamAttributes.CONTINUE
    assert header.continues
    assert not header.checksummed
    assert header.data_offset == 122
    assert header.end == align(122 + 1234, 4)
    assert header.suspect


def test_chain_walks_until_spad() -> None:
    builder = ImageBuilder()
    builder.stream(S("PNAM", b"C:\\data"))
    builder.stream(S("STAN", pattern(10)))
    builder.spad()
    builder.eset()
    chain = _chain(builder)
    assert [stream.stream_id for stream in chain.streams] == ["PNAM", "STAN", "SPAD"]
    assert chain.terminator is ChainEnd.PAD
    # payloads are padded to 4 bytes from the start of the source
    assert chain.streams[1].header.offset == align(22 + 7, 4)
    assert chain.end == builder.build().index(b"ESET")
    assert chain.padding == 0
    assert all(stream.payload is None for stream in chain.streams)


def test_chain_stops_at_next_block_tag() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", b"abcd"))
    eset = builder.eset()
    chain = _chain(builder)
    assert chain.terminator is ChainEnd.BLOCK_TAG
    assert chain.end == eset


def test_nul_id_ends_chain_and_skips_fill() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", b"abcd"))
    fill_start = builder.raw(bytes(24))
    eset = builder.eset()
    chain = _chain(builder)
    assert chain.terminator is ChainEnd.NUL
    assert chain.end == fill_start
    assert chain.end + chain.padding == eset


def test_nul_fill_runs_to_record_boundary() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", b"abcd"))
    builder.raw(bytes(512 - builder.offset))
    builder.eset()
    chain = _chain(builder, record_size=512)
    assert chain.end + chain.padding == 512


def test_spad_padding_reaches_record_boundary() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", b"abcd"))
    builder.stream(S("SPAD", b""))
    builder.raw(bytes(64 - builder.offset))
    chain = _chain(builder, record_size=64)
    assert chain.terminator is ChainEnd.PAD
    assert chain.end + chain.padding == 64


def test_checksummed_payload_is_verified() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", pattern(1001), checksummed=True))
    builder.spad()
    chain = _chain(builder)
    stan, csum = chain.streams[:2]
    assert csum.stream_id == "CSUM"
    assert stan.integrity is StreamIntegrity.VERIFIED
    assert stan.stored_checksum == stan.computed_checksum
    assert not chain.issues


def test_checksum_mismatch_is_an_issue_in_lenient_mode(caplog) -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", pattern(64), checksummed=True, csum=0xDEADBEEF))
    builder.spad()
    chain = _chain(builder)
    stan = chain.streams[0]
    assert stan.integrity is StreamIntegrity.MISMATCH
    assert [issue.kind for issue in stan.issues] == [IssueKind.STREAM_CHECKSUM]
    assert chain.issues == list(stan.issues)
    assert "stream checksum mismatch" in caplog.text


def test_checksum_mismatch_raises_in_strict_mode() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", pattern(64), checksummed=True, csum=1))
    builder.spad()
    with pytest.raises(ChecksumMismatchError):
        _chain(builder, config=get_decoder_config("strict"))


def test_missing_csum_stream() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", pattern(16), checksummed=True, omit_csum=True))
    builder.spad()
    chain = _chain(builder)
    assert chain.streams[0].integrity is StreamIntegrity.MISSING
    assert chain.issues[0].kind is IssueKind.MISSING_STREAM_CHECKSUM


def test_salvage_mode_skips_verification() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", pattern(64), checksummed=True, csum=1))
    builder.spad()
    chain = _chain(builder, config=get_decoder_config("salvage"))
    assert chain.streams[0].integrity is StreamIntegrity.UNCHECKED
    assert not chain.issues


def test_loaded_payloads_are_checksummed_too() -> None:
    payload = pattern(333)
    builder = ImageBuilder()
    builder.stream(S("STAN", payload, checksummed=True))
    builder.spad()
    chain = _chain(builder, load=lambda header: header.stream_id == "STAN")
    assert chain.streams[0].payload == payload
    assert chain.streams[0].integrity is StreamIntegrity.VERIFIED


def test_suspect_stream_header() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", b"abcd", corrupt_header=True))
    builder.spad()
    chain = _chain(builder)
    assert chain.streams[0].header.suspect
    assert chain.issues[0].kind is IssueKind.STREAM_HEADER_CHECKSUM
    with pytest.raises(ChecksumMismatchError):
        _chain(builder, config=get_decoder_config("strict"))


def test_truncated_payload() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", pattern(1000)))
    data = builder.build()[: 22 + 600]
    chain = decode_streams(BytesSource(data), 0)
    stan = chain.streams[0]
    assert stan.truncated
    assert stan.available == 600
    assert chain.terminator is ChainEnd.TRUNCATED
    assert chain.end == len(data)
    assert chain.issues[-1].kind is IssueKind.TRUNCATED
    with pytest.raises(OutOfBoundsError):
        decode_streams(BytesSource(data), 0, tolerate_truncation=False)


def test_truncated_stream_header() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", b"abcd"))
    data = builder.build() + b"PNAM\x00\x00"
    chain = decode_streams(BytesSource(data), 0)
    assert chain.terminator is ChainEnd.TRUNCATED
    assert chain.end == len(data)


def test_end_of_source_ends_chain() -> None:
    builder = ImageBuilder()
    builder.stream(S("STAN", b"abcd"))
    chain = _chain(builder)
    assert chain.terminator is ChainEnd.END_OF_SOURCE
    assert chain.end == builder.offset


def test_big_endian_stream_ids() -> None:
    builder = ImageBuilder(byte_order=ByteOrder.BIG)
    builder.stream(S("STAN", pattern(40), checksummed=True))
    builder.spad()
    chain = _chain(builder, byte_order=ByteOrder.BIG)
    assert [stream.stream_id for stream in chain.streams] == ["STAN", "CSUM", "SPAD"]
    assert chain.streams[0].integrity is StreamIntegrity.VERIFIED
    assert not chain.streams[0].header.suspect
