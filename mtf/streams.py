"""Stream header parsing and the per-block stream chain walk."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .checksum import StreamChecksum, header_checksum, stream_checksum
from .config import DecoderConfig, get_decoder_config
from .constants import (
    CHECKSUM_PAYLOAD_SIZE,
    KNOWN_BLOCK_TAGS,
    NUL_STREAM_ID,
    STREAM_ALIGNMENT,
    STREAM_CHECKSUM,
    STREAM_HEADER_CHECKSUM_OFFSET,
    STREAM_HEADER_SIZE,
    STREAM_PAD,
    FileSystemAttributes,
    StreamAttributes,
)
from .cursor import ByteOrder
from .errors import ChecksumMismatchError, Issue, IssueKind, OutOfBoundsError
from .source import ByteSource

logger = logging.getLogger(__name__)

READ_CHUNK = 1 << 20

_STREAM_HEADER_STRUCTS = {order: struct.Struct(order.value + "4sHHQHHH") for order in ByteOrder}
_WORD32 = {order: struct.Struct(order.value + "I") for order in ByteOrder}


def align(offset: int, boundary: int) -> int:
    """Round *offset* up to the next multiple of *boundary*."""

    if boundary <= 1:
        return offset
    return -(-offset // boundary) * boundary


class StreamIntegrity(str, Enum):
    UNCHECKED = "unchecked"
    VERIFIED = "verified"
    MISMATCH = "mismatch"
    MISSING = "missing"


class ChainEnd(str, Enum):
    """Why a stream chain stopped."""

    PAD = "pad"
    BLOCK_TAG = "block-tag"
    NUL = "nul"
    END_OF_SOURCE = "end-of-source"
    TRUNCATED = "truncated"


@dataclass(frozen=True)
class StreamHeader:
    stream_id: str
    file_system_attributes: FileSystemAttributes
    media_attributes: StreamAttributes
    length: int
    encryption_algorithm: int
    compression_algorithm: int
    checksum: int
    computed_checksum: int
    offset: int

    @property
    def suspect(self) -> bool:
        return self.checksum != self.computed_checksum

    @property
    def continues(self) -> bool:
        return bool(self.media_attributes & StreamAttributes.CONTINUE)

    @property
    def checksummed(self) -> bool:
        return bool(self.media_attributes & StreamAttributes.CHECKSUMED)

    @property
    def data_offset(self) -> int:
        return self.offset + STREAM_HEADER_SIZE

    @property
    def end(self) -> int:
        """Offset just past the payload and its alignment padding."""

        return align(self.data_offset + self.length, STREAM_ALIGNMENT)


@dataclass(frozen=True)
class Stream:
    header: StreamHeader
    available: int
    payload: Optional[bytes] = None
    integrity: StreamIntegrity = StreamIntegrity.UNCHECKED
    stored_checksum: Optional[int] = None
    computed_checksum: Optional[int] = None
    issues: Tuple[Issue, ...] = ()

    @property
    def stream_id(self) -> str:
        return self.header.stream_id

    @property
    def length(self) -> int:
        return self.header.length

    @property
    def data_offset(self) -> int:
        return self.header.data_offset

    @property
    def continues(self) -> bool:
        return self.header.continues

    @property
    def truncated(self) -> bool:
        return self.available < self.header.length

    @property
    def end(self) -> int:
        return self.header.end


@dataclass
class StreamChain:
    """Result of walking the streams of one block."""

    start: int
    streams: List[Stream] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)
    end: int = 0
    padding: int = 0
    terminator: ChainEnd = ChainEnd.END_OF_SOURCE

    @property
    def stream_bytes(self) -> int:
        return self.end - self.start

    @property
    def truncated(self) -> bool:
        return self.terminator is ChainEnd.TRUNCATED


def parse_stream_header(raw: bytes, offset: int, byte_order: ByteOrder) -> StreamHeader:
    if len(raw) != STREAM_HEADER_SIZE:
        raise OutOfBoundsError(
            f"stream header at {offset} needs {STREAM_HEADER_SIZE} bytes, got {len(raw)}",
            offset=offset,
            requested=STREAM_HEADER_SIZE,
            available=len(raw),
        )
    (raw_id, fs_attributes, media_attributes, length, encryption, compression, checksum) = (
        _STREAM_HEADER_STRUCTS[byte_order].unpack(raw)
    )
    return StreamHeader(
        stream_id=_stream_id(raw_id, byte_order),
        file_system_attributes=FileSystemAttributes(fs_attributes),
        media_attributes=StreamAttributes(media_attributes),
        length=length,
        encryption_algorithm=encryption,
        compression_algorithm=compression,
        checksum=checksum,
        computed_checksum=header_checksum(raw[:STREAM_HEADER_CHECKSUM_OFFSET], byte_order),
        offset=offset,
    )


def _stream_id(raw_id: bytes, byte_order: ByteOrder) -> str:
    if byte_order is ByteOrder.BIG:
        raw_id = raw_id[::-1]
    return raw_id.decode("latin-1")


def _read_payload(source: ByteSource, offset: int, length: int) -> bytes:
    pieces = []
    position = offset
    remaining = length
    while remaining:
        blob = source.read_at(position, min(remaining, READ_CHUNK))
        if not blob:
            break
        pieces.append(blob)
        position += len(blob)
        remaining -= len(blob)
    return b"".join(pieces)


def _drain(
    source: ByteSource, offset: int, length: int, accumulator: Optional[StreamChecksum] = None
) -> int:
    """Read a payload piecewise without keeping it; returns the bytes actually present."""

    position = offset
    remaining = length
    while remaining:
        blob = source.read_at(position, min(remaining, READ_CHUNK))
        if not blob:
            break
        if accumulator is not None:
            accumulator.update(blob)
        position += len(blob)
        remaining -= len(blob)
    return position - offset


def _available(source: ByteSource, offset: int, length: int) -> int:
    size = source.size
    if size is None:
        return length
    return max(0, min(length, size - offset))


def _skip_zero_fill(source: ByteSource, position: int, record_size: int) -> int:
    """Return the offset just past the NUL fill starting at *position*."""

    if record_size > STREAM_ALIGNMENT:
        boundary = align(position + 1, record_size)
        size = source.size
        return boundary if size is None else min(boundary, size)
    while True:
        word = source.read_at(position, STREAM_ALIGNMENT)
        if word != NUL_STREAM_ID:
            return position if word else position + len(word)
        position += STREAM_ALIGNMENT


def decode_streams(
    source: ByteSource,
    start: int,
    *,
    byte_order: ByteOrder = ByteOrder.LITTLE,
    config: Optional[DecoderConfig] = None,
    record_size: int = 1,
    load: Optional[Callable[[StreamHeader], bool]] = None,
    verify: bool = True,
    tolerate_truncation: bool = True,
) -> StreamChain:
    """Walk the stream chain of a block starting at absolute offset *start*.

    Payloads are only held in memory when *load* accepts their header. A
    payload with ``STREAM_CHECKSUMED`` is checked against the ``CSUM`` stream
    that follows it; mismatches become issues unless the configuration is
    strict about stream checksums.
    """

    config = config or get_decoder_config()
    budget = config.budget
    verify = verify and config.verify_stream_checksums
    chain = StreamChain(start=start, end=start)
    position = start
    pending: Optional[int] = None  # index of a stream awaiting its CSUM

    def settle_missing() -> None:
        nonlocal pending
        if pending is None:
            return
        stream = chain.streams[pending]
        issue = Issue(
            IssueKind.MISSING_STREAM_CHECKSUM,
            stream.header.offset,
            f"{stream.stream_id} stream at {stream.header.offset} is flagged checksummed but has no CSUM stream",
        )
        chain.streams[pending] = replace(
            stream, integrity=StreamIntegrity.MISSING, issues=stream.issues + (issue,)
        )
        chain.issues.append(issue)
        pending = None

    while True:
        size = source.size
        if size is not None and position >= size:
            chain.terminator = ChainEnd.END_OF_SOURCE
            break
        raw = source.read_at(position, STREAM_HEADER_SIZE)
        if not raw:
            chain.terminator = ChainEnd.END_OF_SOURCE
            break
        if raw[:4] == NUL_STREAM_ID:
            chain.terminator = ChainEnd.NUL
            break
        if _stream_tag(raw[:4], byte_order) in KNOWN_BLOCK_TAGS:
            chain.terminator = ChainEnd.BLOCK_TAG
            break
        if len(raw) < STREAM_HEADER_SIZE:
            if not tolerate_truncation:
                raise OutOfBoundsError(
                    f"stream header at {position} cut short by end of source",
                    offset=position,
                    requested=STREAM_HEADER_SIZE,
                    available=len(raw),
                )
            chain.issues.append(
                Issue(IssueKind.TRUNCATED, position, f"stream header at {position} cut short by end of source")
            )
            position += len(raw)
            chain.terminator = ChainEnd.TRUNCATED
            break

        header = parse_stream_header(raw, position, byte_order)
        budget.ensure_stream_count(len(chain.streams) + 1)
        issues: List[Issue] = []
        if header.suspect:
            if config.strict_header_checksums:
                raise ChecksumMismatchError(
                    "stream header", stored=header.checksum, computed=header.computed_checksum, offset=position
                )
            logger.warning("suspect %s stream header at offset %d", header.stream_id, position)
            issues.append(
                Issue(
                    IssueKind.STREAM_HEADER_CHECKSUM,
                    position,
                    f"{header.stream_id} stream header checksum 0x{header.checksum:04X} "
                    f"!= computed 0x{header.computed_checksum:04X}",
                )
            )
        budget.ensure_stream_length(header.length)

        if header.stream_id == STREAM_CHECKSUM and header.length == CHECKSUM_PAYLOAD_SIZE and pending is not None:
            stored_raw = source.read_at(header.data_offset, CHECKSUM_PAYLOAD_SIZE)
            stream = Stream(header, available=len(stored_raw), payload=stored_raw, issues=tuple(issues))
            if len(stored_raw) == CHECKSUM_PAYLOAD_SIZE:
                (stored,) = _WORD32[byte_order].unpack(stored_raw)
                _settle_checksum(chain, pending, stored, config)
                pending = None
        else:
            settle_missing()
            stream = _decode_payload(source, header, byte_order, config, load, verify, issues)
            if verify and header.checksummed and not stream.truncated:
                pending = len(chain.streams)

        chain.issues.extend(issues)
        chain.streams.append(stream)
        if stream.truncated:
            if not tolerate_truncation:
                raise OutOfBoundsError(
                    f"{header.stream_id} payload at {header.data_offset} cut short by end of source",
                    offset=header.data_offset,
                    requested=header.length,
                    available=stream.available,
                )
            message = (
                f"{header.stream_id} payload at {header.data_offset} holds {stream.available} "
                f"of {header.length} bytes"
            )
            logger.warning("truncated stream: %s", message)
            chain.issues.append(Issue(IssueKind.TRUNCATED, header.data_offset, message))
            position = header.data_offset + stream.available
            chain.terminator = ChainEnd.TRUNCATED
            break

        position = header.end
        size = source.size
        if size is not None and position > size:
            position = size
        if header.stream_id == STREAM_PAD:
            chain.terminator = ChainEnd.PAD
            break

    settle_missing()
    chain.end = position
    if chain.terminator is ChainEnd.PAD:
        boundary = align(position, record_size)
        size = source.size
        if size is not None:
            boundary = min(boundary, max(size, position))
        chain.padding = boundary - position
    elif chain.terminator is ChainEnd.NUL:
        chain.padding = _skip_zero_fill(source, position, record_size) - position
    return chain


def _stream_tag(raw_id: bytes, byte_order: ByteOrder) -> bytes:
    return raw_id[::-1] if byte_order is ByteOrder.BIG else raw_id


def _decode_payload(
    source: ByteSource,
    header: StreamHeader,
    byte_order: ByteOrder,
    config: DecoderConfig,
    load: Optional[Callable[[StreamHeader], bool]],
    verify: bool,
    issues: List[Issue],
) -> Stream:
    payload: Optional[bytes] = None
    computed: Optional[int] = None
    if load is not None and load(header):
        config.budget.ensure_loaded_payload(header.length)
        payload = _read_payload(source, header.data_offset, header.length)
        available = len(payload)
        if verify and header.checksummed and available == header.length:
            computed = stream_checksum(payload, byte_order)
    elif verify and header.checksummed:
        accumulator = StreamChecksum(byte_order)
        available = _drain(source, header.data_offset, header.length, accumulator)
        if available == header.length:
            computed = accumulator.value()
    elif source.seekable:
        available = _available(source, header.data_offset, header.length)
    else:
        # forward-only sources: consume the payload to learn whether it is complete
        available = _drain(source, header.data_offset, header.length)
    return Stream(header, available=available, payload=payload, computed_checksum=computed, issues=tuple(issues))


def _settle_checksum(chain: StreamChain, index: int, stored: int, config: DecoderConfig) -> None:
    stream = chain.streams[index]
    computed = stream.computed_checksum
    if computed == stored:
        chain.streams[index] = replace(stream, integrity=StreamIntegrity.VERIFIED, stored_checksum=stored)
        return
    if config.strict_stream_checksums:
        raise ChecksumMismatchError(
            "stream", stored=stored, computed=computed or 0, offset=stream.data_offset
        )
    issue = Issue(
        IssueKind.STREAM_CHECKSUM,
        stream.data_offset,
        f"{stream.stream_id} payload at {stream.data_offset}: CSUM 0x{stored:08X} "
        f"!= computed 0x{(computed or 0):08X}",
    )
    logger.warning("stream checksum mismatch: %s", issue.message)
    chain.streams[index] = replace(
        stream,
        integrity=StreamIntegrity.MISMATCH,
        stored_checksum=stored,
        issues=stream.issues + (issue,),
    )
    chain.issues.append(issue)


__all__ = [
    "ChainEnd",
    "Stream",
    "StreamChain",
    "StreamHeader",
    "StreamIntegrity",
    "align",
    "decode_streams",
    "parse_stream_header",
]
