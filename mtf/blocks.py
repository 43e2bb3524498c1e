"""Block assembly: common header, descriptor and stream chain of one DBLK."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .config import DecoderConfig, get_decoder_config
from .constants import HEADER_SIZE, SOFT_FILEMARK_UNIT, BlockType
from .cursor import ByteCursor, ByteOrder
from .descriptors import (
    Descriptor,
    OpaqueDescriptor,
    TapeDescriptor,
    decode_descriptor,
    decode_os_specific,
)
from .errors import Issue, IssueKind, MalformedDescriptorError, MTFError, OutOfBoundsError
from .header import CommonBlockHeader, decode_common_header
from .resource_limits import ResourceBudgetExceeded
from .source import ByteSource, SourceLike, as_source
from .streams import ChainEnd, Stream, StreamHeader, decode_streams

logger = logging.getLogger(__name__)


@dataclass
class DecoderContext:
    """Per-volume decoding state carried from one block to the next."""

    config: DecoderConfig = field(default_factory=get_decoder_config)
    byte_order: Optional[ByteOrder] = None
    format_logical_block_size: Optional[int] = None
    soft_filemark_block_size: Optional[int] = None
    latest: Dict[BlockType, "Block"] = field(default_factory=dict)

    @property
    def record_size(self) -> int:
        return self.format_logical_block_size or self.config.default_record_size

    @property
    def soft_filemark_bytes(self) -> Optional[int]:
        if not self.soft_filemark_block_size:
            return None
        return self.soft_filemark_block_size * SOFT_FILEMARK_UNIT

    @property
    def tape(self) -> Optional[TapeDescriptor]:
        block = self.latest.get(BlockType.TAPE)
        if block is None or not isinstance(block.descriptor, TapeDescriptor):
            return None
        return block.descriptor

    def observe(self, block: "Block") -> None:
        if block.abandoned or not block.header.known:
            return
        self.latest[block.block_type] = block
        descriptor = block.descriptor
        if isinstance(descriptor, TapeDescriptor):
            if descriptor.format_logical_block_size:
                self.format_logical_block_size = descriptor.format_logical_block_size
            self.soft_filemark_block_size = descriptor.soft_filemark_block_size or None


@dataclass(frozen=True)
class Block:
    header: CommonBlockHeader
    descriptor: Descriptor
    streams: Tuple[Stream, ...]
    stream_bytes: int
    padding: int
    os_specific_data: Optional[bytes] = None
    issues: Tuple[Issue, ...] = ()
    abandoned: bool = False
    terminator: ChainEnd = ChainEnd.PAD

    @property
    def offset(self) -> int:
        return self.header.offset

    @property
    def block_type(self) -> BlockType:
        return self.header.block_type

    @property
    def tag(self) -> str:
        return self.header.tag

    @property
    def descriptor_size(self) -> int:
        return self.header.offset_to_first_event

    @property
    def size(self) -> int:
        return self.descriptor_size + self.stream_bytes + self.padding

    @property
    def end(self) -> int:
        return self.offset + self.size

    @property
    def truncated(self) -> bool:
        return self.terminator is ChainEnd.TRUNCATED

    @property
    def continues(self) -> bool:
        return self.header.is_continuation

    def find_streams(self, stream_id: str) -> List[Stream]:
        return [stream for stream in self.streams if stream.stream_id == stream_id]

    def summary(self) -> Dict[str, object]:
        return {
            "offset": self.offset,
            "type": self.tag,
            "size": self.size,
            "attributes": sorted(self.header.attribute_names),
            "suspect": self.header.suspect,
            "abandoned": self.abandoned,
            "truncated": self.truncated,
            "streams": [
                {
                    "id": stream.stream_id,
                    "offset": stream.header.offset,
                    "length": stream.length,
                    "continues": stream.continues,
                    "integrity": stream.integrity.value,
                }
                for stream in self.streams
            ],
            "issues": [issue.as_dict() for issue in self.issues],
        }


def decode_block(
    source: ByteSource,
    offset: int,
    context: Optional[DecoderContext] = None,
    *,
    config: Optional[DecoderConfig] = None,
    load: Optional[Callable[[StreamHeader], bool]] = None,
    abandon_malformed: bool = False,
    tolerate_truncation: bool = True,
) -> Block:
    """Decode the block starting at absolute *offset*.

    The block extent is derived from the common header and the generic stream
    headers only. With *abandon_malformed* a :class:`MalformedDescriptorError`
    does not propagate: the block comes back ``abandoned`` with its raw
    descriptor bytes and no streams, still spanning its full extent.
    """

    if context is None:
        context = DecoderContext(config or get_decoder_config())
    config = config or context.config
    cursor = ByteCursor(source, offset)
    header = decode_common_header(
        cursor, strict=config.strict_header_checksums, byte_order=context.byte_order
    )
    if context.byte_order is None:
        context.byte_order = header.byte_order
        logger.debug("byte order %s selected from %s block at %d", header.byte_order.name, header.tag, offset)

    issues: List[Issue] = []
    if header.suspect:
        issues.append(
            Issue(
                IssueKind.HEADER_CHECKSUM,
                offset,
                f"{header.tag} header checksum 0x{header.checksum:04X} != computed 0x{header.computed_checksum:04X}",
            )
        )

    config.budget.ensure_descriptor(header.offset_to_first_event)
    body = cursor.read(header.offset_to_first_event - HEADER_SIZE)

    abandoned = False
    os_specific: Optional[bytes] = None
    try:
        descriptor = decode_descriptor(header, body, context=context, config=config)
        os_specific = decode_os_specific(header, body)
    except MalformedDescriptorError as exc:
        if not abandon_malformed:
            raise
        logger.warning("abandoning %s block at %d: %s", header.tag, offset, exc)
        issues.append(Issue(IssueKind.MALFORMED_DESCRIPTOR, exc.offset, str(exc), exc))
        descriptor = OpaqueDescriptor(header.tag, body)
        abandoned = True

    record_size = context.record_size
    if isinstance(descriptor, TapeDescriptor) and descriptor.format_logical_block_size:
        record_size = descriptor.format_logical_block_size
    chain = decode_streams(
        source,
        header.descriptor_end,
        byte_order=header.byte_order,
        config=config,
        record_size=record_size,
        load=None if abandoned else load,
        verify=not abandoned,
        tolerate_truncation=tolerate_truncation,
    )
    issues.extend(chain.issues)
    block = Block(
        header=header,
        descriptor=descriptor,
        streams=() if abandoned else tuple(chain.streams),
        stream_bytes=chain.stream_bytes,
        padding=chain.padding,
        os_specific_data=os_specific,
        issues=tuple(issues),
        abandoned=abandoned,
        terminator=chain.terminator,
    )
    context.observe(block)
    return block


class BlockReader:
    """Iterate the blocks of one volume from *start* until the source ends.

    In lenient configurations malformed descriptors abandon their block and
    scanning continues at its declared end; a structural failure or a
    truncated header stops iteration and is recorded in :attr:`issues`.
    Strict configurations re-raise instead.
    """

    def __init__(
        self,
        source: SourceLike,
        *,
        config: Optional[DecoderConfig] = None,
        start: int = 0,
        context: Optional[DecoderContext] = None,
        load: Optional[Callable[[StreamHeader], bool]] = None,
    ) -> None:
        self.source = as_source(source)
        self.config = config or get_decoder_config()
        self.context = context or DecoderContext(self.config)
        self.position = start
        self.load = load
        self.issues: List[Issue] = []
        self.blocks_read = 0

    @property
    def strict(self) -> bool:
        return self.config.strict_descriptors

    def __iter__(self) -> Iterator[Block]:
        while True:
            size = self.source.size
            if size is not None and self.position >= size:
                return
            try:
                block = decode_block(
                    self.source,
                    self.position,
                    self.context,
                    config=self.config,
                    load=self.load,
                    abandon_malformed=not self.strict,
                )
            except OutOfBoundsError as exc:
                if exc.available == 0 and exc.offset == self.position and self.source.size == self.position:
                    return
                if self.strict:
                    raise
                self._stop(IssueKind.TRUNCATED, exc)
                return
            except (MTFError, ResourceBudgetExceeded) as exc:
                if self.strict:
                    raise
                self._stop(IssueKind.STRUCTURAL, exc)
                return
            self.blocks_read += 1
            self.position = block.end
            yield block
            if block.truncated:
                return

    def _stop(self, kind: IssueKind, exc: Exception) -> None:
        logger.warning("stopping scan at offset %d: %s", self.position, exc)
        self.issues.append(Issue(kind, self.position, str(exc), exc))


def iter_blocks(source: SourceLike, *, config: Optional[DecoderConfig] = None, start: int = 0) -> Iterator[Block]:
    return iter(BlockReader(source, config=config, start=start))


__all__ = ["Block", "BlockReader", "DecoderContext", "decode_block", "iter_blocks"]
