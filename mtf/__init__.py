"""Public API for the Microsoft Tape Format decoder and page provider."""

from __future__ import annotations

from .blocks import Block, BlockReader, DecoderContext, decode_block, iter_blocks
from .config import DecoderConfig, available_modes, get_decoder_config, load_config
from .cursor import ByteCursor, ByteOrder
from .descriptors import Descriptor, OpaqueDescriptor, decode_descriptor
from .errors import (
    ChecksumMismatchError,
    Issue,
    IssueKind,
    MalformedDescriptorError,
    MTFError,
    NeedsNextVolumeError,
    OutOfBoundsError,
    StructuralError,
    VolumeMismatchError,
)
from .header import CommonBlockHeader, decode_common_header
from .image import MTFImage
from .index import IndexCache, IndexSnapshot, LogicalStreamIndex, PhysicalChunk
from .page_provider import PageProvider, ReadResult, ReadStatus, VolumeRequest
from .pages import PagedView, StreamFile
from .source import BytesSource, FileSource, SequentialSource, as_source, open_source
from .streams import Stream, StreamHeader, decode_streams

__all__ = [
    "Block",
    "BlockReader",
    "DecoderContext",
    "decode_block",
    "iter_blocks",
    "DecoderConfig",
    "available_modes",
    "get_decoder_config",
    "load_config",
    "ByteCursor",
    "ByteOrder",
    "Descriptor",
    "OpaqueDescriptor",
    "decode_descriptor",
    "ChecksumMismatchError",
    "Issue",
    "IssueKind",
    "MalformedDescriptorError",
    "MTFError",
    "NeedsNextVolumeError",
    "OutOfBoundsError",
    "StructuralError",
    "VolumeMismatchError",
    "CommonBlockHeader",
    "decode_common_header",
    "MTFImage",
    "IndexCache",
    "IndexSnapshot",
    "LogicalStreamIndex",
    "PhysicalChunk",
    "PageProvider",
    "ReadResult",
    "ReadStatus",
    "VolumeRequest",
    "PagedView",
    "StreamFile",
    "BytesSource",
    "FileSource",
    "SequentialSource",
    "as_source",
    "open_source",
    "Stream",
    "StreamHeader",
    "decode_streams",
]
