"""High level entry point tying sources, block scanning and page providers together."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional, Tuple

from .blocks import Block, BlockReader, DecoderContext, decode_block
from .config import DecoderConfig, get_decoder_config
from .descriptors import TapeDescriptor
from .errors import MTFError
from .index import IndexCache
from .page_provider import PageProvider
from .source import ByteSource, SourceLike, as_source, open_source
from .streams import Stream


class MTFImage:
    """One tape volume opened for inspection."""

    def __init__(self, source: SourceLike, config: Optional[DecoderConfig] = None) -> None:
        self.source: ByteSource = as_source(source)
        self.config = config or get_decoder_config()
        self._tape: Optional[TapeDescriptor] = None
        self._tape_checked = False

    @classmethod
    def open(cls, path: Path, config: Optional[DecoderConfig] = None, *, use_mmap: bool = True) -> "MTFImage":
        return cls(open_source(path, use_mmap=use_mmap), config)

    def close(self) -> None:
        self.source.close()

    def __enter__(self) -> "MTFImage":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def reader(self, *, start: int = 0) -> BlockReader:
        return BlockReader(self.source, config=self.config, start=start)

    def blocks(self, *, start: int = 0) -> Iterator[Block]:
        return iter(self.reader(start=start))

    def find_streams(self, stream_id: str) -> Iterator[Tuple[Block, Stream]]:
        for block in self.blocks():
            for stream in block.find_streams(stream_id):
                yield block, stream

    @property
    def tape(self) -> Optional[TapeDescriptor]:
        """Descriptor of the TAPE block opening the volume, if there is one."""

        if not self._tape_checked:
            self._tape_checked = True
            try:
                block = decode_block(self.source, 0, DecoderContext(self.config), config=self.config)
            except MTFError:
                return None
            if isinstance(block.descriptor, TapeDescriptor):
                self._tape = block.descriptor
        return self._tape

    def provider(
        self,
        stream_id: str,
        block: Optional[Block] = None,
        *,
        cache: Optional[IndexCache] = None,
    ) -> PageProvider:
        """Page provider for *stream_id*, starting at *block* when given."""

        start = block.offset if block is not None else 0
        return PageProvider(self.source, stream_id, start=start, config=self.config, cache=cache)


__all__ = ["MTFImage"]
