"""Bounds-checked primitive decoder over a :class:`~mtf.source.ByteSource`."""

from __future__ import annotations

import struct
from enum import Enum
from typing import Dict, Optional

from .constants import KNOWN_BLOCK_TAGS, StringType
from .errors import MalformedDescriptorError, OutOfBoundsError
from .source import ByteSource


class ByteOrder(str, Enum):
    LITTLE = "<"
    BIG = ">"


def detect_byte_order(tag: bytes) -> Optional[ByteOrder]:
    """Infer the image byte order from the raw bytes of a block type tag.

    MTF stores the tag as a 32-bit integer, so a big-endian writer produces
    the reversed character sequence (``EPAT`` for ``TAPE``).
    """

    if tag in KNOWN_BLOCK_TAGS:
        return ByteOrder.LITTLE
    if tag[::-1] in KNOWN_BLOCK_TAGS:
        return ByteOrder.BIG
    return None


_FORMATS = {"u8": "B", "i8": "b", "u16": "H", "u32": "I", "u64": "Q"}
_STRUCTS: Dict[ByteOrder, Dict[str, struct.Struct]] = {
    order: {name: struct.Struct(order.value + code) for name, code in _FORMATS.items()}
    for order in ByteOrder
}


class ByteCursor:
    """Sequential reader with absolute seeks, limited to ``[0, limit)``.

    ``limit`` is an absolute offset in the source; when omitted the end of
    the source bounds the cursor.
    """

    def __init__(
        self,
        source: ByteSource,
        position: int = 0,
        *,
        limit: Optional[int] = None,
        byte_order: ByteOrder = ByteOrder.LITTLE,
    ) -> None:
        if position < 0:
            raise ValueError("position must be non-negative")
        self._source = source
        self._position = position
        self._limit = limit
        self.byte_order = byte_order

    @property
    def source(self) -> ByteSource:
        return self._source

    @property
    def limit(self) -> Optional[int]:
        if self._limit is None:
            return self._source.size
        if self._source.size is None:
            return self._limit
        return min(self._limit, self._source.size)

    def tell(self) -> int:
        return self._position

    def remaining(self) -> Optional[int]:
        limit = self.limit
        if limit is None:
            return None
        return max(0, limit - self._position)

    def seek(self, position: int) -> None:
        if position < 0:
            raise OutOfBoundsError(f"cannot seek to negative offset {position}", offset=position)
        if self._limit is not None and position > self._limit:
            raise OutOfBoundsError(
                f"seek to {position} crosses limit {self._limit}", offset=position, available=self._limit
            )
        self._position = position

    def skip(self, count: int) -> None:
        self.seek(self._position + count)

    def sub(self, limit: int) -> "ByteCursor":
        """Return a cursor at the current position that may not pass *limit*."""

        if self._limit is not None and limit > self._limit:
            raise OutOfBoundsError(
                f"nested limit {limit} crosses enclosing limit {self._limit}",
                offset=self._position,
                requested=limit - self._position,
                available=self._limit - self._position,
            )
        return ByteCursor(self._source, self._position, limit=limit, byte_order=self.byte_order)

    def read(self, count: int) -> bytes:
        if count < 0:
            raise ValueError("count must be non-negative")
        if self._limit is not None and self._position + count > self._limit:
            raise OutOfBoundsError(
                f"read of {count} bytes at {self._position} crosses limit {self._limit}",
                offset=self._position,
                requested=count,
                available=max(0, self._limit - self._position),
            )
        data = self._source.read_at(self._position, count)
        if len(data) != count:
            raise OutOfBoundsError(
                f"read of {count} bytes at {self._position} crosses end of source",
                offset=self._position,
                requested=count,
                available=len(data),
            )
        self._position += count
        return data

    def _unpack(self, name: str) -> int:
        fmt = _STRUCTS[self.byte_order][name]
        (value,) = fmt.unpack(self.read(fmt.size))
        return value

    def u8(self) -> int:
        return self._unpack("u8")

    def i8(self) -> int:
        return self._unpack("i8")

    def u16(self) -> int:
        return self._unpack("u16")

    def u32(self) -> int:
        return self._unpack("u32")

    def u64(self) -> int:
        return self._unpack("u64")

    def read_text(
        self,
        offset: int,
        size: int,
        string_type: StringType,
        *,
        ansi_encoding: str = "latin-1",
    ) -> str:
        """Decode a length-prefixed string at absolute *offset* without moving."""

        if string_type is StringType.NO_STRINGS:
            raise MalformedDescriptorError(
                f"string of {size} bytes at {offset} but block declares no strings", offset=offset
            )
        if string_type is StringType.UNICODE and size % 2:
            raise MalformedDescriptorError(
                f"unicode string at {offset} has odd length {size}", offset=offset
            )
        saved = self._position
        try:
            self.seek(offset)
            raw = self.read(size)
        finally:
            self._position = saved
        if string_type is StringType.UNICODE:
            codec = "utf-16-le" if self.byte_order is ByteOrder.LITTLE else "utf-16-be"
        else:
            codec = ansi_encoding
        try:
            text = raw.decode(codec)
        except UnicodeDecodeError as exc:
            raise MalformedDescriptorError(
                f"string at {offset} is not valid {codec}", offset=offset
            ) from exc
        return text.rstrip("\x00")


__all__ = ["ByteCursor", "ByteOrder", "detect_byte_order"]
