"""Byte sources the decoder reads tape images from."""

from __future__ import annotations

import io
import mmap
import os
from pathlib import Path
from typing import BinaryIO, Optional, Protocol, Union, runtime_checkable

DEFAULT_SKIP_CHUNK = 262_144  # 256 KiB
DEFAULT_LOOKBACK = 4096


@runtime_checkable
class ByteSource(Protocol):
    """Random (or forward-only) access to the bytes of one tape volume."""

    @property
    def size(self) -> Optional[int]:
        ...

    @property
    def seekable(self) -> bool:
        ...

    def read_at(self, offset: int, size: int) -> bytes:
        ...

    def close(self) -> None:
        ...


class BytesSource:
    """Source over an in-memory buffer (``bytes``, ``bytearray``, ``mmap``...)."""

    def __init__(self, data: Union[bytes, bytearray, memoryview, mmap.mmap], *, owner: Optional[object] = None) -> None:
        self._data = data
        self._owner = owner

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def seekable(self) -> bool:
        return True

    def read_at(self, offset: int, size: int) -> bytes:
        if offset < 0 or size < 0:
            raise ValueError("offset and size must be non-negative")
        return bytes(self._data[offset : offset + size])

    def close(self) -> None:
        if isinstance(self._data, mmap.mmap):
            self._data.close()
        if self._owner is not None and hasattr(self._owner, "close"):
            self._owner.close()


class FileSource:
    """Source over a seekable binary file handle."""

    def __init__(self, handle: BinaryIO, *, close_handle: bool = False) -> None:
        if not handle.seekable():
            raise io.UnsupportedOperation("FileSource requires a seekable handle; use SequentialSource")
        self._handle = handle
        self._close_handle = close_handle
        handle.seek(0, os.SEEK_END)
        self._size = handle.tell()

    @property
    def size(self) -> int:
        return self._size

    @property
    def seekable(self) -> bool:
        return True

    def read_at(self, offset: int, size: int) -> bytes:
        if offset < 0 or size < 0:
            raise ValueError("offset and size must be non-negative")
        self._handle.seek(offset)
        return self._handle.read(size)

    def close(self) -> None:
        if self._close_handle:
            self._handle.close()


class SequentialSource:
    """Forward-only source, e.g. a pipe or a tape device read in order.

    Gaps between reads are consumed and dropped. The last ``lookback`` bytes
    stay readable so a decoder can peek at a header before handing the
    offset to the next block; anything older raises
    :class:`io.UnsupportedOperation`.
    """

    def __init__(
        self,
        handle: BinaryIO,
        *,
        skip_chunk: int = DEFAULT_SKIP_CHUNK,
        lookback: int = DEFAULT_LOOKBACK,
    ) -> None:
        if skip_chunk <= 0:
            raise ValueError("skip_chunk must be positive")
        if lookback < 0:
            raise ValueError("lookback must be non-negative")
        self._handle = handle
        self._position = 0
        self._skip_chunk = skip_chunk
        self._lookback = lookback
        self._tail = b""
        self._exhausted = False

    @property
    def size(self) -> Optional[int]:
        return self._position if self._exhausted else None

    @property
    def seekable(self) -> bool:
        return False

    @property
    def position(self) -> int:
        return self._position

    def _pull(self, count: int) -> bytes:
        blob = self._handle.read(count)
        if not blob:
            self._exhausted = True
            return b""
        self._position += len(blob)
        if self._lookback:
            self._tail = (self._tail + blob)[-self._lookback :]
        return blob

    def read_at(self, offset: int, size: int) -> bytes:
        if offset < 0 or size < 0:
            raise ValueError("offset and size must be non-negative")
        prefix = b""
        if offset < self._position:
            tail_start = self._position - len(self._tail)
            if offset < tail_start:
                raise io.UnsupportedOperation(
                    f"cannot read backwards on a sequential source (at {self._position}, asked for {offset})"
                )
            prefix = self._tail[offset - tail_start : offset - tail_start + size]
            if len(prefix) == size:
                return prefix
            offset = self._position
            size -= len(prefix)
        while self._position < offset:
            if not self._pull(min(self._skip_chunk, offset - self._position)):
                return prefix
        collected = bytearray(prefix)
        target = len(prefix) + size
        while len(collected) < target:
            blob = self._pull(target - len(collected))
            if not blob:
                break
            collected.extend(blob)
        return bytes(collected)

    def close(self) -> None:
        self._handle.close()


SourceLike = Union[ByteSource, bytes, bytearray, memoryview, BinaryIO]


def as_source(obj: SourceLike) -> ByteSource:
    """Coerce buffers and file handles into a :class:`ByteSource`."""

    if isinstance(obj, (bytes, bytearray, memoryview, mmap.mmap)):
        return BytesSource(obj)
    if isinstance(obj, (BytesSource, FileSource, SequentialSource)):
        return obj
    if hasattr(obj, "read_at"):
        return obj  # type: ignore[return-value]
    if hasattr(obj, "read"):
        seekable = getattr(obj, "seekable", None)
        if callable(seekable) and seekable():
            return FileSource(obj)  # type: ignore[arg-type]
        return SequentialSource(obj)  # type: ignore[arg-type]
    raise TypeError(f"cannot use {type(obj).__name__} as a byte source")


def open_source(path: Path, *, use_mmap: bool = True) -> ByteSource:
    """Open a tape image on disk, memory-mapping it when possible."""

    handle = Path(path).open("rb")
    if use_mmap:
        try:
            mapped = mmap.mmap(handle.fileno(), 0, access=mmap.ACCESS_READ)
        except ValueError:
            # empty files cannot be mapped
            pass
        else:
            return BytesSource(mapped, owner=handle)
    return FileSource(handle, close_handle=True)


__all__ = [
    "ByteSource",
    "BytesSource",
    "FileSource",
    "SequentialSource",
    "SourceLike",
    "as_source",
    "open_source",
]
