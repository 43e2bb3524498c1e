"""File-like and page-oriented views over a :class:`~mtf.page_provider.PageProvider`."""

from __future__ import annotations

import io
import os
from typing import Iterator, Optional

from .errors import NeedsNextVolumeError
from .page_provider import PageProvider, ReadResult, ReadStatus

DEFAULT_PAGE_SIZE = 8192
SQL_DATABASE_PAGE_OFFSET = 2  # MQDA payloads carry two bytes ahead of the first page


class StreamFile(io.RawIOBase):
    """Seekable, read-only raw file over a logical stream.

    Reads that reach content on a volume not supplied yet raise
    :class:`NeedsNextVolumeError` once the bytes already resolved have been
    returned.
    """

    def __init__(self, provider: PageProvider, *, base_offset: int = 0) -> None:
        super().__init__()
        if base_offset < 0:
            raise ValueError("base_offset must be non-negative")
        self._provider = provider
        self._base = base_offset
        self._position = 0

    @property
    def provider(self) -> PageProvider:
        return self._provider

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        view = memoryview(buffer).cast("B")
        if not len(view):
            return 0
        result = self._provider.read(self._base + self._position, len(view))
        request = result.volume_request
        if not result.data and result.status is ReadStatus.NEEDS_NEXT_VOLUME and request is not None:
            raise NeedsNextVolumeError(request)
        count = len(result.data)
        view[:count] = result.data
        self._position += count
        return count

    def _length(self) -> int:
        self._provider.scan_to_end()
        request = self._provider.volume_request
        if self._provider.suspended and request is not None:
            raise NeedsNextVolumeError(request)
        return max(0, self._provider.frontier - self._base)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            target = offset
        elif whence == os.SEEK_CUR:
            target = self._position + offset
        elif whence == os.SEEK_END:
            target = self._length() + offset
        else:
            raise ValueError(f"invalid whence ({whence})")
        if target < 0:
            raise ValueError(f"negative seek position {target}")
        self._position = target
        return target

    def tell(self) -> int:
        return self._position


class PagedView:
    """Fixed-size page access, e.g. for database files embedded in a backup.

    Page ``n`` covers logical bytes ``[base_offset + n * page_size, ...)``.
    """

    def __init__(self, provider: PageProvider, *, page_size: int = DEFAULT_PAGE_SIZE, base_offset: int = 0) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if base_offset < 0:
            raise ValueError("base_offset must be non-negative")
        self.provider = provider
        self.page_size = page_size
        self.base_offset = base_offset

    @classmethod
    def for_sql_database(cls, provider: PageProvider) -> "PagedView":
        return cls(provider, page_size=DEFAULT_PAGE_SIZE, base_offset=SQL_DATABASE_PAGE_OFFSET)

    def page_offset(self, number: int) -> int:
        if number < 0:
            raise ValueError("page numbers are non-negative")
        return self.base_offset + number * self.page_size

    def read_page(self, number: int) -> ReadResult:
        return self.provider.read(self.page_offset(number), self.page_size)

    @property
    def page_count(self) -> Optional[int]:
        """Whole pages in the stream, known once the run has closed."""

        size = self.provider.size
        if size is None:
            return None
        return max(0, size - self.base_offset) // self.page_size

    def iter_pages(self) -> Iterator[bytes]:
        """Yield complete pages in order; a trailing partial page is not yielded."""

        number = 0
        while True:
            result = self.read_page(number)
            if result.complete:
                yield result.data
                number += 1
                continue
            if result.status is ReadStatus.NEEDS_NEXT_VOLUME and result.volume_request is not None:
                raise NeedsNextVolumeError(result.volume_request)
            return


__all__ = ["DEFAULT_PAGE_SIZE", "PagedView", "SQL_DATABASE_PAGE_OFFSET", "StreamFile"]
