import io

import pytest

from mtf.errors import NeedsNextVolumeError
from mtf.page_provider import PageProvider
from mtf.pages import DEFAULT_PAGE_SIZE, SQL_DATABASE_PAGE_OFFSET, PagedView, StreamFile

from tests.imagebuilder import ImageBuilder, S, pattern, split_stream_image


def _provider(stream_id: str = "STAN", payload: bytes = b"") -> PageProvider:
    builder = ImageBuilder()
    builder.tape()
    builder.sset()
    builder.file(streams=[S(stream_id, payload)])
    builder.eset()
    return PageProvider(builder.build(), stream_id)


def test_stream_file_reads_and_seeks() -> None:
    first, second = pattern(3000, 1), pattern(2000, 2)
    handle = StreamFile(PageProvider(split_stream_image(first, second), "STAN"))
    assert handle.readable() and handle.seekable()
    assert handle.read(10) == first[:10]
    assert handle.tell() == 10
    handle.seek(2990)
    assert handle.read(20) == first[-10:] + second[:10]
    assert handle.seek(-5, io.SEEK_END) == 4995
    assert handle.read() == second[-5:]
    assert handle.read(10) == b""
    handle.seek(0)
    assert handle.read() == first + second


def test_stream_file_with_buffered_reader() -> None:
    payload = pattern(20_000, 3)
    reader = io.BufferedReader(StreamFile(_provider(payload=payload)), buffer_size=4096)
    assert reader.read(5000) == payload[:5000]
    reader.seek(19_990)
    assert reader.read() == payload[19_990:]


def test_stream_file_rejects_bad_seeks() -> None:
    handle = StreamFile(_provider(payload=b"abc"))
    with pytest.raises(ValueError):
        handle.seek(-1)
    with pytest.raises(ValueError):
        handle.seek(0, 7)


def test_stream_file_raises_when_next_volume_is_needed() -> None:
    builder = ImageBuilder()
    builder.tape()
    builder.file(streams=[S("STAN", pattern(100), continues=True)])
    builder.eotm()
    handle = StreamFile(PageProvider(builder.build(), "STAN"))
    assert handle.read(500) == pattern(100)
    with pytest.raises(NeedsNextVolumeError) as excinfo:
        handle.read(10)
    assert excinfo.value.request.logical_offset == 100
    with pytest.raises(NeedsNextVolumeError):
        handle.seek(0, io.SEEK_END)


def test_paged_view() -> None:
    payload = pattern(3 * 4096 + 100, 4)
    view = PagedView(_provider(payload=payload), page_size=4096)
    assert view.page_offset(2) == 8192
    assert view.read_page(1).data == payload[4096:8192]
    pages = list(view.iter_pages())
    assert pages == [payload[index * 4096 : (index + 1) * 4096] for index in range(3)]
    assert view.page_count == 3


def test_sql_database_pages_skip_the_leading_bytes() -> None:
    payload = b"\x01\x02" + pattern(2 * DEFAULT_PAGE_SIZE, 9)
    view = PagedView.for_sql_database(_provider("MQDA", payload))
    assert view.base_offset == SQL_DATABASE_PAGE_OFFSET
    assert view.read_page(0).data == payload[2 : 2 + DEFAULT_PAGE_SIZE]
    assert view.read_page(1).complete
    assert not view.read_page(2).complete
    assert view.page_count == 2


def test_paged_view_validation() -> None:
    provider = _provider(payload=b"abcd")
    with pytest.raises(ValueError):
        PagedView(provider, page_size=0)
    with pytest.raises(ValueError):
        PagedView(provider).page_offset(-1)
