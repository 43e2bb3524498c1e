import json

import pytest

from mtf.index import IndexCache, LogicalStreamIndex, PhysicalChunk, fingerprint
from mtf.source import BytesSource


def _index() -> LogicalStreamIndex:
    index = LogicalStreamIndex()
    index.append(PhysicalChunk(0, 10, 0, 100))
    index.append(PhysicalChunk(10, 15, 0, 200))
    index.append(PhysicalChunk(15, 30, 1, 64))
    return index


def test_append_must_continue_the_frontier() -> None:
    index = _index()
    assert index.frontier == 30
    with pytest.raises(ValueError):
        index.append(PhysicalChunk(31, 40, 1, 0))
    with pytest.raises(ValueError):
        index.append(PhysicalChunk(20, 40, 1, 0))
    assert len(index) == 3


def test_chunks_must_cover_bytes() -> None:
    with pytest.raises(ValueError):
        PhysicalChunk(5, 5, 0, 0)
    with pytest.raises(ValueError):
        PhysicalChunk(0, 4, 0, 0, data=b"abc")


def test_locate_and_chunks_between() -> None:
    index = _index()
    assert index.locate(0) == 0
    assert index.locate(9) == 0
    assert index.locate(10) == 1
    assert index.locate(29) == 2
    assert index.locate(30) is None
    assert index.locate(-1) is None
    assert [chunk.logical_start for chunk in index.chunks_between(8, 16)] == [0, 10, 15]
    assert [chunk.logical_start for chunk in index.chunks_between(10, 15)] == [10]
    assert index.chunks_between(30, 40) == []


def test_read_spans_volumes() -> None:
    first = BytesSource(bytes(100) + b"0123456789" + bytes(90) + b"abcde")
    second = BytesSource(bytes(64) + b"ABCDEFGHIJKLMNO")
    index = _index()
    assert index.read([first, second], 8, 10) == b"89abcdeABC"
    # reads stop at the frontier
    assert index.read([first, second], 28, 10) == b"NO"


def test_retained_data_needs_no_source() -> None:
    index = LogicalStreamIndex([PhysicalChunk(0, 4, 0, 999, data=b"wxyz")])
    assert index.read([], 1, 2) == b"xy"


def test_snapshot_is_frozen() -> None:
    index = _index()
    snapshot = index.snapshot()
    index.append(PhysicalChunk(30, 31, 1, 0))
    assert snapshot.frontier == 30
    assert index.frontier == 31
    assert snapshot.locate(12) == 1


def test_serialised_index_round_trip() -> None:
    index = _index()
    payload = json.loads(json.dumps(index.to_dict()))
    assert payload["frontier"] == 30
    restored = LogicalStreamIndex.from_dict(payload)
    assert restored.chunks == index.chunks


def test_index_cache_store_and_load(tmp_path) -> None:
    source = BytesSource(b"tape image bytes" * 100)
    cache = IndexCache(tmp_path)
    assert cache.load(source, "STAN", 0) is None
    path = cache.store(source, "STAN", 0, {"position": 42})
    assert path is not None and path.exists()
    assert cache.load(source, "STAN", 0) == {"position": 42}
    assert cache.load(source, "STAN", 52) is None
    assert cache.load(source, "MQDA", 0) is None
    assert cache.load(BytesSource(b"another image"), "STAN", 0) is None


def test_index_cache_separates_decoder_variants(tmp_path) -> None:
    source = BytesSource(b"tape image bytes" * 100)
    cache = IndexCache(tmp_path)
    first = cache.store(source, "STAN", 0, {"position": 1}, variant="aaaa")
    second = cache.store(source, "STAN", 0, {"position": 2}, variant="bbbb")
    assert first != second
    assert cache.load(source, "STAN", 0, variant="aaaa") == {"position": 1}
    assert cache.load(source, "STAN", 0, variant="bbbb") == {"position": 2}
    assert cache.load(source, "STAN", 0) is None


def test_index_cache_ignores_other_versions_and_garbage(tmp_path) -> None:
    source = BytesSource(b"x" * 10)
    cache = IndexCache(tmp_path)
    path = cache.store(source, "STAN", 0, {"position": 1})
    path.write_text(json.dumps({"version": 99, "checkpoint": {}}), encoding="utf-8")
    assert cache.load(source, "STAN", 0) is None
    path.write_text("{not json", encoding="utf-8")
    assert cache.load(source, "STAN", 0) is None


def test_fingerprint_depends_on_size() -> None:
    assert fingerprint(BytesSource(b"abc")) != fingerprint(BytesSource(b"abcd"))
    assert fingerprint(BytesSource(b"abc")) == fingerprint(BytesSource(b"abc"))
