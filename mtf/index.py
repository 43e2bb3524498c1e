"""Append-only index of the physical chunks backing one logical stream."""

from __future__ import annotations

import bisect
import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .source import ByteSource

logger = logging.getLogger(__name__)

FINGERPRINT_BYTES = 10 * 8192


@dataclass(frozen=True)
class PhysicalChunk:
    """Logical range ``[logical_start, logical_end)`` stored at ``physical_offset`` of ``volume``."""

    logical_start: int
    logical_end: int
    volume: int
    physical_offset: int
    data: Optional[bytes] = None

    def __post_init__(self) -> None:
        if self.logical_end <= self.logical_start:
            raise ValueError("chunks must cover at least one byte")
        if self.data is not None and len(self.data) != self.length:
            raise ValueError("retained chunk data does not match the chunk length")

    @property
    def length(self) -> int:
        return self.logical_end - self.logical_start

    def read(self, sources: Sequence[ByteSource], start: int, end: int) -> bytes:
        """Bytes of the logical range ``[start, end)`` clipped to this chunk."""

        start = max(start, self.logical_start)
        end = min(end, self.logical_end)
        if end <= start:
            return b""
        relative = start - self.logical_start
        if self.data is not None:
            return self.data[relative : relative + end - start]
        blob = sources[self.volume].read_at(self.physical_offset + relative, end - start)
        if len(blob) != end - start:
            raise EOFError(
                f"volume {self.volume} returned {len(blob)} of {end - start} indexed bytes "
                f"at {self.physical_offset + relative}"
            )
        return blob

    def to_dict(self) -> Dict[str, int]:
        return {
            "logical_start": self.logical_start,
            "logical_end": self.logical_end,
            "volume": self.volume,
            "physical_offset": self.physical_offset,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "PhysicalChunk":
        return cls(
            logical_start=int(payload["logical_start"]),  # type: ignore[arg-type]
            logical_end=int(payload["logical_end"]),  # type: ignore[arg-type]
            volume=int(payload.get("volume", 0)),  # type: ignore[arg-type]
            physical_offset=int(payload["physical_offset"]),  # type: ignore[arg-type]
        )


class _ChunkLookup:
    _chunks: Sequence[PhysicalChunk]
    _starts: Sequence[int]

    @property
    def chunks(self) -> Tuple[PhysicalChunk, ...]:
        return tuple(self._chunks)

    @property
    def frontier(self) -> int:
        return self._chunks[-1].logical_end if self._chunks else 0

    def __len__(self) -> int:
        return len(self._chunks)

    def locate(self, offset: int) -> Optional[int]:
        """Position of the chunk holding logical *offset*, or ``None``."""

        if offset < 0 or offset >= self.frontier:
            return None
        return bisect.bisect_right(self._starts, offset) - 1

    def chunks_between(self, start: int, end: int) -> List[PhysicalChunk]:
        end = min(end, self.frontier)
        if end <= start:
            return []
        first = self.locate(max(start, 0))
        if first is None:
            return []
        last = bisect.bisect_left(self._starts, end)
        return list(self._chunks[first:last])

    def read(self, sources: Sequence[ByteSource], offset: int, length: int) -> bytes:
        """Concatenate the indexed bytes of ``[offset, offset + length)`` up to the frontier."""

        end = offset + length
        return b"".join(chunk.read(sources, offset, end) for chunk in self.chunks_between(offset, end))

    def to_dict(self) -> Dict[str, object]:
        return {
            "frontier": self.frontier,
            "chunks": [chunk.to_dict() for chunk in self._chunks],
        }


class LogicalStreamIndex(_ChunkLookup):
    """Contiguous chunks in strictly increasing logical order; never shrinks."""

    def __init__(self, chunks: Sequence[PhysicalChunk] = ()) -> None:
        self._chunks: List[PhysicalChunk] = []
        self._starts: List[int] = []
        for chunk in chunks:
            self.append(chunk)

    def append(self, chunk: PhysicalChunk) -> None:
        if chunk.logical_start != self.frontier:
            raise ValueError(
                f"chunk starting at {chunk.logical_start} does not continue the frontier {self.frontier}"
            )
        self._chunks.append(chunk)
        self._starts.append(chunk.logical_start)

    def snapshot(self) -> "IndexSnapshot":
        return IndexSnapshot(tuple(self._chunks))

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "LogicalStreamIndex":
        chunks = payload.get("chunks", [])
        return cls([PhysicalChunk.from_dict(item) for item in chunks])  # type: ignore[union-attr]


class IndexSnapshot(_ChunkLookup):
    """Read-only copy of an index, safe to share with independent readers."""

    def __init__(self, chunks: Tuple[PhysicalChunk, ...]) -> None:
        self._chunks = chunks
        self._starts = tuple(chunk.logical_start for chunk in chunks)


def fingerprint(source: ByteSource) -> str:
    """Identify an image by the digest of its first 80 KiB and its size."""

    digest = hashlib.sha256(source.read_at(0, FINGERPRINT_BYTES))
    digest.update(str(source.size).encode("ascii"))
    return digest.hexdigest()


class IndexCache:
    """Directory of JSON checkpoints keyed by image fingerprint, stream id, start and decoder variant.

    *variant* names the decoder settings a checkpoint was produced under, so a
    strict scan never answers for a lenient one.
    """

    VERSION = 1

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str, stream_id: str, start: int, variant: str) -> Path:
        name = stream_id.encode("latin-1").hex()
        suffix = f"-{variant}" if variant else ""
        return self.directory / key[:2] / f"{key[2:]}-{name}-{start}{suffix}.json"

    def load(
        self, source: ByteSource, stream_id: str, start: int, *, variant: str = ""
    ) -> Optional[Dict[str, object]]:
        if not source.seekable or source.size is None:
            return None
        path = self._path(fingerprint(source), stream_id, start, variant)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable index cache %s: %s", path, exc)
            return None
        if payload.get("version") != self.VERSION or payload.get("variant", "") != variant:
            return None
        return payload.get("checkpoint")

    def store(
        self,
        source: ByteSource,
        stream_id: str,
        start: int,
        checkpoint: Mapping[str, object],
        *,
        variant: str = "",
    ) -> Optional[Path]:
        if not source.seekable or source.size is None:
            return None
        path = self._path(fingerprint(source), stream_id, start, variant)
        path.parent.mkdir(parents=True, exist_ok=True)
        document = {"version": self.VERSION, "variant": variant, "checkpoint": dict(checkpoint)}
        path.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        logger.debug("stored index checkpoint %s", path)
        return path


__all__ = [
    "FINGERPRINT_BYTES",
    "IndexCache",
    "IndexSnapshot",
    "LogicalStreamIndex",
    "PhysicalChunk",
    "fingerprint",
]
