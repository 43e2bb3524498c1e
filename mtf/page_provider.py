"""Lazy random access over one logical stream scattered across blocks and volumes.

The provider scans blocks only as far as a read needs, appending every chunk
of the tracked stream it meets to a :class:`~mtf.index.LogicalStreamIndex`.
Reads that fall below the frontier are served from the index alone, so each
physical byte is decoded at most once however the reads are ordered.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .blocks import Block, DecoderContext, decode_block
from .config import DecoderConfig, get_decoder_config
from .constants import BlockType
from .cursor import ByteOrder
from .descriptors import TapeDescriptor
from .errors import Issue, IssueKind, MTFError, OutOfBoundsError, StructuralError, VolumeMismatchError
from .index import IndexCache, IndexSnapshot, LogicalStreamIndex, PhysicalChunk
from .resource_limits import ResourceBudgetExceeded
from .source import ByteSource, SourceLike, as_source
from .streams import StreamHeader

logger = logging.getLogger(__name__)


class ReadStatus(str, Enum):
    COMPLETE = "complete"
    SHORT_READ = "short-read"
    NEEDS_NEXT_VOLUME = "needs-next-volume"


class RunState(str, Enum):
    PENDING = "pending"  # no chunk of the tracked stream seen yet
    OPEN = "open"  # last chunk carried STREAM_CONTINUE
    CLOSED = "closed"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class VolumeRequest:
    """What the caller must supply for scanning to continue."""

    volume: int
    logical_offset: int
    media_family_id: Optional[int] = None
    media_sequence_number: Optional[int] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "volume": self.volume,
            "logical_offset": self.logical_offset,
            "media_family_id": self.media_family_id,
            "media_sequence_number": self.media_sequence_number,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ReadResult:
    status: ReadStatus
    offset: int
    requested: int
    data: bytes
    issues: Tuple[Issue, ...] = ()
    volume_request: Optional[VolumeRequest] = None

    @property
    def available(self) -> int:
        return len(self.data)

    @property
    def missing(self) -> int:
        return self.requested - len(self.data)

    @property
    def complete(self) -> bool:
        return self.status is ReadStatus.COMPLETE

    def __bytes__(self) -> bytes:
        return self.data


@dataclass(frozen=True)
class ProviderCheckpoint:
    """Serializable scan state of a provider reading a single volume."""

    stream_id: str
    start: int
    position: int
    state: RunState
    resume_state: RunState
    chunks: Tuple[PhysicalChunk, ...] = ()
    byte_order: Optional[ByteOrder] = None
    format_logical_block_size: Optional[int] = None
    soft_filemark_block_size: Optional[int] = None
    media_family_id: Optional[int] = None
    media_sequence_number: Optional[int] = None
    issues: Tuple[Issue, ...] = field(default=(), compare=False)

    @property
    def frontier(self) -> int:
        return self.chunks[-1].logical_end if self.chunks else 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "stream_id": self.stream_id,
            "start": self.start,
            "position": self.position,
            "state": self.state.value,
            "resume_state": self.resume_state.value,
            "index": LogicalStreamIndex(self.chunks).to_dict(),
            "byte_order": self.byte_order.name if self.byte_order is not None else None,
            "format_logical_block_size": self.format_logical_block_size,
            "soft_filemark_block_size": self.soft_filemark_block_size,
            "media_family_id": self.media_family_id,
            "media_sequence_number": self.media_sequence_number,
            "issues": [issue.as_dict() for issue in self.issues],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "ProviderCheckpoint":
        index = LogicalStreamIndex.from_dict(payload.get("index", {}))  # type: ignore[arg-type]
        byte_order = payload.get("byte_order")
        issues = tuple(
            Issue(IssueKind(item["kind"]), int(item["offset"]), str(item["message"]))
            for item in payload.get("issues", [])  # type: ignore[union-attr]
        )
        return cls(
            stream_id=str(payload["stream_id"]),
            start=int(payload["start"]),  # type: ignore[arg-type]
            position=int(payload["position"]),  # type: ignore[arg-type]
            state=RunState(payload["state"]),
            resume_state=RunState(payload.get("resume_state", RunState.PENDING.value)),
            chunks=index.chunks,
            byte_order=ByteOrder[byte_order] if byte_order else None,  # type: ignore[index]
            format_logical_block_size=_optional_int(payload.get("format_logical_block_size")),
            soft_filemark_block_size=_optional_int(payload.get("soft_filemark_block_size")),
            media_family_id=_optional_int(payload.get("media_family_id")),
            media_sequence_number=_optional_int(payload.get("media_sequence_number")),
            issues=issues,
        )


def _optional_int(value: object) -> Optional[int]:
    return None if value is None else int(value)  # type: ignore[call-overload]


class PageProvider:
    """Random-access reads into the logical stream *stream_id*.

    Scanning starts at physical offset *start* of the first volume; the run
    begins with the first stream carrying the tracked id at or after it.
    """

    def __init__(
        self,
        source: SourceLike,
        stream_id: str,
        *,
        start: int = 0,
        config: Optional[DecoderConfig] = None,
        cache: Optional[IndexCache] = None,
    ) -> None:
        if start < 0:
            raise ValueError("start must be non-negative")
        self.stream_id = stream_id
        self.config = config or get_decoder_config()
        self._volumes: List[ByteSource] = [as_source(source)]
        self._context = DecoderContext(self.config)
        self._index = LogicalStreamIndex()
        self._chunk_issues: Dict[int, Tuple[Issue, ...]] = {}
        self._issues: List[Issue] = []
        self._start = start
        self._position = start
        self._state = RunState.PENDING
        self._resume_state = RunState.PENDING
        self._request: Optional[VolumeRequest] = None
        self._error: Optional[MTFError] = None
        self._media_family_id: Optional[int] = None
        self._media_sequence_number: Optional[int] = None
        self._cache = cache
        self.blocks_scanned = 0

        restored = None
        if cache is not None:
            restored = cache.load(self._volumes[0], stream_id, start, variant=self.config.fingerprint())
        if restored is not None:
            self._restore(ProviderCheckpoint.from_dict(restored))
        elif start > 0:
            self._prime_context()

    # -- state -----------------------------------------------------------------

    @property
    def frontier(self) -> int:
        return self._index.frontier

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def finished(self) -> bool:
        return self._state is RunState.CLOSED

    @property
    def suspended(self) -> bool:
        return self._state is RunState.SUSPENDED

    @property
    def size(self) -> Optional[int]:
        """Total logical length, known once the run has closed."""

        return self.frontier if self.finished else None

    @property
    def issues(self) -> Tuple[Issue, ...]:
        return tuple(self._issues)

    @property
    def error(self) -> Optional[MTFError]:
        return self._error

    @property
    def volume_request(self) -> Optional[VolumeRequest]:
        return self._request

    @property
    def volume_count(self) -> int:
        return len(self._volumes)

    def snapshot(self) -> IndexSnapshot:
        return self._index.snapshot()

    def checkpoint(self) -> ProviderCheckpoint:
        return ProviderCheckpoint(
            stream_id=self.stream_id,
            start=self._start,
            position=self._position,
            state=self._state,
            resume_state=self._resume_state,
            chunks=self._index.chunks,
            byte_order=self._context.byte_order,
            format_logical_block_size=self._context.format_logical_block_size,
            soft_filemark_block_size=self._context.soft_filemark_block_size,
            media_family_id=self._media_family_id,
            media_sequence_number=self._media_sequence_number,
            issues=tuple(self._issues),
        )

    # -- reads -----------------------------------------------------------------

    def read(self, offset: int, length: int) -> ReadResult:
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        end = offset + length
        if end > self.frontier:
            self._advance(end)
        data = self._index.read(self._volumes, offset, length)
        if len(data) == length:
            issues = tuple(
                issue
                for chunk in self._index.chunks_between(offset, end)
                for issue in self._chunk_issues.get(chunk.logical_start, ())
            )
            return ReadResult(ReadStatus.COMPLETE, offset, length, data, issues)
        if self._state is RunState.SUSPENDED:
            return ReadResult(
                ReadStatus.NEEDS_NEXT_VOLUME, offset, length, data, tuple(self._issues), self._request
            )
        return ReadResult(ReadStatus.SHORT_READ, offset, length, data, tuple(self._issues))

    def scan_to_end(self) -> int:
        """Resolve the whole run (or up to the next suspension); returns the frontier."""

        self._advance(sys.maxsize)
        return self.frontier

    # -- volumes ---------------------------------------------------------------

    def supply_volume(self, source: SourceLike) -> None:
        """Continue a suspended scan on *source*, which must be the requested volume."""

        request = self._request
        if self._state is not RunState.SUSPENDED or request is None:
            raise MTFError("no continuation volume has been requested")
        volume = as_source(source)
        context = DecoderContext(self.config)
        try:
            first = decode_block(volume, 0, context, config=self.config, load=self._loader(volume))
        except (MTFError, ResourceBudgetExceeded) as exc:
            raise VolumeMismatchError(f"continuation volume does not start with a readable block: {exc}") from exc
        tape = first.descriptor if isinstance(first.descriptor, TapeDescriptor) else None
        if request.media_family_id is not None:
            if tape is None:
                raise VolumeMismatchError(f"continuation volume starts with {first.tag}, not TAPE")
            if tape.media_family_id != request.media_family_id:
                raise VolumeMismatchError(
                    f"volume belongs to media family 0x{tape.media_family_id:08X}, "
                    f"expected 0x{request.media_family_id:08X}"
                )
            expected = request.media_sequence_number
            if expected is not None and tape.media_sequence_number != expected:
                raise VolumeMismatchError(
                    f"volume has media sequence number {tape.media_sequence_number}, expected {expected}"
                )
        logger.info(
            "resuming %s run on volume %d at logical offset %d", self.stream_id, len(self._volumes), self.frontier
        )
        self._volumes.append(volume)
        self._context = context
        self._state = self._resume_state
        self._request = None
        self.blocks_scanned += 1
        self._position = first.end
        self._consume(first)

    def close(self) -> None:
        """Persist the checkpoint and close volumes handed over via :meth:`supply_volume`."""

        self._persist()
        for volume in self._volumes[1:]:
            volume.close()

    def __enter__(self) -> "PageProvider":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- scanning --------------------------------------------------------------

    def _loader(self, source: ByteSource) -> Optional[Callable[[StreamHeader], bool]]:
        if source.seekable:
            return None

        def load(header: StreamHeader) -> bool:
            return header.stream_id == self.stream_id

        return load

    def _advance(self, target: int) -> None:
        while self.frontier < target and self._state in (RunState.PENDING, RunState.OPEN):
            self._step()

    def _step(self) -> None:
        source = self._volumes[-1]
        size = source.size
        if size is not None and self._position >= size:
            self._end_of_source()
            return
        try:
            block = decode_block(
                source,
                self._position,
                self._context,
                config=self.config,
                load=self._loader(source),
                abandon_malformed=not self.config.strict_descriptors,
            )
        except OutOfBoundsError as exc:
            if exc.available == 0 and source.size == self._position:
                self._end_of_source()
                return
            self._record(IssueKind.TRUNCATED, self._position, str(exc))
            if self._state is RunState.OPEN:
                self._suspend(f"block at {self._position} cut short by end of media")
            else:
                self._close(exc)
            return
        except MTFError as exc:
            self._record(IssueKind.STRUCTURAL, self._position, str(exc))
            self._close(exc)
            return
        except ResourceBudgetExceeded as exc:
            error = StructuralError(f"block at {self._position} exceeds resource limits: {exc}", offset=self._position)
            self._record(IssueKind.STRUCTURAL, self._position, str(error))
            self._close(error)
            return
        self.blocks_scanned += 1
        logger.debug("scanned %s block at %d (%d bytes)", block.tag, block.offset, block.size)
        self._position = block.end
        self._consume(block)

    def _consume(self, block: Block) -> None:
        volume = len(self._volumes) - 1
        if isinstance(block.descriptor, TapeDescriptor):
            self._media_family_id = block.descriptor.media_family_id
            self._media_sequence_number = block.descriptor.media_sequence_number
        if block.block_type is BlockType.EOTM:
            self._suspend(f"end of tape marker at {block.offset}")
            return
        if block.block_type is BlockType.ESET and self._state is RunState.OPEN:
            self._close()
            return
        for stream in block.streams:
            if stream.stream_id != self.stream_id:
                continue
            if self._state not in (RunState.PENDING, RunState.OPEN):
                break
            if stream.available:
                start = self.frontier
                data = stream.payload[: stream.available] if stream.payload is not None else None
                self._index.append(
                    PhysicalChunk(start, start + stream.available, volume, stream.data_offset, data)
                )
                if stream.issues:
                    self._chunk_issues[start] = stream.issues
                    self._issues.extend(stream.issues)
            if stream.truncated:
                reason = f"{self.stream_id} payload at {stream.data_offset} cut short by end of media"
                self._record(IssueKind.TRUNCATED, stream.data_offset, reason)
                self._suspend(reason)
                return
            if stream.continues:
                self._state = RunState.OPEN
            else:
                self._close()
        if block.truncated and self._state is RunState.OPEN:
            self._suspend(f"block at {block.offset} cut short by end of media")

    def _end_of_source(self) -> None:
        if self._state is RunState.OPEN:
            self._suspend(f"source ended at {self._position} while the run is open")
            return
        self._record(
            IssueKind.STREAM_NOT_FOUND,
            self._position,
            f"no {self.stream_id} stream found after offset {self._start}",
        )
        self._close()

    def _record(self, kind: IssueKind, offset: int, message: str) -> None:
        self._issues.append(Issue(kind, offset, message))

    def _close(self, error: Optional[MTFError] = None) -> None:
        if error is not None:
            self._error = error
            logger.warning("%s run closed by error: %s", self.stream_id, error)
        else:
            logger.debug("%s run closed at logical size %d", self.stream_id, self.frontier)
        self._state = RunState.CLOSED
        self._persist()

    def _suspend(self, reason: str) -> None:
        self._resume_state = self._state
        self._state = RunState.SUSPENDED
        self._request = self._make_request(reason)
        logger.warning("%s run suspended: %s", self.stream_id, reason)
        self._persist()

    def _make_request(self, reason: str) -> VolumeRequest:
        sequence = self._media_sequence_number
        return VolumeRequest(
            volume=len(self._volumes),
            logical_offset=self.frontier,
            media_family_id=self._media_family_id,
            media_sequence_number=sequence + 1 if sequence is not None else None,
            reason=reason,
        )

    def _prime_context(self) -> None:
        """Decode the TAPE block at offset 0 so a mid-volume start knows the volume layout."""

        source = self._volumes[0]
        if not source.seekable:
            return
        try:
            block = decode_block(source, 0, self._context, config=self.config)
        except (MTFError, ResourceBudgetExceeded) as exc:
            logger.debug("no usable block at offset 0: %s", exc)
            self._context = DecoderContext(self.config)
            return
        if isinstance(block.descriptor, TapeDescriptor):
            self._media_family_id = block.descriptor.media_family_id
            self._media_sequence_number = block.descriptor.media_sequence_number

    def _persist(self) -> None:
        if self._cache is None or len(self._volumes) != 1:
            return
        self._cache.store(
            self._volumes[0],
            self.stream_id,
            self._start,
            self.checkpoint().to_dict(),
            variant=self.config.fingerprint(),
        )

    def _restore(self, checkpoint: ProviderCheckpoint) -> None:
        if checkpoint.stream_id != self.stream_id or checkpoint.start != self._start:
            return
        self._index = LogicalStreamIndex(checkpoint.chunks)
        self._position = checkpoint.position
        self._state = checkpoint.state
        self._resume_state = checkpoint.resume_state
        self._issues = list(checkpoint.issues)
        self._context.byte_order = checkpoint.byte_order
        self._context.format_logical_block_size = checkpoint.format_logical_block_size
        self._context.soft_filemark_block_size = checkpoint.soft_filemark_block_size
        self._media_family_id = checkpoint.media_family_id
        self._media_sequence_number = checkpoint.media_sequence_number
        if self._state is RunState.SUSPENDED:
            self._request = self._make_request("restored from index cache")
        logger.debug("restored %s index up to %d from cache", self.stream_id, self.frontier)


__all__ = [
    "PageProvider",
    "ProviderCheckpoint",
    "ReadResult",
    "ReadStatus",
    "RunState",
    "VolumeRequest",
]
