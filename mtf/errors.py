"""Error taxonomy shared by the MTF decoder and the page provider."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .page_provider import VolumeRequest


class MTFError(ValueError):
    """Base class for every decoding failure raised by this package."""


class OutOfBoundsError(MTFError, EOFError):
    """Raised when a read would cross the end of the source or a caller limit."""

    def __init__(self, message: str, *, offset: int = 0, requested: int = 0, available: int = 0) -> None:
        super().__init__(message)
        self.offset = offset
        self.requested = requested
        self.available = available


class ChecksumMismatchError(MTFError):
    """Raised in strict mode when a stored checksum does not match the data."""

    def __init__(self, kind: str, *, stored: int, computed: int, offset: int) -> None:
        super().__init__(
            f"{kind} checksum mismatch at offset {offset}: "
            f"stored 0x{stored:X}, computed 0x{computed:X}"
        )
        self.kind = kind
        self.stored = stored
        self.computed = computed
        self.offset = offset


class MalformedDescriptorError(MTFError):
    """Raised when declared descriptor lengths are inconsistent with the block."""

    def __init__(self, message: str, *, offset: int = 0) -> None:
        super().__init__(message)
        self.offset = offset


class StructuralError(MTFError):
    """Raised when a required fixed field makes safe continuation impossible."""

    def __init__(self, message: str, *, offset: int = 0) -> None:
        super().__init__(message)
        self.offset = offset


class VolumeMismatchError(MTFError):
    """Raised when a supplied continuation volume belongs to another media family."""


class NeedsNextVolumeError(MTFError):
    """Raised by file-like adapters when content continues on another volume."""

    def __init__(self, request: "VolumeRequest") -> None:
        super().__init__(
            f"logical offset {request.logical_offset} continues on volume {request.volume}"
        )
        self.request = request


class IssueKind(str, Enum):
    HEADER_CHECKSUM = "header-checksum"
    STREAM_HEADER_CHECKSUM = "stream-header-checksum"
    STREAM_CHECKSUM = "stream-checksum"
    MISSING_STREAM_CHECKSUM = "missing-stream-checksum"
    MALFORMED_DESCRIPTOR = "malformed-descriptor"
    STRUCTURAL = "structural"
    TRUNCATED = "truncated"
    STREAM_NOT_FOUND = "stream-not-found"


@dataclass(frozen=True)
class Issue:
    """A soft condition recorded on a decoded value instead of being raised."""

    kind: IssueKind
    offset: int
    message: str
    error: Optional[Exception] = None

    def as_dict(self) -> dict:
        return {"kind": self.kind.value, "offset": self.offset, "message": self.message}


__all__ = [
    "ChecksumMismatchError",
    "Issue",
    "IssueKind",
    "MTFError",
    "MalformedDescriptorError",
    "NeedsNextVolumeError",
    "OutOfBoundsError",
    "StructuralError",
    "VolumeMismatchError",
]
