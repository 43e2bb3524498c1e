"""Resource budgeting helpers for decoding untrusted tape images."""

from __future__ import annotations

from dataclasses import dataclass


class ResourceBudgetExceeded(RuntimeError):
    """Raised when an image exceeds configured resource limits."""


@dataclass(frozen=True)
class ResourceBudget:
    """Declarative limits applied while decoding blocks and streams."""

    max_descriptor_bytes: int = 65_535
    max_stream_bytes: int = 1 << 40
    max_streams_per_block: int = 65_536
    max_loaded_payload_bytes: int = 64_000_000
    max_filemark_entries: int = 1_000_000

    def ensure_descriptor(self, size: int) -> None:
        if size > self.max_descriptor_bytes:
            raise ResourceBudgetExceeded(
                f"descriptor of {size} bytes exceeds budgeted maximum {self.max_descriptor_bytes}"
            )

    def ensure_stream_length(self, length: int) -> None:
        if length > self.max_stream_bytes:
            raise ResourceBudgetExceeded(
                f"stream of {length} bytes exceeds budgeted maximum {self.max_stream_bytes}"
            )

    def ensure_stream_count(self, count: int) -> None:
        if count > self.max_streams_per_block:
            raise ResourceBudgetExceeded(
                f"block holds more than {self.max_streams_per_block} streams"
            )

    def ensure_loaded_payload(self, size: int) -> None:
        if size > self.max_loaded_payload_bytes:
            raise ResourceBudgetExceeded(
                f"payload of {size} bytes exceeds in-memory maximum {self.max_loaded_payload_bytes}"
            )

    def ensure_filemark_entries(self, count: int) -> None:
        if count > self.max_filemark_entries:
            raise ResourceBudgetExceeded(
                f"soft filemark table of {count} entries exceeds budgeted maximum {self.max_filemark_entries}"
            )


__all__ = ["ResourceBudget", "ResourceBudgetExceeded"]
