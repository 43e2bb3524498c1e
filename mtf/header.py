"""Common block header (DBLK preamble) decoding."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Optional

from .checksum import header_checksum
from .constants import (
    HEADER_CHECKSUM_OFFSET,
    HEADER_SIZE,
    BlockAttributes,
    BlockType,
    OperatingSystem,
    StringType,
    describe_block_attributes,
)
from .cursor import ByteCursor, ByteOrder, detect_byte_order
from .errors import ChecksumMismatchError, StructuralError

logger = logging.getLogger(__name__)

_HEADER_STRUCTS = {
    order: struct.Struct(order.value + "4sIHBBQQH6sI4sHHBBH") for order in ByteOrder
}
assert all(item.size == HEADER_SIZE for item in _HEADER_STRUCTS.values())


@dataclass(frozen=True)
class TapeAddress:
    """Size/offset pair locating variable-length data relative to a block start."""

    size: int
    offset: int

    @property
    def present(self) -> bool:
        return self.size > 0

    @property
    def end(self) -> int:
        return self.offset + self.size


@dataclass(frozen=True)
class MTFDate:
    """Packed 40-bit MTF_DATE_TIME."""

    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int

    @classmethod
    def parse(cls, data: bytes) -> "MTFDate":
        if len(data) != 5:
            raise ValueError("MTF dates are exactly 5 bytes")
        b0, b1, b2, b3, b4 = data
        return cls(
            year=(b0 << 6) | (b1 >> 2),
            month=((b1 & 0b11) << 2) | (b2 >> 6),
            day=(b2 >> 1) & 0b11111,
            hour=((b2 & 0b1) << 4) | (b3 >> 4),
            minute=((b3 & 0b1111) << 2) | (b4 >> 6),
            second=b4 & 0b111111,
        )

    @property
    def is_empty(self) -> bool:
        return not any((self.year, self.month, self.day, self.hour, self.minute, self.second))

    def to_datetime(self) -> Optional[datetime]:
        if self.is_empty:
            return None
        try:
            return datetime(self.year, self.month, self.day, self.hour, self.minute, self.second)
        except ValueError:
            return None

    def isoformat(self) -> Optional[str]:
        value = self.to_datetime()
        return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class CommonBlockHeader:
    """Decoded 52-byte preamble shared by every DBLK."""

    tag: str
    block_type: BlockType
    attributes: int
    offset_to_first_event: int
    os_id: int
    os_version: int
    displayable_size: int
    format_logical_address: int
    control_block_id: int
    os_specific: TapeAddress
    string_type: StringType
    checksum: int
    computed_checksum: int
    offset: int
    byte_order: ByteOrder = ByteOrder.LITTLE

    @property
    def suspect(self) -> bool:
        """True when the stored checksum did not match the preamble."""

        return self.checksum != self.computed_checksum

    @property
    def known(self) -> bool:
        return self.block_type is not BlockType.UNKNOWN

    @property
    def is_continuation(self) -> bool:
        return bool(self.attributes & BlockAttributes.CONTINUATION)

    @property
    def operating_system(self) -> OperatingSystem:
        return OperatingSystem.from_id(self.os_id)

    @property
    def attribute_names(self) -> FrozenSet[str]:
        return describe_block_attributes(self.block_type, self.attributes)

    @property
    def descriptor_end(self) -> int:
        return self.offset + self.offset_to_first_event


def decode_common_header(
    cursor: ByteCursor,
    *,
    strict: bool = False,
    byte_order: Optional[ByteOrder] = None,
) -> CommonBlockHeader:
    """Decode and checksum the preamble at the cursor position.

    With ``byte_order`` unset the order is inferred from the tag bytes. A
    checksum mismatch raises :class:`ChecksumMismatchError` when *strict*;
    otherwise the header is returned and reports ``suspect``.
    """

    offset = cursor.tell()
    raw = cursor.read(HEADER_SIZE)
    order = byte_order or detect_byte_order(raw[:4]) or ByteOrder.LITTLE
    cursor.byte_order = order
    (
        raw_tag,
        attributes,
        offset_to_first_event,
        os_id,
        os_version,
        displayable_size,
        format_logical_address,
        _reserved_mbc,
        _reserved1,
        control_block_id,
        _reserved2,
        os_size,
        os_offset,
        string_type,
        _reserved3,
        checksum,
    ) = _HEADER_STRUCTS[order].unpack(raw)

    tag = (raw_tag if order is ByteOrder.LITTLE else raw_tag[::-1]).decode("latin-1")
    block_type = BlockType.from_tag(tag)
    computed = header_checksum(raw[:HEADER_CHECKSUM_OFFSET], order)
    if computed != checksum:
        if strict:
            raise ChecksumMismatchError("header", stored=checksum, computed=computed, offset=offset)
        logger.warning(
            "suspect %s header at offset %d: stored checksum 0x%04X, computed 0x%04X",
            tag,
            offset,
            checksum,
            computed,
        )

    if offset_to_first_event < HEADER_SIZE:
        raise StructuralError(
            f"{tag} block at {offset} declares first event at {offset_to_first_event}, "
            f"inside its own {HEADER_SIZE}-byte header",
            offset=offset,
        )
    try:
        strings = StringType(string_type)
    except ValueError as exc:
        raise StructuralError(
            f"{tag} block at {offset} has invalid string type {string_type}", offset=offset
        ) from exc

    return CommonBlockHeader(
        tag=tag,
        block_type=block_type,
        attributes=attributes,
        offset_to_first_event=offset_to_first_event,
        os_id=os_id,
        os_version=os_version,
        displayable_size=displayable_size,
        format_logical_address=format_logical_address,
        control_block_id=control_block_id,
        os_specific=TapeAddress(os_size, os_offset),
        string_type=strings,
        checksum=checksum,
        computed_checksum=computed,
        offset=offset,
        byte_order=order,
    )


__all__ = ["CommonBlockHeader", "MTFDate", "TapeAddress", "decode_common_header"]
