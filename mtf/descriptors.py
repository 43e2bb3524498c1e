"""Type-specific descriptor decoding for each DBLK variant."""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple, Union

from .constants import (
    HEADER_SIZE,
    SFMB_FIXED_SIZE,
    SOFT_FILEMARK_UNIT,
    BlockType,
    MediaCatalogType,
    SetAttributes,
    TapeAttributes,
    VolumeAttributes,
)
from .config import DecoderConfig, get_decoder_config
from .cursor import ByteCursor
from .errors import MalformedDescriptorError, OutOfBoundsError
from .header import CommonBlockHeader, MTFDate, TapeAddress
from .source import BytesSource

if TYPE_CHECKING:  # pragma: no cover
    from .blocks import DecoderContext


class _Descriptor:
    """Shared serialisation for descriptor variants."""

    block_type = BlockType.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.block_type.value}
        for item in fields(self):  # type: ignore[arg-type]
            data[item.name] = _plain(getattr(self, item.name))
        return data


def _plain(value: Any) -> Any:
    if isinstance(value, MTFDate):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return [_plain(item) for item in value]
    return value


@dataclass(frozen=True)
class TapeDescriptor(_Descriptor):
    media_family_id: int
    attributes: TapeAttributes
    media_sequence_number: int
    password_encryption_algorithm: int
    soft_filemark_block_size: int
    media_catalog_type: MediaCatalogType
    media_name: Optional[str]
    media_description: Optional[str]
    media_password: bytes
    software_name: Optional[str]
    format_logical_block_size: int
    software_vendor_id: int
    media_date: MTFDate
    mtf_major_version: int

    block_type = BlockType.TAPE

    @property
    def soft_filemark_bytes(self) -> int:
        return self.soft_filemark_block_size * SOFT_FILEMARK_UNIT


@dataclass(frozen=True)
class SetDescriptor(_Descriptor):
    attributes: SetAttributes
    password_encryption_algorithm: int
    software_compression_algorithm: int
    software_vendor_id: int
    data_set_number: int
    data_set_name: Optional[str]
    data_set_description: Optional[str]
    data_set_password: bytes
    user_name: Optional[str]
    physical_block_address: int
    media_write_date: MTFDate
    software_major_version: int
    software_minor_version: int
    time_zone: int
    mtf_minor_version: int
    media_catalog_version: int

    block_type = BlockType.SSET


@dataclass(frozen=True)
class VolumeDescriptor(_Descriptor):
    attributes: VolumeAttributes
    device_name: Optional[str]
    volume_name: Optional[str]
    machine_name: Optional[str]
    media_write_date: MTFDate

    block_type = BlockType.VOLB


@dataclass(frozen=True)
class DirectoryDescriptor(_Descriptor):
    attributes: int
    last_modification_date: MTFDate
    creation_date: MTFDate
    backup_date: MTFDate
    last_access_date: MTFDate
    directory_id: int
    directory_name: Optional[str]

    block_type = BlockType.DIRB


@dataclass(frozen=True)
class FileDescriptor(_Descriptor):
    attributes: int
    last_modification_date: MTFDate
    creation_date: MTFDate
    backup_date: MTFDate
    last_access_date: MTFDate
    directory_id: int
    file_id: int
    file_name: Optional[str]

    block_type = BlockType.FILE


@dataclass(frozen=True)
class CorruptObjectDescriptor(_Descriptor):
    attributes: int
    stream_offset: int
    corrupt_stream_number: int

    block_type = BlockType.CFIL


@dataclass(frozen=True)
class EndOfSetPadDescriptor(_Descriptor):
    block_type = BlockType.ESPB


@dataclass(frozen=True)
class EndOfSetDescriptor(_Descriptor):
    attributes: int
    corrupt_file_count: int
    fdd_media_sequence_number: int
    data_set_number: int
    media_write_date: MTFDate

    block_type = BlockType.ESET


@dataclass(frozen=True)
class EndOfTapeDescriptor(_Descriptor):
    last_eset_physical_block_address: int

    block_type = BlockType.EOTM


@dataclass(frozen=True)
class SoftFilemarkDescriptor(_Descriptor):
    entry_count: int
    entries_used: int
    entries: Tuple[int, ...]

    block_type = BlockType.SFMB

    @property
    def used_entries(self) -> Tuple[int, ...]:
        return self.entries[: self.entries_used]


@dataclass(frozen=True)
class OpaqueDescriptor(_Descriptor):
    """Undecoded descriptor bytes of an unknown or abandoned block."""

    tag: str
    raw: bytes


Descriptor = Union[
    TapeDescriptor,
    SetDescriptor,
    VolumeDescriptor,
    DirectoryDescriptor,
    FileDescriptor,
    CorruptObjectDescriptor,
    EndOfSetPadDescriptor,
    EndOfSetDescriptor,
    EndOfTapeDescriptor,
    SoftFilemarkDescriptor,
    OpaqueDescriptor,
]


class _Fields:
    """Reads fixed fields from a descriptor body and resolves its TAPE_ADDRESS strings.

    The body starts right after the common header, so an address offset
    ``o`` (relative to the block start) maps to ``body[o - HEADER_SIZE]``.
    """

    def __init__(self, header: CommonBlockHeader, body: bytes, config: DecoderConfig) -> None:
        self.header = header
        self.body = body
        self.config = config
        self.cursor = ByteCursor(BytesSource(body), limit=len(body), byte_order=header.byte_order)

    def address(self) -> TapeAddress:
        return TapeAddress(self.cursor.u16(), self.cursor.u16())

    def date(self) -> MTFDate:
        return MTFDate.parse(self.cursor.read(5))

    def _check(self, address: TapeAddress, name: str) -> int:
        if address.offset < HEADER_SIZE or address.end > self.header.offset_to_first_event:
            raise MalformedDescriptorError(
                f"{self.header.tag} {name} [{address.offset}, {address.end}) lies outside "
                f"descriptor extent [{HEADER_SIZE}, {self.header.offset_to_first_event})",
                offset=self.header.offset + address.offset,
            )
        return address.offset - HEADER_SIZE

    def text(self, address: TapeAddress, name: str) -> Optional[str]:
        if not address.present:
            return None
        start = self._check(address, name)
        try:
            return self.cursor.read_text(
                start, address.size, self.header.string_type, ansi_encoding=self.config.ansi_encoding
            )
        except MalformedDescriptorError as exc:
            raise MalformedDescriptorError(
                f"{self.header.tag} {name}: {exc}", offset=self.header.offset + address.offset
            ) from exc

    def raw(self, address: TapeAddress, name: str) -> bytes:
        if not address.present:
            return b""
        start = self._check(address, name)
        return self.body[start : start + address.size]


def _decode_tape(f: _Fields, context: Optional["DecoderContext"]) -> TapeDescriptor:
    c = f.cursor
    media_family_id = c.u32()
    attributes = TapeAttributes(c.u32())
    media_sequence_number = c.u16()
    password_encryption_algorithm = c.u16()
    soft_filemark_block_size = c.u16()
    catalog = c.u16()
    media_name, media_description, media_password, software_name = (f.address() for _ in range(4))
    format_logical_block_size = c.u16()
    software_vendor_id = c.u16()
    media_date = f.date()
    mtf_major_version = c.u8()
    try:
        media_catalog_type = MediaCatalogType(catalog)
    except ValueError as exc:
        raise MalformedDescriptorError(
            f"TAPE block has unknown media catalog type {catalog}", offset=f.header.offset
        ) from exc
    return TapeDescriptor(
        media_family_id=media_family_id,
        attributes=attributes,
        media_sequence_number=media_sequence_number,
        password_encryption_algorithm=password_encryption_algorithm,
        soft_filemark_block_size=soft_filemark_block_size,
        media_catalog_type=media_catalog_type,
        media_name=f.text(media_name, "media name"),
        media_description=f.text(media_description, "media description"),
        media_password=f.raw(media_password, "media password"),
        software_name=f.text(software_name, "software name"),
        format_logical_block_size=format_logical_block_size,
        software_vendor_id=software_vendor_id,
        media_date=media_date,
        mtf_major_version=mtf_major_version,
    )


def _decode_sset(f: _Fields, context: Optional["DecoderContext"]) -> SetDescriptor:
    c = f.cursor
    attributes = SetAttributes(c.u32())
    password_encryption_algorithm = c.u16()
    software_compression_algorithm = c.u16()
    software_vendor_id = c.u16()
    data_set_number = c.u16()
    name, description, password, user_name = (f.address() for _ in range(4))
    return SetDescriptor(
        attributes=attributes,
        password_encryption_algorithm=password_encryption_algorithm,
        software_compression_algorithm=software_compression_algorithm,
        software_vendor_id=software_vendor_id,
        data_set_number=data_set_number,
        data_set_name=f.text(name, "data set name"),
        data_set_description=f.text(description, "data set description"),
        data_set_password=f.raw(password, "data set password"),
        user_name=f.text(user_name, "user name"),
        physical_block_address=c.u64(),
        media_write_date=f.date(),
        software_major_version=c.u8(),
        software_minor_version=c.u8(),
        time_zone=c.i8(),
        mtf_minor_version=c.u8(),
        media_catalog_version=c.u8(),
    )


def _decode_volb(f: _Fields, context: Optional["DecoderContext"]) -> VolumeDescriptor:
    attributes = VolumeAttributes(f.cursor.u32())
    device, volume, machine = (f.address() for _ in range(3))
    return VolumeDescriptor(
        attributes=attributes,
        device_name=f.text(device, "device name"),
        volume_name=f.text(volume, "volume name"),
        machine_name=f.text(machine, "machine name"),
        media_write_date=f.date(),
    )


def _decode_dirb(f: _Fields, context: Optional["DecoderContext"]) -> DirectoryDescriptor:
    c = f.cursor
    attributes = c.u32()
    dates = [f.date() for _ in range(4)]
    directory_id = c.u32()
    name = f.address()
    return DirectoryDescriptor(
        attributes,
        *dates,
        directory_id=directory_id,
        directory_name=f.text(name, "directory name"),
    )


def _decode_file(f: _Fields, context: Optional["DecoderContext"]) -> FileDescriptor:
    c = f.cursor
    attributes = c.u32()
    dates = [f.date() for _ in range(4)]
    directory_id = c.u32()
    file_id = c.u32()
    name = f.address()
    return FileDescriptor(
        attributes,
        *dates,
        directory_id=directory_id,
        file_id=file_id,
        file_name=f.text(name, "file name"),
    )


def _decode_cfil(f: _Fields, context: Optional["DecoderContext"]) -> CorruptObjectDescriptor:
    c = f.cursor
    attributes = c.u32()
    c.skip(8)
    return CorruptObjectDescriptor(attributes, stream_offset=c.u64(), corrupt_stream_number=c.u16())


def _decode_espb(f: _Fields, context: Optional["DecoderContext"]) -> EndOfSetPadDescriptor:
    return EndOfSetPadDescriptor()


def _decode_eset(f: _Fields, context: Optional["DecoderContext"]) -> EndOfSetDescriptor:
    c = f.cursor
    attributes = c.u32()
    corrupt_file_count = c.u32()
    c.skip(16)  # reserved for MBC
    return EndOfSetDescriptor(
        attributes,
        corrupt_file_count,
        fdd_media_sequence_number=c.u16(),
        data_set_number=c.u16(),
        media_write_date=f.date(),
    )


def _decode_eotm(f: _Fields, context: Optional["DecoderContext"]) -> EndOfTapeDescriptor:
    return EndOfTapeDescriptor(f.cursor.u64())


def _decode_sfmb(f: _Fields, context: Optional["DecoderContext"]) -> SoftFilemarkDescriptor:
    c = f.cursor
    entry_count = c.u32()
    entries_used = c.u32()
    if entries_used > entry_count:
        raise MalformedDescriptorError(
            f"SFMB uses {entries_used} of {entry_count} filemark entries", offset=f.header.offset
        )
    filemark_bytes = context.soft_filemark_bytes if context is not None else None
    if filemark_bytes:
        maximum = max(0, (filemark_bytes - SFMB_FIXED_SIZE) // 4)
        if entry_count > maximum:
            raise MalformedDescriptorError(
                f"SFMB declares {entry_count} entries but a {filemark_bytes}-byte "
                f"soft filemark block holds at most {maximum}",
                offset=f.header.offset,
            )
    f.config.budget.ensure_filemark_entries(entry_count)
    entries = tuple(c.u32() for _ in range(entry_count))
    return SoftFilemarkDescriptor(entry_count, entries_used, entries)


_Decoder = Callable[[_Fields, Optional["DecoderContext"]], Descriptor]

DESCRIPTOR_DECODERS: Mapping[BlockType, _Decoder] = MappingProxyType(
    {
        BlockType.TAPE: _decode_tape,
        BlockType.SSET: _decode_sset,
        BlockType.VOLB: _decode_volb,
        BlockType.DIRB: _decode_dirb,
        BlockType.FILE: _decode_file,
        BlockType.CFIL: _decode_cfil,
        BlockType.ESPB: _decode_espb,
        BlockType.ESET: _decode_eset,
        BlockType.EOTM: _decode_eotm,
        BlockType.SFMB: _decode_sfmb,
    }
)


def decode_descriptor(
    header: CommonBlockHeader,
    body: bytes,
    *,
    context: Optional["DecoderContext"] = None,
    config: Optional[DecoderConfig] = None,
) -> Descriptor:
    """Decode the descriptor *body* (block bytes ``[52, offset_to_first_event)``).

    Unknown tags come back as :class:`OpaqueDescriptor`. Any fixed field or
    string reaching past the descriptor extent raises
    :class:`MalformedDescriptorError`.
    """

    config = config or get_decoder_config()
    decoder = DESCRIPTOR_DECODERS.get(header.block_type)
    if decoder is None:
        return OpaqueDescriptor(header.tag, bytes(body))
    fields_ = _Fields(header, body, config)
    try:
        return decoder(fields_, context)
    except OutOfBoundsError as exc:
        raise MalformedDescriptorError(
            f"{header.tag} descriptor at {header.offset} needs more than its "
            f"{header.offset_to_first_event - HEADER_SIZE} descriptor bytes",
            offset=header.offset,
        ) from exc


def decode_os_specific(header: CommonBlockHeader, body: bytes) -> Optional[bytes]:
    """Return the raw OS-specific section, or ``None`` when its size is zero."""

    address = header.os_specific
    if not address.present:
        return None
    fields_ = _Fields(header, body, get_decoder_config())
    return fields_.raw(address, "OS specific data")


__all__ = [
    "CorruptObjectDescriptor",
    "DESCRIPTOR_DECODERS",
    "Descriptor",
    "DirectoryDescriptor",
    "EndOfSetDescriptor",
    "EndOfSetPadDescriptor",
    "EndOfTapeDescriptor",
    "FileDescriptor",
    "OpaqueDescriptor",
    "SetDescriptor",
    "SoftFilemarkDescriptor",
    "TapeDescriptor",
    "VolumeDescriptor",
    "decode_descriptor",
    "decode_os_specific",
]
