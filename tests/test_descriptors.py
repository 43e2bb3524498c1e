import pytest

from mtf.blocks import DecoderContext, decode_block
from mtf.constants import BlockType, MediaCatalogType, SetAttributes, StringType, TapeAttributes, VolumeAttributes
from mtf.cursor import ByteCursor, ByteOrder
from mtf.descriptors import (
    CorruptObjectDescriptor,
    DirectoryDescriptor,
    EndOfSetDescriptor,
    EndOfSetPadDescriptor,
    EndOfTapeDescriptor,
    FileDescriptor,
    OpaqueDescriptor,
    SetDescriptor,
    SoftFilemarkDescriptor,
    TapeDescriptor,
    VolumeDescriptor,
    decode_descriptor,
)
from mtf.errors import MalformedDescriptorError
from mtf.header import decode_common_header
from mtf.source import BytesSource

from tests.imagebuilder import DEFAULT_FAMILY, ImageBuilder, pack_date


def _descriptor(builder: ImageBuilder, offset: int = 0, context=None):
    return decode_block(BytesSource(builder.build()), offset, context).descriptor


def test_tape_descriptor() -> None:
    builder = ImageBuilder()
    builder.tape(
        sequence=3,
        description="weekly",
        password=b"\xde\xad",
        soft_filemark_block_size=2,
        catalog_type=2,
        date=pack_date(2010, 3, 14, 15, 9, 26),
    )
    tape = _descriptor(builder)
    assert isinstance(tape, TapeDescriptor)
    assert tape.media_family_id == DEFAULT_FAMILY
    assert tape.media_sequence_number == 3
    assert tape.media_name == "Synthetic media"
    assert tape.media_description == "weekly"
    assert tape.media_password == b"\xde\xad"
    assert tape.software_name == "mtf-tests"
    assert tape.media_catalog_type is MediaCatalogType.TYPE_2
    assert tape.soft_filemark_bytes == 1024
    assert tape.software_vendor_id == 0x1234
    assert tape.media_date.isoformat() == "2010-03-14T15:09:26"
    assert tape.mtf_major_version == 1
    assert tape.attributes == TapeAttributes(0)
    assert not tape.attributes & TapeAttributes.SOFT_FILE_MARK


def test_set_and_volume_descriptors() -> None:
    builder = ImageBuilder()
    builder.sset(name="Nightly", user="backup", number=4)
    volume_offset = builder.volb(device="D:", volume="DATA", machine="SERVER")
    data_set = _descriptor(builder)
    assert isinstance(data_set, SetDescriptor)
    assert data_set.data_set_name == "Nightly"
    assert data_set.data_set_description is None
    assert data_set.data_set_password == b""
    assert data_set.user_name == "backup"
    assert data_set.data_set_number == 4
    assert data_set.time_zone == -2
    assert data_set.attributes is SetAttributes.NORMAL

    volume = _descriptor(builder, volume_offset)
    assert isinstance(volume, VolumeDescriptor)
    assert (volume.device_name, volume.volume_name, volume.machine_name) == ("D:", "DATA", "SERVER")
    assert volume.attributes is VolumeAttributes.DEV_DRIVE


def test_directory_and_file_descriptors_in_unicode() -> None:
    builder = ImageBuilder(string_type=StringType.UNICODE)
    builder.dirb("Документы\x00", directory_id=9)
    file_offset = builder.file("отчёт.txt", directory_id=9, file_id=12, modified=pack_date(2020, 1, 2, 3, 4, 5))
    directory = _descriptor(builder)
    assert isinstance(directory, DirectoryDescriptor)
    assert directory.directory_name == "Документы"
    assert directory.directory_id == 9

    entry = _descriptor(builder, file_offset)
    assert isinstance(entry, FileDescriptor)
    assert entry.file_name == "отчёт.txt"
    assert (entry.directory_id, entry.file_id) == (9, 12)
    assert entry.last_modification_date.to_datetime().year == 2020
    assert entry.creation_date.is_empty


def test_big_endian_descriptors() -> None:
    builder = ImageBuilder(byte_order=ByteOrder.BIG, string_type=StringType.UNICODE)
    builder.tape(sequence=2)
    tape = _descriptor(builder)
    assert tape.media_family_id == DEFAULT_FAMILY
    assert tape.media_sequence_number == 2
    assert tape.media_name == "Synthetic media"


def test_trailer_descriptors() -> None:
    builder = ImageBuilder()
    offsets = [
        builder.cfil(stream_offset=4096, stream_number=2),
        builder.espb(),
        builder.eset(corrupt_files=5, number=3),
        builder.eotm(last_eset=77),
    ]
    corrupt, pad, end_of_set, end_of_tape = (_descriptor(builder, offset) for offset in offsets)
    assert isinstance(corrupt, CorruptObjectDescriptor)
    assert (corrupt.stream_offset, corrupt.corrupt_stream_number) == (4096, 2)
    assert isinstance(pad, EndOfSetPadDescriptor)
    assert isinstance(end_of_set, EndOfSetDescriptor)
    assert (end_of_set.corrupt_file_count, end_of_set.data_set_number) == (5, 3)
    assert isinstance(end_of_tape, EndOfTapeDescriptor)
    assert end_of_tape.last_eset_physical_block_address == 77


def test_soft_filemark_entries() -> None:
    builder = ImageBuilder()
    builder.sfmb([100, 50, 0, 0], used=2)
    marks = _descriptor(builder)
    assert isinstance(marks, SoftFilemarkDescriptor)
    assert marks.entry_count == 4
    assert marks.used_entries == (100, 50)


def test_soft_filemark_entry_count_bounded_by_tape_block_size() -> None:
    builder = ImageBuilder()
    builder.tape(soft_filemark_block_size=1)
    marks_offset = builder.sfmb([1, 2, 3], count=200, used=3)
    source = BytesSource(builder.build())
    context = DecoderContext()
    decode_block(source, 0, context)
    assert context.soft_filemark_bytes == 512
    with pytest.raises(MalformedDescriptorError):
        decode_block(source, marks_offset, context)


def test_used_entries_cannot_exceed_count() -> None:
    builder = ImageBuilder()
    builder.sfmb([1], used=2)
    with pytest.raises(MalformedDescriptorError):
        _descriptor(builder)


def test_string_outside_descriptor_is_malformed() -> None:
    builder = ImageBuilder()
    builder.file(name_address=(64, 52 + 36))
    with pytest.raises(MalformedDescriptorError):
        _descriptor(builder)


def test_string_inside_header_is_malformed() -> None:
    builder = ImageBuilder()
    builder.file(name_address=(4, 10))
    with pytest.raises(MalformedDescriptorError):
        _descriptor(builder)


def test_truncated_fixed_part_is_malformed() -> None:
    builder = ImageBuilder()
    builder.block("EOTM", b"\x00" * 4)
    data = builder.build()
    header = decode_common_header(ByteCursor(BytesSource(data)))
    with pytest.raises(MalformedDescriptorError):
        decode_descriptor(header, data[52 : header.offset_to_first_event])


def test_unknown_block_keeps_raw_descriptor() -> None:
    builder = ImageBuilder()
    builder.block("QQQQ", b"opaque!!")
    descriptor = _descriptor(builder)
    assert isinstance(descriptor, OpaqueDescriptor)
    assert descriptor.raw == b"opaque!!"
    assert descriptor.to_dict()["raw"] == b"opaque!!".hex()


def test_os_specific_data_is_exposed() -> None:
    builder = ImageBuilder()
    builder.file(os_specific=b"NTFS-ATTRS")
    block = decode_block(BytesSource(builder.build()), 0)
    assert block.os_specific_data == b"NTFS-ATTRS"
    assert block.descriptor.file_name == "payload.bin"


def test_descriptor_to_dict() -> None:
    builder = ImageBuilder()
    builder.tape(date=pack_date(1999, 12, 31, 23, 0, 0))
    payload = _descriptor(builder).to_dict()
    assert payload["type"] == BlockType.TAPE.value
    assert payload["media_date"] == "1999-12-31T23:00:00"
    assert payload["media_catalog_type"] == 0
    assert payload["media_password"] == ""
