"""Tags, attribute bits and fixed sizes of the Microsoft Tape Format."""

from __future__ import annotations

from enum import Enum, IntEnum, IntFlag
from typing import FrozenSet

HEADER_SIZE = 52
HEADER_CHECKSUM_OFFSET = 50
STREAM_HEADER_SIZE = 22
STREAM_HEADER_CHECKSUM_OFFSET = 20
STREAM_ALIGNMENT = 4
SOFT_FILEMARK_UNIT = 512
SFMB_FIXED_SIZE = HEADER_SIZE + 8
CHECKSUM_PAYLOAD_SIZE = 4


class BlockType(str, Enum):
    TAPE = "TAPE"  # tape header
    SSET = "SSET"  # start of data set
    VOLB = "VOLB"  # volume
    DIRB = "DIRB"  # directory
    FILE = "FILE"
    CFIL = "CFIL"  # corrupt object
    ESPB = "ESPB"  # end of set pad
    ESET = "ESET"  # end of data set
    EOTM = "EOTM"  # end of tape marker
    SFMB = "SFMB"  # soft filemark
    UNKNOWN = "????"

    @classmethod
    def from_tag(cls, tag: str) -> "BlockType":
        try:
            member = cls(tag)
        except ValueError:
            return cls.UNKNOWN
        return member


KNOWN_BLOCK_TAGS: FrozenSet[bytes] = frozenset(
    member.value.encode("ascii") for member in BlockType if member is not BlockType.UNKNOWN
)


class BlockAttributes(IntFlag):
    CONTINUATION = 1 << 0
    COMPRESSION = 1 << 2
    EOS_AT_EOM = 1 << 3


TAPE_SET_MAP_EXISTS = 1 << 16
TAPE_FDD_ALLOWED = 1 << 17
SSET_FDD_EXISTS = 1 << 16
SSET_ENCRYPTION = 1 << 17
ESET_FDD_ABORTED = 1 << 16
ESET_END_OF_FAMILY = 1 << 17
ESET_ABORTED_SET = 1 << 18
EOTM_NO_ESET_PBA = 1 << 16
EOTM_INVALID_ESET_PBA = 1 << 17

_TYPE_SPECIFIC_BITS = {
    BlockType.TAPE: {"SET_MAP_EXISTS": TAPE_SET_MAP_EXISTS, "FDD_ALLOWED": TAPE_FDD_ALLOWED},
    BlockType.SSET: {"FDD_EXISTS": SSET_FDD_EXISTS, "ENCRYPTION": SSET_ENCRYPTION},
    BlockType.ESET: {
        "FDD_ABORTED": ESET_FDD_ABORTED,
        "END_OF_FAMILY": ESET_END_OF_FAMILY,
        "ABORTED_SET": ESET_ABORTED_SET,
    },
    BlockType.EOTM: {"NO_ESET_PBA": EOTM_NO_ESET_PBA, "INVALID_ESET_PBA": EOTM_INVALID_ESET_PBA},
}

_COMMON_BITS = {"CONTINUATION": 1 << 0, "COMPRESSION": 1 << 2, "EOS_AT_EOM": 1 << 3}


def describe_block_attributes(block_type: BlockType, bits: int) -> FrozenSet[str]:
    """Name the attribute bits that are meaningful for *block_type*."""

    table = dict(_COMMON_BITS)
    table.update(_TYPE_SPECIFIC_BITS.get(block_type, {}))
    return frozenset(name for name, bit in table.items() if bits & bit)


class TapeAttributes(IntFlag):
    SOFT_FILE_MARK = 1 << 0
    MEDIA_LABEL = 1 << 1


class SetAttributes(IntFlag):
    TRANSFER = 1 << 0
    COPY = 1 << 1
    NORMAL = 1 << 2
    DIFFERENTIAL = 1 << 3
    INCREMENTAL = 1 << 4
    DAILY = 1 << 5


class VolumeAttributes(IntFlag):
    NO_REDIRECT_RESTORE = 1 << 0
    NON_VOLUME = 1 << 1
    DEV_DRIVE = 1 << 2
    DEV_UNC = 1 << 3
    DEV_OS_SPEC = 1 << 4
    DEV_VEND_SPEC = 1 << 5


class FileSystemAttributes(IntFlag):
    MODIFIED_BY_READ = 1 << 0
    CONTAINS_SECURITY = 1 << 1
    IS_NON_PORTABLE = 1 << 2
    IS_SPARSE = 1 << 3


class StreamAttributes(IntFlag):
    CONTINUE = 1 << 0
    VARIABLE = 1 << 1
    VAR_END = 1 << 2
    ENCRYPTED = 1 << 3
    COMPRESSED = 1 << 4
    CHECKSUMED = 1 << 5
    EMBEDDED_LENGTH = 1 << 6


class StringType(IntEnum):
    NO_STRINGS = 0
    ANSI = 1
    UNICODE = 2


class MediaCatalogType(IntEnum):
    NONE = 0
    TYPE_1 = 1
    TYPE_2 = 2
    UNKNOWN_3 = 3


class OperatingSystem(str, Enum):
    NETWARE = "NetWare"
    NETWARE_SMS = "NetWare SMS"
    WINDOWS_NT = "Windows NT"
    DOS_WINDOWS3 = "DOS/Windows 3.x"
    OS2 = "OS/2"
    WINDOWS_95 = "Windows 95"
    MACINTOSH = "Macintosh"
    UNIX = "Unix"
    TO_BE_ASSIGNED = "to be assigned"
    VENDOR_SPECIFIC = "vendor specific"

    @classmethod
    def from_id(cls, os_id: int) -> "OperatingSystem":
        known = _OS_IDS.get(os_id)
        if known is not None:
            return known
        if 33 <= os_id <= 127:
            return cls.TO_BE_ASSIGNED
        return cls.VENDOR_SPECIFIC


_OS_IDS = {
    1: OperatingSystem.NETWARE,
    13: OperatingSystem.NETWARE_SMS,
    14: OperatingSystem.WINDOWS_NT,
    24: OperatingSystem.DOS_WINDOWS3,
    25: OperatingSystem.OS2,
    26: OperatingSystem.WINDOWS_95,
    27: OperatingSystem.MACINTOSH,
    28: OperatingSystem.UNIX,
}

STREAM_STANDARD = "STAN"
STREAM_PATH_NAME = "PNAM"
STREAM_NT_ACL = "NACL"
STREAM_NT_EA = "NTEA"
STREAM_NT_QUOTA = "NTQU"
STREAM_NT_PROPERTY = "NTPR"
STREAM_NT_OBJECT_ID = "NTOI"
STREAM_ALTERNATE_DATA = "ADAT"
STREAM_CHECKSUM = "CSUM"
STREAM_PAD = "SPAD"
STREAM_SQL_DATABASE = "MQDA"

NUL_STREAM_ID = b"\x00\x00\x00\x00"


__all__ = [
    "BlockAttributes",
    "BlockType",
    "CHECKSUM_PAYLOAD_SIZE",
    "EOTM_INVALID_ESET_PBA",
    "EOTM_NO_ESET_PBA",
    "ESET_ABORTED_SET",
    "ESET_END_OF_FAMILY",
    "ESET_FDD_ABORTED",
    "FileSystemAttributes",
    "HEADER_CHECKSUM_OFFSET",
    "HEADER_SIZE",
    "KNOWN_BLOCK_TAGS",
    "MediaCatalogType",
    "NUL_STREAM_ID",
    "OperatingSystem",
    "SFMB_FIXED_SIZE",
    "SOFT_FILEMARK_UNIT",
    "SSET_ENCRYPTION",
    "SSET_FDD_EXISTS",
    "STREAM_ALIGNMENT",
    "STREAM_ALTERNATE_DATA",
    "STREAM_CHECKSUM",
    "STREAM_HEADER_CHECKSUM_OFFSET",
    "STREAM_HEADER_SIZE",
    "STREAM_NT_ACL",
    "STREAM_NT_EA",
    "STREAM_NT_OBJECT_ID",
    "STREAM_NT_PROPERTY",
    "STREAM_NT_QUOTA",
    "STREAM_PAD",
    "STREAM_PATH_NAME",
    "STREAM_SQL_DATABASE",
    "STREAM_STANDARD",
    "SetAttributes",
    "StreamAttributes",
    "StringType",
    "TAPE_FDD_ALLOWED",
    "TAPE_SET_MAP_EXISTS",
    "TapeAttributes",
    "VolumeAttributes",
    "describe_block_attributes",
]
