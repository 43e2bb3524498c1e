"""Header and stream payload checksums used by MTF."""

from __future__ import annotations

import struct
from typing import Iterable

from .cursor import ByteOrder

_WORD16 = {order: struct.Struct(order.value + "H") for order in ByteOrder}
_WORD32 = {"<": struct.Struct("<I"), ">": struct.Struct(">I")}


def header_checksum(data: bytes, byte_order: ByteOrder = ByteOrder.LITTLE) -> int:
    """XOR of the 16-bit words of *data* (the bytes preceding the checksum field)."""

    if len(data) % 2:
        raise ValueError("checksummed header region must have an even length")
    checksum = 0
    for (word,) in _WORD16[byte_order].iter_unpack(data):
        checksum ^= word
    return checksum


def verify_header_checksum(data: bytes, stored: int, byte_order: ByteOrder = ByteOrder.LITTLE) -> bool:
    return header_checksum(data, byte_order) == stored


class StreamChecksum:
    """Incremental 32-bit XOR over a payload fed in arbitrary pieces."""

    def __init__(self, byte_order: ByteOrder = ByteOrder.LITTLE) -> None:
        self._byte_order = "little" if byte_order is ByteOrder.LITTLE else "big"
        self._value = 0
        self._pending = b""

    def update(self, data: bytes) -> None:
        data = self._pending + data
        whole = len(data) - len(data) % 4
        if whole:
            self._value ^= _xor_words(data[:whole], self._byte_order)
        self._pending = data[whole:]

    def value(self) -> int:
        if not self._pending:
            return self._value
        tail = self._pending.ljust(4, b"\x00")
        return self._value ^ int.from_bytes(tail, self._byte_order)


def _xor_words(data: bytes, byteorder: str) -> int:
    word = _WORD32["<" if byteorder == "little" else ">"]
    result = 0
    for (value,) in word.iter_unpack(data):
        result ^= value
    return result


def stream_checksum(payload: bytes, byte_order: ByteOrder = ByteOrder.LITTLE) -> int:
    """32-bit XOR of *payload* read as words, the last one zero padded."""

    accumulator = StreamChecksum(byte_order)
    accumulator.update(payload)
    return accumulator.value()


def stream_checksum_of(pieces: Iterable[bytes], byte_order: ByteOrder = ByteOrder.LITTLE) -> int:
    accumulator = StreamChecksum(byte_order)
    for piece in pieces:
        accumulator.update(piece)
    return accumulator.value()


__all__ = [
    "StreamChecksum",
    "header_checksum",
    "stream_checksum",
    "stream_checksum_of",
    "verify_header_checksum",
]
