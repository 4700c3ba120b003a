"""Framed packets exchanged between chat clients and the server.

Wire layout, all integers unsigned 32-bit big-endian:
magic, payload length, packet type, CRC-32 of payload, payload bytes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, Union

from . import crc32

__all__ = [
    "MAGIC_NUM",
    "HEADER_SIZE",
    "PacketType",
    "Packet",
    "unpack",
    "iter_packets",
]

MAGIC_NUM = 0x12345678
HEADER_SIZE = 16

_HEADER = struct.Struct(">IIII")


class PacketType(IntEnum):
    """Kinds of packet understood by client and server."""

    LOGIN_REQUEST = 1
    LOGIN_RESPONSE = 2
    CHAT_MESSAGE = 3
    PRIVATE_CHAT_MESSAGE = 4
    USER_ONLINE = 5
    USER_OFFLINE = 6
    USER_LIST = 7
    PRIVATE_CHAT_REQUEST = 8
    PRIVATE_CHAT_RESPONSE = 9
    IMAGE_TRANSFER = 10
    IMAGE_RECEIVE_NOTIFY = 11


def _packet_type(value: int) -> Union[PacketType, int]:
    try:
        return PacketType(value)
    except ValueError:
        return value


@dataclass
class Packet:
    """A typed payload; unknown type numbers are kept as plain ints."""

    type: Union[PacketType, int]
    data: bytes = b""

    def __post_init__(self) -> None:
        self.data = bytes(self.data)

    def pack(self) -> bytes:
        """Serialise the packet into its wire form."""
        header = _HEADER.pack(
            MAGIC_NUM, len(self.data), int(self.type), crc32.calculate(self.data)
        )
        return header + self.data


def unpack(buffer: bytearray) -> Packet | None:
    """Take one complete packet off the front of *buffer*.

    Returns None, leaving *buffer* untouched, when the buffer holds less than
    a full packet, starts with the wrong magic number, or the payload fails
    its checksum.
    """
    if len(buffer) < HEADER_SIZE:
        return None
    magic, length, type_value, checksum = _HEADER.unpack_from(buffer)
    if magic != MAGIC_NUM:
        return None
    end = HEADER_SIZE + length
    if len(buffer) < end:
        return None
    data = bytes(buffer[HEADER_SIZE:end])
    if not crc32.verify(data, checksum):
        return None
    del buffer[:end]
    return Packet(_packet_type(type_value), data)


def iter_packets(buffer: bytearray) -> Iterator[Packet]:
    """Yield every complete packet at the front of *buffer*, consuming it."""
    while (packet := unpack(buffer)) is not None:
        yield packet