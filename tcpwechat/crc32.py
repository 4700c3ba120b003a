"""CRC-32 checksum (IEEE 802.3, reflected, polynomial 0xEDB88320)."""

from __future__ import annotations

import zlib

__all__ = ["calculate", "verify"]


def calculate(data: bytes | bytearray | memoryview) -> int:
    """Return the CRC-32 of *data* as an unsigned 32-bit integer."""
    return zlib.crc32(bytes(data)) & 0xFFFFFFFF


def verify(data: bytes | bytearray | memoryview, checksum: int) -> bool:
    """Return True when *checksum* matches the CRC-32 of *data*."""
    return calculate(data) == checksum