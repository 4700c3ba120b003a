"""Image transfer payloads carried inside IMAGE_TRANSFER packets.

A payload is a 4-byte signed big-endian header length, a UTF-8 text header
with ``|``-separated fields, then the raw image bytes.

Group images use the header ``GROUP|sender|file name|size``.
Private images use ``PRIVATE|sender|receiver|file name|size``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

__all__ = [
    "MAX_IMAGE_SIZE",
    "ImageKind",
    "ImagePayload",
    "ImagePayloadError",
    "ImageTooLargeError",
    "sanitize_file_name",
    "read_image_file",
    "encode_group_image",
    "encode_private_image",
    "decode_image_payload",
    "save_image",
]

MAX_IMAGE_SIZE = 5 * 1024 * 1024

_LENGTH = struct.Struct(">i")
_FIELD_COUNTS = {"GROUP": 4, "PRIVATE": 5}

PathLike = Union[str, Path]


class ImageKind(Enum):
    """Whether an image goes to the whole room or to one user."""

    GROUP = "GROUP"
    PRIVATE = "PRIVATE"


class ImagePayloadError(ValueError):
    """An image payload could not be decoded."""


class ImageTooLargeError(ValueError):
    """An image file is larger than the transfer limit."""

    def __init__(self, size: int, limit: int = MAX_IMAGE_SIZE) -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            f"image is {size / 1024 / 1024:.2f} MB, the limit is "
            f"{limit // (1024 * 1024)} MB"
        )


@dataclass(frozen=True)
class ImagePayload:
    """A decoded image transfer."""

    kind: ImageKind
    sender: str
    file_name: str
    image: bytes
    declared_size: int
    receiver: Optional[str] = None

    @property
    def complete(self) -> bool:
        """True when the image holds exactly the declared number of bytes."""
        return len(self.image) == self.declared_size


def sanitize_file_name(name: str) -> str:
    """Replace the characters that would break the header or a path."""
    for char in ("|", "\\", "/"):
        name = name.replace(char, "_")
    return name


def read_image_file(path: PathLike) -> tuple[str, bytes]:
    """Read an image for sending; return its cleaned file name and bytes.

    Raises OSError when the file cannot be read and ImageTooLargeError when it
    exceeds MAX_IMAGE_SIZE.
    """
    path = Path(path)
    with path.open("rb") as handle:
        size = handle.seek(0, 2)
        if size > MAX_IMAGE_SIZE:
            raise ImageTooLargeError(size)
        handle.seek(0)
        image = handle.read()
    return sanitize_file_name(path.name), image


def _encode(fields: list[str], image: bytes) -> bytes:
    header = "|".join(fields).encode("utf-8")
    return _LENGTH.pack(len(header)) + header + bytes(image)


def encode_group_image(sender: str, file_name: str, image: bytes) -> bytes:
    """Build the payload of an image sent to the whole room."""
    return _encode(["GROUP", sender, file_name, str(len(image))], image)


def encode_private_image(
    sender: str, receiver: str, file_name: str, image: bytes
) -> bytes:
    """Build the payload of an image sent to one user."""
    return _encode(["PRIVATE", sender, receiver, file_name, str(len(image))], image)


def _parse_size(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def decode_image_payload(data: bytes) -> ImagePayload:
    """Split a payload into header fields and image bytes.

    Raises ImagePayloadError on a short payload, an invalid header length,
    an unknown kind, or a header with the wrong number of fields.
    """
    data = bytes(data)
    if len(data) < 4:
        raise ImagePayloadError("image payload too short")
    (header_len,) = _LENGTH.unpack_from(data)
    if header_len <= 0 or header_len >= len(data) - 4:
        raise ImagePayloadError(
            f"invalid image header length {header_len} "
            f"(payload holds {len(data)} bytes)"
        )
    parts = data[4 : 4 + header_len].decode("utf-8", errors="replace").split("|")
    image = data[4 + header_len :]
    expected = _FIELD_COUNTS.get(parts[0])
    if expected is None:
        raise ImagePayloadError(f"unknown image kind: {parts[0]}")
    if len(parts) != expected:
        raise ImagePayloadError(
            f"malformed {parts[0].lower()} image header "
            f"({len(parts)} fields, expected {expected})"
        )
    if parts[0] == "GROUP":
        _, sender, file_name, size = parts
        return ImagePayload(
            ImageKind.GROUP, sender, file_name, image, _parse_size(size)
        )
    _, sender, receiver, file_name, size = parts
    return ImagePayload(
        ImageKind.PRIVATE, sender, file_name, image, _parse_size(size), receiver
    )


def save_image(path: PathLike, image: bytes) -> Path:
    """Write *image* to *path*; raises OSError when it cannot be written."""
    path = Path(path)
    path.write_bytes(bytes(image))
    return path