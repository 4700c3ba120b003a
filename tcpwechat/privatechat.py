"""A one-to-one conversation with another user."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from .images import encode_private_image, read_image_file
from .packet import Packet, PacketType

__all__ = ["ChatEntry", "PrivateChat", "SELF_LABEL"]

SELF_LABEL = "Me"

_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpeg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
    (b"BM", "bmp"),
)


def _image_format(image: bytes) -> Optional[str]:
    return next((fmt for magic, fmt in _SIGNATURES if image.startswith(magic)), None)


@dataclass
class ChatEntry:
    """One line of the conversation history."""

    author: str
    time: str
    text: str
    is_self: bool
    image: Optional[bytes] = field(default=None, repr=False)
    file_name: Optional[str] = None


class PrivateChat:
    """Conversation state with *target_username*; packets go out through *send*.

    *send* takes a Packet and raises ConnectionError when the link is down.
    """

    def __init__(
        self,
        my_username: str,
        target_username: str,
        send: Callable[[Packet], None],
        on_closed: Optional[Callable[[str], None]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.my_username = my_username
        self.target_username = target_username
        self._send = send
        self._on_closed = on_closed
        self._clock = clock
        self.history: list[ChatEntry] = []
        self.closed = False

    @property
    def title(self) -> str:
        return f"Private chat - {self.target_username}"

    def send_message(self, text: str) -> ChatEntry:
        """Send a text message; raises ValueError when it is blank."""
        message = text.strip()
        if not message:
            raise ValueError("message must not be empty")
        data = f"{self.my_username}|{self.target_username}|{message}".encode("utf-8")
        self._send(Packet(PacketType.PRIVATE_CHAT_MESSAGE, data))
        return self.append_message(message, True)

    def send_image(self, path: Union[str, Path]) -> ChatEntry:
        """Read an image file and send it to the other user."""
        file_name, image = read_image_file(path)
        payload = encode_private_image(
            self.my_username, self.target_username, file_name, image
        )
        self._send(Packet(PacketType.IMAGE_TRANSFER, payload))
        entry = self.append_message(f"[Sent image: {file_name}]", True)
        entry.image = image
        entry.file_name = file_name
        return entry

    def append_message(self, message: str, is_self: bool) -> ChatEntry:
        """Add a line to the history, stamped with the current time."""
        entry = ChatEntry(
            author=SELF_LABEL if is_self else self.target_username,
            time=self._clock().strftime("%H:%M"),
            text=message,
            is_self=is_self,
        )
        self.history.append(entry)
        return entry

    def receive_image(self, image: bytes, file_name: str) -> ChatEntry:
        """Record an image from the other user.

        The image is attached when its bytes are a recognised picture format;
        otherwise a failure line follows the notice and is returned.
        """
        notice = self.append_message(f"[Received image: {file_name}]", False)
        if _image_format(bytes(image)) is None:
            return self.append_message(
                f"[Failed to load received image: {file_name}]", False
            )
        notice.image = bytes(image)
        notice.file_name = file_name
        return notice

    def close(self) -> None:
        """Close the conversation, notifying the owner once."""
        if self.closed:
            return
        self.closed = True
        if self._on_closed is not None:
            self._on_closed(self.target_username)