"""Text payloads of chat, private-chat and user-list packets.

Fields are separated by ``|``; user lists are comma separated. Payloads
travel as UTF-8.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

__all__ = [
    "DEFAULT_REFUSAL_REASON",
    "MessageFormatError",
    "ChatMessage",
    "PrivateChatRequest",
    "PrivateChatResponse",
    "PrivateMessage",
    "parse_chat_message",
    "encode_chat_message",
    "parse_private_request",
    "encode_private_request",
    "parse_private_response",
    "encode_private_response",
    "parse_private_message",
    "parse_user_list",
]

DEFAULT_REFUSAL_REASON = "暂时不便"

_AGREE = "agree"
_REFUSE = "refuse"

Payload = Union[bytes, bytearray, memoryview, str]


class MessageFormatError(ValueError):
    """A payload does not hold the fields its packet type needs."""


def _fields(data: Payload, minimum: int, what: str) -> list[str]:
    text = data if isinstance(data, str) else bytes(data).decode("utf-8", errors="replace")
    parts = text.split("|")
    if len(parts) < minimum:
        raise MessageFormatError(
            f"{what} needs at least {minimum} fields, got {len(parts)}"
        )
    return parts


@dataclass(frozen=True)
class ChatMessage:
    """A message to the whole room."""

    sender: str
    text: str


@dataclass(frozen=True)
class PrivateChatRequest:
    """A request from *requester* to chat privately with *target*."""

    requester: str
    target: str


@dataclass(frozen=True)
class PrivateChatResponse:
    """The answer of *receiver* to a private chat request from *requester*."""

    receiver: str
    requester: str
    response: str

    @property
    def agreed(self) -> bool:
        return self.response.startswith(_AGREE)

    @property
    def refused(self) -> bool:
        return self.response.startswith(_REFUSE)

    @property
    def reason(self) -> str:
        """Text after the first ``:``, or the whole response when there is none."""
        return self.response[self.response.find(":") + 1 :]


@dataclass(frozen=True)
class PrivateMessage:
    """A message from *sender* meant only for *receiver*."""

    sender: str
    receiver: str
    text: str


def parse_chat_message(data: Payload) -> ChatMessage:
    """Decode ``sender|text``; the text may itself contain ``|``."""
    parts = _fields(data, 2, "chat message")
    return ChatMessage(parts[0], "|".join(parts[1:]))


def encode_chat_message(sender: str, text: str) -> bytes:
    """Build the payload of a room message."""
    return f"{sender}|{text}".encode("utf-8")


def parse_private_request(data: Payload) -> PrivateChatRequest:
    """Decode ``requester|target``."""
    parts = _fields(data, 2, "private chat request")
    return PrivateChatRequest(parts[0], parts[1])


def encode_private_request(requester: str, target: str) -> bytes:
    """Build the payload asking *target* for a private chat."""
    return f"{requester}|{target}".encode("utf-8")


def parse_private_response(data: Payload) -> PrivateChatResponse:
    """Decode ``receiver|requester|agree`` or ``receiver|requester|refuse:reason``."""
    parts = _fields(data, 3, "private chat response")
    return PrivateChatResponse(parts[0], parts[1], parts[2])


def encode_private_response(
    receiver: str,
    requester: str,
    agree: bool,
    reason: str = DEFAULT_REFUSAL_REASON,
) -> bytes:
    """Build the answer of *receiver* to *requester*'s private chat request."""
    answer = _AGREE if agree else f"{_REFUSE}:{reason}"
    return f"{receiver}|{requester}|{answer}".encode("utf-8")


def parse_private_message(data: Payload) -> PrivateMessage:
    """Decode ``sender|receiver|text``; the text may itself contain ``|``."""
    parts = _fields(data, 3, "private message")
    return PrivateMessage(parts[0], parts[1], "|".join(parts[2:]))


def parse_user_list(data: Payload) -> list[str]:
    """Split a comma separated user list, dropping empty entries."""
    text = data if isinstance(data, str) else bytes(data).decode("utf-8", errors="replace")
    return [name for name in text.split(",") if name]