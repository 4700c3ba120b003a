"""Chat client: logs in, keeps the user list and runs private conversations."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .images import (
    ImageKind,
    ImagePayload,
    ImagePayloadError,
    decode_image_payload,
    encode_group_image,
    read_image_file,
    save_image,
)
from .messages import (
    MessageFormatError,
    encode_chat_message,
    encode_private_request,
    encode_private_response,
    parse_chat_message,
    parse_private_message,
    parse_private_request,
    parse_private_response,
    parse_user_list,
)
from .packet import Packet, PacketType, iter_packets
from .privatechat import ChatEntry, PrivateChat

__all__ = ["ClientError", "ClientEvents", "ChatClient"]

_logger = logging.getLogger(__name__)

LOGIN_OK_PREFIX = "success"


class ClientError(Exception):
    """The client could not log in or reach the server."""


class ClientEvents:
    """Hooks through which the client talks to its user interface.

    The defaults log what happens, decline every question and save nothing;
    a front end overrides the ones it cares about.
    """

    def message(self, text: str, is_self: bool = False, is_system: bool = False) -> None:
        """A line for the room chat log."""
        _logger.info("%s", text)

    def alert(self, title: str, text: str) -> None:
        """A notice the user should see."""
        _logger.warning("%s: %s", title, text)

    def ask(self, title: str, text: str) -> bool:
        """A yes/no question; True means yes."""
        _logger.info("%s: %s (declined)", title, text)
        return False

    def choose_save_path(self, file_name: str) -> Optional[Path]:
        """Where to save a received image, or None to skip saving."""
        return None

    def show_private_chat(self, chat: PrivateChat) -> None:
        """A private conversation was opened or needs attention."""
        _logger.info("private chat with %s", chat.target_username)

    def private_message(self, chat: PrivateChat, entry: ChatEntry) -> None:
        """A line arrived in a private conversation."""
        _logger.info("%s: %s", chat.target_username, entry.text)

    def disconnected(self) -> None:
        """The connection to the server was lost."""
        _logger.info("disconnected")


class ChatClient:
    """Client side of the chat protocol.

    *writer* may be a stream already connected to the server; it needs
    write(), is_closing() and close().
    """

    def __init__(
        self,
        events: Optional[ClientEvents] = None,
        *,
        username: str = "",
        writer: Any = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.events = events if events is not None else ClientEvents()
        self.username = username
        self.logged_in = False
        self.users: list[str] = []
        self.private_chats: dict[str, PrivateChat] = {}
        self._clock = clock
        self._writer = writer
        self._buffer = bytearray()
        self._reader_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    # connection -----------------------------------------------------------

    async def connect(self, host: str, port: Union[int, str], username: str) -> None:
        """Connect to the server and send the login request."""
        self._abort()
        host = host.strip()
        port_text = str(port).strip()
        username = username.strip()
        if not host or not port_text or not username:
            raise ClientError("host, port and username must not be empty")
        try:
            port_number = int(port_text)
        except ValueError:
            raise ClientError("port must be a number") from None
        if not 0 <= port_number <= 0xFFFF:
            raise ClientError("port must be a number")
        try:
            reader, writer = await asyncio.open_connection(host, port_number)
        except OSError as exc:
            raise ClientError(str(exc)) from exc
        self.username = username
        self.logged_in = False
        self._writer = writer
        self._buffer.clear()
        self._send(Packet(PacketType.LOGIN_REQUEST, username.encode("utf-8")))
        self._reader_task = asyncio.create_task(self._read_loop(reader))

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while chunk := await reader.read(65536):
                self.feed(chunk)
        except ConnectionError:
            pass
        self._reader_task = None
        self._connection_lost()

    def _connection_lost(self) -> None:
        stamp = self._clock().strftime("%H:%M:%S")
        self.events.message(f"[{stamp}] Disconnected from the server!", is_system=True)
        if self._writer is not None:
            self._writer.close()
        self._writer = None
        self.logged_in = False
        self.username = ""
        self.events.disconnected()

    def _abort(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if self._writer is not None:
            if not self._writer.is_closing():
                self._writer.close()
            self._writer = None

    def _send(self, packet: Packet) -> None:
        if not self.connected:
            raise ConnectionError("not connected to the server")
        self._writer.write(packet.pack())

    # incoming -------------------------------------------------------------

    def feed(self, data: bytes) -> list[Packet]:
        """Add received bytes and handle every complete packet; return them."""
        self._buffer += data
        handled = []
        for packet in iter_packets(self._buffer):
            self.handle_packet(packet)
            handled.append(packet)
        return handled

    def handle_packet(self, packet: Packet) -> None:
        """Act on one packet from the server."""
        handler = self._handlers.get(packet.type)
        if handler is None:
            self.events.message("Received a packet of unknown type")
        else:
            handler(self, packet)

    def _on_login_response(self, packet: Packet) -> None:
        response = packet.data.decode("utf-8", errors="replace")
        if response.startswith(LOGIN_OK_PREFIX):
            self.logged_in = True
            self.events.message("Logged in, start chatting!", is_system=True)
        else:
            self.events.alert("Login failed", response)

    def _on_chat(self, packet: Packet) -> None:
        try:
            message = parse_chat_message(packet.data)
        except MessageFormatError:
            return
        if message.sender != self.username:
            self.events.message(f"[{message.sender}] {message.text}")

    def _on_private_request(self, packet: Packet) -> None:
        try:
            request = parse_private_request(packet.data)
        except MessageFormatError:
            return
        agree = self.events.ask(
            "Private chat request",
            f"{request.requester} wants to chat privately with you. Accept?",
        )
        if agree:
            self.open_private_chat(request.requester)
        self._send(
            Packet(
                PacketType.PRIVATE_CHAT_RESPONSE,
                encode_private_response(request.target, request.requester, agree),
            )
        )

    def _on_private_response(self, packet: Packet) -> None:
        try:
            response = parse_private_response(packet.data)
        except MessageFormatError:
            return
        if response.requester != self.username:
            return
        if response.agreed:
            self.open_private_chat(response.receiver)
            self.events.alert(
                "Private chat accepted",
                f"{response.receiver} accepted your private chat request.",
            )
        elif response.refused:
            self.events.alert(
                "Private chat refused",
                f"{response.receiver} refused your private chat request. "
                f"Reason: {response.reason}",
            )

    def _on_private_message(self, packet: Packet) -> None:
        try:
            message = parse_private_message(packet.data)
        except MessageFormatError:
            return
        if message.receiver != self.username:
            return
        chat = self.private_chats.get(message.sender)
        if chat is None:
            self.events.alert(
                "Private message received",
                f"{message.sender} sent you a private message, but you have not "
                "accepted a private chat; send or accept a request first.",
            )
            return
        entry = chat.append_message(message.text, False)
        self.events.show_private_chat(chat)
        self.events.private_message(chat, entry)

    def _on_image(self, packet: Packet) -> None:
        try:
            payload = decode_image_payload(packet.data)
        except ImagePayloadError as exc:
            self.events.alert("Error", str(exc))
            return
        if payload.kind is ImageKind.GROUP:
            self._on_group_image(payload)
        else:
            self._on_private_image(payload)

    def _incomplete(self, payload: ImagePayload, what: str) -> bool:
        if payload.complete:
            return False
        self.events.alert(
            "Warning",
            f"The {what} from {payload.sender} is incomplete "
            f"(received {len(payload.image)} bytes, expected {payload.declared_size})",
        )
        return True

    def _on_group_image(self, payload: ImagePayload) -> None:
        if self._incomplete(payload, "group image"):
            return
        if payload.sender == self.username:
            return
        self.events.message(f"[{payload.sender} sent a group image: {payload.file_name}]")
        if self.events.ask(
            "Group image received",
            f"{payload.sender} sent a group image: {payload.file_name}\nSave it now?",
        ):
            self._save(payload)

    def _on_private_image(self, payload: ImagePayload) -> None:
        if payload.receiver != self.username:
            return
        if self._incomplete(payload, "private image"):
            return
        chat = self.private_chats.get(payload.sender)
        if chat is not None:
            entry = chat.receive_image(payload.image, payload.file_name)
            self.events.show_private_chat(chat)
            self.events.private_message(chat, entry)
            self.events.alert(
                "Private image received",
                f"{payload.sender} sent you a private image: {payload.file_name}",
            )
            self._save(payload)
        elif self.events.ask(
            "Image received",
            f"{payload.sender} sent you a private image, but no private chat with "
            "them is open.\nOpen one and save the image?",
        ):
            self.open_private_chat(payload.sender)
            self._save(payload)

    def _save(self, payload: ImagePayload) -> Optional[Path]:
        path = self.events.choose_save_path(payload.file_name)
        if path is None:
            return None
        try:
            saved = save_image(path, payload.image)
        except OSError:
            self.events.alert("Error", "Could not save the image file!")
            return None
        self.events.alert("Saved", f"Image saved to: {saved}")
        return saved

    def _on_user_online(self, packet: Packet) -> None:
        name = packet.data.decode("utf-8", errors="replace")
        if name == self.username:
            return
        self.events.message(f"User {name} is online", is_system=True)
        if name not in self.users:
            self.users.append(name)

    def _on_user_offline(self, packet: Packet) -> None:
        name = packet.data.decode("utf-8", errors="replace")
        if name == self.username:
            return
        self.events.message(f"User {name} went offline", is_system=True)
        self.users = [user for user in self.users if user != name]

    def _on_user_list(self, packet: Packet) -> None:
        self.update_user_list(parse_user_list(packet.data))

    _handlers: dict[int, Callable[["ChatClient", Packet], None]] = {
        PacketType.LOGIN_RESPONSE: _on_login_response,
        PacketType.CHAT_MESSAGE: _on_chat,
        PacketType.PRIVATE_CHAT_REQUEST: _on_private_request,
        PacketType.PRIVATE_CHAT_RESPONSE: _on_private_response,
        PacketType.PRIVATE_CHAT_MESSAGE: _on_private_message,
        PacketType.IMAGE_TRANSFER: _on_image,
        PacketType.USER_ONLINE: _on_user_online,
        PacketType.USER_OFFLINE: _on_user_offline,
        PacketType.USER_LIST: _on_user_list,
    }

    # outgoing -------------------------------------------------------------

    def send_chat(self, text: str) -> None:
        """Send a message to the room; raises ValueError when it is blank."""
        message = text.strip()
        if not message:
            raise ValueError("message must not be empty")
        self.events.message(message, is_self=True)
        self._send(
            Packet(PacketType.CHAT_MESSAGE, encode_chat_message(self.username, message))
        )

    def send_group_image(self, path: Union[str, Path]) -> str:
        """Send an image file to the room; return the file name used."""
        file_name, image = read_image_file(path)
        payload = encode_group_image(self.username, file_name, image)
        self._send(Packet(PacketType.IMAGE_TRANSFER, payload))
        self.events.message(f"[Sent group image: {file_name}]", is_self=True)
        return file_name

    def request_private_chat(self, target: str) -> None:
        """Ask *target* for a private conversation."""
        self._send(
            Packet(
                PacketType.PRIVATE_CHAT_REQUEST,
                encode_private_request(self.username, target),
            )
        )

    # private chats --------------------------------------------------------

    def open_private_chat(self, target: str) -> PrivateChat:
        """Return the conversation with *target*, creating it when needed."""
        chat = self.private_chats.get(target)
        if chat is None:
            chat = PrivateChat(
                self.username,
                target,
                self._send,
                on_closed=self._private_chat_closed,
                clock=self._clock,
            )
            self.private_chats[target] = chat
        self.events.show_private_chat(chat)
        return chat

    def _private_chat_closed(self, target: str) -> None:
        self.private_chats.pop(target, None)

    def close_private_chat(self, target: str) -> bool:
        """Close the conversation with *target*; False when there was none."""
        chat = self.private_chats.pop(target, None)
        if chat is None:
            return False
        chat.close()
        return True

    def close_all_private_chats(self) -> None:
        """Close every open conversation."""
        for target in list(self.private_chats):
            self.close_private_chat(target)

    def update_user_list(self, users: list[str]) -> None:
        """Replace the online user list, leaving out this client's own name."""
        self.users = [user for user in users if user != self.username]

    def logout(self) -> None:
        """Drop the connection and forget the session."""
        self._abort()
        self.close_all_private_chats()
        self.username = ""
        self.logged_in = False
        self.users = []
        self._buffer.clear()