"""Chat server: tracks logged-in users and routes packets between them."""

from __future__ import annotations

import asyncio
import logging
import struct
from typing import Any, Callable, Optional

from .packet import Packet, PacketType, iter_packets

__all__ = ["Connection", "ChatServer", "DUPLICATE_USER_REPLY", "LOGIN_OK_REPLY"]

LOGIN_OK_REPLY = b"success"
DUPLICATE_USER_REPLY = "fail:用户名已存在".encode("utf-8")

_logger = logging.getLogger(__name__)


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class Connection:
    """One client connection; *writer* needs write(), is_closing() and close()."""

    def __init__(self, writer: Any, peer: Optional[tuple] = None) -> None:
        self.writer = writer
        self.peer = peer

    @property
    def writable(self) -> bool:
        return not self.writer.is_closing()

    def send(self, packet: Packet) -> None:
        """Write *packet* to the client unless the connection is closing."""
        if self.writable:
            self.writer.write(packet.pack())

    def close(self) -> None:
        if self.writable:
            self.writer.close()

    def __repr__(self) -> str:
        return f"Connection(peer={self.peer!r})"


class ChatServer:
    """Keeps the online user table and forwards chat, private and image packets."""

    def __init__(self, log: Optional[Callable[[str], None]] = None) -> None:
        self._log = log if log is not None else _logger.info
        self._users: dict[Connection, str] = {}
        self._connections: set[Connection] = set()
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self, host: str = "0.0.0.0", port: int = 8888) -> int:
        """Listen on *host*:*port*; return the port actually bound."""
        self._server = await asyncio.start_server(self._serve, host, port)
        bound = self._server.sockets[0].getsockname()[1]
        self._log(f"Server started, listening on port {bound}")
        return bound

    async def close(self) -> None:
        """Stop listening and drop every client."""
        if self._server is None:
            return
        self._server.close()
        for connection in list(self._connections):
            connection.close()
        await self._server.wait_closed()
        self._server = None

    async def _serve(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        connection = Connection(writer, peer)
        self._connections.add(connection)
        if peer:
            self._log(f"Client connected: {peer[0]}:{peer[1]}")
        buffer = bytearray()
        try:
            while chunk := await reader.read(65536):
                buffer += chunk
                for packet in iter_packets(buffer):
                    self.handle_packet(connection, packet)
        except ConnectionError:
            pass
        finally:
            self._log("Client disconnected")
            self.disconnect(connection)

    def online_users(self) -> list[str]:
        """Names of logged-in users in login order."""
        return list(self._users.values())

    def _find(self, username: str) -> Optional[Connection]:
        return next(
            (conn for conn, name in self._users.items() if name == username), None
        )

    def _forward(self, username: str, packet: Packet) -> bool:
        target = self._find(username)
        if target is None or not target.writable:
            return False
        target.send(packet)
        return True

    def broadcast(self, packet: Packet, exclude_sender: str = "") -> None:
        """Send *packet* to every logged-in user except *exclude_sender*."""
        for connection, name in list(self._users.items()):
            if name != exclude_sender:
                connection.send(packet)

    def disconnect(self, connection: Connection) -> None:
        """Forget *connection*, tell the others its user left, and close it."""
        self._connections.discard(connection)
        name = self._users.pop(connection, None)
        if name is not None:
            offline = Packet(PacketType.USER_OFFLINE, name.encode("utf-8"))
            for other in list(self._users):
                other.send(offline)
            self._log(f"User offline: {name}")
        connection.close()

    def handle_packet(self, connection: Connection, packet: Packet) -> None:
        """Act on one packet received from *connection*."""
        handler = self._handlers.get(packet.type)
        if handler is not None:
            handler(self, connection, packet)

    def _on_login(self, connection: Connection, packet: Packet) -> None:
        username = _text(packet.data)
        if username in self._users.values():
            connection.send(Packet(PacketType.LOGIN_RESPONSE, DUPLICATE_USER_REPLY))
            return
        self._users[connection] = username
        connection.send(Packet(PacketType.LOGIN_RESPONSE, LOGIN_OK_REPLY))
        others = [name for name in self._users.values() if name != username]
        connection.send(Packet(PacketType.USER_LIST, ",".join(others).encode("utf-8")))
        online = Packet(PacketType.USER_ONLINE, username.encode("utf-8"))
        for other in list(self._users):
            if other is not connection:
                other.send(online)
        self._log(f"User online: {username}")

    def _on_chat(self, connection: Connection, packet: Packet) -> None:
        self.broadcast(packet)

    def _on_private_request(self, connection: Connection, packet: Packet) -> None:
        parts = _text(packet.data).split("|")
        if len(parts) < 2:
            return
        requester, target = parts[0], parts[1]
        if self._forward(target, packet):
            self._log(f"Forwarded private chat request: {requester} -> {target}")
        else:
            self._log(f"Private chat request not delivered: {target} is offline")

    def _on_private_response(self, connection: Connection, packet: Packet) -> None:
        parts = _text(packet.data).split("|")
        if len(parts) < 3:
            return
        receiver, requester, result = parts[0], parts[1], parts[2]
        if self._forward(requester, packet):
            self._log(
                f"Forwarded private chat response: {receiver} -> {requester}, "
                f"result: {result}"
            )
        else:
            self._log(
                f"Private chat response not delivered: requester {requester} is offline"
            )

    def _on_private_message(self, connection: Connection, packet: Packet) -> None:
        parts = _text(packet.data).split("|")
        if len(parts) < 3:
            self._log("Malformed private message")
            return
        sender, receiver = parts[0], parts[1]
        content = "|".join(parts[2:])
        if self._forward(receiver, Packet(PacketType.PRIVATE_CHAT_MESSAGE, packet.data)):
            self._log(f"Private message: {sender} -> {receiver}: {content}")

    def _on_image(self, connection: Connection, packet: Packet) -> None:
        data = packet.data
        if len(data) < 4:
            self._log("Image packet too short for its header length")
            return
        (header_len,) = struct.unpack(">i", data[:4])
        if header_len <= 0 or header_len >= len(data) - 4:
            self._log(
                f"Invalid image header length {header_len} "
                f"(packet holds {len(data)} bytes)"
            )
            return
        parts = _text(data[4 : 4 + header_len]).split("|")
        kind = parts[0]
        sender = parts[1] if len(parts) >= 2 else ""

        if kind == "GROUP":
            if len(parts) != 4:
                self._log(f"Malformed group image header ({len(parts)} fields, expected 4)")
                return
            self.broadcast(packet, sender)
            self._log(f"Forwarded group image from {sender} (file: {parts[2]})")
        elif kind == "PRIVATE":
            if len(parts) != 5:
                self._log(
                    f"Malformed private image header ({len(parts)} fields, expected 5)"
                )
                return
            receiver = parts[2]
            if self._forward(receiver, packet):
                self._log(
                    f"Forwarded private image: {sender} -> {receiver} (file: {parts[3]})"
                )
            else:
                self._log(f"Private image not delivered: receiver {receiver} is offline")
        else:
            self._log(f"Unknown image kind: {kind}")

    _handlers: dict[int, Callable[["ChatServer", Connection, Packet], None]] = {
        PacketType.LOGIN_REQUEST: _on_login,
        PacketType.CHAT_MESSAGE: _on_chat,
        PacketType.PRIVATE_CHAT_REQUEST: _on_private_request,
        PacketType.PRIVATE_CHAT_RESPONSE: _on_private_response,
        PacketType.PRIVATE_CHAT_MESSAGE: _on_private_message,
        PacketType.IMAGE_TRANSFER: _on_image,
    }