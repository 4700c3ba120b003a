import asyncio
import struct

import pytest

from tcpwechat.packet import Packet, PacketType, iter_packets, unpack
from tcpwechat.server import ChatServer, Connection


class FakeWriter:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, chunk):
        self.data += chunk

    def is_closing(self):
        return self.closed

    def close(self):
        self.closed = True


def make_connection():
    return Connection(FakeWriter())


def received(connection):
    return list(iter_packets(bytearray(connection.writer.data)))


def clear(*connections):
    for connection in connections:
        connection.writer.data.clear()


def login(server, name):
    connection = make_connection()
    server.handle_packet(connection, Packet(PacketType.LOGIN_REQUEST, name.encode()))
    return connection


def image_payload(header, image):
    raw = header.encode("utf-8")
    return struct.pack(">i", len(raw)) + raw + image


@pytest.fixture
def logs():
    return []


@pytest.fixture
def server(logs):
    return ChatServer(log=logs.append)


def test_first_login_gets_success_and_empty_list(server):
    alice = login(server, "alice")
    assert received(alice) == [
        Packet(PacketType.LOGIN_RESPONSE, b"success"),
        Packet(PacketType.USER_LIST, b""),
    ]
    assert server.online_users() == ["alice"]


def test_second_login_lists_others_and_notifies(server):
    alice = login(server, "alice")
    clear(alice)
    bob = login(server, "bob")
    assert received(bob) == [
        Packet(PacketType.LOGIN_RESPONSE, b"success"),
        Packet(PacketType.USER_LIST, b"alice"),
    ]
    assert received(alice) == [Packet(PacketType.USER_ONLINE, b"bob")]
    carol = login(server, "carol")
    assert received(carol)[1] == Packet(PacketType.USER_LIST, b"alice,bob")


def test_duplicate_username_rejected(server):
    login(server, "alice")
    again = login(server, "alice")
    assert received(again) == [
        Packet(PacketType.LOGIN_RESPONSE, "fail:用户名已存在".encode("utf-8"))
    ]
    assert server.online_users() == ["alice"]


def test_chat_broadcast_reaches_everyone_including_sender(server):
    alice, bob = login(server, "alice"), login(server, "bob")
    clear(alice, bob)
    message = Packet(PacketType.CHAT_MESSAGE, b"alice|hi")
    server.handle_packet(alice, message)
    assert received(alice) == [message]
    assert received(bob) == [message]


def test_chat_from_unregistered_not_echoed_to_it(server):
    alice = login(server, "alice")
    stranger = make_connection()
    clear(alice)
    message = Packet(PacketType.CHAT_MESSAGE, b"x|y")
    server.handle_packet(stranger, message)
    assert received(alice) == [message]
    assert received(stranger) == []


def test_private_request_forwarded_to_target_only(server):
    alice, bob, carol = (login(server, n) for n in ("alice", "bob", "carol"))
    clear(alice, bob, carol)
    request = Packet(PacketType.PRIVATE_CHAT_REQUEST, b"alice|bob")
    server.handle_packet(alice, request)
    assert received(bob) == [request]
    assert received(alice) == []
    assert received(carol) == []


def test_private_request_to_offline_user_is_logged(server, logs):
    alice = login(server, "alice")
    clear(alice)
    before = len(logs)
    server.handle_packet(alice, Packet(PacketType.PRIVATE_CHAT_REQUEST, b"alice|zed"))
    assert received(alice) == []
    assert len(logs) == before + 1
    assert "zed" in logs[-1]


def test_private_response_goes_to_requester(server):
    alice, bob = login(server, "alice"), login(server, "bob")
    clear(alice, bob)
    response = Packet(PacketType.PRIVATE_CHAT_RESPONSE, b"bob|alice|agree")
    server.handle_packet(bob, response)
    assert received(alice) == [response]
    assert received(bob) == []


def test_private_response_with_too_few_fields_dropped(server):
    alice, bob = login(server, "alice"), login(server, "bob")
    clear(alice, bob)
    server.handle_packet(bob, Packet(PacketType.PRIVATE_CHAT_RESPONSE, b"bob|alice"))
    assert received(alice) == []


def test_private_message_forwarded_with_pipes_in_content(server):
    alice, bob = login(server, "alice"), login(server, "bob")
    clear(alice, bob)
    data = b"alice|bob|a|b|c"
    server.handle_packet(alice, Packet(PacketType.PRIVATE_CHAT_MESSAGE, data))
    assert received(bob) == [Packet(PacketType.PRIVATE_CHAT_MESSAGE, data)]
    assert received(alice) == []


def test_malformed_private_message_logged_and_dropped(server, logs):
    alice, bob = login(server, "alice"), login(server, "bob")
    clear(alice, bob)
    before = len(logs)
    server.handle_packet(alice, Packet(PacketType.PRIVATE_CHAT_MESSAGE, b"alice|bob"))
    assert received(bob) == []
    assert len(logs) == before + 1


def test_group_image_excludes_sender(server):
    alice, bob, carol = (login(server, n) for n in ("alice", "bob", "carol"))
    clear(alice, bob, carol)
    image = Packet(
        PacketType.IMAGE_TRANSFER, image_payload("GROUP|alice|cat.png|3", b"\x89PN")
    )
    server.handle_packet(alice, image)
    assert received(alice) == []
    assert received(bob) == [image]
    assert received(carol) == [image]


def test_private_image_forwarded_to_receiver(server):
    alice, bob, carol = (login(server, n) for n in ("alice", "bob", "carol"))
    clear(alice, bob, carol)
    image = Packet(
        PacketType.IMAGE_TRANSFER,
        image_payload("PRIVATE|alice|carol|cat.png|2", b"\xff\xd8"),
    )
    server.handle_packet(alice, image)
    assert received(carol) == [image]
    assert received(bob) == []


@pytest.mark.parametrize(
    "data",
    [
        b"\x00\x00",
        struct.pack(">i", 0) + b"abc",
        struct.pack(">i", -1) + b"abc",
        struct.pack(">i", 3) + b"abc",
        image_payload("GROUP|alice|cat.png", b"img"),
        image_payload("PRIVATE|alice|bob|cat.png", b"img"),
        image_payload("OTHER|alice|bob", b"img"),
    ],
)
def test_invalid_image_packets_dropped(server, logs, data):
    alice, bob = login(server, "alice"), login(server, "bob")
    clear(alice, bob)
    before = len(logs)
    server.handle_packet(alice, Packet(PacketType.IMAGE_TRANSFER, data))
    assert received(alice) == []
    assert received(bob) == []
    assert len(logs) == before + 1


def test_broadcast_with_exclusion(server):
    alice, bob = login(server, "alice"), login(server, "bob")
    clear(alice, bob)
    notice = Packet(PacketType.USER_ONLINE, b"dave")
    server.broadcast(notice, "bob")
    assert received(alice) == [notice]
    assert received(bob) == []


def test_disconnect_notifies_others_and_closes(server):
    alice, bob = login(server, "alice"), login(server, "bob")
    clear(alice, bob)
    server.disconnect(bob)
    assert received(alice) == [Packet(PacketType.USER_OFFLINE, b"bob")]
    assert server.online_users() == ["alice"]
    assert bob.writer.closed is True


def test_disconnect_of_unregistered_sends_nothing(server):
    alice = login(server, "alice")
    stranger = make_connection()
    clear(alice)
    server.disconnect(stranger)
    assert received(alice) == []
    assert stranger.writer.closed is True


def test_closed_connection_receives_nothing():
    connection = make_connection()
    connection.writer.closed = True
    connection.send(Packet(PacketType.CHAT_MESSAGE, b"a|b"))
    assert connection.writer.data == bytearray()


async def _read_packet(reader, buffer):
    while (packet := unpack(buffer)) is None:
        chunk = await asyncio.wait_for(reader.read(4096), 5)
        assert chunk, "connection closed before a packet arrived"
        buffer += chunk
    return packet


@pytest.mark.asyncio
async def test_server_over_tcp():
    logs = []
    server = ChatServer(log=logs.append)
    port = await server.start("127.0.0.1", 0)
    writers = []
    try:
        reader_a, writer_a = await asyncio.open_connection("127.0.0.1", port)
        writers.append(writer_a)
        buffer_a = bytearray()
        writer_a.write(Packet(PacketType.LOGIN_REQUEST, b"alice").pack())
        await writer_a.drain()
        assert await _read_packet(reader_a, buffer_a) == Packet(
            PacketType.LOGIN_RESPONSE, b"success"
        )
        assert await _read_packet(reader_a, buffer_a) == Packet(PacketType.USER_LIST, b"")

        reader_b, writer_b = await asyncio.open_connection("127.0.0.1", port)
        writers.append(writer_b)
        buffer_b = bytearray()
        writer_b.write(Packet(PacketType.LOGIN_REQUEST, b"bob").pack())
        await writer_b.drain()
        assert await _read_packet(reader_b, buffer_b) == Packet(
            PacketType.LOGIN_RESPONSE, b"success"
        )
        assert await _read_packet(reader_b, buffer_b) == Packet(
            PacketType.USER_LIST, b"alice"
        )
        assert await _read_packet(reader_a, buffer_a) == Packet(
            PacketType.USER_ONLINE, b"bob"
        )

        writer_b.close()
        await writer_b.wait_closed()
        assert await _read_packet(reader_a, buffer_a) == Packet(
            PacketType.USER_OFFLINE, b"bob"
        )
        assert server.online_users() == ["alice"]
    finally:
        for writer in writers:
            writer.close()
        await server.close()