# tcpwechat

A small chat system over plain TCP: one asyncio server, many clients. Clients
log in with a user name and can then

- chat in the shared group room,
- ask another user for a private chat, and talk one to one once the other
  side agrees,
- send images (up to 5 MB) to the whole room or to a private partner,
- follow who comes online and who leaves.

It uses the standard library only.

## Installation

```
pip install .
```

With the test extra:

```
pip install ".[test]"
pytest
```

## Running

The package installs one command, `tcpwechat`, with two modes.

### Server

```
tcpwechat server [--host HOST] [--port PORT]
```

Listens on `0.0.0.0:8888` by default and prints a timestamped log line for
logins, logouts and every forwarded request, message and image. Stop it with
Ctrl+C.

### Console client

```
tcpwechat client USERNAME [--host HOST] [--port PORT] [--auto-accept] [--save-dir DIR]
```

Connects to `127.0.0.1:8888` by default and logs in as `USERNAME`. If the
name is already taken the server answers with a failure and the client
reports "Login failed".

Every line typed is either a room message or one of these commands:

| command              | what it does                                        |
|----------------------|-----------------------------------------------------|
| `TEXT`               | send `TEXT` to the room                             |
| `/request USER`      | ask `USER` for a private chat                       |
| `/msg USER TEXT`     | send `TEXT` in the private chat with `USER`         |
| `/image PATH`        | send an image file to the room                      |
| `/pimage USER PATH`  | send an image file in the private chat with `USER`  |
| `/close USER`        | close the private chat with `USER`                  |
| `/users`             | list the other users online                         |
| `/chats`             | list the open private chats                         |
| `/quit`              | log out and exit                                    |

`/msg` and `/pimage` need an open private chat: one opens when the other
user agrees to your `/request`, or when you agree to theirs.

The client cannot ask you questions interactively. With `--auto-accept` it
answers yes to every question (private chat requests, "save this image?",
"open a private chat for this image?"); without it every question is answered
no, so incoming private chat requests are refused with the default reason.
Received images are written to `--save-dir` when saving goes ahead; without
`--save-dir` nothing is saved. An image from a partner whose private chat is
already open is saved without asking.

Errors (an unknown command, wrong arguments, a file that cannot be read, an
image larger than 5 MB) are printed to standard error and the client keeps
running.

## What it does not do

- There is no graphical interface; the client is a line-based console
  program.
- Nothing is stored: no accounts, no passwords, no message history beyond the
  running process.
- Messages are not encrypted.

## The wire protocol

Every message is a packet: a 16-byte header followed by the payload. The
header holds four big-endian unsigned 32-bit integers:

| field    | meaning                                      |
|----------|----------------------------------------------|
| magic    | always `0x12345678`                           |
| length   | number of payload bytes                       |
| type     | a `PacketType` value                          |
| checksum | CRC-32 (polynomial `0xEDB88320`) of payload   |

A reader that holds only part of a packet waits for more bytes. A packet with
a wrong magic number or a checksum that does not match is not taken off the
buffer, so nothing after it is read either.

| value | name                    | payload                                                |
|-------|-------------------------|--------------------------------------------------------|
| 1     | `LOGIN_REQUEST`         | user name                                              |
| 2     | `LOGIN_RESPONSE`        | `success` or `fail:<reason>`                           |
| 3     | `CHAT_MESSAGE`          | `sender\|text`                                         |
| 4     | `PRIVATE_CHAT_MESSAGE`  | `sender\|receiver\|text`                               |
| 5     | `USER_ONLINE`           | user name                                              |
| 6     | `USER_OFFLINE`          | user name                                              |
| 7     | `USER_LIST`             | comma-separated user names                             |
| 8     | `PRIVATE_CHAT_REQUEST`  | `requester\|target`                                    |
| 9     | `PRIVATE_CHAT_RESPONSE` | `receiver\|requester\|agree` or `...\|refuse:<reason>` |
| 10    | `IMAGE_TRANSFER`        | image payload, see below                               |
| 11    | `IMAGE_RECEIVE_NOTIFY`  | defined, but neither sent nor handled                  |

An image payload is a 4-byte signed big-endian header length, a UTF-8 header,
then the raw image bytes. The header is `GROUP|sender|file name|size` or
`PRIVATE|sender|receiver|file name|size`. File names have `|`, `\` and `/`
replaced by `_` before they are sent.

On login the server replies `success`, sends the new user a `USER_LIST` of
everyone else, and sends `USER_ONLINE` to the others. Room messages go to
every logged-in user, the sender included; group images go to everyone but
the sender. Private requests, responses, messages and images go only to the
named user, and are dropped when that user is not online. When a client
disconnects, the others receive `USER_OFFLINE`.

## Using the library

```python
from tcpwechat.packet import Packet, PacketType, iter_packets
from tcpwechat.crc32 import calculate, verify

wire = Packet(PacketType.CHAT_MESSAGE, b"alice|hello").pack()
assert verify(b"alice|hello", calculate(b"alice|hello"))

buffer = bytearray(wire)
for packet in iter_packets(buffer):
    print(packet.type, packet.data)
```

Running a server inside your own event loop:

```python
import asyncio
from tcpwechat.server import ChatServer

async def run():
    server = ChatServer(log=print)
    port = await server.start("127.0.0.1", 0)  # returns the bound port
    ...
    await server.close()

asyncio.run(run())
```

The modules:

- `tcpwechat.crc32` – `calculate` and `verify`.
- `tcpwechat.packet` – `PacketType`, `Packet`, `unpack` and `iter_packets`.
- `tcpwechat.messages` – parse and build the text payloads (`ChatMessage`,
  `PrivateChatRequest`, `PrivateChatResponse`, `PrivateMessage`,
  `parse_user_list`); malformed payloads raise `MessageFormatError`.
- `tcpwechat.images` – `encode_group_image`, `encode_private_image`,
  `decode_image_payload` (raises `ImagePayloadError`), `read_image_file`
  (raises `ImageTooLargeError` above 5 MB), `sanitize_file_name` and
  `save_image`.
- `tcpwechat.server` – `ChatServer` and `Connection`.
- `tcpwechat.privatechat` – `PrivateChat`, one private conversation and its
  `ChatEntry` history.
- `tcpwechat.client` – `ChatClient`; a front end reacts to it by overriding
  the hooks of `ClientEvents`.
- `tcpwechat.cli` – the `tcpwechat` command.