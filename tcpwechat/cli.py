"""Command line entry point: run the chat server or a console client."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

from .client import ChatClient, ClientError, ClientEvents
from .privatechat import ChatEntry, PrivateChat
from .server import ChatServer

__all__ = ["build_parser", "parse_command", "main"]

# command word -> (action, number of arguments, usage)
_COMMANDS = {
    "/msg": ("private", 2, "/msg USER TEXT"),
    "/request": ("request", 1, "/request USER"),
    "/image": ("image", 1, "/image PATH"),
    "/pimage": ("private_image", 2, "/pimage USER PATH"),
    "/close": ("close", 1, "/close USER"),
    "/users": ("users", 0, "/users"),
    "/chats": ("chats", 0, "/chats"),
    "/quit": ("quit", 0, "/quit"),
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with its server and client modes."""
    parser = argparse.ArgumentParser(prog="tcpwechat", description="TCP chat room.")
    modes = parser.add_subparsers(dest="mode", required=True)

    server = modes.add_parser("server", help="run the chat server")
    server.add_argument("--host", default="0.0.0.0")
    server.add_argument("--port", type=int, default=8888)

    client = modes.add_parser("client", help="run a console chat client")
    client.add_argument("username")
    client.add_argument("--host", default="127.0.0.1")
    client.add_argument("--port", type=int, default=8888)
    client.add_argument(
        "--auto-accept",
        action="store_true",
        help="accept private chat requests and incoming images without asking",
    )
    client.add_argument(
        "--save-dir", type=Path, default=None, help="directory for received images"
    )
    return parser


def parse_command(line: str) -> tuple[str, list[str]]:
    """Turn one input line into an action name and its arguments.

    Plain text is a room message. Raises ValueError for a blank line, an
    unknown command, or the wrong number of arguments.
    """
    text = line.strip()
    if not text:
        raise ValueError("message must not be empty")
    if not text.startswith("/"):
        return "say", [text]
    head, _, rest = text.partition(" ")
    spec = _COMMANDS.get(head.lower())
    if spec is None:
        raise ValueError(f"unknown command: {head}")
    action, count, usage = spec
    rest = rest.strip()
    args = rest.split(maxsplit=count - 1) if rest and count else []
    if len(args) != count or (count == 0 and rest):
        raise ValueError(f"usage: {usage}")
    return action, args


class _ConsoleEvents(ClientEvents):
    def __init__(self, out: TextIO, auto_accept: bool, save_dir: Optional[Path]) -> None:
        self._out = out
        self._auto_accept = auto_accept
        self._save_dir = save_dir
        self._announced: set[str] = set()

    def _print(self, text: str) -> None:
        print(text, file=self._out, flush=True)

    def message(self, text, is_self=False, is_system=False):
        if is_system:
            self._print(f"* {text}")
        else:
            stamp = datetime.now().strftime("%H:%M:%S")
            self._print(f"{stamp}  {'[Me] ' if is_self else ''}{text}")

    def alert(self, title, text):
        self._print(f"! {title}: {text}")

    def ask(self, title, text):
        answer = "yes" if self._auto_accept else "no"
        self._print(f"? {title}: {text} -> {answer}")
        return self._auto_accept

    def choose_save_path(self, file_name):
        return None if self._save_dir is None else self._save_dir / file_name

    def show_private_chat(self, chat: PrivateChat):
        if chat.target_username not in self._announced:
            self._announced.add(chat.target_username)
            self._print(f"* {chat.title} is open; write with /msg {chat.target_username}")

    def private_message(self, chat: PrivateChat, entry: ChatEntry):
        self._print(f"{entry.time}  <{chat.target_username}> {entry.text}")

    def disconnected(self):
        self._print("* connection closed")


def _private_chat(client: ChatClient, user: str) -> PrivateChat:
    chat = client.private_chats.get(user)
    if chat is None:
        raise ClientError(f"no private chat with {user}; send /request {user} first")
    return chat


def _execute(client: ChatClient, out: TextIO, action: str, args: list[str]) -> None:
    if action == "say":
        client.send_chat(args[0])
    elif action == "request":
        client.request_private_chat(args[0])
        print("* private chat request sent, waiting for an answer", file=out)
    elif action == "image":
        client.send_group_image(args[0])
    elif action == "private":
        entry = _private_chat(client, args[0]).send_message(args[1])
        print(f"{entry.time}  [Me -> {args[0]}] {entry.text}", file=out)
    elif action == "private_image":
        entry = _private_chat(client, args[0]).send_image(args[1])
        print(f"{entry.time}  [Me -> {args[0]}] {entry.text}", file=out)
    elif action == "close":
        if not client.close_private_chat(args[0]):
            raise ClientError(f"no private chat with {args[0]}")
    elif action == "users":
        print("online: " + (", ".join(client.users) or "(nobody)"), file=out)
    elif action == "chats":
        print("private chats: " + (", ".join(client.private_chats) or "(none)"), file=out)


async def _run_server(host: str, port: int) -> int:
    def log(message: str) -> None:
        print(f"[{datetime.now():%H:%M:%S}] {message}", flush=True)

    server = ChatServer(log=log)
    try:
        await server.start(host, port)
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    try:
        await asyncio.Event().wait()
    finally:
        await server.close()
    return 0


async def _run_client(args: argparse.Namespace) -> int:
    events = _ConsoleEvents(sys.stdout, args.auto_accept, args.save_dir)
    client = ChatClient(events)
    try:
        await client.connect(args.host, args.port, args.username)
    except ClientError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    loop = asyncio.get_running_loop()
    try:
        while client.connected:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            try:
                action, command_args = parse_command(line)
                if action == "quit":
                    break
                _execute(client, sys.stdout, action, command_args)
            except (ValueError, ClientError, OSError) as exc:
                print(f"error: {exc}", file=sys.stderr)
    finally:
        client.logout()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Run the server or a console client; return the exit status."""
    args = build_parser().parse_args(argv)
    try:
        if args.mode == "server":
            return asyncio.run(_run_server(args.host, args.port))
        return asyncio.run(_run_client(args))
    except KeyboardInterrupt:
        return 0