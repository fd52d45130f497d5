from __future__ import annotations
from typing import Any, Awaitable, Callable, Dict, List

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ddpclient import chat_methods
from ddpclient.core.MessageTypes import MessageKind
from ddpclient.ws_client import DDPSession
from shared.errors import OperationRejected, PreconditionViolation, RequestTimeout, TransportFailed
from shared.log import get_logger
from shared.wire import WireMessage

logger = get_logger(__name__)

ShellHandler = Callable[[List[str]], Awaitable[bool]]

HELP = [
    ("rooms", "list the rooms you belong to"),
    ("openRoom,<rid>", "open a room"),
    ("joinRoom,<rid>[,<code>]", "join a room, with a join code if it has one"),
    ("sendMessage,<rid>,<text>", "post a message"),
    ("streamRoomMessages,<rid>", "subscribe to new messages in a room"),
    ("unsubscribe,<id>", "stop a subscription"),
    ("subs", "list active subscriptions"),
    ("createChannel,<name>[,<user>...]", "create a channel and invite users"),
    ("help", "show this list"),
    ("logout", "log out and quit"),
]


class ShellUsageError(ValueError):
    pass


class CommandShell:
    """
    Line-oriented command dispatch on top of a ready DDPSession.

    A line is a comma-separated list: the first term picks the command,
    the rest are its arguments, e.g. "sendMessage,GENERAL,hello".
    """

    PROMPT = "command> "

    # commands whose last argument is free text and may contain commas, with the split limit
    FREE_TEXT_SPLITS = {"sendMessage": 1}

    def __init__(self, session: DDPSession, console: Console) -> None:
        self.session = session
        self.console = console
        self._commands: Dict[str, ShellHandler] = {
            "rooms": self._rooms,
            "openRoom": self._open_room,
            "joinRoom": self._join_room,
            "sendMessage": self._send_message,
            "streamRoomMessages": self._stream_room_messages,
            "unsubscribe": self._unsubscribe,
            "subs": self._subs,
            "createChannel": self._create_channel,
            "help": self._help,
            "logout": self._logout,
        }

    def bind_stream_output(self) -> None:
        self.session.on(MessageKind.CHANGED, self.render_stream_event)

    async def execute(self, line: str) -> bool:
        """Run one REPL line; returns False when the loop should stop"""
        head, sep, rest = line.partition(",")
        name = head.strip()
        maxsplit = self.FREE_TEXT_SPLITS.get(name, -1)
        args = [t.strip() for t in rest.split(",", maxsplit)] if sep else []
        if not name:
            return True
        handler = self._commands.get(name)
        if handler is None:
            self.console.print(f"[red]Unknown command[/] {escape(name)}. Try help")
            return True
        try:
            return await handler(args)
        except ShellUsageError as e:
            self.console.print(f"Usage: {e}")
        except OperationRejected as e:
            self.console.print(f"[red]{name} rejected[/]: {escape(str(e))}")
        except RequestTimeout as e:
            self.console.print(f"[yellow]{name} timed out[/]: {escape(str(e))}")
        except PreconditionViolation as e:
            self.console.print(f"[red]Not allowed now[/]: {escape(str(e))}")
        except TransportFailed as e:
            self.console.print(f"[red]Connection lost[/]: {escape(str(e))}")
            return False
        return True

    def render_stream_event(self, message: WireMessage) -> None:
        fields = message.payload.get("fields") or {}
        for item in fields.get("args") or []:
            if not isinstance(item, dict):
                continue
            user = (item.get("u") or {}).get("username", "?")
            self.console.print(
                f"[bold cyan]{escape(str(item.get('rid', fields.get('eventName', ''))))}[/] "
                f"[bold]{escape(str(user))}[/]: {escape(str(item.get('msg', '')))}"
            )

    @staticmethod
    def _arg(args: List[str], index: int, usage: str) -> str:
        if len(args) <= index or not args[index]:
            raise ShellUsageError(usage)
        return args[index]

    async def _rooms(self, args: List[str]) -> bool:
        result = await self.session.issue(chat_methods.get_rooms())
        rooms: List[Any] = result.get("update", []) if isinstance(result, dict) else (result or [])
        table = Table(title="Rooms")
        table.add_column("Room ID")
        table.add_column("Name")
        table.add_column("Type")
        for room in rooms:
            if isinstance(room, dict):
                table.add_row(str(room.get("_id", "")), str(room.get("fname") or room.get("name") or ""), str(room.get("t", "")))
        self.console.print(table)
        return True

    async def _open_room(self, args: List[str]) -> bool:
        room_id = self._arg(args, 0, "openRoom,<rid>")
        response = await self.session.issue(chat_methods.open_room(room_id))
        self.console.print({"openRoomResponse": response})
        return True

    async def _join_room(self, args: List[str]) -> bool:
        room_id = self._arg(args, 0, "joinRoom,<rid>[,<code>]")
        join_code = args[1] if len(args) > 1 else None
        response = await self.session.issue(chat_methods.join_room(room_id, join_code))
        self.console.print({"joinRoomResponse": response})
        return True

    async def _send_message(self, args: List[str]) -> bool:
        usage = "sendMessage,<rid>,<text>"
        room_id = self._arg(args, 0, usage)
        text = args[1] if len(args) > 1 else ""
        if not text:
            raise ShellUsageError(usage)
        response = await self.session.issue(chat_methods.send_message(room_id, text))
        self.console.print({"sendMessageResponse": response})
        return True

    async def _stream_room_messages(self, args: List[str]) -> bool:
        room_id = self._arg(args, 0, "streamRoomMessages,<rid>")
        subscription_id = self.session.issue(chat_methods.stream_room_messages(room_id))
        self.console.print({"subscriptionId": subscription_id})
        return True

    async def _unsubscribe(self, args: List[str]) -> bool:
        subscription_id = self._arg(args, 0, "unsubscribe,<id>")
        self.session.issue_unsubscribe(subscription_id)
        self.console.print(f"Stopped subscription {escape(subscription_id)}")
        return True

    async def _subs(self, args: List[str]) -> bool:
        table = Table(title="Subscriptions")
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("Params")
        for record in self.session.subscriptions.list_sorted():
            table.add_row(record.subscription_id, record.name, escape(repr(list(record.params))))
        self.console.print(table)
        return True

    async def _create_channel(self, args: List[str]) -> bool:
        name = self._arg(args, 0, "createChannel,<name>[,<user>...]")
        response = await self.session.issue(chat_methods.create_channel(name, *args[1:]))
        self.console.print({"createChannelResponse": response})
        return True

    async def _help(self, args: List[str]) -> bool:
        for usage, description in HELP:
            self.console.print(f"[bold]{escape(usage)}[/]  {description}")
        return True

    async def _logout(self, args: List[str]) -> bool:
        await self.session.issue_close()
        self.console.print("[bold green]Logged out[/]")
        return False
