from __future__ import annotations
from typing import Optional

from ddpclient.core.Commands import MethodCallCommand, SubscribeCommand, method_call, subscribe

# Chat server methods used by the REPL. Each one is just a generic
# method call (or subscription) with a fixed name and argument layout.

ROOM_MESSAGES_STREAM = "stream-room-messages"


def get_rooms() -> MethodCallCommand:
    return method_call("rooms/get")


def open_room(room_id: str) -> MethodCallCommand:
    return method_call("openRoom", room_id)


def join_room(room_id: str, join_code: Optional[str] = None) -> MethodCallCommand:
    if join_code:
        return method_call("joinRoom", room_id, join_code)
    return method_call("joinRoom", room_id)


def send_message(room_id: str, text: str) -> MethodCallCommand:
    return method_call("sendMessage", {"rid": room_id, "msg": text})


def create_channel(channel_name: str, *users_to_join: str) -> MethodCallCommand:
    # third param is the read-only flag
    return method_call("createChannel", channel_name, [u for u in users_to_join if u], False)


def stream_room_messages(room_id: str) -> SubscribeCommand:
    return subscribe(ROOM_MESSAGES_STREAM, room_id, False)
