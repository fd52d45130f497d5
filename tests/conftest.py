import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class DummyWebSocket:
    """Records outbound frames; replays inbound frames queued with feed()."""

    def __init__(self) -> None:
        self.sent_messages = []
        self.inbound = asyncio.Queue()
        self.closed = False
        self.close_code = None

    async def send(self, data: str) -> None:
        self.sent_messages.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.closed = True
            self.close_code = code
            self.inbound.put_nowait(None)

    def feed(self, frame) -> None:
        self.inbound.put_nowait(frame if isinstance(frame, (str, bytes)) else json.dumps(frame))

    def drop(self, exc: BaseException) -> None:
        self.inbound.put_nowait(exc)

    def sent(self) -> list:
        return [json.loads(m) for m in self.sent_messages]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.inbound.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return False


async def ready_session(ws, config=None):
    """Drive a DDPSession through connect + login against a DummyWebSocket."""
    from ddpclient.ws_client import DDPSession

    session = DDPSession("ws://chat.test/websocket", config)
    ack = session.attach(ws)
    ws.feed({"msg": "connected", "session": "s1"})
    await asyncio.wait_for(ack, timeout=1.0)
    login = session.issue_authenticate("alice", "d" * 64)
    assert await wait_for(lambda: len(ws.sent_messages) == 2)
    login_id = ws.sent()[-1]["id"]
    ws.feed({"msg": "result", "id": login_id, "result": {"id": "u1", "token": "t1", "tokenExpires": {"$date": 1700000000000}}})
    await asyncio.wait_for(login, timeout=1.0)
    return session
