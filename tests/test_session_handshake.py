import asyncio
from datetime import datetime, timezone

import pytest


@pytest.mark.asyncio
async def test_connect_then_login_reaches_ready():
    from conftest import DummyWebSocket, ready_session
    from ddpclient.core.MessageTypes import SessionState

    ws = DummyWebSocket()
    session = await ready_session(ws)

    connect, login = ws.sent()
    assert connect == {"msg": "connect", "version": "1", "support": ["1"]}
    assert login["msg"] == "method"
    assert login["method"] == "login"
    assert login["id"] == "1"
    assert login["params"][0]["user"] == {"username": "alice"}
    assert login["params"][0]["password"]["algorithm"] == "sha-256"

    assert session.state == SessionState.READY
    assert session.server_session == "s1"
    assert session.credential.user_id == "u1"
    assert session.credential.token == "t1"
    assert session.credential.token_expires == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert session.pending_count == 0

    await session.shutdown()


@pytest.mark.asyncio
async def test_login_error_fails_session():
    from conftest import DummyWebSocket, wait_for
    from ddpclient.core.MessageTypes import SessionState
    from ddpclient.ws_client import DDPSession
    from shared.errors import HandshakeFailed, PreconditionViolation

    ws = DummyWebSocket()
    session = DDPSession("ws://chat.test/websocket")
    ack = session.attach(ws)
    ws.feed({"msg": "connected", "session": "s1"})
    await asyncio.wait_for(ack, timeout=1.0)

    login = session.issue_authenticate("alice", "d" * 64)
    assert await wait_for(lambda: len(ws.sent_messages) == 2)
    ws.feed({"msg": "result", "id": "1", "error": {"error": 403, "reason": "User not found"}})

    with pytest.raises(HandshakeFailed) as info:
        await asyncio.wait_for(login, timeout=1.0)
    assert info.value.rejection.error == 403
    assert session.state == SessionState.FAILED
    assert session.credential is None

    with pytest.raises(PreconditionViolation):
        session.issue_method_call("rooms/get")
    assert await wait_for(lambda: ws.closed)


@pytest.mark.asyncio
async def test_failed_frame_refuses_handshake():
    from conftest import DummyWebSocket, wait_for
    from ddpclient.core.MessageTypes import SessionState
    from ddpclient.ws_client import DDPSession
    from shared.errors import HandshakeFailed

    ws = DummyWebSocket()
    session = DDPSession("ws://chat.test/websocket")
    ack = session.attach(ws)
    ws.feed({"msg": "failed", "version": "pre2"})

    with pytest.raises(HandshakeFailed):
        await asyncio.wait_for(ack, timeout=1.0)
    assert session.state == SessionState.FAILED
    assert isinstance(session.failure, HandshakeFailed)
    assert await wait_for(lambda: ws.closed)


@pytest.mark.asyncio
async def test_method_before_ready_is_refused_and_not_sent():
    from conftest import DummyWebSocket
    from ddpclient.core.MessageTypes import SessionState
    from ddpclient.ws_client import DDPSession
    from shared.errors import PreconditionViolation

    ws = DummyWebSocket()
    session = DDPSession("ws://chat.test/websocket")
    ack = session.attach(ws)
    assert session.state == SessionState.AWAITING_HANDSHAKE_ACK

    with pytest.raises(PreconditionViolation):
        session.issue_method_call("rooms/get")
    with pytest.raises(PreconditionViolation):
        session.issue_authenticate("alice", "d" * 64)
    await asyncio.sleep(0.05)

    assert [m["msg"] for m in ws.sent()] == ["connect"]
    assert session.pending_count == 1

    ack.cancel()
    await session.shutdown()


@pytest.mark.asyncio
async def test_second_login_while_first_in_flight_is_refused():
    from conftest import DummyWebSocket
    from ddpclient.ws_client import DDPSession
    from shared.errors import PreconditionViolation, TransportFailed

    ws = DummyWebSocket()
    session = DDPSession("ws://chat.test/websocket")
    ack = session.attach(ws)
    ws.feed({"msg": "connected", "session": "s1"})
    await asyncio.wait_for(ack, timeout=1.0)

    first = session.issue_authenticate("alice", "d" * 64)
    with pytest.raises(PreconditionViolation):
        session.issue_authenticate("alice", "d" * 64)

    await session.shutdown()
    with pytest.raises(TransportFailed):
        await first


@pytest.mark.asyncio
async def test_connect_only_from_disconnected():
    from conftest import DummyWebSocket, ready_session
    from shared.errors import PreconditionViolation

    ws = DummyWebSocket()
    session = await ready_session(ws)

    with pytest.raises(PreconditionViolation):
        await session.connect()

    await session.shutdown()


@pytest.mark.asyncio
async def test_connect_refuses_non_websocket_url():
    from ddpclient.core.MessageTypes import SessionState
    from ddpclient.ws_client import DDPSession
    from shared.errors import PreconditionViolation

    session = DDPSession("http://chat.test/websocket")

    with pytest.raises(PreconditionViolation):
        await session.connect()
    assert session.state == SessionState.DISCONNECTED
