import json

import pytest

from shared.errors import MalformedFrame
from shared.wire import WireMessage, decode, encode


def test_decode_keeps_whole_payload():
    message = decode('{"msg":"result","id":"3","result":{"ok":true}}')

    assert message.kind == "result"
    assert message.correlation_id == "3"
    assert message.payload["result"] == {"ok": True}


def test_decode_accepts_bytes_and_numeric_ids():
    message = decode(b'{"msg":"added","id":7,"fields":{}}')

    assert message.kind == "added"
    assert message.correlation_id == "7"


def test_decode_without_id():
    message = decode('{"msg":"connected","session":"abc"}')

    assert message.correlation_id is None
    assert message.payload["session"] == "abc"


@pytest.mark.parametrize("frame", [
    "not json",
    "[1, 2, 3]",
    '"ping"',
    '{"id":"1"}',
    '{"msg":""}',
    '{"msg":5}',
    b"\xff\xfe",
])
def test_decode_rejects_unusable_frames(frame):
    with pytest.raises(MalformedFrame):
        decode(frame)


def test_encode_is_compact_and_stable():
    frame = encode({"msg": "method", "method": "rooms/get", "params": [], "id": "1"})

    assert " " not in frame
    assert frame == encode({"id": "1", "params": [], "method": "rooms/get", "msg": "method"})
    assert json.loads(frame)["method"] == "rooms/get"
