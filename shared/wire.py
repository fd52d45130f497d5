from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
import json

from shared.errors import MalformedFrame


@dataclass
class WireMessage:
    """
    Parsed shape of any DDP frame:
    {
    "msg": "STRING",
    "id":  "STRING (optional, correlation id)",
    ...   kind-specific fields
    }

    'payload' keeps the whole decoded object so that handlers can read
    'result', 'error', 'fields' etc. without a second lookup table.
    """
    kind: str                       # value of "msg", case-sensitive
    correlation_id: Optional[str]   # value of "id" as a string, if present
    payload: Dict[str, Any]

    @classmethod
    def from_json(cls, json_str: Union[str, bytes]) -> 'WireMessage':
        """Parse a text frame into a WireMessage"""
        if isinstance(json_str, (bytes, bytearray)):
            try:
                json_str = json_str.decode('utf-8')
            except UnicodeDecodeError as e:
                raise MalformedFrame(f"Frame is not UTF-8: {e}")
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise MalformedFrame(f"Invalid JSON: {e}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> 'WireMessage':
        """Create WireMessage from a decoded object, checking only the 'msg' tag"""
        if not isinstance(data, dict):
            raise MalformedFrame(f"Frame must be a JSON object, got {type(data).__name__}")
        kind = data.get('msg')
        if not isinstance(kind, str) or not kind:
            raise MalformedFrame("Frame has no 'msg' tag")

        correlation_id = data.get('id')
        if correlation_id is not None and not isinstance(correlation_id, str):
            correlation_id = str(correlation_id)

        return cls(kind=kind, correlation_id=correlation_id, payload=data)


def encode(payload: Dict[str, Any]) -> str:
    """Serialize an outbound command payload to a compact JSON text frame"""
    return json.dumps(payload, separators=(',', ':'), sort_keys=True)


def decode(frame: Union[str, bytes]) -> WireMessage:
    """Parse an inbound text frame, raising MalformedFrame on anything unusable"""
    return WireMessage.from_json(frame)
