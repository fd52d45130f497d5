from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Small helpers the session and config layer call to decide whether
values coming off the wire or out of a config file are usable.
"""

_SCHEME_MAP = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def is_ws_url(s: str) -> bool:
    """
    returns True for 'ws://host[:port]/path' or 'wss://...', otherwise False.
    """
    try:
        parts = urlsplit(s)
    except ValueError:
        return False
    return parts.scheme in ("ws", "wss") and bool(parts.netloc)


def normalize_ws_url(s: str) -> str:
    """
    Accepts 'http://localhost:3000/websocket' style addresses as well as ws URLs.

    - http  -> ws
    - https -> wss
    - anything else is rejected with ValueError
    """
    parts = urlsplit(s.strip())
    scheme = _SCHEME_MAP.get(parts.scheme.lower())
    if scheme is None or not parts.netloc:
        raise ValueError(f"Not a websocket or http URL: {s!r}")
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


# ========================================
#           DDP VALUE HELPERS
# ========================================

def parse_ddp_date(value: Any) -> Optional[datetime]:
    """
    Convert an EJSON date ({"$date": <unix ms>}) or a bare unix-ms number
    into an aware UTC datetime. None stays None.
    """
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("$date")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Not a DDP date: {value!r}")
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
