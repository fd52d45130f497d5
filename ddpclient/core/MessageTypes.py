from __future__ import annotations

from enum import Enum
from typing import Set


class MessageKind(str, Enum):
    """DDP message kinds, the value of the 'msg' field."""

    # Handshake
    CONNECT = "connect"              # client -> server, opens the DDP session
    CONNECTED = "connected"          # server ack, carries no id
    FAILED = "failed"                # server refuses the protocol version

    # RPC
    METHOD = "method"
    RESULT = "result"

    # Subscriptions
    SUB = "sub"
    UNSUB = "unsub"
    NOSUB = "nosub"                  # subscription refused or stopped
    ADDED = "added"                  # subscription ready / first data
    UPDATED = "updated"
    CHANGED = "changed"              # stream push, not correlated
    REMOVED = "removed"
    READY = "ready"

    # Keepalive and control
    PING = "ping"
    PONG = "pong"
    ERROR = "error"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is a known message kind."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


class SessionState(str, Enum):
    """Connection session state machine."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_HANDSHAKE_ACK = "awaiting_handshake_ack"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


# Kinds a PendingRequest may wait for
CORRELATABLE_KINDS: Set[MessageKind] = {
    MessageKind.CONNECTED,
    MessageKind.RESULT,
    MessageKind.ADDED,
    MessageKind.UPDATED,
}

# Kinds that may be registered without a correlation id
UNCORRELATED_KINDS: Set[MessageKind] = {
    MessageKind.CONNECTED,
}

# Kinds a subscriber can wait on after issue_subscribe
SUBSCRIPTION_EVENT_KINDS: Set[MessageKind] = {
    MessageKind.ADDED,
    MessageKind.UPDATED,
}

# No further transitions out of these
TERMINAL_STATES: Set[SessionState] = {
    SessionState.CLOSED,
    SessionState.FAILED,
}
