from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from ddpclient.core.MessageTypes import MessageKind

# Outbound operation descriptors. Each variant is plain data; the two
# functions at the bottom turn a variant into its wire payload and into the
# resolution it expects.


@dataclass(frozen=True)
class ConnectCommand:
    version: str = "1"
    support: Tuple[str, ...] = ("1",)


@dataclass(frozen=True)
class AuthenticateCommand:
    identity: str
    digest: str                      # already hashed, never the raw secret
    algorithm: str = "sha-256"
    method: ClassVar[str] = "login"

    def __repr__(self) -> str:
        return f"AuthenticateCommand(identity={self.identity!r}, algorithm={self.algorithm!r})"

    def credential_param(self) -> Dict[str, Any]:
        return {
            "user": {"username": self.identity},
            "password": {"digest": self.digest, "algorithm": self.algorithm},
        }


@dataclass(frozen=True)
class MethodCallCommand:
    method: str
    params: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class CloseCommand:
    method: ClassVar[str] = "logout"


@dataclass(frozen=True)
class SubscribeCommand:
    name: str
    params: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class UnsubscribeCommand:
    subscription_id: str


Command = Union[
    ConnectCommand,
    AuthenticateCommand,
    MethodCallCommand,
    CloseCommand,
    SubscribeCommand,
    UnsubscribeCommand,
]

# Variants sent without a pending request
UNTRACKED_COMMANDS = (SubscribeCommand, UnsubscribeCommand)

# Variants belonging to the handshake
HANDSHAKE_COMMANDS = (ConnectCommand, AuthenticateCommand)


def method_call(method: str, *params: Any) -> MethodCallCommand:
    return MethodCallCommand(method, tuple(params))


def subscribe(name: str, *params: Any) -> SubscribeCommand:
    return SubscribeCommand(name, tuple(params))


def needs_correlation_id(command: Command) -> bool:
    """Everything except the connect handshake and unsub (which reuses the sub id)"""
    return not isinstance(command, (ConnectCommand, UnsubscribeCommand))


def expected_kind(command: Command) -> Optional[MessageKind]:
    """The inbound kind that resolves this command, None for fire-and-track commands"""
    if isinstance(command, ConnectCommand):
        return MessageKind.CONNECTED
    if isinstance(command, (AuthenticateCommand, MethodCallCommand, CloseCommand)):
        return MessageKind.RESULT
    if isinstance(command, UNTRACKED_COMMANDS):
        return None
    raise TypeError(f"Unknown command variant: {command!r}")


def build_payload(command: Command, correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """Build the wire payload for a command"""
    if needs_correlation_id(command) and correlation_id is None:
        raise ValueError(f"{type(command).__name__} needs a correlation id")

    if isinstance(command, ConnectCommand):
        return {"msg": MessageKind.CONNECT.value, "version": command.version, "support": list(command.support)}
    if isinstance(command, AuthenticateCommand):
        return _method_payload(command.method, [command.credential_param()], correlation_id)
    if isinstance(command, MethodCallCommand):
        return _method_payload(command.method, list(command.params), correlation_id)
    if isinstance(command, CloseCommand):
        return _method_payload(command.method, [], correlation_id)
    if isinstance(command, SubscribeCommand):
        return {
            "msg": MessageKind.SUB.value,
            "name": command.name,
            "params": list(command.params),
            "id": correlation_id,
        }
    if isinstance(command, UnsubscribeCommand):
        return {"msg": MessageKind.UNSUB.value, "id": command.subscription_id}
    raise TypeError(f"Unknown command variant: {command!r}")


def _method_payload(method: str, params: list, correlation_id: Optional[str]) -> Dict[str, Any]:
    return {"msg": MessageKind.METHOD.value, "method": method, "params": params, "id": correlation_id}
