from __future__ import annotations
import asyncio
from contextlib import suppress
from typing import Any, Callable, Dict, Optional, Sequence, Set, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ddpclient.core.Commands import (
    HANDSHAKE_COMMANDS,
    AuthenticateCommand,
    CloseCommand,
    Command,
    ConnectCommand,
    MethodCallCommand,
    SubscribeCommand,
    UnsubscribeCommand,
    build_payload,
    expected_kind,
    needs_correlation_id,
)
from ddpclient.core.MessageTypes import (
    SUBSCRIPTION_EVENT_KINDS,
    TERMINAL_STATES,
    MessageKind,
    SessionState,
)
from ddpclient.core.PendingRegistry import PendingRegistry, PendingRequest
from ddpclient.state import Credential, SubscriptionRecord, SubscriptionTable
from shared.config import ClientConfig
from shared.errors import (
    HandshakeFailed,
    MalformedFrame,
    OperationRejected,
    PreconditionViolation,
    RequestTimeout,
    TransportFailed,
    UnsolicitedMessage,
)
from shared.log import get_logger, log_ddp_message
from shared.utils import is_ws_url
from shared.wire import WireMessage, decode, encode

logger = get_logger(__name__)


PushHandler = Callable[[WireMessage], None]


class DDPSession:
    """
    DDP client session over a single websocket.

    Owns the socket, the handshake state machine, the correlation id counter
    and the pending-request registry. Collaborators only issue operations and
    await what they return:

        session = DDPSession("ws://localhost:3000/websocket")
        credential = await session.start("alice", hash_secret("secret"))
        rooms = await session.issue_method_call("rooms/get", [])
        sub_id = session.issue_subscribe("stream-room-messages", ["GENERAL", False])
        await session.issue_close()

    Inbound frames are dispatched synchronously in arrival order; outbound
    frames go through one FIFO queue drained by a writer task, so a pong is
    always the next frame written after the ping that caused it.
    """

    def __init__(self, server_ws_url: Optional[str] = None, config: Optional[ClientConfig] = None) -> None:
        self.config = config or ClientConfig()
        self.server_ws_url = server_ws_url or self.config.server_url
        self.state = SessionState.DISCONNECTED
        self.credential: Optional[Credential] = None
        self.failure: Optional[BaseException] = None
        self.server_session: Optional[str] = None
        self.subscriptions = SubscriptionTable()
        self.websocket: Optional[Any] = None
        self.handlers: Dict[str, PushHandler] = {}
        self._registry = PendingRegistry(self.config.duplicate_policy)
        self._sequence = 0
        self._authenticating = False
        self._outbox: Optional[asyncio.Queue] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._registry)

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    def next_correlation_id(self) -> str:
        self._sequence += 1
        return str(self._sequence)

    def on(self, kind: Union[str, MessageKind], handler: PushHandler) -> None:
        """Receive uncorrelated pushes of one kind (e.g. 'changed' stream events)"""
        self.handlers[getattr(kind, "value", kind)] = handler

    # ========================================
    #           LIFECYCLE
    # ========================================

    async def connect(self) -> None:
        """Open the websocket and wait until the server acknowledges the connect handshake"""
        self._require_state(SessionState.DISCONNECTED, "connect")
        if not is_ws_url(self.server_ws_url):
            raise PreconditionViolation(f"Not a websocket URL: {self.server_ws_url!r}")
        self._transition(SessionState.CONNECTING)
        try:
            websocket = await websockets.connect(
                self.server_ws_url,
                ping_interval=self.config.ping_interval,
                ping_timeout=self.config.ping_timeout,
                open_timeout=self.config.open_timeout,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            exc = TransportFailed(f"Could not open {self.server_ws_url}: {e}")
            self._fail(exc)
            raise exc from e
        await self.attach(websocket)

    def attach(self, websocket: Any) -> asyncio.Future:
        """
        Adopt an open websocket, start the reader/writer tasks and send the
        connect handshake. Returns the future of the handshake acknowledgment.
        """
        if self.state == SessionState.DISCONNECTED:
            self._transition(SessionState.CONNECTING)
        self._require_state(SessionState.CONNECTING, "attach")
        self.websocket = websocket
        self._outbox = asyncio.Queue()
        self._send_task = asyncio.create_task(self._send_loop())
        self._recv_task = asyncio.create_task(self._recv_loop())
        logger.info("Socket open to %s", self.server_ws_url)
        return self.issue_connect()

    async def start(self, identity: str, digest: str, algorithm: str = "sha-256") -> Credential:
        """Connect, then authenticate; returns the credential once the session is ready"""
        await self.connect()
        return await self.issue_authenticate(identity, digest, algorithm)

    async def shutdown(self) -> None:
        """Close the socket without logging out. Safe in any state."""
        if self.state not in TERMINAL_STATES:
            self._transition(SessionState.CLOSED)
            self._registry.reject_all(TransportFailed("Session shut down locally"))
        await self._close_transport()

    # ========================================
    #           ISSUE OPERATIONS
    # ========================================

    def issue_connect(self) -> asyncio.Future:
        self._require_state(SessionState.CONNECTING, "issue_connect")
        if self._outbox is None:
            raise PreconditionViolation("issue_connect needs an open socket")
        self._transition(SessionState.AWAITING_HANDSHAKE_ACK)
        return self._issue_awaited(ConnectCommand())

    def issue_authenticate(self, identity: str, digest: str, algorithm: str = "sha-256") -> asyncio.Future:
        """Send the login method with an already-hashed secret; resolves to a Credential"""
        self._require_state(SessionState.AUTHENTICATING, "issue_authenticate")
        if self._authenticating:
            raise PreconditionViolation("authentication is already in progress")
        future = self._issue_awaited(AuthenticateCommand(identity, digest, algorithm))
        self._authenticating = True
        return future

    def issue_method_call(self, name: str, args: Sequence[Any] = ()) -> asyncio.Future:
        return self.issue(MethodCallCommand(name, tuple(args)))

    def issue_subscribe(self, name: str, args: Sequence[Any] = ()) -> str:
        return self.issue(SubscribeCommand(name, tuple(args)))

    def issue_unsubscribe(self, subscription_id: str) -> None:
        self._require_ready("issue_unsubscribe")
        if subscription_id not in self.subscriptions:
            raise PreconditionViolation(f"No active subscription with id {subscription_id}")
        self.subscriptions.remove(subscription_id)
        self._send(build_payload(UnsubscribeCommand(subscription_id)))

    def issue_close(self) -> asyncio.Future:
        """Log out; once the server confirms, the session is closed and the socket shut"""
        self._require_ready("issue_close")
        logout = self._issue_awaited(CloseCommand())
        return asyncio.ensure_future(self._finish_close(logout))

    def issue(self, command: Command) -> Any:
        """
        Issue an application command.

        Returns a future for method calls and logout, the correlation id for
        subscriptions, and None for unsubscribe.
        """
        if isinstance(command, HANDSHAKE_COMMANDS):
            raise PreconditionViolation("handshake commands are issued through issue_connect/issue_authenticate")
        self._require_ready(type(command).__name__)

        if isinstance(command, CloseCommand):
            return self.issue_close()
        if isinstance(command, UnsubscribeCommand):
            self.issue_unsubscribe(command.subscription_id)
            return None
        if isinstance(command, SubscribeCommand):
            subscription_id = self.next_correlation_id()
            payload = build_payload(command, subscription_id)
            frame = self._encode_for_send(payload)
            self.subscriptions.add(SubscriptionRecord(subscription_id, command.name, command.params))
            self._enqueue(frame, payload)
            logger.info("Subscribed to %s", command.name, extra={"correlation_id": subscription_id})
            return subscription_id
        return self._issue_awaited(command)

    def wait_for_subscription_event(
        self,
        subscription_id: str,
        kind: Union[str, MessageKind] = MessageKind.ADDED,
    ) -> asyncio.Future:
        """One-shot wait for the next 'added'/'updated' push carrying subscription_id"""
        self._require_ready("wait_for_subscription_event")
        if not MessageKind.is_valid(kind) or MessageKind(kind) not in SUBSCRIPTION_EVENT_KINDS:
            raise PreconditionViolation(f"Cannot wait for {kind!r} on a subscription")
        return self._register(MessageKind(kind), subscription_id, None)

    # ========================================
    #           INBOUND DISPATCH
    # ========================================

    def dispatch_frame(self, raw: Union[str, bytes]) -> None:
        """Handle one inbound frame. Never suspends; bad or unknown frames are logged and dropped."""
        try:
            message = decode(raw)
        except MalformedFrame as e:
            logger.warning("Dropping malformed frame: %s", e)
            return

        log_ddp_message(logger, "debug", "Received frame", wire=message.payload, session_state=self.state.value)

        if message.kind == MessageKind.PING:
            self._send_pong(message)
            return

        try:
            self._route(message)
        except UnsolicitedMessage as e:
            logger.debug("Dropping unsolicited message: %s", e)

    def _route(self, message: WireMessage) -> None:
        kind = message.kind
        if kind == MessageKind.FAILED:
            entry = self._registry.resolve_matching(MessageKind.CONNECTED, None)
        elif kind == MessageKind.NOSUB:
            self._on_nosub(message)
            return
        elif kind == MessageKind.ERROR:
            logger.error(
                "Server reported a protocol error: %s (offending: %s)",
                message.payload.get("reason"),
                message.payload.get("offendingMessage"),
            )
            return
        else:
            entry = self._registry.resolve_matching(kind, message.correlation_id)

        if entry is not None:
            self._complete(entry, message)
            return

        handler = self.handlers.get(kind)
        if handler is None:
            raise UnsolicitedMessage(kind, message.correlation_id)
        try:
            handler(message)
        except Exception as e:
            logger.error("Push handler for %s failed: %s", kind, e, exc_info=True)

    def _complete(self, entry: PendingRequest, message: WireMessage) -> None:
        command = entry.command
        if isinstance(command, ConnectCommand):
            self._complete_connect(entry, message)
        elif isinstance(command, AuthenticateCommand):
            self._complete_authenticate(entry, message)
        elif isinstance(command, (MethodCallCommand, CloseCommand)):
            error = message.payload.get("error")
            if error is not None:
                rejection = OperationRejected.from_payload(error)
                logger.info("Method rejected: %s", rejection, extra={"correlation_id": entry.correlation_id})
                entry.reject(rejection)
                return
            if isinstance(command, CloseCommand):
                self._transition(SessionState.CLOSED)
                self._registry.reject_all(TransportFailed("Session closed"))
            entry.fulfill(message.payload.get("result"))
        else:
            entry.fulfill(message)

    def _complete_connect(self, entry: PendingRequest, message: WireMessage) -> None:
        if message.kind == MessageKind.FAILED:
            exc = HandshakeFailed(
                f"Server refused the DDP handshake; it supports version {message.payload.get('version')!r}"
            )
            entry.reject(exc)
            self._fail(exc)
            return
        self.server_session = message.payload.get("session")
        self._transition(SessionState.AUTHENTICATING)
        entry.fulfill(message.payload)

    def _complete_authenticate(self, entry: PendingRequest, message: WireMessage) -> None:
        self._authenticating = False
        error = message.payload.get("error")
        if error is not None:
            rejection = OperationRejected.from_payload(error)
            exc = HandshakeFailed(f"Authentication rejected: {rejection}", rejection)
        else:
            try:
                credential = Credential.from_result(message.payload.get("result"))
            except ValueError as e:
                exc = HandshakeFailed(f"Unusable login result: {e}")
            else:
                self.credential = credential
                self._transition(SessionState.READY)
                logger.info("Authenticated as %s", credential.user_id)
                entry.fulfill(credential)
                return
        entry.reject(exc)
        self._fail(exc)

    def _on_nosub(self, message: WireMessage) -> None:
        subscription_id = message.correlation_id
        if subscription_id is None:
            logger.warning("Ignoring nosub without an id")
            return
        record = self.subscriptions.remove(subscription_id)
        error = message.payload.get("error")
        if error is not None:
            exc = OperationRejected.from_payload(error)
        else:
            exc = OperationRejected("nosub", reason=f"Subscription {subscription_id} stopped")

        rejected = 0
        for kind in (MessageKind.ADDED, MessageKind.UPDATED):
            while True:
                entry = self._registry.resolve_matching(kind, subscription_id)
                if entry is None:
                    break
                entry.reject(exc)
                rejected += 1
        logger.warning(
            "Subscription %s ended by server: %s (%d waiter(s) rejected)",
            record.name if record else subscription_id, exc, rejected,
        )

    def _send_pong(self, ping: WireMessage) -> None:
        pong: Dict[str, Any] = {"msg": MessageKind.PONG.value}
        if ping.correlation_id is not None:
            pong["id"] = ping.correlation_id
        self._send(pong)

    # ========================================
    #           REGISTRATION AND SENDING
    # ========================================

    def _issue_awaited(self, command: Command) -> asyncio.Future:
        kind = expected_kind(command)
        correlation_id = self.next_correlation_id() if needs_correlation_id(command) else None
        payload = build_payload(command, correlation_id)
        frame = self._encode_for_send(payload)
        sink = self._register(kind, correlation_id, command)
        self._enqueue(frame, payload)
        return sink

    def _register(self, kind: MessageKind, correlation_id: Optional[str], command: Any) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        sink = loop.create_future()
        entry = self._registry.register(kind, correlation_id, sink, command=command)
        if self.config.request_timeout:
            entry.timer = loop.call_later(self.config.request_timeout, self._expire, entry)
        sink.add_done_callback(lambda f, entry=entry: self._forget_cancelled(f, entry))
        return sink

    def _forget_cancelled(self, future: asyncio.Future, entry: PendingRequest) -> None:
        if future.cancelled() and self._registry.discard(entry):
            logger.debug("Caller cancelled pending request", extra={"correlation_id": entry.correlation_id})

    def _expire(self, entry: PendingRequest) -> None:
        entry.timer = None
        if not self._registry.discard(entry):
            return
        exc = RequestTimeout(
            f"No {entry.expected_kind.value} for id={entry.correlation_id} "
            f"within {self.config.request_timeout}s"
        )
        logger.warning("Request timed out", extra={"msg_kind": entry.expected_kind.value, "correlation_id": entry.correlation_id})
        entry.reject(exc)
        if isinstance(entry.command, HANDSHAKE_COMMANDS):
            self._authenticating = False
            self._fail(exc)

    def _send(self, payload: Dict[str, Any]) -> None:
        self._enqueue(self._encode_for_send(payload), payload)

    def _encode_for_send(self, payload: Dict[str, Any]) -> str:
        # fails before anything is registered or queued
        if self._outbox is None:
            raise PreconditionViolation("Socket is not open")
        return encode(payload)

    def _enqueue(self, frame: str, payload: Dict[str, Any]) -> None:
        self._outbox.put_nowait(frame)
        log_ddp_message(logger, "debug", "Queued frame", wire=payload, session_state=self.state.value)

    async def _send_loop(self) -> None:
        assert self.websocket is not None and self._outbox is not None
        while True:
            frame = await self._outbox.get()
            try:
                await self.websocket.send(frame)
            except ConnectionClosed as e:
                self._lost(TransportFailed(f"Connection closed while sending: {e}"))
                return
            except OSError as e:
                self._lost(TransportFailed(f"Socket error while sending: {e}"))
                return
            except Exception as e:
                logger.error("Writer task failed: %s", e, exc_info=True)
                self._lost(TransportFailed(f"Could not send frame: {e}"))
                return
            finally:
                self._outbox.task_done()

    async def _recv_loop(self) -> None:
        assert self.websocket is not None
        try:
            async for raw in self.websocket:
                try:
                    self.dispatch_frame(raw)
                except Exception as e:
                    logger.error("Failed to process inbound frame: %s", e, exc_info=True)
        except ConnectionClosed as e:
            self._lost(TransportFailed(f"Connection lost: {e}"))
            return
        except OSError as e:
            self._lost(TransportFailed(f"Socket error: {e}"))
            return
        self._lost(TransportFailed("Connection closed by server"))

    # ========================================
    #           STATE MACHINE
    # ========================================

    def _transition(self, new_state: SessionState) -> None:
        old_state, self.state = self.state, new_state
        logger.debug("Session %s -> %s", old_state.value, new_state.value, extra={"session_state": new_state.value})

    def _require_state(self, expected: SessionState, operation: str) -> None:
        if self.state != expected:
            raise PreconditionViolation(
                f"{operation} requires a {expected.value} session, this one is {self.state.value}"
            )

    def _require_ready(self, operation: str) -> None:
        self._require_state(SessionState.READY, operation)

    def _lost(self, exc: TransportFailed) -> None:
        if self.state in TERMINAL_STATES:
            logger.debug("Socket finished after session %s", self.state.value)
            return
        logger.error("Transport failed: %s", exc, extra={"session_state": self.state.value})
        self._fail(exc)

    def _fail(self, exc: BaseException) -> None:
        if self.state in TERMINAL_STATES:
            return
        self.failure = exc
        self._authenticating = False
        self._transition(SessionState.FAILED)
        self._registry.reject_all(exc)
        if self.websocket is not None:
            self._track_background_task(asyncio.ensure_future(self._close_transport()))

    def _track_background_task(self, task: asyncio.Task) -> None:
        """Keep a strong reference to background tasks until completion."""
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _finish_close(self, logout: asyncio.Future) -> Any:
        result = await logout
        await self._close_transport()
        return result

    async def _close_transport(self) -> None:
        current = asyncio.current_task()
        if self._outbox is not None and self._send_task is not None and not self._send_task.done():
            # let queued frames (e.g. the logout) reach the socket first
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._outbox.join(), timeout=1.0)
        if self.websocket is not None:
            try:
                await self.websocket.close(code=1000)
            except (OSError, WebSocketException) as e:
                logger.debug("Error closing socket: %s", e)
        for task in (self._send_task, self._recv_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
