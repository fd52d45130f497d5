from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ddpclient.core.MessageTypes import CORRELATABLE_KINDS, UNCORRELATED_KINDS, MessageKind
from shared.errors import DuplicateRegistration, PreconditionViolation
from shared.log import get_logger

logger = get_logger(__name__)


@dataclass(eq=False)
class PendingRequest:
    """One awaited operation: fires its sink exactly once, then is gone."""
    expected_kind: MessageKind
    correlation_id: Optional[str]
    sink: asyncio.Future
    command: Any = None                      # command variant that produced it, None for event waits
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    def matches(self, kind: str, correlation_id: Optional[str]) -> bool:
        if self.expected_kind != kind:
            return False
        # inbound frames without an id match on kind alone
        if correlation_id is not None and self.correlation_id != correlation_id:
            return False
        return True

    def fulfill(self, value: Any) -> bool:
        self._cancel_timer()
        if self.sink.done():
            return False
        self.sink.set_result(value)
        return True

    def reject(self, exc: BaseException) -> bool:
        self._cancel_timer()
        if self.sink.done():
            return False
        self.sink.set_exception(exc)
        return True

    def _cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class PendingRegistry:
    """
    In-flight correlatable operations keyed by (expected kind, correlation id).

    Matching is scoped by kind first because subscriptions and method calls
    share one id space: a 'result' and an 'added' may carry the same id.

    Duplicate policy:
        "reject" - registering a pair that is already outstanding raises DuplicateRegistration
        "queue"  - the new entry is appended and matched after the earlier one
    """

    def __init__(self, duplicate_policy: str = "reject") -> None:
        if duplicate_policy not in ("reject", "queue"):
            raise ValueError(f"Unknown duplicate policy: {duplicate_policy}")
        self.duplicate_policy = duplicate_policy
        self._entries: List[PendingRequest] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry: object) -> bool:
        return any(e is entry for e in self._entries)

    def pending(self) -> List[PendingRequest]:
        return list(self._entries)

    def register(
        self,
        expected_kind: MessageKind,
        correlation_id: Optional[str],
        sink: asyncio.Future,
        *,
        command: Any = None,
    ) -> PendingRequest:
        if not MessageKind.is_valid(expected_kind) or MessageKind(expected_kind) not in CORRELATABLE_KINDS:
            raise PreconditionViolation(f"{expected_kind!r} is not a correlatable kind")
        expected_kind = MessageKind(expected_kind)
        if correlation_id is None and expected_kind not in UNCORRELATED_KINDS:
            raise PreconditionViolation(f"{expected_kind.value} requests need a correlation id")

        if self.duplicate_policy == "reject" and self._find(expected_kind, correlation_id) is not None:
            raise DuplicateRegistration(
                f"{expected_kind.value} id={correlation_id!r} is already pending"
            )

        entry = PendingRequest(expected_kind, correlation_id, sink, command=command)
        self._entries.append(entry)
        logger.debug("Registered pending request", extra={"msg_kind": expected_kind.value, "correlation_id": correlation_id})
        return entry

    def resolve_matching(self, kind: str, correlation_id: Optional[str]) -> Optional[PendingRequest]:
        """Remove and return the first entry (insertion order) that matches, or None"""
        for index, entry in enumerate(self._entries):
            if entry.matches(kind, correlation_id):
                del self._entries[index]
                return entry
        return None

    def discard(self, entry: PendingRequest) -> bool:
        for index, candidate in enumerate(self._entries):
            if candidate is entry:
                del self._entries[index]
                entry._cancel_timer()
                return True
        return False

    def reject_all(self, exc: BaseException) -> int:
        """Reject and drop every outstanding entry; returns how many were still waiting"""
        entries, self._entries = self._entries, []
        rejected = 0
        for entry in entries:
            if entry.reject(exc):
                rejected += 1
        if entries:
            logger.info("Rejected %d pending request(s): %s", rejected, exc)
        return rejected

    def _find(self, expected_kind: MessageKind, correlation_id: Optional[str]) -> Optional[PendingRequest]:
        for entry in self._entries:
            if entry.expected_kind == expected_kind and entry.correlation_id == correlation_id:
                return entry
        return None
