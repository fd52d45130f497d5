from __future__ import annotations
from typing import Any, Optional


class DDPError(Exception):
    """Base class for every error raised by the DDP client."""
    pass


class MalformedFrame(DDPError):
    """Raised when an inbound frame is not a JSON object with a 'msg' tag."""
    pass


class UnsolicitedMessage(DDPError):
    """Raised when an inbound message matches no pending request."""

    def __init__(self, kind: str, correlation_id: Optional[str] = None) -> None:
        self.kind = kind
        self.correlation_id = correlation_id
        super().__init__(f"no pending request for {kind!r} id={correlation_id!r}")


class OperationRejected(DDPError):
    """
    Raised to the caller of a correlated request when the server answered
    with an error object, e.g.
    {"error": 403, "reason": "Not allowed", "message": "Not allowed [403]", "errorType": "Meteor.Error"}
    """

    def __init__(self, error: Any, reason: Optional[str] = None,
                 message: Optional[str] = None, details: Any = None) -> None:
        self.error = error
        self.reason = reason
        self.details = details
        super().__init__(message or reason or str(error))

    @classmethod
    def from_payload(cls, error: Any) -> 'OperationRejected':
        """Build from the 'error' field of a result/nosub frame"""
        if isinstance(error, dict):
            return cls(
                error=error.get("error"),
                reason=error.get("reason"),
                message=error.get("message"),
                details=error.get("details"),
            )
        return cls(error=error)


class HandshakeFailed(DDPError):
    """Raised when the connect or authenticate step is refused."""

    def __init__(self, detail: str, rejection: Optional[OperationRejected] = None) -> None:
        self.rejection = rejection
        super().__init__(detail)


class TransportFailed(DDPError):
    """Raised when the socket is lost before the session reached 'closed'."""
    pass


class PreconditionViolation(DDPError):
    """Raised immediately when an operation is issued in the wrong session state."""
    pass


class DuplicateRegistration(PreconditionViolation):
    """Raised when a (kind, id) pair is registered twice under the 'reject' policy."""
    pass


class RequestTimeout(DDPError, TimeoutError):
    """Raised when a pending request is not answered within the request timeout."""
    pass
