"""Error taxonomy shared by transports, sessions, and the orchestrator.

Every error carries a stable ``kind`` string (see ``ErrorKind``) so callers
can branch on the failure without parsing messages, plus a free-form
``details`` payload that ends up in ``session_error`` events.
"""

from typing import Any


class ErrorKind:
    """Stable error kind strings."""

    PROMPT_WRITE_FAILED = "prompt_write_failed"
    SUBSCRIBE_FAILED = "subscribe_failed"
    COMMAND_START_FAILED = "command_start_failed"
    STREAM_TIMEOUT = "stream_timeout"
    COMMAND_CRASHED = "command_crashed"
    CANCELLED = "cancelled"
    INVALID_STREAM_JSON = "invalid_stream_json"
    UNSUPPORTED_TRANSPORT = "unsupported_transport"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_NOT_ACTIVE = "session_not_active"
    SESSION_NOT_RUNNING = "session_not_running"
    INVALID_WORKSPACE_ID = "invalid_workspace_id"


class CcsessionError(Exception):
    """Base class for all ccsession errors."""

    kind: str = "error"

    def __init__(self, kind: str | None = None, details: Any = None) -> None:
        if kind is not None:
            self.kind = kind
        self.details = details
        message = self.kind if details is None else f"{self.kind}: {details}"
        super().__init__(message)


class TransportError(CcsessionError):
    """A transport-level failure (start, stream, or teardown)."""

    kind = ErrorKind.COMMAND_CRASHED


class StartError(TransportError):
    """Raised when a transport cannot start a run. No session is created."""

    kind = ErrorKind.COMMAND_START_FAILED


class CancelError(TransportError):
    """Raised by ``Transport.cancel`` for references it cannot interpret."""

    kind = "invalid_transport_ref"


class SessionNotFoundError(CcsessionError, LookupError):
    """Raised when a session id is not known to the registry or server."""

    kind = ErrorKind.SESSION_NOT_FOUND


class SessionNotActiveError(CcsessionError):
    """Raised when cancelling a registry entry that is already terminal."""

    kind = ErrorKind.SESSION_NOT_ACTIVE


class SessionNotRunningError(CcsessionError):
    """Raised when cancelling a session that is not running."""

    kind = ErrorKind.SESSION_NOT_RUNNING


class UnknownTransportError(CcsessionError, LookupError):
    """Raised when requesting an execution target that is not registered."""

    kind = ErrorKind.UNSUPPORTED_TRANSPORT
