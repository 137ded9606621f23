"""ccsession - drive Claude CLI runs and track them as sessions.

Re-exports the main entry points so consumers can do
``from ccsession import Orchestrator, Config, ...``.
"""

from ccsession.config import Config
from ccsession.errors import (
    CancelError,
    CcsessionError,
    ErrorKind,
    SessionNotActiveError,
    SessionNotFoundError,
    SessionNotRunningError,
    StartError,
    TransportError,
    UnknownTransportError,
)
from ccsession.events import (
    OutboundEvent,
    SessionError,
    SessionStarted,
    SessionSuccess,
    TurnText,
    TurnToolResult,
    TurnToolUse,
)
from ccsession.orchestrator import Orchestrator
from ccsession.protocol import DecodeError, NormalizedMessage, decode_line
from ccsession.registry import SessionRegistry, SessionRegistryEntry
from ccsession.runner import RunResult, run_in_shell
from ccsession.session import ClaudeSession

__version__ = "0.1.0"

__all__ = [
    "CancelError",
    "CcsessionError",
    "ClaudeSession",
    "Config",
    "DecodeError",
    "ErrorKind",
    "NormalizedMessage",
    "Orchestrator",
    "OutboundEvent",
    "RunResult",
    "SessionError",
    "SessionNotActiveError",
    "SessionNotFoundError",
    "SessionNotRunningError",
    "SessionRegistry",
    "SessionRegistryEntry",
    "SessionStarted",
    "SessionSuccess",
    "StartError",
    "TransportError",
    "TurnText",
    "TurnToolResult",
    "TurnToolUse",
    "UnknownTransportError",
    "decode_line",
    "run_in_shell",
]
