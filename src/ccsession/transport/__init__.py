"""Execution transports for ``claude`` runs.

Re-exports the transport contract, the stock transports, and the registry
so consumers can do ``from ccsession.transport import ShellTransport, ...``.
"""

from ccsession.transport.base import (
    EXECUTION_TARGETS,
    ExecutionTarget,
    MessageSink,
    SessionOptions,
    ShellSettings,
    StartArgs,
    Transport,
)
from ccsession.transport.local import LocalRunRef, LocalTransport
from ccsession.transport.registry import TransportRegistry, default_registry
from ccsession.transport.session_server import (
    SessionHost,
    ShellAgent,
    ShellEvent,
    StreamingSessionServer,
    supports_streaming,
)
from ccsession.transport.shell import ShellRunRef, ShellTransport
from ccsession.transport.subprocess_server import SubprocessSessionServer

__all__ = [
    "EXECUTION_TARGETS",
    "ExecutionTarget",
    "LocalRunRef",
    "LocalTransport",
    "MessageSink",
    "SessionHost",
    "SessionOptions",
    "ShellAgent",
    "ShellEvent",
    "ShellRunRef",
    "ShellSettings",
    "ShellTransport",
    "StartArgs",
    "StreamingSessionServer",
    "SubprocessSessionServer",
    "Transport",
    "TransportRegistry",
    "default_registry",
    "supports_streaming",
]
