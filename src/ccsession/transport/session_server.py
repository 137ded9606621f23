"""Session-server and shell-agent protocols used by the shell transport.

A *session server* hosts long-lived shell sessions (local, sandboxed, or on
a remote sprite). Servers that can stream implement subscribe /
unsubscribe / run_command and publish ``ShellEvent`` values to subscriber
queues. A *shell agent* runs one command to completion and returns its
captured output; the shell transport falls back to it when streaming is
unavailable.

Key pieces: ShellEvent, SessionHost, StreamingSessionServer, ShellAgent,
supports_streaming().
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

ShellEventKind = Literal[
    "command_started",
    "output",
    "cwd_changed",
    "command_done",
    "command_cancelled",
    "command_crashed",
    "error",
]

TERMINAL_SHELL_EVENTS: frozenset[str] = frozenset(
    {"command_done", "command_cancelled", "command_crashed", "error"}
)


@dataclass(frozen=True, slots=True)
class ShellEvent:
    """One event published by a session server.

    ``data`` is the output chunk for ``output``, the new directory for
    ``cwd_changed``, the reason for ``command_crashed`` / ``error``.
    """

    kind: ShellEventKind
    data: Any = None

    @property
    def terminal(self) -> bool:
        return self.kind in TERMINAL_SHELL_EVENTS


Subscription = asyncio.Queue[ShellEvent]


@runtime_checkable
class SessionHost(Protocol):
    """Opens and closes shell sessions."""

    async def start_session(
        self,
        workspace_id: str,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        backend: Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> str: ...

    async def stop_session(self, session_id: str) -> None: ...

    async def cancel(self, session_id: str) -> None: ...


@runtime_checkable
class StreamingSessionServer(Protocol):
    """Streaming capability: subscribe to a session and submit commands.

    ``subscribe`` raises SessionNotFoundError for unknown sessions.
    ``run_command`` returns once the command is accepted.
    """

    async def subscribe(self, session_id: str) -> Subscription: ...

    async def unsubscribe(self, session_id: str, subscription: Subscription) -> None: ...

    async def run_command(
        self,
        session_id: str,
        command: str,
        *,
        execution_context: Mapping[str, Any] | None = None,
    ) -> None: ...


@runtime_checkable
class ShellAgent(Protocol):
    """Runs one command to completion and returns its trimmed output."""

    async def run(self, session_id: str, command: str, *, timeout_s: float) -> str: ...


def supports_streaming(server: object) -> bool:
    return isinstance(server, StreamingSessionServer)
