"""Transport contract and the value types passed to ``Transport.start``.

Pure definitions only. A transport starts one ``claude`` run for one
session, feeds every protocol message to the session's ``MessageSink`` in
emission order, and can be asked to cancel it.

Types:
  - SessionOptions: resolved per-run options (model, turns, tools, cwd, env)
  - ShellSettings: settings specific to the shell/sprite targets
  - StartArgs: everything ``start`` needs, including the sink
  - MessageSink: callbacks a transport drives
  - Transport: the start/cancel protocol
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

from ..errors import TransportError
from ..protocol import NormalizedMessage

ExecutionTarget = Literal["local", "shell", "sprite"]

EXECUTION_TARGETS: tuple[str, ...] = ("local", "shell", "sprite")


@dataclass(frozen=True, slots=True)
class SessionOptions:
    """Options for one run. ``None`` fields fall back to the Config defaults."""

    model: str | None = None
    max_turns: int | None = None
    allowed_tools: tuple[str, ...] | None = None
    cwd: str | None = None
    system_prompt: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_s: float | None = None


@dataclass(frozen=True, slots=True)
class ShellSettings:
    """Shell transport settings.

    ``workspace_id`` None generates a fresh id; ``backend`` is passed through
    to the session server untouched (the sprite target defaults it to
    ``("sprite", sprite)``).
    """

    workspace_id: str | None = None
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    backend: Any = None
    sprite: Mapping[str, Any] = field(default_factory=dict)
    meta: Mapping[str, Any] = field(default_factory=dict)
    execution_context: Mapping[str, Any] = field(default_factory=dict)
    cli_args: tuple[str, ...] = ()
    skip_permissions: bool = True
    include_partial_messages: bool = True
    verbose: bool = True
    prompt_file: str | None = None
    timeout_s: float | None = None
    heartbeat_interval_s: float | None = None
    prompt_write_timeout_s: float | None = None


@runtime_checkable
class MessageSink(Protocol):
    """Receives everything a transport produces for one session.

    Calls are synchronous and happen in emission order.
    """

    def on_message(self, message: NormalizedMessage) -> None: ...

    def on_raw_line(self, line: str) -> None: ...

    def on_transport_error(self, error: TransportError) -> None: ...

    def on_heartbeat(self, idle_s: float) -> None: ...


@dataclass(frozen=True, slots=True)
class StartArgs:
    sink: MessageSink
    prompt: str
    session_id: str
    options: SessionOptions = field(default_factory=SessionOptions)
    target: ExecutionTarget = "local"
    shell: ShellSettings = field(default_factory=ShellSettings)


@runtime_checkable
class Transport(Protocol):
    """Starts and cancels ``claude`` runs.

    ``start`` returns ``(ref, metadata)`` once the run is underway and
    raises StartError otherwise. ``cancel`` is best effort: finished,
    unknown, and ``None`` refs are ignored; a ref of the wrong shape raises
    CancelError.
    """

    name: str

    async def start(self, args: StartArgs) -> tuple[Any, dict[str, Any]]: ...

    async def cancel(self, ref: Any) -> None: ...
