"""Outbound session events forwarded from sessions to their orchestrator.

Pure definitions only. Every event carries ``session_id`` and a class-level
``kind`` tag; ``to_dict()`` gives the JSON-compatible form.

Event types:
  - SessionStarted: the CLI reported its init message
  - TurnText: one text block of an assistant turn
  - TurnToolUse: one tool invocation of an assistant turn
  - TurnToolResult: tool output fed back to the model
  - SessionSuccess: terminal, the run completed
  - SessionError: terminal, the run failed or was cancelled
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True, slots=True)
class _Event:
    session_id: str

    kind: ClassVar[str] = "event"
    terminal: ClassVar[bool] = False

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **dataclasses.asdict(self)}


@dataclass(frozen=True, slots=True)
class SessionStarted(_Event):
    model: str | None = None
    provider_session_id: str | None = None

    kind: ClassVar[str] = "session_started"


@dataclass(frozen=True, slots=True)
class TurnText(_Event):
    text: str = ""
    turn: int = 0

    kind: ClassVar[str] = "turn_text"


@dataclass(frozen=True, slots=True)
class TurnToolUse(_Event):
    tool: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    tool_use_id: str | None = None
    turn: int = 0

    kind: ClassVar[str] = "turn_tool_use"


@dataclass(frozen=True, slots=True)
class TurnToolResult(_Event):
    """Tool output. ``data`` is the opaque user-message payload."""

    content: Any = None
    tool_use_id: str | None = None
    is_error: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "turn_tool_result"


@dataclass(frozen=True, slots=True)
class SessionSuccess(_Event):
    result: str | None = None
    turns: int = 0
    cost_usd: float | None = None
    duration_ms: int | None = None

    kind: ClassVar[str] = "session_success"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class SessionError(_Event):
    """Terminal failure. ``error_type`` is an ErrorKind or result subtype."""

    error_type: str = "error_exception"
    details: Any = None

    kind: ClassVar[str] = "session_error"
    terminal: ClassVar[bool] = True


OutboundEvent = (
    SessionStarted
    | TurnText
    | TurnToolUse
    | TurnToolResult
    | SessionSuccess
    | SessionError
)
