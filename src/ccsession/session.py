"""Per-session lifecycle state machine.

A ClaudeSession owns one ``claude`` run. It starts the run through a
transport, acts as that transport's MessageSink, and turns protocol
messages into outbound events passed to ``emit``:

  idle -> starting -> running -> success | failure | cancelled

Terminal statuses are absorbing: once reached, every further message,
transport error, or cancel is ignored (cancel raises). A session that
fails mid-stream keeps the turns and transcript gathered so far.

Key class: ClaudeSession.
"""

import asyncio
from collections.abc import Callable
from typing import Any, Literal

import structlog

from .errors import (
    CcsessionError,
    ErrorKind,
    SessionNotRunningError,
    StartError,
    TransportError,
)
from .events import (
    OutboundEvent,
    SessionError,
    SessionStarted,
    SessionSuccess,
    TurnText,
    TurnToolResult,
    TurnToolUse,
)
from .protocol import ERROR_SUBTYPES, NormalizedMessage, classify
from .transport.base import (
    ExecutionTarget,
    SessionOptions,
    ShellSettings,
    StartArgs,
    Transport,
)

logger = structlog.get_logger()

SessionStatus = Literal["idle", "starting", "running", "success", "failure", "cancelled"]

ACTIVE_STATUSES: frozenset[str] = frozenset({"starting", "running"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "failure", "cancelled"})

Emit = Callable[[OutboundEvent], None]


def _raw_content(raw: dict[str, Any]) -> list[Any]:
    message = raw.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), list):
        return message["content"]
    return []


def _content_blocks(raw: dict[str, Any]) -> list[dict[str, Any]]:
    """Assistant content as text / tool_use / unknown blocks."""
    blocks: list[dict[str, Any]] = []
    for block in _raw_content(raw):
        if not isinstance(block, dict):
            blocks.append({"type": "unknown", "raw": block})
        elif block.get("type") == "text" and isinstance(block.get("text"), str):
            blocks.append({"type": "text", "text": block["text"]})
        elif block.get("type") == "tool_use" and "name" in block:
            blocks.append(
                {
                    "type": "tool_use",
                    "id": block.get("id"),
                    "name": block["name"],
                    "input": block.get("input") or {},
                }
            )
        else:
            blocks.append({"type": "unknown", "raw": block})
    return blocks


def _first_tool_result(raw: dict[str, Any]) -> dict[str, Any]:
    for block in _raw_content(raw):
        if isinstance(block, dict) and block.get("type") == "tool_result":
            return block
    return {}


class ClaudeSession:
    """One ``claude`` run and its lifecycle.

    ``emit`` receives every outbound event in order; it is called from
    transport callbacks, so it must not block (``queue.put_nowait`` is the
    usual choice).
    """

    def __init__(
        self,
        session_id: str,
        prompt: str,
        *,
        transport: Transport,
        emit: Emit,
        options: SessionOptions | None = None,
        target: ExecutionTarget = "local",
        shell: ShellSettings | None = None,
    ) -> None:
        self.id = session_id
        self.prompt = prompt
        self.transport = transport
        self.emit = emit
        self.options = options or SessionOptions()
        self.execution_target: ExecutionTarget = target
        self.shell = shell or ShellSettings()

        self.status: SessionStatus = "idle"
        self.model: str | None = self.options.model
        self.provider_session_id: str | None = None
        self.turns = 0
        self.num_turns: int | None = None
        self.transcript: list[tuple[str, Any]] = []
        self.result: str | None = None
        self.cost_usd: float | None = None
        self.duration_ms: int | None = None
        self.error: dict[str, Any] | None = None
        self.transport_ref: Any = None
        self.transport_metadata: dict[str, Any] = {}
        self.raw_lines: list[str] = []
        self._done = asyncio.Event()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    async def start(self) -> dict[str, Any]:
        """Start the run; returns the transport metadata.

        Raises StartError (status returns to idle) when the transport
        cannot start.
        """
        if self.status != "idle":
            raise CcsessionError("session_already_started", {"status": self.status})

        self.status = "starting"
        args = StartArgs(
            sink=self,
            prompt=self.prompt,
            session_id=self.id,
            options=self.options,
            target=self.execution_target,
            shell=self.shell,
        )
        try:
            ref, metadata = await self.transport.start(args)
        except StartError:
            self.status = "idle"
            raise

        self.transport_ref = ref
        self.transport_metadata = metadata
        # The run may already have finished while we were starting
        if self.status == "starting":
            self.status = "running"
        logger.info(
            "Session %s running (target=%s, model=%s)",
            self.id,
            self.execution_target,
            self.model,
        )
        return metadata

    async def wait(self) -> SessionStatus:
        """Wait until the session reaches a terminal status."""
        await self._done.wait()
        return self.status

    # ── MessageSink ──────────────────────────────────────────────────────

    def on_message(self, message: NormalizedMessage) -> None:
        if self.is_terminal:
            logger.debug("Session %s ignoring %s after finish", self.id, classify(message))
            return

        if message.type == "system" and message.subtype == "init":
            self._handle_init(message)
        elif message.type == "assistant":
            self._handle_assistant(message)
        elif message.type == "user":
            self._handle_user(message)
        elif message.type == "result" and message.subtype == "success":
            self._handle_success(message)
        elif message.type == "result" and message.subtype in ERROR_SUBTYPES:
            self._finish(
                "failure", {"type": message.subtype, "details": message.data}
            )
        else:
            logger.debug("Session %s ignoring %s", self.id, classify(message))

    def on_raw_line(self, line: str) -> None:
        logger.debug("Session %s raw line: %s", self.id, line[:200])
        self.raw_lines.append(line)

    def on_transport_error(self, error: TransportError) -> None:
        if self.is_terminal:
            return
        logger.warning("Session %s transport error: %s", self.id, error)
        self._finish("failure", {"type": error.kind, "details": error.details})

    def on_heartbeat(self, idle_s: float) -> None:
        logger.debug("Session %s idle for %.1fs", self.id, idle_s)

    # ── message handlers ─────────────────────────────────────────────────

    def _handle_init(self, message: NormalizedMessage) -> None:
        data = message.data
        self.model = data.get("model") or self.model
        self.provider_session_id = data.get("session_id")
        self.emit(
            SessionStarted(
                session_id=self.id,
                model=self.model,
                provider_session_id=self.provider_session_id,
            )
        )

    def _handle_assistant(self, message: NormalizedMessage) -> None:
        blocks = _content_blocks(message.raw)
        self.turns += 1
        self.transcript.append(("assistant", blocks))
        for block in blocks:
            if block["type"] == "text":
                self.emit(TurnText(session_id=self.id, text=block["text"], turn=self.turns))
            elif block["type"] == "tool_use":
                self.emit(
                    TurnToolUse(
                        session_id=self.id,
                        tool=block["name"],
                        input=block["input"],
                        tool_use_id=block["id"],
                        turn=self.turns,
                    )
                )

    def _handle_user(self, message: NormalizedMessage) -> None:
        self.transcript.append(("user", message.data))
        block = _first_tool_result(message.raw)
        self.emit(
            TurnToolResult(
                session_id=self.id,
                content=block.get("content"),
                tool_use_id=block.get("tool_use_id"),
                is_error=bool(block.get("is_error")),
                data=message.data,
            )
        )

    def _handle_success(self, message: NormalizedMessage) -> None:
        data = message.data
        self.result = data.get("result")
        self.cost_usd = data.get("total_cost_usd")
        self.duration_ms = data.get("duration_ms")
        num_turns = data.get("num_turns")
        if isinstance(num_turns, int) and not isinstance(num_turns, bool):
            self.num_turns = num_turns
        self._finish("success")

    def _finish(self, status: SessionStatus, error: dict[str, Any] | None = None) -> None:
        self.status = status
        self.error = error
        if status == "success":
            event: OutboundEvent = SessionSuccess(
                session_id=self.id,
                result=self.result,
                # the CLI's own count wins over assistant messages seen here
                turns=self.num_turns if self.num_turns is not None else self.turns,
                cost_usd=self.cost_usd,
                duration_ms=self.duration_ms,
            )
        else:
            assert error is not None
            event = SessionError(
                session_id=self.id,
                error_type=error["type"],
                details=error.get("details"),
            )
        logger.info("Session %s finished: %s", self.id, status)
        self._done.set()
        self.emit(event)

    # ── cancel ───────────────────────────────────────────────────────────

    async def cancel(self, reason: str = "cancelled") -> None:
        """Cancel a running session.

        Raises SessionNotRunningError, with no state change, unless the
        session is running. A failing transport cancel is recorded next to
        *reason*; the session ends cancelled either way.
        """
        if self.status != "running":
            raise SessionNotRunningError(details={"status": self.status})

        # Terminal before teardown so errors raised by it are ignored
        self.status = "cancelled"
        details: dict[str, Any] = {"reason": reason}
        try:
            await self.transport.cancel(self.transport_ref)
        except Exception as e:
            logger.warning("Session %s transport cancel failed: %s", self.id, e)
            details["cancel_error"] = str(e) or type(e).__name__
        finally:
            self._finish("cancelled", {"type": ErrorKind.CANCELLED, "details": details})

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "prompt": self.prompt,
            "model": self.model,
            "turns": self.turns,
            "result": self.result,
            "cost_usd": self.cost_usd,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "execution_target": self.execution_target,
            "provider_session_id": self.provider_session_id,
            "transport_metadata": dict(self.transport_metadata),
        }
