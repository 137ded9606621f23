"""Scripted fakes and wire fixtures shared by ccsession tests."""

import asyncio
import json
from collections.abc import Mapping
from typing import Any

from ccsession.errors import SessionNotFoundError, TransportError
from ccsession.protocol import NormalizedMessage
from ccsession.transport.session_server import ShellEvent, Subscription


def json_line(obj: dict[str, Any]) -> str:
    return json.dumps(obj) + "\n"


INIT = {"type": "system", "subtype": "init", "model": "sonnet", "session_id": "prov-1"}
ASSISTANT = {
    "type": "assistant",
    "message": {"content": [{"type": "text", "text": "working on it"}]},
}
SUCCESS = {
    "type": "result",
    "subtype": "success",
    "result": "done",
    "num_turns": 1,
    "duration_ms": 1200,
    "total_cost_usd": 0.01,
}


class RecordingSink:
    """MessageSink that records every callback in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def on_message(self, message: NormalizedMessage) -> None:
        self.calls.append(("message", message))

    def on_raw_line(self, line: str) -> None:
        self.calls.append(("raw", line))

    def on_transport_error(self, error: TransportError) -> None:
        self.calls.append(("error", error))

    def on_heartbeat(self, idle_s: float) -> None:
        self.calls.append(("heartbeat", idle_s))

    def of(self, kind: str) -> list[Any]:
        return [value for k, value in self.calls if k == kind]


class FakeShellAgent:
    """Batch-only session server: start/stop/cancel plus one-shot ``run``.

    ``run`` fails the prompt heredoc with *prompt_error* when set and
    returns *output* for every other command.
    """

    def __init__(
        self,
        output: str = "",
        prompt_error: Exception | None = None,
        run_error: Exception | None = None,
    ) -> None:
        self.output = output
        self.prompt_error = prompt_error
        self.run_error = run_error
        self.sessions: dict[str, dict[str, Any]] = {}
        self.commands: list[str] = []
        self.stopped: list[str] = []
        self.cancelled: list[str] = []

    async def start_session(
        self,
        workspace_id: str,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        backend: Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> str:
        sid = f"shell-{len(self.sessions) + 1}"
        self.sessions[sid] = {
            "workspace_id": workspace_id,
            "cwd": cwd,
            "env": dict(env or {}),
            "backend": backend,
            "meta": dict(meta or {}),
        }
        return sid

    async def stop_session(self, session_id: str) -> None:
        self.stopped.append(session_id)

    async def cancel(self, session_id: str) -> None:
        self.cancelled.append(session_id)

    async def run(self, session_id: str, command: str, *, timeout_s: float) -> str:
        self.commands.append(command)
        if "<< 'CCSESSION_PROMPT_EOF'" in command:
            if self.prompt_error is not None:
                raise self.prompt_error
            return ""
        if self.run_error is not None:
            raise self.run_error
        return self.output


class FakeStreamingServer(FakeShellAgent):
    """Streaming session server publishing scripted ShellEvents.

    ``run_command`` queues *script* onto every subscriber; an empty script
    leaves the stream silent (used for timeouts).
    """

    def __init__(
        self,
        script: list[ShellEvent] | None = None,
        subscribe_error: Exception | None = None,
        run_command_error: Exception | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.script = script or []
        self.subscribe_error = subscribe_error
        self.run_command_error = run_command_error
        self.subscribers: dict[str, list[Subscription]] = {}
        self.unsubscribed: list[str] = []
        self.stream_commands: list[str] = []
        self.execution_contexts: list[Mapping[str, Any] | None] = []

    async def subscribe(self, session_id: str) -> Subscription:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        queue: Subscription = asyncio.Queue()
        self.subscribers.setdefault(session_id, []).append(queue)
        return queue

    async def unsubscribe(self, session_id: str, subscription: Subscription) -> None:
        self.unsubscribed.append(session_id)
        queues = self.subscribers.get(session_id, [])
        if subscription in queues:
            queues.remove(subscription)

    async def run_command(
        self,
        session_id: str,
        command: str,
        *,
        execution_context: Mapping[str, Any] | None = None,
    ) -> None:
        if self.run_command_error is not None:
            raise self.run_command_error
        self.stream_commands.append(command)
        self.execution_contexts.append(execution_context)
        for queue in self.subscribers.get(session_id, []):
            for event in self.script:
                queue.put_nowait(event)

    def publish(self, session_id: str, event: ShellEvent) -> None:
        for queue in self.subscribers.get(session_id, []):
            queue.put_nowait(event)


def output_events(*chunks: str, end: str = "command_done", data: Any = None) -> list[ShellEvent]:
    return [
        ShellEvent("command_started", "claude"),
        *(ShellEvent("output", c) for c in chunks),
        ShellEvent(end, data),  # type: ignore[arg-type]
    ]


def not_found() -> SessionNotFoundError:
    return SessionNotFoundError(details={"session_id": "gone"})
