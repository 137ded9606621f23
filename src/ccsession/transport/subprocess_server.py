"""Local session server and shell agent backed by asyncio subprocesses.

Each shell session remembers a cwd and env; commands run through
``/bin/sh`` with the session env layered over the process env. Streaming
commands publish ``ShellEvent`` values to every subscriber queue: output
chunks (stdout and stderr merged), then ``command_done`` (exit 0),
``command_crashed`` (non-zero exit or runtime limit), or
``command_cancelled`` (after ``cancel``).

Key class: SubprocessSessionServer (implements SessionHost,
StreamingSessionServer and ShellAgent).
"""

import asyncio
import codecs
import contextlib
import os
import secrets
import signal
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..errors import ErrorKind, SessionNotFoundError, TransportError
from ..utils import normalize_env, task_done_callback
from .session_server import ShellEvent, Subscription

logger = structlog.get_logger()

_READ_SIZE = 4096

# Seconds to wait after SIGTERM before SIGKILL
_KILL_GRACE_S = 5.0


@dataclass
class _ShellSession:
    id: str
    workspace_id: str
    cwd: str | None
    env: dict[str, str]
    backend: Any = None
    meta: dict[str, Any] = field(default_factory=dict)
    subscribers: list[Subscription] = field(default_factory=list)
    process: asyncio.subprocess.Process | None = None
    task: asyncio.Task[None] | None = None
    cancelled: bool = False

    def publish(self, event: ShellEvent) -> None:
        for queue in list(self.subscribers):
            queue.put_nowait(event)

    @property
    def busy(self) -> bool:
        return self.task is not None and not self.task.done()


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Terminate the process group, wait, then force-kill if still alive.

    Commands run in their own session, so children of the shell (the
    ``claude`` process itself) are signalled too.
    """
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=_KILL_GRACE_S)
    except TimeoutError:
        logger.warning("Process %s did not exit after SIGTERM, sending SIGKILL", proc.pid)
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)


class SubprocessSessionServer:
    """Shell sessions as local ``/bin/sh`` subprocesses."""

    def __init__(self) -> None:
        self._sessions: dict[str, _ShellSession] = {}

    def _get(self, session_id: str) -> _ShellSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(details={"session_id": session_id})
        return session

    def _spawn_env(self, session: _ShellSession) -> dict[str, str]:
        return {**os.environ, **session.env}

    def _spawn_cwd(self, session: _ShellSession) -> str | None:
        if session.cwd and os.path.isdir(session.cwd):
            return session.cwd
        return None

    # ── SessionHost ──────────────────────────────────────────────────────

    async def start_session(
        self,
        workspace_id: str,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        backend: Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> str:
        session_id = f"sess-{secrets.token_hex(6)}"
        self._sessions[session_id] = _ShellSession(
            id=session_id,
            workspace_id=workspace_id,
            cwd=cwd,
            env=normalize_env(env),
            backend=backend,
            meta=dict(meta or {}),
        )
        logger.debug("Shell session %s started (workspace=%s)", session_id, workspace_id)
        return session_id

    async def stop_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if session.process is not None and session.process.returncode is None:
            session.cancelled = True
            await _terminate(session.process)
        session.subscribers.clear()
        logger.debug("Shell session %s stopped", session_id)

    async def cancel(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.process is None:
            return
        if session.process.returncode is None:
            session.cancelled = True
            await _terminate(session.process)

    # ── StreamingSessionServer ───────────────────────────────────────────

    async def subscribe(self, session_id: str) -> Subscription:
        session = self._get(session_id)
        queue: Subscription = asyncio.Queue()
        session.subscribers.append(queue)
        return queue

    async def unsubscribe(self, session_id: str, subscription: Subscription) -> None:
        session = self._sessions.get(session_id)
        if session is not None and subscription in session.subscribers:
            session.subscribers.remove(subscription)

    async def run_command(
        self,
        session_id: str,
        command: str,
        *,
        execution_context: Mapping[str, Any] | None = None,
    ) -> None:
        session = self._get(session_id)
        if session.busy:
            raise TransportError(
                ErrorKind.COMMAND_START_FAILED, {"session_id": session_id, "reason": "busy"}
            )
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self._spawn_cwd(session),
                env=self._spawn_env(session),
                start_new_session=True,
            )
        except OSError as e:
            raise TransportError(ErrorKind.COMMAND_START_FAILED, str(e)) from e

        session.process = proc
        session.cancelled = False
        max_runtime_s = (execution_context or {}).get("max_runtime_s")
        session.publish(ShellEvent("command_started", command))
        session.task = asyncio.create_task(
            self._pump(session, proc, max_runtime_s), name=f"shell-{session_id}"
        )
        session.task.add_done_callback(task_done_callback)

    async def _pump(
        self,
        session: _ShellSession,
        proc: asyncio.subprocess.Process,
        max_runtime_s: float | None,
    ) -> None:
        assert proc.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        async def read_all() -> None:
            while chunk := await proc.stdout.read(_READ_SIZE):
                text = decoder.decode(chunk)
                if text:
                    session.publish(ShellEvent("output", text))
            tail = decoder.decode(b"", final=True)
            if tail:
                session.publish(ShellEvent("output", tail))
            await proc.wait()

        try:
            await asyncio.wait_for(read_all(), timeout=max_runtime_s)
        except TimeoutError:
            await _terminate(proc)
            session.publish(
                ShellEvent("command_crashed", {"reason": "max_runtime_exceeded"})
            )
            return

        if session.cancelled:
            session.publish(ShellEvent("command_cancelled"))
        elif proc.returncode == 0:
            session.publish(ShellEvent("command_done"))
        else:
            session.publish(
                ShellEvent("command_crashed", {"exit_code": proc.returncode})
            )

    # ── ShellAgent ───────────────────────────────────────────────────────

    async def run(self, session_id: str, command: str, *, timeout_s: float) -> str:
        session = self._get(session_id)
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self._spawn_cwd(session),
                env=self._spawn_env(session),
                start_new_session=True,
            )
        except OSError as e:
            raise TransportError(ErrorKind.COMMAND_START_FAILED, str(e)) from e

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
        except TimeoutError as e:
            await _terminate(proc)
            raise TransportError(
                ErrorKind.COMMAND_CRASHED, {"reason": "timeout", "timeout_s": timeout_s}
            ) from e

        output = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise TransportError(
                ErrorKind.COMMAND_CRASHED,
                {"exit_code": proc.returncode, "output": output.strip()},
            )
        return output.strip()
