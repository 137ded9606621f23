"""Shell transport: runs ``claude`` inside a session-server shell session.

Streaming mode subscribes to the shell session, submits the command with
the prompt as a quoted literal, and feeds the output through
``collect_stream`` to the session sink. When the server cannot stream
(no subscribe/unsubscribe/run_command) or reports the session as not
found, the transport switches once to batch mode: the prompt is written
to a file through the shell agent, the command reads it back, and the
captured output is parsed after the fact.

Stream timeout is reported to the sink and only unsubscribes; the remote
command and shell session are left alone so the caller can decide what
to do with them.

Key class: ShellTransport. Also ShellRunRef, the transport reference.
"""

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from ..config import Config
from ..errors import (
    CancelError,
    CcsessionError,
    ErrorKind,
    SessionNotFoundError,
    StartError,
    TransportError,
)
from ..utils import deep_merge, new_workspace_id, task_done_callback
from . import command as cmd
from .base import ExecutionTarget, MessageSink, SessionOptions, ShellSettings, StartArgs
from .session_server import SessionHost, ShellAgent, Subscription, supports_streaming
from .stream import collect_stream, missing_result_error, parse_output

logger = structlog.get_logger()

MODE_STREAM = "session_server_stream"
MODE_FALLBACK = "shell_agent_fallback"


@dataclass
class ShellRunRef:
    shell_session_id: str
    workspace_id: str
    backend: Any
    mode: str
    task: asyncio.Task[None] | None = None

    @property
    def done(self) -> bool:
        return self.task is None or self.task.done()


def resolve_workspace_id(settings: ShellSettings) -> str:
    workspace_id = settings.workspace_id
    if workspace_id is None:
        return new_workspace_id()
    if isinstance(workspace_id, str) and workspace_id.strip():
        return workspace_id
    raise StartError(ErrorKind.INVALID_WORKSPACE_ID, workspace_id)


def resolve_backend(settings: ShellSettings, target: ExecutionTarget) -> Any:
    if target == "sprite" and settings.backend is None:
        return ("sprite", dict(settings.sprite))
    return settings.backend


def backend_name(backend: Any) -> str | None:
    if isinstance(backend, tuple) and backend:
        return str(backend[0])
    if isinstance(backend, str):
        return backend
    return None


class ShellTransport:
    """Transport for the ``shell`` and ``sprite`` execution targets."""

    name = "shell"

    def __init__(
        self,
        server: SessionHost,
        config: Config,
        agent: ShellAgent | None = None,
    ) -> None:
        self.server = server
        self.config = config
        # A server that also runs one-shot commands doubles as the agent
        if agent is None and isinstance(server, ShellAgent):
            agent = server
        self.agent = agent

    def _claude_args(self, options: SessionOptions, settings: ShellSettings) -> list[str]:
        return cmd.build_claude_args(
            self.config.claude_command,
            model=options.model or self.config.default_model,
            max_turns=options.max_turns or self.config.max_turns,
            include_partial_messages=settings.include_partial_messages,
            verbose=settings.verbose,
            skip_permissions=settings.skip_permissions,
            cli_args=settings.cli_args,
        )

    async def start(self, args: StartArgs) -> tuple[ShellRunRef, dict[str, Any]]:
        settings = args.shell
        options = args.options
        workspace_id = resolve_workspace_id(settings)
        cwd = settings.cwd or options.cwd
        backend = resolve_backend(settings, args.target)
        env = self.config.merge_env(settings.env, options.env)

        try:
            shell_session_id = await self.server.start_session(
                workspace_id, cwd=cwd, env=env, backend=backend, meta=dict(settings.meta)
            )
        except CcsessionError as e:
            raise StartError(ErrorKind.COMMAND_START_FAILED, str(e)) from e

        claude_args = self._claude_args(options, settings)
        ref = ShellRunRef(shell_session_id, workspace_id, backend, MODE_STREAM)

        subscription = await self._try_stream(ref, args, cwd, claude_args)
        if subscription is None:
            ref.mode = MODE_FALLBACK
            await self._start_fallback(ref, args, cwd, claude_args)

        logger.info(
            "Shell run started: session=%s shell=%s workspace=%s mode=%s",
            args.session_id,
            shell_session_id,
            workspace_id,
            ref.mode,
        )
        metadata = {
            "shell_session_id": shell_session_id,
            "shell_workspace_id": workspace_id,
            "shell_backend": backend_name(backend),
            "mode": ref.mode,
        }
        return ref, metadata

    # ── streaming mode ───────────────────────────────────────────────────

    async def _try_stream(
        self,
        ref: ShellRunRef,
        args: StartArgs,
        cwd: str | None,
        claude_args: list[str],
    ) -> Subscription | None:
        """Subscribe and submit; None means fall back to batch mode."""
        server = self.server
        if not supports_streaming(server):
            logger.info("Session server cannot stream, using shell agent fallback")
            return None

        sid = ref.shell_session_id
        try:
            subscription = await server.subscribe(sid)
        except SessionNotFoundError:
            logger.info("Shell session %s not found for streaming, using fallback", sid)
            return None
        except CcsessionError as e:
            await self._stop_quietly(sid)
            raise StartError(ErrorKind.SUBSCRIBE_FAILED, str(e)) from e

        command = cmd.in_dir(cwd, cmd.literal_prompt_command(claude_args, args.prompt))
        execution_context = deep_merge(
            args.shell.execution_context,
            {"max_runtime_s": self._timeout_s(args.shell)},
        )
        try:
            await server.run_command(sid, command, execution_context=execution_context)
        except CcsessionError as e:
            await server.unsubscribe(sid, subscription)
            await self._stop_quietly(sid)
            raise StartError(ErrorKind.COMMAND_START_FAILED, str(e)) from e

        ref.task = asyncio.create_task(
            self._stream(sid, subscription, args.sink, args.shell),
            name=f"shell-stream-{args.session_id}",
        )
        ref.task.add_done_callback(task_done_callback)
        return subscription

    async def _stream(
        self,
        sid: str,
        subscription: Subscription,
        sink: MessageSink,
        settings: ShellSettings,
    ) -> None:
        timed_out = False
        try:
            result = await collect_stream(
                subscription,
                timeout_s=self._timeout_s(settings),
                heartbeat_interval_s=(
                    settings.heartbeat_interval_s or self.config.heartbeat_interval_s
                ),
                on_message=sink.on_message,
                on_raw_line=sink.on_raw_line,
                on_heartbeat=sink.on_heartbeat,
            )
        except TransportError as e:
            timed_out = e.kind == ErrorKind.STREAM_TIMEOUT
            logger.warning("Shell stream for %s ended with %s", sid, e)
            sink.on_transport_error(e)
        except Exception as e:
            # A failing sink callback must still end the session
            logger.error("Shell stream for %s failed: %s", sid, e)
            sink.on_transport_error(
                TransportError(
                    ErrorKind.COMMAND_CRASHED,
                    {"reason": "stream_failed", "error": str(e) or type(e).__name__},
                )
            )
        else:
            if not any(m.is_terminal for m in result.messages):
                logger.warning("Shell stream for %s ended without a result", sid)
                sink.on_transport_error(missing_result_error())
        finally:
            await self.server.unsubscribe(sid, subscription)
            if not timed_out:
                await self._stop_quietly(sid)
        logger.info("Shell stream for %s finished", sid)

    # ── batch fallback ───────────────────────────────────────────────────

    async def _start_fallback(
        self,
        ref: ShellRunRef,
        args: StartArgs,
        cwd: str | None,
        claude_args: list[str],
    ) -> None:
        sid = ref.shell_session_id
        if self.agent is None:
            await self._stop_quietly(sid)
            raise StartError(ErrorKind.UNSUPPORTED_TRANSPORT, "no shell agent for fallback")

        settings = args.shell
        prompt_file = settings.prompt_file or self.config.prompt_file
        write_timeout = settings.prompt_write_timeout_s or self.config.prompt_write_timeout_s
        try:
            await self.agent.run(
                sid,
                cmd.in_dir(cwd, cmd.write_prompt_command(prompt_file, args.prompt)),
                timeout_s=write_timeout,
            )
        except CcsessionError as e:
            await self._stop_quietly(sid)
            raise StartError(ErrorKind.PROMPT_WRITE_FAILED, str(e)) from e

        command = cmd.in_dir(cwd, cmd.prompt_file_command(claude_args, prompt_file))
        ref.task = asyncio.create_task(
            self._run_batch(sid, command, args.sink, self._timeout_s(settings)),
            name=f"shell-batch-{args.session_id}",
        )
        ref.task.add_done_callback(task_done_callback)

    async def _run_batch(
        self, sid: str, command: str, sink: MessageSink, timeout_s: float
    ) -> None:
        assert self.agent is not None
        try:
            output = await self.agent.run(sid, command, timeout_s=timeout_s)
        except CcsessionError as e:
            logger.warning("Shell batch run for %s failed: %s", sid, e)
            error = e if isinstance(e, TransportError) else TransportError(e.kind, e.details)
            sink.on_transport_error(error)
        else:
            messages = parse_output(output, sink.on_message, sink.on_raw_line)
            if not any(m.is_terminal for m in messages):
                logger.warning("Shell batch run for %s produced no result", sid)
                sink.on_transport_error(missing_result_error())
        finally:
            await self._stop_quietly(sid)
        logger.info("Shell batch run for %s finished", sid)

    # ── teardown ─────────────────────────────────────────────────────────

    def _timeout_s(self, settings: ShellSettings) -> float:
        return settings.timeout_s or self.config.stream_timeout_s

    async def _stop_quietly(self, sid: str) -> None:
        try:
            await self.server.stop_session(sid)
        except CcsessionError as e:
            logger.warning("Failed to stop shell session %s: %s", sid, e)

    async def cancel(self, ref: Any) -> None:
        if ref is None:
            return
        if not isinstance(ref, ShellRunRef):
            raise CancelError(details=repr(ref))

        sid = ref.shell_session_id
        try:
            await self.server.cancel(sid)
        except CcsessionError as e:
            logger.warning("Failed to cancel shell command in %s: %s", sid, e)
        await self._stop_quietly(sid)
        if ref.task is not None and not ref.task.done():
            ref.task.cancel()
        logger.info("Shell run %s cancelled", sid)
