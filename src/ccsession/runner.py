"""One-call prompt runs inside an existing shell session.

``run_in_shell`` does not own the shell session: it writes the prompt file
through the shell agent, streams ``claude`` output through the session
server when it can, falls back to a blocking shell-agent run when it
cannot, and returns everything parsed as a RunResult.

Key pieces: run_in_shell(), RunResult.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from .errors import CcsessionError, ErrorKind, SessionNotFoundError, TransportError
from .protocol import NormalizedMessage, extract_metadata, extract_result_text
from .transport import command as cmd
from .transport.session_server import ShellAgent, supports_streaming
from .transport.shell import MODE_FALLBACK, MODE_STREAM
from .transport.stream import collect_stream, parse_output

logger = structlog.get_logger()

DEFAULT_TIMEOUT_S = 300.0
DEFAULT_PROMPT_WRITE_TIMEOUT_S = 10.0
DEFAULT_HEARTBEAT_INTERVAL_S = 5.0
DEFAULT_PROMPT_FILE = "/tmp/ccsession_prompt.txt"

RunMode = Literal["session_server_stream", "shell_agent_fallback"]


@dataclass(slots=True)
class RunResult:
    raw_output: str
    events: list[NormalizedMessage] = field(default_factory=list)
    result_text: str | None = None
    status: Literal["ok", "error"] = "ok"
    error: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)
    mode: RunMode = MODE_STREAM


def default_fallback_eligible(error: CcsessionError) -> bool:
    """Fall back only when streaming is unsupported or the session is gone."""
    return (
        isinstance(error, SessionNotFoundError)
        or error.kind == ErrorKind.UNSUPPORTED_TRANSPORT
    )


async def _stream_via_server(
    server: Any,
    session_id: str,
    command: str,
    *,
    timeout_s: float,
    heartbeat_interval_s: float,
    on_event: Callable[[NormalizedMessage], None] | None,
    on_raw_line: Callable[[str], None] | None,
    on_heartbeat: Callable[[float], None] | None,
) -> tuple[str, list[NormalizedMessage]]:
    if not supports_streaming(server):
        raise TransportError(ErrorKind.UNSUPPORTED_TRANSPORT, "session server cannot stream")

    subscription = await server.subscribe(session_id)
    try:
        await server.run_command(
            session_id, command, execution_context={"max_runtime_s": timeout_s}
        )
        result = await collect_stream(
            subscription,
            timeout_s=timeout_s,
            heartbeat_interval_s=heartbeat_interval_s,
            on_message=on_event,
            on_raw_line=on_raw_line,
            on_heartbeat=on_heartbeat,
        )
    finally:
        await server.unsubscribe(session_id, subscription)
    return result.output, result.messages


async def run_in_shell(
    server: Any,
    agent: ShellAgent,
    session_id: str,
    cwd: str,
    prompt: str,
    *,
    claude_command: str = "claude",
    model: str | None = None,
    max_turns: int | None = None,
    cli_args: Iterable[str] = (),
    include_partial_messages: bool = True,
    verbose: bool = True,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    prompt_write_timeout_s: float = DEFAULT_PROMPT_WRITE_TIMEOUT_S,
    heartbeat_interval_s: float = DEFAULT_HEARTBEAT_INTERVAL_S,
    prompt_file: str = DEFAULT_PROMPT_FILE,
    fallback_eligible: Callable[[CcsessionError], bool] = default_fallback_eligible,
    on_mode: Callable[[str], None] | None = None,
    on_event: Callable[[NormalizedMessage], None] | None = None,
    on_raw_line: Callable[[str], None] | None = None,
    on_heartbeat: Callable[[float], None] | None = None,
) -> RunResult:
    """Run *prompt* through ``claude`` in shell session *session_id*.

    Raises TransportError with kind ``prompt_write_failed`` when the prompt
    file cannot be written and ``stream_timeout`` when the stream deadline
    passes (the command is not cancelled). Other streaming failures raise
    unless *fallback_eligible* accepts them, in which case the command is
    re-run once through *agent* and its captured output parsed.
    """
    try:
        await agent.run(
            session_id,
            cmd.in_dir(cwd, cmd.write_prompt_command(prompt_file, prompt)),
            timeout_s=prompt_write_timeout_s,
        )
    except CcsessionError as e:
        raise TransportError(ErrorKind.PROMPT_WRITE_FAILED, str(e)) from e

    claude_args = cmd.build_claude_args(
        claude_command,
        model=model,
        max_turns=max_turns,
        include_partial_messages=include_partial_messages,
        verbose=verbose,
        cli_args=cli_args,
    )
    command = cmd.in_dir(cwd, cmd.prompt_file_command(claude_args, prompt_file))

    mode: RunMode = MODE_STREAM
    if on_mode is not None:
        on_mode(mode)
    try:
        output, events = await _stream_via_server(
            server,
            session_id,
            command,
            timeout_s=timeout_s,
            heartbeat_interval_s=heartbeat_interval_s,
            on_event=on_event,
            on_raw_line=on_raw_line,
            on_heartbeat=on_heartbeat,
        )
    except CcsessionError as e:
        if not fallback_eligible(e):
            raise
        logger.info("Streaming unavailable (%s), falling back to shell agent", e.kind)
        mode = MODE_FALLBACK
        if on_mode is not None:
            on_mode(mode)
        output = await agent.run(session_id, command, timeout_s=timeout_s)
        events = parse_output(output, on_event, on_raw_line)

    return RunResult(
        raw_output=output or "",
        events=events,
        result_text=extract_result_text(events, output),
        status="ok",
        error=None,
        metadata=extract_metadata(events),
        mode=mode,
    )
