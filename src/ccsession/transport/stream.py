"""Chunk -> line -> message collection over a session-server subscription.

``collect_stream`` waits on a subscription queue until a terminal shell
event arrives or an absolute deadline passes. Output chunks go through a
LineBuffer; each complete line is decoded and handed to ``on_message``, or
to ``on_raw_line`` when it is not a JSON object. While waiting, the
heartbeat callback fires whenever nothing has parsed for at least
``heartbeat_interval_s``. Deadline expiry raises a ``stream_timeout``
TransportError and never touches the running command.

Also provides dispatch_line() and parse_output(), shared with the batch
fallback path.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from ..errors import ErrorKind, TransportError
from ..protocol import DecodeError, LineBuffer, NormalizedMessage, decode_line
from .session_server import ShellEvent, Subscription

logger = structlog.get_logger()

MessageCallback = Callable[[NormalizedMessage], None]
RawLineCallback = Callable[[str], None]
HeartbeatCallback = Callable[[float], None]


def dispatch_line(
    line: str,
    on_message: MessageCallback | None = None,
    on_raw_line: RawLineCallback | None = None,
) -> NormalizedMessage | None:
    """Decode one line and route it; returns the message if it parsed."""
    trimmed = line.strip()
    if not trimmed:
        return None
    try:
        message = decode_line(trimmed)
    except DecodeError as e:
        logger.debug("%s: %s", ErrorKind.INVALID_STREAM_JSON, trimmed[:200])
        if on_raw_line is not None:
            on_raw_line(e.line or trimmed)
        return None
    if on_message is not None:
        on_message(message)
    return message


def parse_output(
    output: str,
    on_message: MessageCallback | None = None,
    on_raw_line: RawLineCallback | None = None,
) -> list[NormalizedMessage]:
    """Parse a fully captured transcript line by line."""
    messages = []
    for line in output.splitlines():
        message = dispatch_line(line, on_message, on_raw_line)
        if message is not None:
            messages.append(message)
    return messages


@dataclass(slots=True)
class StreamResult:
    """Outcome of a stream that ended with ``command_done``."""

    output: str
    messages: list[NormalizedMessage] = field(default_factory=list)


def terminal_error(event: ShellEvent) -> TransportError | None:
    """Map a terminal shell event to the error it reports, None for done."""
    if event.kind == "command_done":
        return None
    if event.kind == "command_cancelled":
        return TransportError(ErrorKind.CANCELLED)
    if event.kind == "command_crashed":
        return TransportError(ErrorKind.COMMAND_CRASHED, event.data)
    return TransportError(ErrorKind.COMMAND_CRASHED, {"shell_error": event.data})


def missing_result_error() -> TransportError:
    """Error for a run that ended cleanly without a terminal result."""
    return TransportError(ErrorKind.COMMAND_CRASHED, {"reason": "no_result"})


async def collect_stream(
    subscription: Subscription,
    *,
    timeout_s: float,
    heartbeat_interval_s: float,
    on_message: MessageCallback | None = None,
    on_raw_line: RawLineCallback | None = None,
    on_heartbeat: HeartbeatCallback | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> StreamResult:
    """Consume shell events until the command finishes.

    Returns a StreamResult on ``command_done``. Raises TransportError with
    kind ``cancelled`` / ``command_crashed`` on the other terminal events
    (after flushing the trailing fragment) and ``stream_timeout`` when the
    deadline passes.
    """
    buffer = LineBuffer()
    chunks: list[str] = []
    messages: list[NormalizedMessage] = []
    deadline = clock() + timeout_s
    last_event = last_beat = clock()

    def consume(lines: list[str]) -> bool:
        parsed_any = False
        for line in lines:
            message = dispatch_line(line, on_message, on_raw_line)
            if message is not None:
                messages.append(message)
                parsed_any = True
        return parsed_any

    def heartbeat() -> None:
        # Idle time counts from the last parsed message, not the last chunk
        nonlocal last_beat
        now = clock()
        if now - last_beat < heartbeat_interval_s:
            return
        last_beat = now
        idle_s = now - last_event
        logger.debug("Stream idle for %.1fs", idle_s)
        if on_heartbeat is not None:
            on_heartbeat(idle_s)

    while True:
        remaining = deadline - clock()
        if remaining <= 0:
            raise TransportError(
                ErrorKind.STREAM_TIMEOUT, {"timeout_s": timeout_s}
            )

        try:
            event = await asyncio.wait_for(
                subscription.get(), timeout=min(heartbeat_interval_s, remaining)
            )
        except TimeoutError:
            heartbeat()
            continue

        if event.kind == "output" and isinstance(event.data, str):
            chunks.append(event.data)
            if consume(buffer.feed(event.data)):
                last_event = last_beat = clock()
            else:
                heartbeat()
            continue

        if not event.terminal:
            continue

        tail = buffer.flush()
        if tail is not None:
            consume([tail])

        error = terminal_error(event)
        if error is not None:
            raise error
        return StreamResult(output="".join(chunks).strip(), messages=messages)
