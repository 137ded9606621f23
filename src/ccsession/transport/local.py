"""Local transport: streams a run in-process through the Claude Agent SDK.

``claude_agent_sdk.query`` yields structured messages; each one is
normalized and handed to the session sink. Any exception raised while
iterating becomes a synthetic ``result/error_exception`` message, so the
session always sees a terminal result; a run that ends without one is
reported to the sink as a transport error.
"""

import asyncio
import os
import traceback
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import structlog
from claude_agent_sdk import ClaudeAgentOptions, query

from ..config import Config
from ..errors import CancelError
from ..protocol import from_wire, normalize_sdk_message
from ..utils import task_done_callback
from .base import MessageSink, StartArgs
from .stream import missing_result_error

logger = structlog.get_logger()

DEFAULT_LOCAL_TIMEOUT_S = 600.0

QueryFn = Callable[..., AsyncIterator[Any]]


@dataclass
class LocalRunRef:
    task: asyncio.Task[None]

    @property
    def done(self) -> bool:
        return self.task.done()


class LocalTransport:
    """Transport for the ``local`` execution target."""

    name = "local"

    def __init__(self, config: Config, query_fn: QueryFn | None = None) -> None:
        self.config = config
        self._query = query_fn or query

    def build_options(self, args: StartArgs) -> ClaudeAgentOptions:
        options = args.options
        return ClaudeAgentOptions(
            model=options.model or self.config.default_model,
            max_turns=options.max_turns or self.config.max_turns,
            allowed_tools=list(options.allowed_tools or self.config.allowed_tools),
            cwd=options.cwd or os.getcwd(),
            system_prompt=options.system_prompt,
            env=self.config.merge_env(options.env),
            include_partial_messages=True,
        )

    async def start(self, args: StartArgs) -> tuple[LocalRunRef, dict[str, Any]]:
        sdk_options = self.build_options(args)
        timeout_s = args.options.timeout_s or DEFAULT_LOCAL_TIMEOUT_S
        task = asyncio.create_task(
            self._run(args.prompt, sdk_options, args.sink, timeout_s),
            name=f"local-{args.session_id}",
        )
        task.add_done_callback(task_done_callback)
        logger.info(
            "Local run started: session=%s model=%s", args.session_id, sdk_options.model
        )
        return LocalRunRef(task), {}

    async def _run(
        self,
        prompt: str,
        sdk_options: ClaudeAgentOptions,
        sink: MessageSink,
        timeout_s: float,
    ) -> None:
        saw_result = False
        try:
            async with asyncio.timeout(timeout_s):
                async for message in self._query(prompt=prompt, options=sdk_options):
                    normalized = normalize_sdk_message(message)
                    saw_result = saw_result or normalized.is_terminal
                    sink.on_message(normalized)
        except Exception as e:
            logger.error("Local run failed: %s", e)
            sink.on_message(
                from_wire(
                    {
                        "type": "result",
                        "subtype": "error_exception",
                        "data": {
                            "error": str(e) or type(e).__name__,
                            "source": "local_transport",
                            "stacktrace": traceback.format_exc(),
                        },
                    }
                )
            )
        else:
            if not saw_result:
                logger.warning("Local run ended without a result")
                sink.on_transport_error(missing_result_error())

    async def cancel(self, ref: Any) -> None:
        if ref is None:
            return
        if not isinstance(ref, LocalRunRef):
            raise CancelError(details=repr(ref))
        if not ref.task.done():
            ref.task.cancel()
            logger.info("Local run %s cancelled", ref.task.get_name())
