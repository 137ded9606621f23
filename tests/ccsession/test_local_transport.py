"""Tests for the in-process SDK transport."""

import asyncio
import contextlib
import os
from typing import Any

import pytest
from claude_agent_sdk import AssistantMessage, ResultMessage, SystemMessage, TextBlock
from fakes import RecordingSink

from ccsession.errors import CancelError, ErrorKind
from ccsession.transport.base import SessionOptions, StartArgs
from ccsession.transport.local import LocalRunRef, LocalTransport


def _args(sink: RecordingSink, **kwargs: Any) -> StartArgs:
    return StartArgs(sink=sink, prompt="summarize the repo", session_id="s-1", **kwargs)


def _success() -> ResultMessage:
    return ResultMessage(
        subtype="success",
        duration_ms=50,
        duration_api_ms=40,
        is_error=False,
        num_turns=1,
        session_id="prov-1",
        total_cost_usd=0.002,
        result="summary",
    )


class ScriptedQuery:
    """Stand-in for ``claude_agent_sdk.query`` yielding a fixed script."""

    def __init__(self, *messages: Any, error: Exception | None = None, hang: bool = False):
        self.messages = messages
        self.error = error
        self.hang = hang
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, *, prompt: str, options: Any):
        self.calls.append({"prompt": prompt, "options": options})
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()


class TestStart:
    async def test_streams_sdk_messages(self, config, sink: RecordingSink) -> None:
        query = ScriptedQuery(
            SystemMessage(subtype="init", data={"type": "system", "model": "sonnet"}),
            AssistantMessage(content=[TextBlock(text="reading")], model="sonnet"),
            _success(),
        )
        transport = LocalTransport(config, query_fn=query)

        ref, metadata = await transport.start(_args(sink))
        await ref.task

        assert metadata == {}
        assert [m.type for m in sink.of("message")] == ["system", "assistant", "result"]
        assert sink.of("message")[-1].subtype == "success"
        assert query.calls[0]["prompt"] == "summarize the repo"

    async def test_dict_messages_pass_through(self, config, sink: RecordingSink) -> None:
        query = ScriptedQuery({"type": "result", "subtype": "success", "result": "ok"})
        ref, _ = await LocalTransport(config, query_fn=query).start(_args(sink))
        await ref.task
        (message,) = sink.of("message")
        assert message.data["result"] == "ok"

    async def test_exception_becomes_error_result(self, config, sink: RecordingSink) -> None:
        query = ScriptedQuery(
            SystemMessage(subtype="init", data={}), error=RuntimeError("cli exploded")
        )
        ref, _ = await LocalTransport(config, query_fn=query).start(_args(sink))
        await ref.task

        init, error = sink.of("message")
        assert init.subtype == "init"
        assert (error.type, error.subtype) == ("result", "error_exception")
        assert error.data["error"] == "cli exploded"
        assert error.data["source"] == "local_transport"
        assert "RuntimeError" in error.data["stacktrace"]
        assert error.is_terminal

    async def test_timeout_becomes_error_result(self, config, sink: RecordingSink) -> None:
        query = ScriptedQuery(hang=True)
        ref, _ = await LocalTransport(config, query_fn=query).start(
            _args(sink, options=SessionOptions(timeout_s=0.05))
        )
        await ref.task

        (error,) = sink.of("message")
        assert error.subtype == "error_exception"
        assert error.data["error"] == "TimeoutError"

    async def test_exhausted_without_result_reported(self, config, sink: RecordingSink) -> None:
        query = ScriptedQuery(SystemMessage(subtype="init", data={}))
        ref, _ = await LocalTransport(config, query_fn=query).start(_args(sink))
        await ref.task

        assert [m.subtype for m in sink.of("message")] == ["init"]
        (error,) = sink.of("error")
        assert error.kind == ErrorKind.COMMAND_CRASHED
        assert error.details == {"reason": "no_result"}


class TestBuildOptions:
    def test_defaults_from_config(self, config, sink: RecordingSink) -> None:
        config.env_overrides = {"ANTHROPIC_BASE_URL": "http://proxy"}
        options = LocalTransport(config).build_options(_args(sink))

        assert options.model == config.default_model
        assert options.max_turns == config.max_turns
        assert options.allowed_tools == list(config.allowed_tools)
        assert str(options.cwd) == os.getcwd()
        assert options.env == {"ANTHROPIC_BASE_URL": "http://proxy"}
        assert options.include_partial_messages is True

    def test_caller_options_win(self, config, sink: RecordingSink) -> None:
        config.env_overrides = {"A": "config", "B": "config"}
        options = LocalTransport(config).build_options(
            _args(
                sink,
                options=SessionOptions(
                    model="opus",
                    max_turns=2,
                    allowed_tools=("Read",),
                    cwd="/repo",
                    system_prompt="be brief",
                    env={"B": "caller"},
                ),
            )
        )

        assert options.model == "opus"
        assert options.max_turns == 2
        assert options.allowed_tools == ["Read"]
        assert str(options.cwd) == "/repo"
        assert options.system_prompt == "be brief"
        assert options.env == {"A": "config", "B": "caller"}


class TestCancel:
    async def test_none_is_noop(self, config) -> None:
        await LocalTransport(config).cancel(None)

    async def test_wrong_ref(self, config) -> None:
        with pytest.raises(CancelError):
            await LocalTransport(config).cancel("pid-7")

    async def test_cancels_running_task(self, config, sink: RecordingSink) -> None:
        transport = LocalTransport(config, query_fn=ScriptedQuery(hang=True))
        ref, _ = await transport.start(_args(sink))
        assert isinstance(ref, LocalRunRef)
        await asyncio.sleep(0)

        await transport.cancel(ref)
        with contextlib.suppress(asyncio.CancelledError):
            await ref.task

        assert ref.done
        assert sink.of("message") == []
