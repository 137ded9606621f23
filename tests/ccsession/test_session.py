"""Tests for the ClaudeSession lifecycle state machine."""

from typing import Any
from unittest.mock import AsyncMock

import pytest
from fakes import ASSISTANT, INIT, SUCCESS
from hypothesis import given
from hypothesis import strategies as st

from ccsession.errors import (
    CancelError,
    CcsessionError,
    ErrorKind,
    SessionNotRunningError,
    StartError,
    TransportError,
)
from ccsession.events import (
    SessionError,
    SessionStarted,
    SessionSuccess,
    TurnText,
    TurnToolResult,
    TurnToolUse,
)
from ccsession.protocol import from_wire
from ccsession.session import TERMINAL_STATUSES, ClaudeSession
from ccsession.transport.base import SessionOptions

_TOOL_TURN = {
    "type": "assistant",
    "message": {
        "content": [
            {"type": "text", "text": "let me look"},
            {"type": "tool_use", "id": "tu_1", "name": "Read", "input": {"path": "a.py"}},
            {"type": "thinking", "thinking": "hmm"},
        ]
    },
}
_TOOL_RESULT = {
    "type": "user",
    "message": {
        "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "print(1)"}]
    },
}


def _transport(metadata: dict[str, Any] | None = None) -> AsyncMock:
    transport = AsyncMock()
    transport.start.return_value = (object(), metadata or {})
    return transport


def _session(transport: AsyncMock | None = None, **kwargs: Any):
    events: list[Any] = []
    session = ClaudeSession(
        "s-1",
        "fix it",
        transport=transport or _transport(),
        emit=events.append,
        **kwargs,
    )
    return session, events


async def _running(**kwargs: Any):
    session, events = _session(**kwargs)
    await session.start()
    return session, events


class TestStart:
    async def test_idle_to_running(self) -> None:
        transport = _transport({"mode": "session_server_stream"})
        session, events = _session(transport)
        assert session.status == "idle"

        metadata = await session.start()

        assert session.status == "running"
        assert metadata == {"mode": "session_server_stream"}
        assert session.transport_metadata == metadata
        assert events == []
        (call,) = transport.start.await_args_list
        args = call.args[0]
        assert args.sink is session
        assert args.prompt == "fix it"
        assert args.target == "local"

    async def test_start_error_returns_to_idle(self) -> None:
        transport = _transport()
        transport.start.side_effect = StartError(ErrorKind.SUBSCRIBE_FAILED)
        session, events = _session(transport)

        with pytest.raises(StartError):
            await session.start()

        assert session.status == "idle"
        assert session.transport_ref is None
        assert events == []

    async def test_cannot_start_twice(self) -> None:
        session, _ = await _running()
        with pytest.raises(CcsessionError) as exc_info:
            await session.start()
        assert exc_info.value.kind == "session_already_started"

    async def test_run_finishing_during_start_stays_terminal(self) -> None:
        session, events = _session()

        async def start(args):
            args.sink.on_message(from_wire(SUCCESS))
            return object(), {}

        session.transport.start.side_effect = start
        await session.start()

        assert session.status == "success"
        assert isinstance(events[-1], SessionSuccess)

    async def test_model_from_options(self) -> None:
        session, _ = _session(options=SessionOptions(model="opus"))
        assert session.model == "opus"


class TestMessages:
    async def test_full_success_transcript(self) -> None:
        session, events = await _running()

        for wire in (INIT, ASSISTANT, SUCCESS):
            session.on_message(from_wire(wire))

        assert events == [
            SessionStarted(session_id="s-1", model="sonnet", provider_session_id="prov-1"),
            TurnText(session_id="s-1", text="working on it", turn=1),
            SessionSuccess(
                session_id="s-1", result="done", turns=1, cost_usd=0.01, duration_ms=1200
            ),
        ]
        assert session.status == "success"
        assert session.model == "sonnet"
        assert session.provider_session_id == "prov-1"
        assert await session.wait() == "success"

    async def test_tool_use_and_result(self) -> None:
        session, events = await _running()

        session.on_message(from_wire(_TOOL_TURN))
        session.on_message(from_wire(_TOOL_RESULT))

        text, tool, result = events
        assert text == TurnText(session_id="s-1", text="let me look", turn=1)
        assert tool == TurnToolUse(
            session_id="s-1", tool="Read", input={"path": "a.py"}, tool_use_id="tu_1", turn=1
        )
        assert isinstance(result, TurnToolResult)
        assert result.tool_use_id == "tu_1"
        assert result.content == "print(1)"
        assert result.is_error is False
        assert session.turns == 1
        assert session.transcript[0][1][2]["type"] == "unknown"

    async def test_user_without_tool_result(self) -> None:
        session, events = await _running()
        session.on_message(from_wire({"type": "user", "message": {"content": "hi"}}))
        (event,) = events
        assert event.tool_use_id is None
        assert event.content is None

    async def test_each_assistant_message_is_a_turn(self) -> None:
        session, events = await _running()
        for _ in range(3):
            session.on_message(from_wire(ASSISTANT))
        assert [e.turn for e in events] == [1, 2, 3]

    async def test_success_turns_from_result(self) -> None:
        session, events = await _running()
        session.on_message(from_wire(ASSISTANT))

        session.on_message(from_wire({**SUCCESS, "num_turns": 4}))

        assert events[-1].turns == 4
        assert session.turns == 1

    @pytest.mark.parametrize("num_turns", [None, "3", True])
    async def test_success_turns_fall_back_to_count(self, num_turns: Any) -> None:
        session, events = await _running()
        session.on_message(from_wire(ASSISTANT))
        session.on_message(from_wire(ASSISTANT))

        session.on_message(from_wire({**SUCCESS, "num_turns": num_turns}))

        assert events[-1].turns == 2

    @pytest.mark.parametrize("subtype", ["error_max_turns", "error_timeout", "error_exception"])
    async def test_error_results_fail(self, subtype: str) -> None:
        session, events = await _running()
        session.on_message(from_wire(ASSISTANT))

        session.on_message(from_wire({"type": "result", "subtype": subtype, "data": {"x": 1}}))

        assert session.status == "failure"
        assert session.error == {"type": subtype, "details": {"x": 1}}
        assert events[-1] == SessionError(session_id="s-1", error_type=subtype, details={"x": 1})
        assert session.turns == 1

    async def test_unknown_messages_ignored(self) -> None:
        session, events = await _running()
        session.on_message(from_wire({"type": "stream_event", "event": {}}))
        session.on_message(from_wire({"type": "system", "subtype": "compact"}))
        assert events == []
        assert session.status == "running"

    async def test_messages_during_starting_are_handled(self) -> None:
        session, events = _session()
        session.status = "starting"
        session.on_message(from_wire(INIT))
        assert isinstance(events[0], SessionStarted)

    async def test_raw_lines_recorded(self) -> None:
        session, events = await _running()
        session.on_raw_line("NOT_JSON")
        assert session.raw_lines == ["NOT_JSON"]
        assert events == []


class TestTransportErrors:
    async def test_transport_error_fails_session(self) -> None:
        session, events = await _running()
        session.on_message(from_wire(ASSISTANT))

        session.on_transport_error(TransportError(ErrorKind.STREAM_TIMEOUT, {"timeout_s": 1}))

        assert session.status == "failure"
        assert session.error == {"type": "stream_timeout", "details": {"timeout_s": 1}}
        assert events[-1].error_type == "stream_timeout"
        assert session.turns == 1

    async def test_heartbeat_changes_nothing(self) -> None:
        session, events = await _running()
        session.on_heartbeat(5.0)
        assert session.status == "running"
        assert events == []


class TestTerminalOnce:
    async def test_nothing_after_success(self) -> None:
        session, events = await _running()
        session.on_message(from_wire(SUCCESS))
        count = len(events)

        session.on_message(from_wire(ASSISTANT))
        session.on_message(from_wire({"type": "result", "subtype": "error_exception"}))
        session.on_transport_error(TransportError())

        assert len(events) == count
        assert session.status == "success"
        assert session.turns == 0


_INPUTS = st.lists(
    st.sampled_from(["init", "assistant", "user", "success", "error", "transport", "noise"]),
    max_size=12,
)
_WIRE = {
    "init": INIT,
    "assistant": ASSISTANT,
    "user": _TOOL_RESULT,
    "success": SUCCESS,
    "error": {"type": "result", "subtype": "error_max_turns"},
    "noise": {"type": "stream_event", "event": {"type": "ping"}},
}


@given(inputs=_INPUTS)
def test_exactly_one_terminal_event(inputs: list[str]) -> None:
    events: list[Any] = []
    session = ClaudeSession("s-1", "p", transport=_transport(), emit=events.append)
    session.status = "running"

    for item in inputs:
        if item == "transport":
            session.on_transport_error(TransportError())
        else:
            session.on_message(from_wire(_WIRE[item]))

    terminal = [e for e in events if e.terminal]
    assert len(terminal) == (1 if session.status in TERMINAL_STATUSES else 0)
    if terminal:
        assert events[-1] is terminal[0]


class TestCancel:
    async def test_cancel_running(self) -> None:
        session, events = await _running()
        ref = session.transport_ref

        await session.cancel("user asked")

        session.transport.cancel.assert_awaited_once_with(ref)
        assert session.status == "cancelled"
        assert events[-1] == SessionError(
            session_id="s-1", error_type="cancelled", details={"reason": "user asked"}
        )
        assert await session.wait() == "cancelled"

    async def test_cancel_failure_is_recorded(self) -> None:
        session, events = await _running()
        session.transport.cancel.side_effect = CancelError(details="bad ref")

        await session.cancel()

        assert session.status == "cancelled"
        assert events[-1].details["reason"] == "cancelled"
        assert "bad ref" in events[-1].details["cancel_error"]

    async def test_foreign_cancel_error_still_finishes(self) -> None:
        session, events = await _running()
        session.transport.cancel.side_effect = ConnectionError("remote gone")

        await session.cancel()

        assert session.status == "cancelled"
        assert events[-1].error_type == "cancelled"
        assert events[-1].details["cancel_error"] == "remote gone"
        assert await session.wait() == "cancelled"

    async def test_transport_error_during_cancel_is_ignored(self) -> None:
        session, events = await _running()

        async def cancel(ref):
            session.on_transport_error(TransportError(ErrorKind.CANCELLED))

        session.transport.cancel.side_effect = cancel
        await session.cancel()

        assert [e.error_type for e in events] == ["cancelled"]
        assert session.error["details"] == {"reason": "cancelled"}

    @pytest.mark.parametrize("status", ["idle", "starting", "success", "failure", "cancelled"])
    async def test_cancel_requires_running(self, status: str) -> None:
        session, events = _session()
        session.status = status

        with pytest.raises(SessionNotRunningError):
            await session.cancel()

        assert session.status == status
        assert events == []
        session.transport.cancel.assert_not_awaited()


async def test_to_dict() -> None:
    session, _ = await _running(transport=_transport({"mode": "x"}), target="shell")
    session.on_message(from_wire(SUCCESS))
    data = session.to_dict()
    assert data["status"] == "success"
    assert data["execution_target"] == "shell"
    assert data["transport_metadata"] == {"mode": "x"}
    assert data["result"] == "done"
