"""Stream-json protocol parsing for the Claude CLI.

Pure helpers, no I/O. ``claude -p --output-format stream-json`` writes one
JSON object per line; this module turns those lines (or the structured
messages yielded by the Claude Agent SDK) into ``NormalizedMessage`` values
and extracts best-effort summaries from an ordered list of them.

Wire shapes handled:
  - ``{"type": "system", "subtype": "init", "model": ..., "cwd": ..., "tools": [...]}``
  - ``{"type": "assistant", "message": {"content": [{"type": "text", ...}, ...]}}``
  - ``{"type": "user", ...}`` tool results, passed through opaque
  - ``{"type": "result", "subtype": "success" | "error_*", "result": ..., ...}``
  - ``{"type": "stream_event", "event": {"type": "content_block_delta", ...}}``

Key pieces: decode_line(), classify(), extract_result_text(),
extract_metadata(), LineBuffer, normalize_sdk_message().
"""

import dataclasses
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

MessageType = Literal["system", "assistant", "user", "result", "unknown"]
MessageSubtype = Literal[
    "init",
    "success",
    "error_exception",
    "error_max_turns",
    "error_timeout",
    "unknown",
]

_MESSAGE_TYPES: frozenset[str] = frozenset({"system", "assistant", "user", "result"})
_MESSAGE_SUBTYPES: frozenset[str] = frozenset(
    {"init", "success", "error_exception", "error_max_turns", "error_timeout"}
)

TERMINAL_SUBTYPES: frozenset[str] = frozenset(
    {"success", "error_exception", "error_max_turns", "error_timeout"}
)
ERROR_SUBTYPES: frozenset[str] = TERMINAL_SUBTYPES - {"success"}


class DecodeError(ValueError):
    """Raised when a stream line cannot be decoded into a message.

    ``reason`` is ``"empty_line"`` or ``"invalid_json"``.
    """

    def __init__(self, reason: str, line: str = "") -> None:
        self.reason = reason
        self.line = line
        super().__init__(reason)


@dataclass(frozen=True, slots=True)
class NormalizedMessage:
    """One decoded protocol message.

    ``data`` is the payload downstream code reads; ``raw`` is the full
    decoded object as emitted by the CLI.
    """

    type: MessageType
    subtype: MessageSubtype | None
    data: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type == "result" and self.subtype in TERMINAL_SUBTYPES


def _normalize_type(value: Any) -> MessageType:
    if isinstance(value, str) and value in _MESSAGE_TYPES:
        return value  # type: ignore[return-value]
    return "unknown"


def _normalize_subtype(value: Any) -> MessageSubtype | None:
    if value is None:
        return None
    if isinstance(value, str):
        if value in _MESSAGE_SUBTYPES:
            return value  # type: ignore[return-value]
        if value.startswith("error_"):
            return "error_exception"
    return "unknown"


def _extract_data(raw: dict[str, Any]) -> dict[str, Any]:
    data = raw.get("data")
    if isinstance(data, dict):
        return data
    if data is None:
        return raw
    return {"value": data}


def from_wire(raw: dict[str, Any]) -> NormalizedMessage:
    """Build a NormalizedMessage from an already-decoded wire object."""
    return NormalizedMessage(
        type=_normalize_type(raw.get("type")),
        subtype=_normalize_subtype(raw.get("subtype")),
        data=_extract_data(raw),
        raw=raw,
    )


def decode_line(line: str) -> NormalizedMessage:
    """Decode one stream-json line.

    Raises DecodeError("empty_line") for blank input and
    DecodeError("invalid_json") for anything that is not a JSON object.
    """
    trimmed = line.strip()
    if not trimmed:
        raise DecodeError("empty_line", line)
    try:
        raw = json.loads(trimmed)
    except json.JSONDecodeError as e:
        raise DecodeError("invalid_json", trimmed) from e
    if not isinstance(raw, dict):
        raise DecodeError("invalid_json", trimmed)
    return from_wire(raw)


def _raw_of(message: NormalizedMessage | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(message, NormalizedMessage):
        return message.raw
    return message


def classify(message: NormalizedMessage | Mapping[str, Any]) -> str:
    """Return a compact event-kind label for logging.

    Stream-event wrappers render as ``stream:<nested-type>``.
    """
    raw = _raw_of(message)
    msg_type = raw.get("type")
    if msg_type == "stream_event":
        event = raw.get("event")
        if isinstance(event, dict) and isinstance(event.get("type"), str):
            return f"stream:{event['type']}"
    if isinstance(msg_type, str) and msg_type:
        return msg_type
    if isinstance(message, NormalizedMessage):
        return message.type
    return "unknown"


def _blank_to_none(value: str) -> str | None:
    stripped = value.strip()
    return stripped or None


def assistant_text(raw: Mapping[str, Any]) -> str | None:
    """Join the text blocks of an assistant message, None when blank."""
    message = raw.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list):
        return None
    parts = [
        block["text"]
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    ]
    return _blank_to_none("".join(parts))


def _delta_text(raw: Mapping[str, Any]) -> str | None:
    if raw.get("type") != "stream_event":
        return None
    event = raw.get("event")
    if not isinstance(event, dict) or event.get("type") != "content_block_delta":
        return None
    delta = event.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return delta["text"]
    return None


def extract_result_text(
    messages: Iterable[NormalizedMessage | Mapping[str, Any]],
    raw_fallback: str | None = None,
) -> str | None:
    """Best-effort final response text.

    Precedence: last non-blank ``result`` text, then the last assistant
    message with non-blank text, then all streamed deltas joined in order,
    then the trimmed raw transcript. Blank candidates are skipped.
    """
    raws = [_raw_of(m) for m in messages]

    for raw in reversed(raws):
        if raw.get("type") == "result":
            result = raw.get("result")
            if isinstance(result, str) and result.strip():
                return result.strip()

    for raw in reversed(raws):
        if raw.get("type") == "assistant":
            text = assistant_text(raw)
            if text:
                return text

    deltas = [d for d in (_delta_text(raw) for raw in raws) if d is not None]
    joined = _blank_to_none("".join(deltas))
    if joined:
        return joined

    if isinstance(raw_fallback, str):
        return _blank_to_none(raw_fallback)
    return None


def _find_last(
    raws: list[Mapping[str, Any]], expected_type: str
) -> Mapping[str, Any]:
    for raw in reversed(raws):
        if raw.get("type") == expected_type:
            return raw
    return {}


# (output key, source key) pairs read from the last system / result message
_SYSTEM_FIELDS = (("model", "model"), ("cli_version", "claude_code_version"))
_RESULT_FIELDS = (
    ("result_subtype", "subtype"),
    ("turns", "num_turns"),
    ("duration_ms", "duration_ms"),
    ("cost_usd", "total_cost_usd"),
)


def extract_metadata(
    messages: Iterable[NormalizedMessage | Mapping[str, Any]],
) -> dict[str, Any]:
    """Summary metadata from the most recent system and result messages.

    Fields missing from the source message are omitted, never defaulted.
    """
    raws = [_raw_of(m) for m in messages]
    system = _find_last(raws, "system")
    result = _find_last(raws, "result")

    metadata: dict[str, Any] = {}
    for key, source in _SYSTEM_FIELDS:
        if system.get(source) is not None:
            metadata[key] = system[source]
    for key, source in _RESULT_FIELDS:
        if result.get(source) is not None:
            metadata[key] = result[source]
    return metadata


class LineBuffer:
    """Reassembles complete lines from arbitrarily chunked output.

    ``feed`` returns the complete lines in the accumulated data and keeps
    the trailing fragment until the next chunk or ``flush``.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> list[str]:
        data = self._buffer + chunk
        *lines, self._buffer = data.split("\n")
        return [line.removesuffix("\r") for line in lines]

    def flush(self) -> str | None:
        """Return the trailing fragment (None when blank) and clear it."""
        tail, self._buffer = self._buffer, ""
        return _blank_to_none(tail)


# ── Claude Agent SDK messages ────────────────────────────────────────────

_SDK_BLOCK_TYPES = {
    "TextBlock": "text",
    "ThinkingBlock": "thinking",
    "ToolUseBlock": "tool_use",
    "ToolResultBlock": "tool_result",
}


def _block_to_wire(block: Any) -> Any:
    if isinstance(block, dict):
        return block
    block_type = _SDK_BLOCK_TYPES.get(type(block).__name__)
    if block_type is None or not dataclasses.is_dataclass(block):
        return {"type": "unknown", "value": repr(block)}
    return {"type": block_type, **dataclasses.asdict(block)}


def _content_to_wire(content: Any) -> Any:
    if isinstance(content, list):
        return [_block_to_wire(block) for block in content]
    return content


def sdk_message_to_wire(message: Any) -> dict[str, Any]:
    """Convert a Claude Agent SDK message object into its wire dict shape."""
    if isinstance(message, dict):
        return message

    name = type(message).__name__
    if name == "SystemMessage":
        data = getattr(message, "data", None) or {}
        return {**data, "type": "system", "subtype": message.subtype}
    if name == "AssistantMessage":
        return {
            "type": "assistant",
            "message": {
                "model": getattr(message, "model", None),
                "content": _content_to_wire(message.content),
            },
        }
    if name == "UserMessage":
        return {
            "type": "user",
            "message": {"role": "user", "content": _content_to_wire(message.content)},
        }
    if name == "ResultMessage":
        return {"type": "result", **dataclasses.asdict(message)}
    if name == "StreamEvent":
        return {
            "type": "stream_event",
            "event": message.event,
            "session_id": getattr(message, "session_id", None),
            "uuid": getattr(message, "uuid", None),
        }
    return {"type": "unknown", "value": repr(message)}


def normalize_sdk_message(message: Any) -> NormalizedMessage:
    """Normalize one structured message yielded by the SDK stream."""
    return from_wire(sdk_message_to_wire(message))
