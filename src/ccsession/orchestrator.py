"""Orchestrator: spawns sessions and tracks them in a SessionRegistry.

All sessions emit into one inbound ``asyncio.Queue``. The orchestrator is
the only writer of its registry: it registers a session once its
transport has started, applies every inbound event to the registry
(``handle_event``), and does its own bookkeeping for cancellation.
Terminal registry entries never change again.

Key class: Orchestrator.
"""

import asyncio
from collections.abc import AsyncIterator, Mapping
from typing import Any

import structlog

from .config import Config
from .errors import ErrorKind, SessionNotActiveError, SessionNotFoundError
from .events import (
    OutboundEvent,
    SessionError,
    SessionStarted,
    SessionSuccess,
    TurnText,
    TurnToolResult,
    TurnToolUse,
)
from .registry import SessionRegistry, SessionRegistryEntry, utc_now
from .session import ClaudeSession
from .transport.base import ExecutionTarget, SessionOptions, ShellSettings
from .transport.registry import TransportRegistry, default_registry
from .utils import new_session_id

logger = structlog.get_logger()


class Orchestrator:
    """Owns many ClaudeSessions, their registry, and the inbound channel."""

    def __init__(
        self,
        config: Config,
        transports: TransportRegistry | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.config = config
        self.transports = transports or default_registry(config)
        self.registry = registry or SessionRegistry()
        self.inbound: asyncio.Queue[OutboundEvent] = asyncio.Queue()
        self.sessions: dict[str, ClaudeSession] = {}

    async def spawn_session(
        self,
        prompt: str,
        *,
        session_id: str | None = None,
        target: ExecutionTarget = "local",
        options: SessionOptions | None = None,
        shell: ShellSettings | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> str:
        """Start a session and register it; returns the session id.

        Raises UnknownTransportError for unregistered targets and
        StartError when the transport cannot start. Nothing is
        registered in either case.
        """
        session_id = session_id or new_session_id()
        options = options or SessionOptions()
        transport = self.transports.get(target)
        session = ClaudeSession(
            session_id,
            prompt,
            transport=transport,
            emit=self.inbound.put_nowait,
            options=options,
            target=target,
            shell=shell,
        )
        metadata = await session.start()

        self.sessions[session_id] = session
        self.registry.register(
            session_id,
            prompt=prompt,
            model=options.model or self.config.default_model,
            meta=dict(meta or {}),
            execution_target=target,
            transport_metadata=metadata,
        )
        logger.info("Spawned session %s (target=%s)", session_id, target)
        return session_id

    def handle_event(self, event: OutboundEvent) -> SessionRegistryEntry | None:
        """Apply one inbound event to the registry.

        Events for unknown or already-terminal entries are ignored.
        """
        entry = self.registry.get(event.session_id)
        if entry is None or entry.is_terminal:
            return None

        sid = event.session_id
        match event:
            case SessionStarted():
                entry = self.registry.update(
                    sid,
                    status="running",
                    model=event.model or entry.model,
                    provider_session_id=event.provider_session_id,
                )
            case TurnText() | TurnToolUse():
                entry = self.registry.update(sid, turns=max(entry.turns, event.turn))
            case TurnToolResult():
                entry = self.registry.update(sid)
            case SessionSuccess():
                entry = self.registry.update(
                    sid,
                    status="success",
                    turns=event.turns,
                    result=event.result,
                    cost_usd=event.cost_usd,
                    duration_ms=event.duration_ms,
                    completed_at=utc_now(),
                )
            case SessionError():
                status = (
                    "cancelled" if event.error_type == ErrorKind.CANCELLED else "failure"
                )
                entry = self.registry.update(
                    sid,
                    status=status,
                    error={"type": event.error_type, "details": event.details},
                    completed_at=utc_now(),
                )
        return entry

    async def cancel_session(self, session_id: str, reason: str = "cancelled") -> None:
        """Cancel an active session.

        Raises SessionNotFoundError / SessionNotActiveError without touching
        the registry.
        """
        entry = self.registry.get(session_id)
        if entry is None:
            raise SessionNotFoundError(details={"session_id": session_id})
        # The entry lags behind queued events; the session itself does not
        session = self.sessions.get(session_id)
        status = session.status if session is not None else entry.status
        if session is None or not entry.is_active or status != "running":
            raise SessionNotActiveError(details={"session_id": session_id, "status": status})

        self.registry.update(
            session_id, status="cancelled", completed_at=utc_now(), cancel_reason=reason
        )
        await session.cancel(reason)
        logger.info("Cancelled session %s (%s)", session_id, reason)

    def remove_session(self, session_id: str) -> SessionRegistryEntry | None:
        """Forget a session; only terminal entries are removed."""
        entry = self.registry.get(session_id)
        if entry is None or not entry.is_terminal:
            return None
        self.sessions.pop(session_id, None)
        return self.registry.remove(session_id)

    async def events(self) -> AsyncIterator[OutboundEvent]:
        """Yield inbound events after applying each one to the registry."""
        while True:
            event = await self.inbound.get()
            self.handle_event(event)
            yield event

    def drain(self) -> list[OutboundEvent]:
        """Apply every event queued so far; returns them in order."""
        drained = []
        while not self.inbound.empty():
            event = self.inbound.get_nowait()
            self.handle_event(event)
            drained.append(event)
        return drained

    async def wait_idle(self) -> None:
        """Wait until no registry entry is active, applying events meanwhile."""
        while self.registry.count_active():
            event = await self.inbound.get()
            self.handle_event(event)
