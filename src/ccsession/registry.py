"""Session registry: orchestrator-side summaries of many sessions.

Pure keyed-collection operations, no I/O and no transport logic. Lookups
and removals of unknown ids return None rather than raising. Fields that
are not part of SessionRegistryEntry (``result``, ``error``,
``completed_at`` ...) are kept in the entry's ``extra`` dict. Status is
limited to the starting / running and success / failure / cancelled
values, so every entry is either active or completed.

Key classes: SessionRegistry, SessionRegistryEntry.
"""

import dataclasses
from collections import Counter
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .session import ACTIVE_STATUSES, TERMINAL_STATUSES


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class SessionRegistryEntry:
    status: str = "starting"
    started_at: datetime = field(default_factory=utc_now)
    last_activity: datetime = field(default_factory=utc_now)
    prompt: str | None = None
    model: str | None = None
    turns: int = 0
    cost_usd: float | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        extra = data.pop("extra")
        data["started_at"] = self.started_at.isoformat()
        data["last_activity"] = self.last_activity.isoformat()
        return {**extra, **data}


REGISTRY_STATUSES: frozenset[str] = ACTIVE_STATUSES | TERMINAL_STATUSES

_ENTRY_FIELDS = frozenset(f.name for f in dataclasses.fields(SessionRegistryEntry)) - {
    "extra"
}


class SessionRegistry:
    """Keyed collection of SessionRegistryEntry by session id."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._entries: dict[str, SessionRegistryEntry] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def _apply(self, entry: SessionRegistryEntry, attrs: dict[str, Any]) -> None:
        if "status" in attrs and attrs["status"] not in REGISTRY_STATUSES:
            raise ValueError(f"Unknown registry status: {attrs['status']!r}")
        for key, value in attrs.items():
            if key in _ENTRY_FIELDS:
                setattr(entry, key, value)
            else:
                entry.extra[key] = value

    def register(self, session_id: str, **attrs: Any) -> SessionRegistryEntry:
        """Add (or replace) an entry; defaults are starting / 0 turns / now."""
        now = self._clock()
        entry = SessionRegistryEntry(started_at=now, last_activity=now)
        self._apply(entry, attrs)
        self._entries[session_id] = entry
        return entry

    def update(self, session_id: str, **partial: Any) -> SessionRegistryEntry | None:
        """Merge *partial* into an entry and refresh ``last_activity``."""
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        self._apply(entry, partial)
        entry.last_activity = self._clock()
        return entry

    def get(self, session_id: str) -> SessionRegistryEntry | None:
        return self._entries.get(session_id)

    def remove(self, session_id: str) -> SessionRegistryEntry | None:
        return self._entries.pop(session_id, None)

    def active(self) -> dict[str, SessionRegistryEntry]:
        return {k: e for k, e in self._entries.items() if e.status in ACTIVE_STATUSES}

    def completed(self) -> dict[str, SessionRegistryEntry]:
        return {k: e for k, e in self._entries.items() if e.status in TERMINAL_STATUSES}

    def count_active(self) -> int:
        return len(self.active())

    def count_by_status(self) -> dict[str, int]:
        return dict(Counter(e.status for e in self._entries.values()))

    def total_cost(self) -> float:
        return sum((e.cost_usd or 0.0) for e in self._entries.values())

    def find_by_meta(self, key: str, value: Any) -> dict[str, SessionRegistryEntry]:
        return {
            k: e
            for k, e in self._entries.items()
            if key in e.meta and e.meta[key] == value
        }
