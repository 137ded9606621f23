"""Shared utility functions used across multiple ccsession modules.

Provides:
  - ccsession_dir(): resolve config directory from CCSESSION_DIR env var.
  - new_session_id() / new_workspace_id(): random identifiers.
  - normalize_env(): coerce an env mapping to str -> str.
  - deep_merge(): recursive dict merge, right side wins.
  - task_done_callback(): log unhandled exceptions from background asyncio tasks.
"""

import asyncio
import os
import secrets
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()

CCSESSION_DIR_ENV = "CCSESSION_DIR"

WORKSPACE_PREFIX = "claude-shell-"


def ccsession_dir() -> Path:
    """Resolve config directory from CCSESSION_DIR env var or default ~/.ccsession."""
    raw = os.environ.get(CCSESSION_DIR_ENV, "")
    return Path(raw) if raw else Path.home() / ".ccsession"


def new_session_id() -> str:
    return uuid.uuid4().hex


def new_workspace_id() -> str:
    """Generate a shell workspace id like ``claude-shell-1a2b3c4d``."""
    return f"{WORKSPACE_PREFIX}{secrets.token_hex(4)}"


def normalize_env(env: Mapping[Any, Any] | None) -> dict[str, str]:
    """Stringify keys and values, dropping entries whose value is None."""
    if not env:
        return {}
    return {str(k): str(v) for k, v in env.items() if v is not None}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge *override* into a copy of *base*; nested dicts merge recursively."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def task_done_callback(task: asyncio.Task[Any]) -> None:
    """Log unhandled exceptions from background asyncio tasks.

    Attach to any fire-and-forget task via ``task.add_done_callback(task_done_callback)``.
    Suppresses CancelledError (normal shutdown).
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed", task.get_name(), exc_info=exc)
