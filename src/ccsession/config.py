"""Runtime configuration, read from env vars (with .env support).

.env loading priority: local .env (cwd) > $CCSESSION_DIR/.env (default
~/.ccsession). A Config instance is built once by the embedding
application and passed explicitly to transports and the orchestrator;
nothing in the core reads the environment on its own.

The env forwarded to the ``claude`` process is assembled from the
Claude settings file ``env`` block, overlaid by the known Claude/Anthropic
variables found in the process environment.

Key class: Config.
"""

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
from dotenv import load_dotenv

from .utils import ccsession_dir, normalize_env

logger = structlog.get_logger()

DEFAULT_MODEL = "sonnet"
DEFAULT_SETTINGS_PATH = "~/.claude/settings.json"
DEFAULT_ALLOWED_TOOLS = ("Read", "Glob", "Grep", "Bash")

# Process env vars forwarded to the CLI even when the settings file omits them
KNOWN_ENV_KEYS: tuple[str, ...] = (
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_AUTH_TOKEN",
    "CLAUDE_CODE_API_KEY",
    "ANTHROPIC_BASE_URL",
    "ANTHROPIC_DEFAULT_HAIKU_MODEL",
    "ANTHROPIC_DEFAULT_SONNET_MODEL",
    "ANTHROPIC_DEFAULT_OPUS_MODEL",
    "API_TIMEOUT_MS",
    "CLAUDE_CODE_DISABLE_NONESSENTIAL_TRAFFIC",
    "CLAUDE_AGENT_OAUTH_TOKEN",
)

AUTH_ENV_KEYS: tuple[str, ...] = (
    "ANTHROPIC_AUTH_TOKEN",
    "ANTHROPIC_API_KEY",
    "CLAUDE_CODE_API_KEY",
)


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number: {e}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a valid integer: {e}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def read_settings_env(path: Path) -> dict[str, str]:
    """Return the ``env`` block of a Claude settings file, {} when unusable."""
    try:
        settings = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.debug("Settings file %s unavailable: %s", path, e)
        return {}
    if not isinstance(settings, dict) or not isinstance(settings.get("env"), dict):
        return {}
    return normalize_env(settings["env"])


class Config:
    """Runtime configuration loaded from environment variables."""

    def __init__(self, load_env_files: bool = True) -> None:
        self.config_dir = ccsession_dir()

        if load_env_files:
            # load_dotenv default override=False means first-loaded wins
            local_env = Path(".env")
            global_env = self.config_dir / ".env"
            if local_env.is_file():
                load_dotenv(local_env)
                logger.debug("Loaded env from %s", local_env.resolve())
            if global_env.is_file():
                load_dotenv(global_env)
                logger.debug("Loaded env from %s", global_env)

        self.default_model: str = (
            os.getenv("CCSESSION_DEFAULT_MODEL", "").strip() or DEFAULT_MODEL
        )
        self.claude_command: str = (
            os.getenv("CCSESSION_CLAUDE_COMMAND", "").strip() or "claude"
        )
        self.settings_path = Path(
            os.getenv("CCSESSION_SETTINGS_PATH") or DEFAULT_SETTINGS_PATH
        ).expanduser()

        # Streaming deadlines (seconds)
        self.stream_timeout_s = _float_env("CCSESSION_STREAM_TIMEOUT", "300")
        self.heartbeat_interval_s = _float_env("CCSESSION_HEARTBEAT_INTERVAL", "5")
        self.prompt_write_timeout_s = _float_env(
            "CCSESSION_PROMPT_WRITE_TIMEOUT", "10"
        )
        self.prompt_file: str = (
            os.getenv("CCSESSION_PROMPT_FILE") or "/tmp/ccsession_prompt.txt"
        )

        self.max_turns = _int_env("CCSESSION_MAX_TURNS", "25")
        tools_str = os.getenv("CCSESSION_ALLOWED_TOOLS", "")
        self.allowed_tools: tuple[str, ...] = (
            tuple(t.strip() for t in tools_str.split(",") if t.strip())
            or DEFAULT_ALLOWED_TOOLS
        )

        settings_env = read_settings_env(self.settings_path)
        process_env = {
            key: value
            for key in dict.fromkeys([*settings_env, *KNOWN_ENV_KEYS])
            if (value := os.getenv(key))
        }
        self.env_overrides: dict[str, str] = {**settings_env, **process_env}

        logger.debug(
            "Config initialized: dir=%s, model=%s, command=%s, env_keys=%d",
            self.config_dir,
            self.default_model,
            self.claude_command,
            len(self.env_overrides),
        )

    def merge_env(self, *layers: Mapping[str, Any] | None) -> dict[str, str]:
        """Overlay *layers* onto the runtime env; later layers win."""
        merged = dict(self.env_overrides)
        for layer in layers:
            merged.update(normalize_env(layer))
        return merged

    def validate_auth(self) -> None:
        """Require a base URL and at least one credential in the runtime env.

        Raises ValueError naming what is missing.
        """
        env = self.env_overrides
        if not env.get("ANTHROPIC_BASE_URL", "").strip():
            raise ValueError("ANTHROPIC_BASE_URL environment variable not set")
        if not any(env.get(key, "").strip() for key in AUTH_ENV_KEYS):
            raise ValueError(
                "One of ANTHROPIC_AUTH_TOKEN, ANTHROPIC_API_KEY, "
                "or CLAUDE_CODE_API_KEY must be set"
            )
