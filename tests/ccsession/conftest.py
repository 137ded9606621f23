"""Shared fixtures for ccsession tests.

Provides an isolated Config and a recording MessageSink; the scripted
session-server fakes live in fakes.py.
"""

import pytest
from fakes import RecordingSink

from ccsession.config import KNOWN_ENV_KEYS, Config

_CCSESSION_ENV = (
    "CCSESSION_DEFAULT_MODEL",
    "CCSESSION_CLAUDE_COMMAND",
    "CCSESSION_STREAM_TIMEOUT",
    "CCSESSION_HEARTBEAT_INTERVAL",
    "CCSESSION_PROMPT_WRITE_TIMEOUT",
    "CCSESSION_PROMPT_FILE",
    "CCSESSION_MAX_TURNS",
    "CCSESSION_ALLOWED_TOOLS",
)


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """Strip ccsession/Claude env vars and point config paths into tmp_path."""
    for key in (*KNOWN_ENV_KEYS, *_CCSESSION_ENV):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CCSESSION_DIR", str(tmp_path / "ccsession"))
    monkeypatch.setenv("CCSESSION_SETTINGS_PATH", str(tmp_path / "missing.json"))
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def config(clean_env) -> Config:
    """Config isolated from the host env, settings file, and .env files."""
    return Config(load_env_files=False)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
