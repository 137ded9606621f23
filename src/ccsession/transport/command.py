"""Shell command construction for ``claude -p --output-format stream-json``.

Every argument is quoted with ``shlex.quote``. The prompt is passed either
as a quoted literal or, for the batch fallback, read back from a prompt
file written beforehand with a quoted heredoc (no expansion inside).
"""

import shlex
from collections.abc import Iterable

PROMPT_EOF_MARKER = "CCSESSION_PROMPT_EOF"


def build_claude_args(
    command: str = "claude",
    *,
    model: str | None = None,
    max_turns: int | None = None,
    include_partial_messages: bool = False,
    verbose: bool = False,
    skip_permissions: bool = False,
    cli_args: Iterable[str] = (),
) -> list[str]:
    """Argument vector up to (not including) the prompt."""
    args = [command, "-p", "--output-format", "stream-json"]
    if include_partial_messages:
        args.append("--include-partial-messages")
    if verbose:
        args.append("--verbose")
    if model:
        args += ["--model", model]
    if max_turns is not None:
        args += ["--max-turns", str(max_turns)]
    if skip_permissions:
        args.append("--dangerously-skip-permissions")
    args += [a.strip() for a in cli_args if a and a.strip()]
    return args


def join_args(args: Iterable[str]) -> str:
    return " ".join(shlex.quote(a) for a in args)


def literal_prompt_command(args: list[str], prompt: str) -> str:
    """Command line with the prompt passed as a quoted literal."""
    return join_args([*args, prompt])


def prompt_file_command(args: list[str], prompt_file: str) -> str:
    """Command line reading the prompt back from *prompt_file*."""
    return f'{join_args(args)} "$(cat {shlex.quote(prompt_file)})"'


def write_prompt_command(prompt_file: str, prompt: str) -> str:
    """Heredoc command that writes *prompt* verbatim to *prompt_file*."""
    return (
        f"cat > {shlex.quote(prompt_file)} << '{PROMPT_EOF_MARKER}'\n"
        f"{prompt}\n"
        f"{PROMPT_EOF_MARKER}"
    )


def in_dir(cwd: str | None, command: str) -> str:
    """Prefix *command* with ``cd <cwd> &&`` when a cwd is known."""
    if not cwd:
        return command
    return f"cd {shlex.quote(cwd)} && {command}"
