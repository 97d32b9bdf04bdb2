"""Subprocess execution and shell-quoted command templates."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_EXECUTABLE_EXIT_CODE = 126
NOT_FOUND_EXIT_CODE = 127
_OUTPUT_TAIL_CHARS = 2_000


class CommandTemplateError(ValueError):
    """Command template cannot be rendered into an argument vector."""


@dataclass(slots=True)
class CommandResult:
    """Outcome of one subprocess invocation."""

    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def output_tail(self, limit: int = _OUTPUT_TAIL_CHARS) -> str:
        """Last `limit` characters of combined output, for result payloads."""

        combined = "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)
        return combined[-limit:]

    def describe_failure(self) -> str:
        if self.timed_out:
            return f"`{shlex.join(self.args)}` timed out"
        detail = self.stderr.strip() or self.stdout.strip()
        message = f"`{shlex.join(self.args)}` exited with code {self.exit_code}"
        if detail:
            message += f": {detail[-300:]}"
        return message


def render_command_template(template: str, values: Mapping[str, object]) -> list[str]:
    """Render `template` with shell-quoted values and split it into argv."""

    stripped = template.strip()
    if not stripped:
        raise CommandTemplateError("Command template is empty.")
    try:
        rendered = stripped.format(**{key: shlex.quote(str(value)) for key, value in values.items()})
    except KeyError as error:
        raise CommandTemplateError(f"Unsupported command template placeholder: {error}") from error
    except (IndexError, ValueError) as error:
        raise CommandTemplateError(f"Malformed command template {template!r}: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise CommandTemplateError("Command template rendered empty command.")
    return argv


def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout_seconds: float | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run `args` to completion, capturing output.

    Never raises for command failures: a missing executable maps to exit code
    127, a timeout to 124 with `timed_out=True`.
    """

    argv = [str(arg) for arg in args]
    run_env = None
    if env is not None:
        run_env = os.environ.copy()
        run_env.update(env)

    logger.debug("Running %s (cwd=%s, timeout=%s)", shlex.join(argv), cwd, timeout_seconds)
    try:
        completed = subprocess.run(  # noqa: S603
            argv,
            cwd=cwd,
            env=run_env,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired as error:
        return CommandResult(
            args=argv,
            exit_code=TIMEOUT_EXIT_CODE,
            stdout=_decode(error.stdout),
            stderr=_decode(error.stderr),
            timed_out=True,
        )
    except FileNotFoundError:
        return CommandResult(
            args=argv,
            exit_code=NOT_FOUND_EXIT_CODE,
            stderr=f"command not found: {argv[0]}",
        )
    except OSError as error:
        return CommandResult(
            args=argv,
            exit_code=NOT_EXECUTABLE_EXIT_CODE,
            stderr=f"failed to start {argv[0]}: {error}",
        )

    return CommandResult(
        args=argv,
        exit_code=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
