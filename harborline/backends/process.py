"""Subprocess wrapper shared by the docker, trivy and git backends.

Every external command runs with a timeout; a timeout or a missing binary is
reported as ``CommandUnavailableError`` so callers can tell "tool could not
run" apart from "tool ran and said no".
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when a command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class CommandUnavailableError(RuntimeError):
    """Raised when a command cannot be started or does not finish in time."""


@dataclass(frozen=True, slots=True)
class CommandResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


def run_command(
    args: Sequence[str],
    *,
    timeout: float,
    cwd: Path | None = None,
    input_text: str | None = None,
    env_overrides: Mapping[str, str] | None = None,
    check: bool = True,
) -> CommandResult:
    """Run *args* and capture its output."""
    env = os.environ.copy()
    env.update(env_overrides or {})
    logger.debug("exec: %s", " ".join(args))
    try:
        completed = subprocess.run(
            list(args),
            cwd=cwd,
            env=env,
            text=True,
            capture_output=True,
            input=input_text,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as exc:
        raise CommandUnavailableError(f"{args[0]}: not found on PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandUnavailableError(
            f"{args[0]}: timed out after {timeout:g}s"
        ) from exc

    result = CommandResult(
        command=tuple(args),
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
    if check and result.returncode != 0:
        raise CommandError(
            command=result.command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
    return result
