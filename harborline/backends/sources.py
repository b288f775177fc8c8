"""Source control collaborators.

``SourceControl.checkout(repository, revision, dest)`` must return a
consistent, reproducible source tree for the revision; the pipeline depends
on nothing else from it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from harborline.backends.process import CommandError, CommandUnavailableError, run_command
from harborline.core.errors import CheckoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceCheckout:
    revision: str  # resolved revision (commit sha for git)
    path: Path


@runtime_checkable
class SourceControl(Protocol):
    def checkout(self, repository: str, revision: str, dest: Path) -> SourceCheckout:
        """Materialize *revision* of *repository* and return where it lives."""
        ...


class LocalSourceTree:
    """Uses a directory on disk as-is; the revision label is passed through."""

    def checkout(self, repository: str, revision: str, dest: Path) -> SourceCheckout:
        path = Path(repository).resolve()
        if not path.is_dir():
            raise CheckoutError(f"Source directory {path} does not exist")
        return SourceCheckout(revision=revision, path=path)


class GitSourceControl:
    """Clones (or refreshes) a git repository and detaches at a revision."""

    def __init__(self, *, timeout: float = 300.0) -> None:
        self._timeout = timeout

    def _git(self, args: list[str], cwd: Path | None = None, check: bool = True):
        return run_command(
            ["git", *args],
            cwd=cwd,
            timeout=self._timeout,
            env_overrides={"GIT_TERMINAL_PROMPT": "0"},
            check=check,
        )

    def checkout(self, repository: str, revision: str, dest: Path) -> SourceCheckout:
        dest = Path(dest)
        try:
            if (dest / ".git").exists():
                self._git(["fetch", "--prune", "origin"], cwd=dest)
            else:
                dest.parent.mkdir(parents=True, exist_ok=True)
                self._git(["clone", "--no-checkout", repository, str(dest)])

            commit = self._resolve(dest, revision)
            self._git(["checkout", "--force", "--detach", commit], cwd=dest)
            self._git(["clean", "-fdx"], cwd=dest)
        except (CommandError, CommandUnavailableError) as exc:
            raise CheckoutError(f"Checkout of {repository}@{revision} failed: {exc}") from exc

        logger.info("Checked out %s@%s -> %s", repository, revision, commit[:12])
        return SourceCheckout(revision=commit, path=dest.resolve())

    def _resolve(self, repo: Path, revision: str) -> str:
        for candidate in (f"origin/{revision}", revision):
            result = self._git(
                ["rev-parse", "--verify", "--quiet", f"{candidate}^{{commit}}"],
                cwd=repo,
                check=False,
            )
            if result.returncode == 0:
                return result.stdout.strip()
        raise CheckoutError(f"Revision {revision!r} not found")
