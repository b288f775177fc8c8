"""Git working copy of the configuration repository.

A thin, deterministic wrapper over the git CLI: every command runs with
prompts disabled, system config ignored and a timeout, and commits are made
with a fixed pipeline identity.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from harborline.backends.process import (
    CommandError,
    CommandResult,
    CommandUnavailableError,
    run_command,
)

logger = logging.getLogger(__name__)

_REJECTION_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "stale info")


class GitError(RuntimeError):
    """Base error for git workspace failures."""


class GitCommandError(GitError):
    """Raised when a git command fails or cannot be run."""

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class PushRejectedError(GitError):
    """The remote branch advanced since the workspace was last synchronized."""


class GitWorkspace:
    """A clone of one branch of a remote repository."""

    def __init__(
        self,
        path: Path,
        *,
        branch: str,
        author_name: str,
        author_email: str,
        timeout: float = 120.0,
    ) -> None:
        self.path = Path(path)
        self.branch = branch
        self._author_name = author_name
        self._author_email = author_email
        self._timeout = timeout

    @classmethod
    def clone(
        cls,
        url: str,
        dest: Path,
        *,
        branch: str,
        author_name: str,
        author_email: str,
        timeout: float = 120.0,
    ) -> GitWorkspace:
        workspace = cls(
            dest,
            branch=branch,
            author_name=author_name,
            author_email=author_email,
            timeout=timeout,
        )
        workspace._run_git(
            ["clone", "--branch", branch, "--single-branch", url, str(dest)],
            cwd=Path(dest).parent,
        )
        workspace._ensure_local_identity()
        return workspace

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def head(self) -> str:
        return self._run_git(["rev-parse", "HEAD"]).stdout.strip()

    def find_commit(self, trailer: str) -> str | None:
        """Most recent commit on the branch whose message carries *trailer*."""
        out = self._run_git(
            ["log", "--format=%H", "--fixed-strings", f"--grep={trailer}"]
        ).stdout
        # --fixed-strings matches substrings; confirm the exact trailer line
        for commit in out.split():
            body = self._run_git(["log", "-n", "1", "--format=%B", commit]).stdout
            if trailer in (line.strip() for line in body.splitlines()):
                return commit
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, paths: Sequence[str]) -> None:
        self._run_git(["add", "--", *paths])

    def commit(self, subject: str, body: str = "") -> str:
        args = ["commit", "--no-gpg-sign", "--no-verify", "-m", subject]
        if body:
            args += ["-m", body]
        self._run_git(args)
        return self.head()

    def push(self) -> None:
        try:
            self._run_git(["push", "--porcelain", "origin", f"HEAD:refs/heads/{self.branch}"])
        except GitCommandError as exc:
            text = f"{exc.stderr}\n{exc}"
            if any(marker in text for marker in _REJECTION_MARKERS):
                raise PushRejectedError(
                    f"push to {self.branch} rejected: remote has advanced"
                ) from exc
            raise

    def sync(self) -> str:
        """Discard local work and move to the remote tip of the branch."""
        self._run_git(["fetch", "origin", self.branch])
        self._run_git(["reset", "--hard", f"origin/{self.branch}"])
        self._run_git(["clean", "-fd"])
        return self.head()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _ensure_local_identity(self) -> None:
        self._run_git(["config", "--local", "user.name", self._author_name])
        self._run_git(["config", "--local", "user.email", self._author_email])

    def _run_git(self, args: Sequence[str], *, cwd: Path | None = None) -> CommandResult:
        try:
            return run_command(
                ["git", *args],
                cwd=cwd if cwd is not None else self.path,
                timeout=self._timeout,
                env_overrides={
                    "GIT_TERMINAL_PROMPT": "0",
                    "GIT_CONFIG_NOSYSTEM": "1",
                    "GIT_AUTHOR_NAME": self._author_name,
                    "GIT_AUTHOR_EMAIL": self._author_email,
                    "GIT_COMMITTER_NAME": self._author_name,
                    "GIT_COMMITTER_EMAIL": self._author_email,
                },
            )
        except CommandError as exc:
            # git push --porcelain reports ref status on stdout
            raise GitCommandError(str(exc), stderr=f"{exc.stdout}\n{exc.stderr}") from exc
        except CommandUnavailableError as exc:
            raise GitCommandError(str(exc)) from exc
