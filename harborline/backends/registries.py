"""Artifact registry backends.

A registry is logged into once per build; the returned session pushes every
artifact of that build and is closed afterwards.  Pushing identical content
under an existing tag is a no-op that returns the existing digest.  Pushing
different content under an existing tag is refused with ``PublishError``.

Backends:
- ``FileSystemRegistry`` — immutable-tag registry on local disk.
- ``DockerRegistry`` — ``docker login`` / ``docker push`` with the auth kept
  in a throwaway ``--config`` directory that is deleted when the session
  closes, so credentials never outlive the run on disk.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path
from types import TracebackType
from typing import Protocol, runtime_checkable
from urllib.parse import quote, unquote

from pydantic import BaseModel, ConfigDict, SecretStr

from harborline.backends.process import CommandError, CommandUnavailableError, run_command
from harborline.core.artifact_store import ArtifactIntegrityError, ContentAddressedStore
from harborline.core.errors import PublishError, RegistryAuthError
from harborline.core.hasher import content_address
from harborline.core.image_store import (
    LocalImageStore,
    read_tag,
    split_image_ref,
    write_tag_once,
)

logger = logging.getLogger(__name__)

_PUSH_DIGEST_RE = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


class RegistryCredentials(BaseModel):
    """Credentials scoped to one run.  The password is never logged."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: SecretStr


@runtime_checkable
class RegistrySession(Protocol):
    def push(self, image_ref: str, content_digest: str) -> str:
        """Push *image_ref*; return the registry digest."""
        ...

    def close(self) -> None: ...

    def __enter__(self) -> RegistrySession: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...


@runtime_checkable
class Registry(Protocol):
    def login(self, credentials: RegistryCredentials | None) -> RegistrySession:
        """Authenticate; raise ``RegistryAuthError`` on failure."""
        ...


class _SessionBase:
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Filesystem registry
# ---------------------------------------------------------------------------


class FileSystemRegistry:
    """Local immutable-tag registry.

    Layout::

        {root}/blobs/...                        image content and manifests
        {root}/tags/{quoted repository}/{tag}   manifest digest

    Parameters
    ----------
    root:
        Registry directory.
    source:
        Local image store the pushed images are read from.
    users:
        Accepted ``username -> password`` pairs.  ``None`` accepts any
        non-empty credentials, or no credentials at all.
    """

    def __init__(
        self,
        root: Path,
        source: LocalImageStore,
        *,
        users: Mapping[str, str] | None = None,
    ) -> None:
        self._root = Path(root)
        self._blobs = ContentAddressedStore(self._root / "blobs")
        self._tags = self._root / "tags"
        self._tags.mkdir(parents=True, exist_ok=True)
        self._source = source
        self._users = dict(users) if users is not None else None

    def login(self, credentials: RegistryCredentials | None) -> RegistrySession:
        if self._users is not None:
            if credentials is None:
                raise RegistryAuthError(f"{self._root}: credentials required")
            expected = self._users.get(credentials.username)
            if expected is None or expected != credentials.password.get_secret_value():
                raise RegistryAuthError(
                    f"{self._root}: authentication failed for {credentials.username}"
                )
        return _FileSystemSession(self)

    def _tag_path(self, image_ref: str) -> Path:
        repository, tag = split_image_ref(image_ref)
        return self._tags / quote(repository, safe="") / tag

    def resolve(self, image_ref: str) -> str | None:
        return read_tag(self._tag_path(image_ref))

    def tags(self) -> list[str]:
        """All ``repository:tag`` references held by the registry."""
        refs = []
        for repo_dir in sorted(p for p in self._tags.iterdir() if p.is_dir()):
            repository = unquote(repo_dir.name)
            refs.extend(
                f"{repository}:{t.name}"
                for t in sorted(repo_dir.iterdir())
                if not t.name.startswith(".")
            )
        return refs

    def _push(self, image_ref: str, content_digest: str) -> str:
        try:
            data = self._source.read(image_ref)
        except FileNotFoundError as exc:
            raise PublishError(f"{image_ref} is not in the local image store") from exc
        try:
            blob = self._blobs.store(data)
        except ArtifactIntegrityError as exc:
            raise PublishError(f"{image_ref}: registry blob store is corrupt: {exc}") from exc
        if blob.content_address != content_digest:
            raise PublishError(
                f"{image_ref}: local content {blob.content_address} does not match "
                f"the built digest {content_digest}"
            )

        repository, _ = split_image_ref(image_ref)
        manifest = {"schemaVersion": 1, "repository": repository, "content": content_digest}
        digest = content_address(manifest)

        path = self._tag_path(image_ref)
        if read_tag(path) == digest:
            logger.info("%s already published as %s, skipping", image_ref, digest)
            return digest
        existing = write_tag_once(path, digest)
        if existing != digest:
            raise PublishError(
                f"{image_ref} already published with different content ({existing})"
            )
        return digest


class _FileSystemSession(_SessionBase):
    def __init__(self, registry: FileSystemRegistry) -> None:
        self._registry = registry

    def push(self, image_ref: str, content_digest: str) -> str:
        return self._registry._push(image_ref, content_digest)


# ---------------------------------------------------------------------------
# Docker registry
# ---------------------------------------------------------------------------


class DockerRegistry:
    """Registry reached through the docker CLI."""

    def __init__(
        self, host: str, *, executable: str = "docker", timeout: float = 600.0
    ) -> None:
        self._host = host
        self._docker = executable
        self._timeout = timeout

    def login(self, credentials: RegistryCredentials | None) -> RegistrySession:
        if credentials is None:
            raise RegistryAuthError(f"No credentials configured for {self._host}")

        config_dir = Path(tempfile.mkdtemp(prefix="harborline-docker-"))
        try:
            run_command(
                [
                    self._docker,
                    "--config",
                    str(config_dir),
                    "login",
                    self._host,
                    "--username",
                    credentials.username,
                    "--password-stdin",
                ],
                input_text=credentials.password.get_secret_value(),
                timeout=120,
            )
        except (CommandError, CommandUnavailableError) as exc:
            shutil.rmtree(config_dir, ignore_errors=True)
            raise RegistryAuthError(f"docker login {self._host} failed: {exc}") from exc

        logger.info("Logged in to %s as %s", self._host, credentials.username)
        return _DockerSession(self._docker, self._host, config_dir, self._timeout)


class _DockerSession(_SessionBase):
    def __init__(self, docker: str, host: str, config_dir: Path, timeout: float) -> None:
        self._docker = docker
        self._host = host
        self._config_dir = config_dir
        self._timeout = timeout

    def push(self, image_ref: str, content_digest: str) -> str:
        try:
            result = run_command(
                [self._docker, "--config", str(self._config_dir), "push", image_ref],
                timeout=self._timeout,
            )
        except CommandError as exc:
            raise PublishError(f"docker push {image_ref} failed: {exc.stderr.strip()}") from exc
        except CommandUnavailableError as exc:
            raise PublishError(str(exc)) from exc

        match = _PUSH_DIGEST_RE.search(result.stdout)
        if match is None:
            raise PublishError(f"docker push {image_ref} did not report a digest")
        return match.group(1)

    def close(self) -> None:
        try:
            run_command(
                [self._docker, "--config", str(self._config_dir), "logout", self._host],
                timeout=60,
                check=False,
            )
        except CommandUnavailableError:
            logger.warning("docker logout %s did not complete", self._host)
        finally:
            shutil.rmtree(self._config_dir, ignore_errors=True)
