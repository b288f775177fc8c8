"""Image builder backends.

Priority chain for a component build:
1. If the local image store already holds the tag, the stored image is
   verified and reused (a re-run never rebuilds under an existing tag).
2. Otherwise the configured backend builds the component's source subtree.

Backends:
- ``ArchiveImageBuilder`` — packs the subtree into a reproducible tar+gzip
  image in the ``LocalImageStore``.  Identical sources give bit-identical
  images.
- ``DockerImageBuilder`` — ``docker build`` against the local daemon.
"""

from __future__ import annotations

import gzip
import io
import logging
import os
import stat
import tarfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from harborline.backends.process import CommandError, CommandUnavailableError, run_command
from harborline.core.artifact_store import ArtifactIntegrityError
from harborline.core.errors import BuildFailed
from harborline.core.image_store import ImageTagConflictError, LocalImageStore

logger = logging.getLogger(__name__)

_EXCLUDED_DIRS = frozenset({".git", "__pycache__", "node_modules"})


@runtime_checkable
class ImageBuilder(Protocol):
    def inspect(self, image_ref: str) -> str | None:
        """Return the content digest of an existing local image, or None."""
        ...

    def verify(self, image_ref: str) -> bool:
        """Return True if an existing local image is intact."""
        ...

    def build(self, context_dir: Path, image_ref: str) -> str:
        """Build *context_dir* into *image_ref*; return its content digest."""
        ...


# ---------------------------------------------------------------------------
# Reproducible archive images
# ---------------------------------------------------------------------------


def _iter_tree(root: Path):
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _EXCLUDED_DIRS)
        base = Path(dirpath)
        for name in dirnames:
            yield base / name
        for name in sorted(filenames):
            yield base / name


def pack_reproducible(root: Path) -> bytes:
    """Pack *root* as tar+gzip with normalized ownership, modes and times."""
    buf = io.BytesIO()
    with gzip.GzipFile(fileobj=buf, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for path in _iter_tree(root):
                arcname = path.relative_to(root).as_posix()
                info = tar.gettarinfo(str(path), arcname=arcname)
                info.mtime = 0
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                if info.isdir():
                    info.mode = 0o755
                elif info.isfile():
                    executable = path.stat().st_mode & stat.S_IXUSR
                    info.mode = 0o755 if executable else 0o644
                    with path.open("rb") as fh:
                        tar.addfile(info, fh)
                    continue
                tar.addfile(info)
    return buf.getvalue()


class ArchiveImageBuilder:
    """Builds reproducible archive images into a ``LocalImageStore``."""

    def __init__(self, store: LocalImageStore) -> None:
        self._store = store

    def inspect(self, image_ref: str) -> str | None:
        return self._store.resolve(image_ref)

    def verify(self, image_ref: str) -> bool:
        return self._store.verify(image_ref)

    def build(self, context_dir: Path, image_ref: str) -> str:
        if not context_dir.is_dir():
            raise BuildFailed(f"Build context {context_dir} is not a directory")
        try:
            data = pack_reproducible(context_dir)
            blob = self._store.put(image_ref, data)
        except (OSError, tarfile.TarError) as exc:
            raise BuildFailed(f"Packaging {context_dir} failed: {exc}") from exc
        except ImageTagConflictError as exc:
            raise BuildFailed(str(exc)) from exc
        except ArtifactIntegrityError as exc:
            raise BuildFailed(f"Storing {image_ref} failed: {exc}") from exc
        logger.info("Packed %s (%d bytes) as %s", context_dir, blob.size_bytes, image_ref)
        return blob.content_address


# ---------------------------------------------------------------------------
# Docker
# ---------------------------------------------------------------------------


class DockerImageBuilder:
    """Builds images with the docker CLI."""

    def __init__(self, *, executable: str = "docker", timeout: float = 1800.0) -> None:
        self._docker = executable
        self._timeout = timeout

    def inspect(self, image_ref: str) -> str | None:
        try:
            result = run_command(
                [self._docker, "image", "inspect", "--format", "{{.Id}}", image_ref],
                timeout=60,
                check=False,
            )
        except CommandUnavailableError:
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def verify(self, image_ref: str) -> bool:
        return self.inspect(image_ref) is not None

    def build(self, context_dir: Path, image_ref: str) -> str:
        if not context_dir.is_dir():
            raise BuildFailed(f"Build context {context_dir} is not a directory")
        try:
            run_command(
                [self._docker, "build", "--tag", image_ref, str(context_dir)],
                timeout=self._timeout,
            )
        except CommandError as exc:
            tail = "\n".join(exc.stderr.strip().splitlines()[-5:])
            raise BuildFailed(f"docker build {image_ref} failed: {tail}") from exc
        except CommandUnavailableError as exc:
            raise BuildFailed(str(exc)) from exc

        digest = self.inspect(image_ref)
        if digest is None:
            raise BuildFailed(f"docker build reported success but {image_ref} is missing")
        return digest
