"""Local image store: content-addressed image blobs plus an append-only tag index.

Layout::

    {base}/blobs/...                       ContentAddressedStore
    {base}/tags/{quoted repository}/{tag}  file holding "sha256:<hex>"

A tag, once written, is never rewritten with different content.  Writers
only ever create new tag entries, so concurrent builds of distinct build
identifiers need no locking.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from urllib.parse import quote

from harborline.core.artifact_store import ContentAddressedStore, StoredBlob

logger = logging.getLogger(__name__)


class ImageTagConflictError(RuntimeError):
    """Raised when a tag already points at different content."""


def split_image_ref(image_ref: str) -> tuple[str, str]:
    """Split ``repository:tag``; the tag is after the last colon past the last slash."""
    slash = image_ref.rfind("/")
    colon = image_ref.rfind(":")
    if colon <= slash:
        raise ValueError(f"Image reference {image_ref!r} has no tag")
    return image_ref[:colon], image_ref[colon + 1 :]


_ADDRESS = re.compile(r"sha256:[0-9a-f]{64}")


def read_tag(path: Path) -> str | None:
    """Return the address a tag file holds.

    A missing, empty or unparsable file counts as absent: it is what a writer
    interrupted before its content landed leaves behind.
    """
    try:
        text = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return text if _ADDRESS.fullmatch(text) else None


def write_tag_once(path: Path, address: str) -> str:
    """Create the tag file *path* holding *address* unless it already holds one.

    The content is written to a sibling temp file first and hard-linked into
    place, so the tag appears complete or not at all.  Returns the address
    the tag holds afterwards, which differs from *address* when another
    writer got there first.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(address)
            fh.flush()
            os.fsync(fh.fileno())
        try:
            os.link(tmp, path)
        except FileExistsError:
            existing = read_tag(path)
            if existing is not None:
                return existing
            logger.warning("Replacing unreadable tag file %s", path)
            os.replace(tmp, path)
        return address
    finally:
        Path(tmp).unlink(missing_ok=True)


class LocalImageStore:
    """Append-only per-tag image store."""

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._blobs = ContentAddressedStore(self._base / "blobs")
        self._tags = self._base / "tags"
        self._tags.mkdir(parents=True, exist_ok=True)

    def _tag_path(self, image_ref: str) -> Path:
        repository, tag = split_image_ref(image_ref)
        return self._tags / quote(repository, safe="") / tag

    def put(self, image_ref: str, data: bytes) -> StoredBlob:
        """Store image content and tag it.

        Storing identical content under an existing tag is a no-op; storing
        different content raises ``ImageTagConflictError``.
        """
        blob = self._blobs.store(data)
        self.tag(image_ref, blob.content_address)
        return blob

    def tag(self, image_ref: str, content_address: str) -> None:
        existing = write_tag_once(self._tag_path(image_ref), content_address)
        if existing != content_address:
            raise ImageTagConflictError(
                f"{image_ref} already holds {existing}, refusing {content_address}"
            )

    def resolve(self, image_ref: str) -> str | None:
        """Return the content address tagged *image_ref*, or None."""
        return read_tag(self._tag_path(image_ref))

    def verify(self, image_ref: str) -> bool:
        """True if the tag exists and its blob still hashes to its address."""
        address = self.resolve(image_ref)
        return address is not None and self._blobs.verify(address)

    def read(self, image_ref: str) -> bytes:
        address = self.resolve(image_ref)
        if address is None:
            raise FileNotFoundError(f"Image not found: {image_ref}")
        return self._blobs.retrieve(address)
