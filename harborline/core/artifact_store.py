"""Content-addressed, immutable blob store.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
No delete method; blobs are immutable once stored.  Backs the local image
store, the filesystem registry and the raw scan report archive.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from harborline.core.hasher import sha256_hex

logger = logging.getLogger(__name__)


class ArtifactIntegrityError(RuntimeError):
    """Raised when a stored blob's hash does not match its address."""


class StoredBlob(BaseModel):
    model_config = ConfigDict(frozen=True)

    content_address: str  # "sha256:<hex>"
    size_bytes: int


class ContentAddressedStore:
    """SHA-256 keyed, immutable blob store.

    Every blob is stored under its SHA-256 digest. Storing the same content
    twice is a no-op (idempotent). There is no update or delete.

    Parameters
    ----------
    base_path:
        Root directory for blob storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(content_address: str) -> str:
        """Strip the ``sha256:`` prefix from a content address, if present."""
        return content_address.removeprefix("sha256:")

    def _blob_path(self, sha256_digest: str) -> Path:
        return self._base / sha256_digest[:2] / sha256_digest[2:4] / f"{sha256_digest}.dat"

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(self, data: bytes) -> StoredBlob:
        """Store data and return its content address.

        If the content already exists and is intact it is left untouched.  A
        stored blob that no longer hashes to its address is rewritten from
        *data*, whose hash proves what the blob must hold.
        """
        digest = sha256_hex(data)
        path = self._blob_path(digest)

        if not path.exists():
            self._write(path, data)
        elif not self.verify(digest):
            logger.warning("Blob %s failed integrity check, rewriting it", digest)
            self._write(path, data)
            if not self.verify(digest):
                raise ArtifactIntegrityError(
                    f"Blob at {digest} still fails its integrity check after rewrite"
                )

        return StoredBlob(content_address=f"sha256:{digest}", size_bytes=len(data))

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so concurrent writers never expose partial blobs
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    def retrieve(self, content_address: str) -> bytes:
        """Retrieve blob bytes by content address (``sha256:<hex>`` or hex)."""
        digest = self._extract_digest(content_address)
        path = self._blob_path(digest)
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {content_address}")
        return path.read_bytes()

    # ------------------------------------------------------------------
    # Check and verify
    # ------------------------------------------------------------------

    def exists(self, content_address: str) -> bool:
        return self._blob_path(self._extract_digest(content_address)).exists()

    def verify(self, content_address: str) -> bool:
        """Re-hash stored data and compare against the content address."""
        digest = self._extract_digest(content_address)
        path = self._blob_path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest
