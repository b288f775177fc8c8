"""Tests for the content-addressed blob store, the local image store and the report collector."""

from __future__ import annotations

from pathlib import Path

import pytest

from harborline.backends.builders import ArchiveImageBuilder, pack_reproducible
from harborline.core.artifact_store import ArtifactIntegrityError, ContentAddressedStore
from harborline.core.errors import BuildFailed
from harborline.core.hasher import sha256_hex
from harborline.core.image_store import ImageTagConflictError, LocalImageStore, split_image_ref
from harborline.core.report_collector import ReportCollector
from harborline.models.reports import ScanReport, SeverityCounts


@pytest.fixture
def blob_store(tmp_dir: Path) -> ContentAddressedStore:
    return ContentAddressedStore(tmp_dir / "blobs")


@pytest.fixture
def store(tmp_dir: Path) -> LocalImageStore:
    return LocalImageStore(tmp_dir / "images")


# ---------------------------------------------------------------------------
# ContentAddressedStore
# ---------------------------------------------------------------------------


class TestContentAddressedStore:
    def test_store_and_retrieve(self, blob_store: ContentAddressedStore):
        data = b"hello harborline"
        blob = blob_store.store(data)
        assert blob.content_address == f"sha256:{sha256_hex(data)}"
        assert blob.size_bytes == len(data)
        assert blob_store.retrieve(blob.content_address) == data

    def test_idempotent_store(self, blob_store: ContentAddressedStore):
        assert blob_store.store(b"twice").content_address == blob_store.store(b"twice").content_address

    def test_retrieve_nonexistent(self, blob_store: ContentAddressedStore):
        with pytest.raises(FileNotFoundError):
            blob_store.retrieve("sha256:" + "0" * 64)

    def test_verify_detects_corruption(self, blob_store: ContentAddressedStore, tmp_dir: Path):
        blob = blob_store.store(b"intact")
        assert blob_store.verify(blob.content_address) is True
        [path] = (tmp_dir / "blobs").rglob("*.dat")
        path.write_bytes(b"flipped")
        assert blob_store.verify(blob.content_address) is False

    def test_store_repairs_corrupt_blob(self, blob_store: ContentAddressedStore, tmp_dir: Path):
        blob = blob_store.store(b"intact")
        [path] = (tmp_dir / "blobs").rglob("*.dat")
        path.write_bytes(b"rot")
        assert blob_store.store(b"intact") == blob
        assert blob_store.verify(blob.content_address) is True
        assert blob_store.retrieve(blob.content_address) == b"intact"

    def test_unrepairable_blob_raises(
        self, blob_store: ContentAddressedStore, tmp_dir: Path, monkeypatch
    ):
        blob_store.store(b"intact")
        [path] = (tmp_dir / "blobs").rglob("*.dat")
        path.write_bytes(b"rot")
        monkeypatch.setattr(ContentAddressedStore, "_write", staticmethod(lambda path, data: None))
        with pytest.raises(ArtifactIntegrityError, match="after rewrite"):
            blob_store.store(b"intact")


# ---------------------------------------------------------------------------
# LocalImageStore
# ---------------------------------------------------------------------------


class TestSplitImageRef:
    @pytest.mark.parametrize(
        ("ref", "expected"),
        [
            ("registry.local/acme/api:42", ("registry.local/acme/api", "42")),
            ("localhost:5000/api:7", ("localhost:5000/api", "7")),
            ("api:1", ("api", "1")),
        ],
    )
    def test_split(self, ref, expected):
        assert split_image_ref(ref) == expected

    def test_port_only_is_not_a_tag(self):
        with pytest.raises(ValueError, match="no tag"):
            split_image_ref("localhost:5000/api")


class TestLocalImageStore:
    def test_put_and_read(self, store: LocalImageStore):
        blob = store.put("r/api:42", b"image-bytes")
        assert store.resolve("r/api:42") == blob.content_address
        assert store.read("r/api:42") == b"image-bytes"
        assert store.verify("r/api:42") is True

    def test_same_content_same_tag_is_noop(self, store: LocalImageStore):
        first = store.put("r/api:42", b"same")
        second = store.put("r/api:42", b"same")
        assert first.content_address == second.content_address

    def test_tag_is_never_rewritten(self, store: LocalImageStore):
        store.put("r/api:42", b"original")
        with pytest.raises(ImageTagConflictError):
            store.put("r/api:42", b"different")
        assert store.read("r/api:42") == b"original"

    def test_distinct_build_ids_are_distinct_tags(self, store: LocalImageStore):
        store.put("r/api:42", b"v42")
        store.put("r/api:43", b"v43")
        assert store.read("r/api:42") == b"v42"
        assert store.read("r/api:43") == b"v43"

    def test_missing_tag(self, store: LocalImageStore):
        assert store.resolve("r/api:1") is None
        assert store.verify("r/api:1") is False
        with pytest.raises(FileNotFoundError):
            store.read("r/api:1")

    def test_empty_tag_counts_as_absent(self, store: LocalImageStore, tmp_dir: Path):
        tag = tmp_dir / "images" / "tags" / "r%2Fapi" / "42"
        tag.parent.mkdir(parents=True)
        tag.write_text("")
        assert store.resolve("r/api:42") is None

        blob = store.put("r/api:42", b"image-bytes")
        assert tag.read_text() == blob.content_address
        assert store.read("r/api:42") == b"image-bytes"

    def test_unparsable_tag_counts_as_absent(self, store: LocalImageStore, tmp_dir: Path):
        tag = tmp_dir / "images" / "tags" / "r%2Fapi" / "42"
        tag.parent.mkdir(parents=True)
        tag.write_text("sha256:trunc")
        blob = store.put("r/api:42", b"image-bytes")
        assert store.resolve("r/api:42") == blob.content_address

    def test_tag_write_leaves_no_temp_files(self, store: LocalImageStore, tmp_dir: Path):
        store.put("r/api:42", b"one")
        with pytest.raises(ImageTagConflictError):
            store.put("r/api:42", b"two")
        assert [p.name for p in (tmp_dir / "images" / "tags" / "r%2Fapi").iterdir()] == ["42"]


# ---------------------------------------------------------------------------
# Reproducible archive images
# ---------------------------------------------------------------------------


class TestArchiveImages:
    def _tree(self, root: Path) -> Path:
        (root / "pkg").mkdir(parents=True)
        (root / "pkg" / "app.py").write_text("print('hi')\n")
        (root / "README").write_text("readme\n")
        (root / ".git").mkdir()
        (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        return root

    def test_identical_sources_bit_identical(self, tmp_dir: Path):
        a = self._tree(tmp_dir / "a")
        b = self._tree(tmp_dir / "b")
        assert pack_reproducible(a) == pack_reproducible(b)

    def test_content_change_changes_image(self, tmp_dir: Path):
        a = self._tree(tmp_dir / "a")
        before = pack_reproducible(a)
        (a / "README").write_text("changed\n")
        assert pack_reproducible(a) != before

    def test_vcs_metadata_excluded(self, tmp_dir: Path):
        a = self._tree(tmp_dir / "a")
        before = pack_reproducible(a)
        (a / ".git" / "HEAD").write_text("detached\n")
        assert pack_reproducible(a) == before

    def test_builder_stores_under_tag(self, tmp_dir: Path, store: LocalImageStore):
        builder = ArchiveImageBuilder(store)
        digest = builder.build(self._tree(tmp_dir / "src"), "r/api:42")
        assert builder.inspect("r/api:42") == digest
        assert builder.verify("r/api:42") is True

    def test_rebuild_with_changed_source_refused(self, tmp_dir: Path, store: LocalImageStore):
        builder = ArchiveImageBuilder(store)
        src = self._tree(tmp_dir / "src")
        builder.build(src, "r/api:42")
        (src / "README").write_text("changed\n")
        with pytest.raises(BuildFailed):
            builder.build(src, "r/api:42")

    def test_build_after_interrupted_tag_write(self, tmp_dir: Path, store: LocalImageStore):
        tag = tmp_dir / "images" / "tags" / "r%2Fapi" / "42"
        tag.parent.mkdir(parents=True)
        tag.write_text("")
        builder = ArchiveImageBuilder(store)
        digest = builder.build(self._tree(tmp_dir / "src"), "r/api:42")
        assert builder.inspect("r/api:42") == digest
        assert builder.verify("r/api:42") is True

    def test_rebuild_repairs_corrupt_blob(self, tmp_dir: Path, store: LocalImageStore):
        builder = ArchiveImageBuilder(store)
        src = self._tree(tmp_dir / "src")
        digest = builder.build(src, "r/api:42")
        [blob] = (tmp_dir / "images" / "blobs").rglob("*.dat")
        blob.write_bytes(b"rot")
        assert builder.verify("r/api:42") is False

        assert builder.build(src, "r/api:42") == digest
        assert builder.verify("r/api:42") is True

    def test_store_integrity_error_becomes_build_failure(
        self, tmp_dir: Path, store: LocalImageStore, monkeypatch
    ):
        def corrupt(image_ref, data):
            raise ArtifactIntegrityError("Blob at abc still fails its integrity check")

        monkeypatch.setattr(store, "put", corrupt)
        with pytest.raises(BuildFailed, match="Storing r/api:42 failed"):
            ArchiveImageBuilder(store).build(self._tree(tmp_dir / "src"), "r/api:42")

    def test_missing_context(self, tmp_dir: Path, store: LocalImageStore):
        with pytest.raises(BuildFailed, match="not a directory"):
            ArchiveImageBuilder(store).build(tmp_dir / "nope", "r/api:42")


# ---------------------------------------------------------------------------
# ReportCollector
# ---------------------------------------------------------------------------


def _report(build_id: int, component: str, **counts) -> ScanReport:
    return ScanReport(
        build_id=build_id,
        component=component,
        image_ref=f"r/{component}:{build_id}",
        counts=SeverityCounts(**counts),
        engine="trivy",
    )


class TestReportCollector:
    def test_store_and_collect(self, tmp_dir: Path):
        collector = ReportCollector(tmp_dir / "reports")
        collector.store(42, [_report(42, "web", high=1), _report(42, "api")])
        reports = collector.collect(42)
        assert [r.component for r in reports] == ["api", "web"]
        assert reports[1].counts.high == 1

    def test_rescan_replaces_not_accumulates(self, tmp_dir: Path):
        collector = ReportCollector(tmp_dir / "reports")
        collector.store(42, [_report(42, "api", critical=3), _report(42, "web")])
        collector.store(42, [_report(42, "api")])
        reports = collector.collect(42)
        assert [r.component for r in reports] == ["api"]
        assert reports[0].counts.critical == 0

    def test_reports_keyed_by_build(self, tmp_dir: Path):
        collector = ReportCollector(tmp_dir / "reports")
        collector.store(42, [_report(42, "api")])
        collector.store(43, [_report(43, "api", low=2)])
        assert collector.collect(42)[0].counts.low == 0
        assert collector.build_ids() == [42, 43]
        assert collector.collect(44) == []

    def test_foreign_report_rejected(self, tmp_dir: Path):
        collector = ReportCollector(tmp_dir / "reports")
        with pytest.raises(ValueError, match="belongs to build 41"):
            collector.store(42, [_report(41, "api")])

    def test_raw_archive(self, tmp_dir: Path):
        collector = ReportCollector(tmp_dir / "reports")
        handle = collector.archive_raw(b'{"Results": []}')
        assert collector.read_raw(handle) == b'{"Results": []}'
