"""Report Collector — scan reports keyed by build identifier.

Layout::

    {base}/builds/{build_id}/{component}.json   structured ScanReport
    {base}/raw/...                              raw engine output (content-addressed)

Collecting a build id twice replaces its report set wholesale: the new set is
written to a staging directory and swapped in, so a re-run never leaves
reports from an earlier attempt behind.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

from harborline.core.artifact_store import ContentAddressedStore
from harborline.models.reports import ScanReport

logger = logging.getLogger(__name__)


class ReportCollector:
    """Aggregates and exposes scan reports per build identifier."""

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._builds = self._base / "builds"
        self._builds.mkdir(parents=True, exist_ok=True)
        self.raw_store = ContentAddressedStore(self._base / "raw")

    def _build_dir(self, build_id: int) -> Path:
        return self._builds / str(build_id)

    def archive_raw(self, data: bytes) -> str:
        """Keep raw engine output and return its handle."""
        return self.raw_store.store(data).content_address

    def read_raw(self, handle: str) -> bytes:
        return self.raw_store.retrieve(handle)

    def store(self, build_id: int, reports: list[ScanReport]) -> Path:
        """Replace the report set for *build_id* with *reports*."""
        for report in reports:
            if report.build_id != build_id:
                raise ValueError(
                    f"Report for {report.component} belongs to build "
                    f"{report.build_id}, not {build_id}"
                )

        staging = Path(tempfile.mkdtemp(prefix=f".{build_id}-", dir=self._builds))
        try:
            for report in reports:
                (staging / f"{report.component}.json").write_text(
                    report.model_dump_json(indent=2), encoding="utf-8"
                )
            target = self._build_dir(build_id)
            if target.exists():
                shutil.rmtree(target)
            staging.rename(target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info("Collected %d scan report(s) for build %s", len(reports), build_id)
        return target

    def collect(self, build_id: int) -> list[ScanReport]:
        """Return the stored reports for *build_id*, ordered by component."""
        build_dir = self._build_dir(build_id)
        if not build_dir.is_dir():
            return []
        return [
            ScanReport.model_validate_json(path.read_text(encoding="utf-8"))
            for path in sorted(build_dir.glob("*.json"))
        ]

    def build_ids(self) -> list[int]:
        return sorted(
            int(p.name) for p in self._builds.iterdir() if p.is_dir() and p.name.isdigit()
        )
