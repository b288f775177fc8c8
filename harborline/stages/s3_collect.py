"""Stage 3 — Collect Reports.

Replaces the stored report set for the build id with this attempt's reports
and exposes them for archival.  Advisory: losing reports never blocks a
release.
"""

from __future__ import annotations

from typing import Any

from harborline.core.errors import ReportCollectionError
from harborline.stages.base import BaseStage, BuildContext


class CollectReportsStage(BaseStage):
    """Stage 3: persist scan reports keyed by build id."""

    @property
    def stage_id(self) -> str:
        return "s3_collect"

    @property
    def display_name(self) -> str:
        return "Collect Reports"

    def execute(self, ctx: BuildContext) -> dict[str, Any]:
        collector = ctx.services.reports
        build_id = ctx.build.build_id
        try:
            path = collector.store(build_id, ctx.reports)
            ctx.reports = collector.collect(build_id)
        except (OSError, ValueError) as exc:
            raise ReportCollectionError(f"Could not collect reports for build {build_id}: {exc}") from exc

        return {
            "reports": len(ctx.reports),
            "path": str(path),
            "with_warnings": sum(1 for r in ctx.reports if r.warning),
            "artifact_refs": [r.raw_report for r in ctx.reports if r.raw_report],
        }
