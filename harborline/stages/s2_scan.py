"""Stage 2 — Vulnerability Scan.

Scans every built image in parallel.  The engine reuses one shared cache
across builds.  A failure to *invoke* the engine is retried, then the
artifact gets an empty report with ``warning`` set; one artifact's scan
never blocks another's.

Policy:
    - default (advisory): findings are recorded and never stop the build;
      an engine outage makes the stage an advisory failure.
    - strict (fatal): an engine outage fails the build, and so do
      ``critical + high`` findings above ``scan.threshold`` (0 by default).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from harborline.backends.scanners import ScanTarget
from harborline.core.errors import ScanEngineUnavailable, ScanThresholdExceeded
from harborline.models.build import Artifact, ArtifactStatus, Component
from harborline.models.reports import ScanReport
from harborline.stages.base import BaseStage, BuildContext

logger = logging.getLogger(__name__)


class ScanStage(BaseStage):
    """Stage 2: scan images and apply the advisory/strict policy."""

    @property
    def stage_id(self) -> str:
        return "s2_scan"

    @property
    def display_name(self) -> str:
        return "Scan"

    def execute(self, ctx: BuildContext) -> dict[str, Any]:
        components = ctx.components()
        workers = max(1, min(ctx.config.max_workers, len(components)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scan") as pool:
            futures = [
                pool.submit(self._scan_one, ctx, c, ctx.build.artifacts[c.name])
                for c in components
            ]
        reports = [f.result() for f in futures]

        for report in reports:
            artifact = ctx.build.artifacts[report.component]
            ctx.update_artifact(artifact.model_copy(update={"status": ArtifactStatus.SCANNED}))
        ctx.reports = reports

        self._apply_policy(ctx, reports)
        return {
            "counts": {r.component: r.counts.model_dump() for r in reports},
            "warnings": [r.component for r in reports if r.warning],
            "strict": ctx.strict_scan,
            "artifact_refs": [r.raw_report for r in reports if r.raw_report],
        }

    @staticmethod
    def _scan_one(ctx: BuildContext, component: Component, artifact: Artifact) -> ScanReport:
        scanner = ctx.services.scanner
        target = ScanTarget(
            component=component.name,
            image_ref=artifact.image_ref,
            source_path=ctx.source_dir(component) if ctx.checkout is not None else None,
        )
        base = {
            "build_id": ctx.build.build_id,
            "component": component.name,
            "image_ref": artifact.image_ref,
            "engine": scanner.name,
        }
        try:
            result = ctx.retry(
                lambda: scanner.scan(target),
                retry_on=(ScanEngineUnavailable,),
                description=f"scan {artifact.image_ref}",
            )
        except ScanEngineUnavailable as exc:
            logger.warning("Scan of %s unavailable: %s", artifact.image_ref, exc)
            return ScanReport(**base, warning=True, warning_detail=str(exc))

        handle = ctx.services.reports.archive_raw(result.raw)
        return ScanReport(
            **base,
            counts=result.counts,
            raw_report=handle,
            db_version=result.db_version,
        )

    @staticmethod
    def _apply_policy(ctx: BuildContext, reports: list[ScanReport]) -> None:
        threshold = ctx.config.scan.threshold
        unavailable = [r for r in reports if r.warning]
        over = [r for r in reports if r.counts.blocking > threshold]

        for r in reports:
            if r.counts.total:
                logger.info(
                    "%s: %d critical, %d high, %d medium, %d low",
                    r.image_ref,
                    r.counts.critical,
                    r.counts.high,
                    r.counts.medium,
                    r.counts.low,
                )

        if unavailable:
            names = [r.component for r in unavailable]
            raise ScanEngineUnavailable(
                f"Scan engine unavailable for {names}: {unavailable[0].warning_detail}",
                component=names[0],
            )
        if over and ctx.strict_scan:
            first = over[0]
            raise ScanThresholdExceeded(
                f"{first.image_ref} has {first.counts.critical} critical and "
                f"{first.counts.high} high findings (threshold {threshold})",
                component=first.component,
            )
        for r in over:
            logger.warning(
                "%s exceeds the severity threshold (%d > %d), advisory only",
                r.image_ref,
                r.counts.blocking,
                threshold,
            )
