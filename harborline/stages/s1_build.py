"""Stage 1 — Build.

Builds one image per component, tagged ``repository:build_id``, on a worker
pool bounded by ``max_workers``.  Components are independent: the only
shared state is the append-only local image store.

Re-runs of a build id find the tag already present, re-verify the stored
image and reuse it rather than rebuilding.  A failure in any component is
fatal for the build; the other components are allowed to finish so the
store never holds half-written images.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from harborline.core.errors import BuildFailed
from harborline.models.build import Artifact, ArtifactStatus, Component
from harborline.stages.base import BaseStage, BuildContext

logger = logging.getLogger(__name__)


class BuildStage(BaseStage):
    """Stage 1: build every component's image."""

    @property
    def stage_id(self) -> str:
        return "s1_build"

    @property
    def display_name(self) -> str:
        return "Build"

    def execute(self, ctx: BuildContext) -> dict[str, Any]:
        components = ctx.components()
        workers = max(1, min(ctx.config.max_workers, len(components)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="build") as pool:
            futures = {
                c.name: pool.submit(self._build_one, ctx, c, ctx.build.artifacts[c.name])
                for c in components
            }

        images: dict[str, str] = {}
        reused: list[str] = []
        failures: list[BuildFailed] = []
        for component in components:
            artifact = ctx.build.artifacts[component.name]
            try:
                digest, was_reused = futures[component.name].result()
            except BuildFailed as exc:
                if exc.component is None:
                    exc.component = component.name
                failures.append(exc)
                ctx.update_artifact(artifact.model_copy(update={"status": ArtifactStatus.FAILED}))
                continue
            images[component.name] = digest
            if was_reused:
                reused.append(component.name)
            ctx.update_artifact(
                artifact.model_copy(
                    update={"content_digest": digest, "status": ArtifactStatus.BUILT}
                )
            )

        if failures:
            if len(failures) > 1:
                logger.error(
                    "%d components failed to build: %s",
                    len(failures),
                    ", ".join(f.component or "?" for f in failures),
                )
            raise failures[0]

        return {
            "images": images,
            "reused": reused,
            "artifact_refs": sorted(images.values()),
        }

    @staticmethod
    def _build_one(
        ctx: BuildContext, component: Component, artifact: Artifact
    ) -> tuple[str, bool]:
        builder = ctx.services.builder
        image_ref = artifact.image_ref

        existing = builder.inspect(image_ref)
        if existing is not None:
            if not builder.verify(image_ref):
                raise BuildFailed(
                    f"Stored image {image_ref} failed verification",
                    component=component.name,
                )
            logger.info("%s already built as %s, reusing", image_ref, existing)
            return existing, True

        context_dir = ctx.source_dir(component)
        if not context_dir.is_dir():
            raise BuildFailed(
                f"Source subtree {component.source_path} missing at revision "
                f"{ctx.build.source_revision}",
                component=component.name,
            )
        try:
            digest = builder.build(context_dir, image_ref)
        except BuildFailed as exc:
            exc.component = component.name
            raise
        return digest, False
