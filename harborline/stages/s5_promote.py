"""Stage 5 — Promote.

Records every component's new version (the build id) in the declarative
config repository through the configured promoter.  Runs only once all
artifacts are published; the promoter refuses a partial promotion on its
own as well.
"""

from __future__ import annotations

from typing import Any

from harborline.core.errors import PromotionWriteError
from harborline.models.build import ArtifactStatus
from harborline.stages.base import BaseStage, BuildContext


class PromoteStage(BaseStage):
    """Stage 5: commit the version rewrite to the config repository."""

    @property
    def stage_id(self) -> str:
        return "s5_promote"

    @property
    def display_name(self) -> str:
        return "Promote"

    def execute(self, ctx: BuildContext) -> dict[str, Any]:
        build = ctx.build
        if not build.all_published:
            unpublished = sorted(
                name
                for name, artifact in build.artifacts.items()
                if artifact.status != ArtifactStatus.PUBLISHED
            )
            raise PromotionWriteError(
                f"Build {build.build_id}: not every artifact is published {unpublished}"
            )

        version = str(build.build_id)
        mapping = {name: version for name in sorted(build.artifacts)}
        record = ctx.services.promoter.promote(build, mapping)
        ctx.promotion = record

        return {
            "commit": record.commit,
            "versions": record.versions,
            "created_commit": record.created_commit,
            "attempts": record.attempts,
            "artifact_refs": [record.commit],
        }
