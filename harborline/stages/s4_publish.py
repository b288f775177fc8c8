"""Stage 4 — Publish.

Logs in to the registry once for the whole build, then pushes each artifact
sequentially under its tag.  Pushing identical content under an existing
tag is a no-op, so a re-run of the build id never creates duplicate or
divergent images.  A cancellation request is honored only between pushes.

Fatal: a login failure (after retries) or a failed push leaves the build
unpromotable, and promotion requires every artifact to be published.
"""

from __future__ import annotations

import logging
from typing import Any

from harborline.core.errors import PublishError, RegistryAuthError
from harborline.models.build import ArtifactStatus
from harborline.stages.base import BaseStage, BuildContext

logger = logging.getLogger(__name__)


class PublishStage(BaseStage):
    """Stage 4: push every artifact through one registry session."""

    @property
    def stage_id(self) -> str:
        return "s4_publish"

    @property
    def display_name(self) -> str:
        return "Publish"

    def execute(self, ctx: BuildContext) -> dict[str, Any]:
        registry = ctx.services.registry
        credentials = ctx.services.credentials

        session = ctx.retry(
            lambda: registry.login(credentials),
            retry_on=(RegistryAuthError,),
            description="registry login",
        )

        digests: dict[str, str] = {}
        with session:
            for name in sorted(ctx.build.artifacts):
                ctx.cancel_token.raise_if_requested(self.stage_id)
                artifact = ctx.build.artifacts[name]
                try:
                    digest = session.push(artifact.image_ref, artifact.content_digest)
                except PublishError as exc:
                    exc.component = name
                    ctx.update_artifact(
                        artifact.model_copy(update={"status": ArtifactStatus.FAILED})
                    )
                    raise
                ctx.update_artifact(
                    artifact.model_copy(
                        update={"digest": digest, "status": ArtifactStatus.PUBLISHED}
                    )
                )
                digests[name] = digest
                logger.info("Published %s (%s)", artifact.image_ref, digest)

        return {
            "digests": digests,
            "artifact_refs": [digests[n] for n in sorted(digests)],
        }
