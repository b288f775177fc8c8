"""Build and artifact models.

A Build is one execution of the pipeline for a source revision, keyed by an
externally supplied, monotonically increasing build identifier.  Exactly one
Artifact exists per Component per Build, and its tag is derived purely from
the component's repository and the build identifier.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class BuildStatus(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    SCANNING = "scanning"
    PUBLISHING = "publishing"
    PROMOTING = "promoting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# FAILED is absorbing and reachable from every non-terminal state.
BUILD_TRANSITIONS: dict[BuildStatus, set[BuildStatus]] = {
    BuildStatus.PENDING: {BuildStatus.BUILDING, BuildStatus.FAILED},
    BuildStatus.BUILDING: {BuildStatus.SCANNING, BuildStatus.FAILED},
    BuildStatus.SCANNING: {BuildStatus.PUBLISHING, BuildStatus.FAILED},
    BuildStatus.PUBLISHING: {BuildStatus.PROMOTING, BuildStatus.FAILED},
    BuildStatus.PROMOTING: {BuildStatus.SUCCEEDED, BuildStatus.FAILED},
    BuildStatus.SUCCEEDED: set(),
    BuildStatus.FAILED: set(),
}


class ArtifactStatus(str, Enum):
    PENDING = "pending"
    BUILT = "built"
    SCANNED = "scanned"
    PUBLISHED = "published"
    FAILED = "failed"


class Component(BaseModel):
    """A deployable unit, fixed at pipeline-definition time.

    ``descriptor``, ``field`` and ``value_template`` locate the component's
    version in the config repository.  ``None`` falls back to the promotion
    defaults of the pipeline configuration.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    source_path: str
    repository: str
    descriptor: str | None = None
    field: str | None = None
    value_template: str | None = None

    def image_ref(self, build_id: int) -> str:
        """The image reference for this component in *build_id*."""
        return image_ref_for(self.repository, build_id)


def image_ref_for(repository: str, build_id: int) -> str:
    return f"{repository}:{build_id}"


class Artifact(BaseModel):
    """One immutable image for one component in one build."""

    model_config = ConfigDict(frozen=True)

    component: str
    image_ref: str
    content_digest: str = ""  # local content digest, set when built
    digest: str = ""  # registry digest, set when published
    status: ArtifactStatus = ArtifactStatus.PENDING


class BuildFailure(BaseModel):
    """The first fatal cause of a failed build."""

    model_config = ConfigDict(frozen=True)

    stage: str
    cause: str
    component: str | None = None
    error_type: str = ""


class Build(BaseModel):
    """A single pipeline execution.  Immutable; transitions return copies."""

    model_config = ConfigDict(frozen=True)

    build_id: int = Field(ge=0)
    source_revision: str
    artifacts: dict[str, Artifact] = {}
    status: BuildStatus = BuildStatus.PENDING
    failure: BuildFailure | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def create(
        cls, build_id: int, source_revision: str, components: list[Component]
    ) -> Build:
        """Start a build with one pending artifact per component."""
        return cls(
            build_id=build_id,
            source_revision=source_revision,
            artifacts={
                c.name: Artifact(component=c.name, image_ref=c.image_ref(build_id))
                for c in components
            },
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (BuildStatus.SUCCEEDED, BuildStatus.FAILED)

    @property
    def all_published(self) -> bool:
        return bool(self.artifacts) and all(
            a.status == ArtifactStatus.PUBLISHED for a in self.artifacts.values()
        )

    def transition(
        self, target: BuildStatus, *, failure: BuildFailure | None = None
    ) -> Build:
        """Return a copy of this build in *target* status.

        Staying in the current non-terminal status is allowed so that
        consecutive stages sharing a build status do not need special casing.
        """
        if target == self.status and not self.is_terminal:
            return self
        allowed = BUILD_TRANSITIONS[self.status]
        if target not in allowed:
            raise InvalidTransitionError(
                f"Build {self.build_id}: cannot transition from "
                f"{self.status.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        if target == BuildStatus.FAILED and failure is None:
            raise InvalidTransitionError(
                f"Build {self.build_id}: a failed build needs a failure cause"
            )
        if target == BuildStatus.SUCCEEDED and not self.all_published:
            raise InvalidTransitionError(
                f"Build {self.build_id}: cannot succeed with unpublished artifacts"
            )
        return self.model_copy(update={"status": target, "failure": failure})

    def with_artifact(self, artifact: Artifact) -> Build:
        """Return a copy with *artifact* replacing the one for its component."""
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Build {self.build_id} is {self.status.value} and can no longer change"
            )
        if artifact.component not in self.artifacts:
            raise KeyError(
                f"Build {self.build_id} has no component {artifact.component!r}"
            )
        artifacts = dict(self.artifacts)
        artifacts[artifact.component] = artifact
        return self.model_copy(update={"artifacts": artifacts})
