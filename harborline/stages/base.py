"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only ``execute()``.
The ``run_stage()`` wrapper is **not overridable**: it fixes the ordering:

    compute_input_hash -> execute -> compute_output_hash -> StageResult

and turns a ``PipelineError`` raised by ``execute()`` into the tagged result
the stage's failure policy calls for.  Any other exception is a bug and
propagates to the orchestrator.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, final

from harborline.backends.sources import SourceCheckout
from harborline.core.cancellation import CancellationToken
from harborline.core.errors import PipelineCancelled, PipelineError
from harborline.core.hasher import compute_input_hash, compute_output_hash
from harborline.core.retry import retry_call
from harborline.core.services import PipelineServices
from harborline.models.build import Artifact, Build, Component
from harborline.models.config import PipelineConfig
from harborline.models.promotion import PromotionRecord
from harborline.models.reports import ScanReport
from harborline.models.results import AdvisoryFailure, FatalFailure, StageResult, StageSuccess
from harborline.models.stages import FailurePolicy, StageDefinition

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BuildContext:
    """Run-wide state threaded through the stages of one build attempt.

    Only the orchestrator's thread mutates it; worker threads inside a stage
    return values that the stage then folds in.
    """

    config: PipelineConfig
    services: PipelineServices
    build: Build
    run_id: str
    attempt: int
    cancel_token: CancellationToken
    strict_scan: bool = False
    checkout: SourceCheckout | None = None
    reports: list[ScanReport] = field(default_factory=list)
    promotion: PromotionRecord | None = None
    output_hashes: dict[str, str] = field(default_factory=dict)

    def update_artifact(self, artifact: Artifact) -> None:
        self.build = self.build.with_artifact(artifact)

    def components(self) -> list[Component]:
        """Configured components of this build, in build order."""
        return [self.config.component(name) for name in sorted(self.build.artifacts)]

    def source_dir(self, component: Component) -> Path:
        if self.checkout is None:
            raise RuntimeError("No source checkout in this build context")
        return self.checkout.path / component.source_path

    def retry(
        self,
        fn: Callable[[], T],
        *,
        retry_on: tuple[type[BaseException], ...],
        description: str,
    ) -> T:
        return retry_call(
            fn,
            retries=self.config.retry_attempts,
            retry_on=retry_on,
            delay=self.config.retry_delay_seconds,
            description=description,
        )


class BaseStage(abc.ABC):
    """Abstract base for all Harborline pipeline stages.

    Subclasses **must** implement:
        * ``stage_id``   — unique identifier (e.g. ``"s1_build"``).
        * ``display_name`` — human-readable name for status output.
        * ``execute(ctx)`` — the stage's core logic.

    Subclasses **must not** override ``run_stage()``.
    """

    @property
    @abc.abstractmethod
    def stage_id(self) -> str: ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str: ...

    @abc.abstractmethod
    def execute(self, ctx: BuildContext) -> dict[str, Any]:
        """Execute the stage's core logic.

        Returns a JSON-compatible dict describing what the stage produced.
        An ``artifact_refs`` list in it is copied into the ledger entry.
        Raises a ``PipelineError`` subclass on failure.
        """
        ...

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def run_stage(self, ctx: BuildContext, definition: StageDefinition) -> StageResult:
        """Run the stage and classify its outcome.  **Do not override.**"""
        input_hash = self._compute_input_hash(ctx)
        logger.info("%s [%s] started for build %d", self.display_name, self.stage_id, ctx.build.build_id)

        try:
            data = self.execute(ctx)
        except PipelineError as exc:
            fatal = (
                definition.failure_policy == FailurePolicy.FATAL
                or isinstance(exc, PipelineCancelled)
            )
            where = f" ({exc.component})" if exc.component else ""
            if fatal:
                logger.error("%s [%s]%s failed: %s", self.display_name, self.stage_id, where, exc)
                return FatalFailure(
                    stage_id=self.stage_id,
                    detail=exc.cause,
                    error_type=type(exc).__name__,
                    component=exc.component,
                    input_hash=input_hash,
                )
            logger.warning("%s [%s]%s advisory: %s", self.display_name, self.stage_id, where, exc)
            return AdvisoryFailure(
                stage_id=self.stage_id,
                detail=exc.cause,
                error_type=type(exc).__name__,
                component=exc.component,
                input_hash=input_hash,
            )

        output_hash = compute_output_hash(self.stage_id, data)
        ctx.output_hashes[self.stage_id] = output_hash
        logger.info(
            "%s [%s] passed, input=%s output=%s",
            self.display_name,
            self.stage_id,
            input_hash[:12],
            output_hash[:12],
        )
        return StageSuccess(
            stage_id=self.stage_id,
            data=data,
            input_hash=input_hash,
            output_hash=output_hash,
        )

    @final
    def _compute_input_hash(self, ctx: BuildContext) -> str:
        inputs: dict[str, Any] = {
            "build_id": ctx.build.build_id,
            "source_revision": ctx.build.source_revision,
            "components": sorted(ctx.build.artifacts),
            "prior_output_hashes": dict(ctx.output_hashes),
        }
        return compute_input_hash(self.stage_id, inputs)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage_id={self.stage_id!r}>"
