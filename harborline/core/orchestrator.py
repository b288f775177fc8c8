"""Pipeline orchestrator — the central coordinator for Harborline builds.

The Orchestrator wires together the RunLedger, StageMachine, PrerequisiteGraph
and the stage registry into a single execution engine, with the external
collaborators (source control, builder, scanner, registry, config-repo
promoter) injected as ``PipelineServices``.

One call to ``run`` is one *attempt* of a build.  Each attempt is its own
hash-chained ledger run (``b<id>.<attempt>``); work already done by an
earlier attempt of the same build id is detected at the artifact level
(image store tags, registry tags, descriptor values) and re-verified rather
than redone.
"""

from __future__ import annotations

import logging

from harborline.config import ProdConfig
from harborline.core.cancellation import CancellationToken
from harborline.core.errors import BuildIdentifierError, PipelineCancelled
from harborline.core.prerequisite_graph import PrerequisiteGraph
from harborline.core.run_ledger import RunLedger
from harborline.core.services import PipelineServices, build_services
from harborline.core.stage_machine import StageMachine
from harborline.models.build import Build, BuildFailure, BuildStatus
from harborline.models.config import PipelineConfig
from harborline.models.ledger import LedgerEntry, make_run_id
from harborline.models.results import (
    AdvisoryFailure,
    BuildResult,
    FatalFailure,
    StageResult,
    StageSuccess,
)
from harborline.models.stages import StageDefinition, StageState, stage_definitions
from harborline.stages import BaseStage, BuildContext, get_stage

logger = logging.getLogger(__name__)

_PROMOTE_STAGE = "s5_promote"


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    config:
        Pipeline configuration.  Uses defaults if not provided.
    services:
        External collaborators.  Built from *config* if not provided.
    prod_config:
        Process settings (credentials, environment).  Read from the
        environment if not provided.
    strict_scan:
        Overrides ``config.scan.strict`` when not None.
    allow_rollback:
        Permit re-running a build id older than the newest promoted build,
        which rewrites the config repository back to that build's versions.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        services: PipelineServices | None = None,
        prod_config: ProdConfig | None = None,
        strict_scan: bool | None = None,
        allow_rollback: bool = False,
    ) -> None:
        self.config = config or PipelineConfig()
        self._prod_config = prod_config or ProdConfig()
        self.services = services or build_services(self.config, self._prod_config)
        self.strict_scan = self.config.scan.strict if strict_scan is None else strict_scan
        self.allow_rollback = allow_rollback

        self.ledger = RunLedger(self.config.ledger_db_path)
        self.definitions = stage_definitions(strict_scan=self.strict_scan)
        self.graph = PrerequisiteGraph(self.definitions)
        self.stage_machine = StageMachine(self.ledger, self.graph)
        self._stages: dict[str, BaseStage] = {
            sid: get_stage(sid) for sid in self.graph.stage_ids
        }

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def new_build(self, build_id: int, source_revision: str) -> Build:
        """Create a pending build for the configured components.

        A build id that has never been recorded must not be lower than the
        highest recorded one.  A recorded id may be re-run, unless a newer
        build has been promoted since and ``allow_rollback`` is off.
        """
        self._check_build_id(build_id)
        if not self.config.components:
            raise ValueError(f"Pipeline {self.config.project_name!r} defines no components")
        return Build.create(build_id, source_revision, self.config.components)

    def _check_build_id(self, build_id: int) -> None:
        highest = self.ledger.max_build_id()
        if highest is None or build_id >= highest:
            return
        if not self.ledger.get_build_run_ids(build_id):
            raise BuildIdentifierError(
                f"Build id {build_id} is lower than the latest recorded build {highest}"
            )
        promoted = self.ledger.max_passed_build_id(_PROMOTE_STAGE)
        if promoted is not None and build_id < promoted:
            if not self.allow_rollback:
                raise BuildIdentifierError(
                    f"Build {promoted} is promoted; re-running build {build_id} would roll "
                    "the config repository back (allow it with --allow-rollback)"
                )
            logger.warning("Re-running build %d rolls back promoted build %d", build_id, promoted)

    def run(
        self, build: Build, *, cancel_token: CancellationToken | None = None
    ) -> BuildResult:
        """Execute every stage of *build* in prerequisite order.

        A build that is not pending (for example the failed build returned by
        an earlier attempt) is re-run as a fresh attempt of the same id.
        """
        if build.status != BuildStatus.PENDING:
            logger.info(
                "Build %d is %s, starting a new attempt", build.build_id, build.status.value
            )
            build = self.new_build(build.build_id, build.source_revision)
        else:
            self._check_build_id(build.build_id)
        if not build.artifacts:
            raise ValueError(f"Build {build.build_id} has no components")

        attempt = self.ledger.latest_attempt(build.build_id) + 1
        run_id = make_run_id(build.build_id, attempt)
        self.stage_machine.initialize_run(run_id, build.build_id, attempt)
        logger.info(
            "Build %d attempt %d (%s) at revision %s",
            build.build_id,
            attempt,
            run_id,
            build.source_revision,
        )

        ctx = BuildContext(
            config=self.config,
            services=self.services,
            build=build,
            run_id=run_id,
            attempt=attempt,
            cancel_token=cancel_token or CancellationToken(),
            strict_scan=self.strict_scan,
        )
        results: list[StageResult] = []

        for stage_id in self.graph.stage_ids:
            definition = self.graph.get_stage_definition(stage_id)
            try:
                ctx.cancel_token.raise_if_requested(stage_id)
            except PipelineCancelled as exc:
                results.append(self._cancel(ctx, definition, exc))
                break

            result = self._execute(ctx, definition)
            results.append(result)
            if isinstance(result, FatalFailure):
                break
        else:
            ctx.build = ctx.build.transition(BuildStatus.SUCCEEDED)
            logger.info("Build %d succeeded (%s)", build.build_id, run_id)

        return BuildResult(
            build=ctx.build,
            run_id=run_id,
            attempt=attempt,
            stage_results=results,
            reports=ctx.reports,
            promotion=ctx.promotion,
        )

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def _execute(self, ctx: BuildContext, definition: StageDefinition) -> StageResult:
        stage_id = definition.stage_id
        ctx.build = ctx.build.transition(definition.build_status)
        self.stage_machine.transition(ctx.run_id, stage_id, StageState.RUNNING)

        try:
            result = self._stages[stage_id].run_stage(ctx, definition)
        except Exception as exc:
            # Not a pipeline error: record it so the ledger never shows a
            # stage stuck in RUNNING, then let it surface.
            self._fail(
                ctx,
                stage_id,
                BuildFailure(stage=stage_id, cause=str(exc), error_type=type(exc).__name__),
            )
            raise

        refs = [str(r) for r in result.data.get("artifact_refs", [])]
        if isinstance(result, StageSuccess):
            self.stage_machine.transition(
                ctx.run_id,
                stage_id,
                StageState.PASSED,
                input_hash=result.input_hash,
                output_hash=result.output_hash,
                artifact_references=refs,
            )
        elif isinstance(result, AdvisoryFailure):
            self.stage_machine.transition(
                ctx.run_id,
                stage_id,
                StageState.ADVISORY,
                input_hash=result.input_hash,
                detail=result.detail,
            )
        else:
            self._fail(
                ctx,
                stage_id,
                BuildFailure(
                    stage=stage_id,
                    cause=result.detail,
                    component=result.component,
                    error_type=result.error_type,
                ),
                input_hash=result.input_hash,
            )
        return result

    def _fail(
        self,
        ctx: BuildContext,
        stage_id: str,
        failure: BuildFailure,
        *,
        input_hash: str = "",
    ) -> None:
        self.stage_machine.transition(
            ctx.run_id,
            stage_id,
            StageState.FAILED,
            input_hash=input_hash,
            detail=failure.cause,
        )
        self.stage_machine.block_remaining(ctx.run_id, f"build failed at {stage_id}")
        ctx.build = ctx.build.transition(BuildStatus.FAILED, failure=failure)
        logger.error(
            "Build %d failed at %s%s: %s",
            ctx.build.build_id,
            stage_id,
            f" ({failure.component})" if failure.component else "",
            failure.cause,
        )

    def _cancel(
        self, ctx: BuildContext, definition: StageDefinition, exc: PipelineCancelled
    ) -> FatalFailure:
        stage_id = definition.stage_id
        self.stage_machine.block_remaining(ctx.run_id, f"cancelled before {stage_id}")
        ctx.build = ctx.build.transition(
            BuildStatus.FAILED,
            failure=BuildFailure(
                stage=stage_id, cause=exc.cause, error_type=type(exc).__name__
            ),
        )
        logger.warning("Build %d cancelled before %s", ctx.build.build_id, stage_id)
        return FatalFailure(
            stage_id=stage_id, detail=exc.cause, error_type=type(exc).__name__
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_states(self, run_id: str) -> dict[str, StageState]:
        return self.stage_machine.get_all_states(run_id)

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        return self.ledger.get_run_entries(run_id)

    def verify_chain(self, run_id: str) -> bool:
        return self.ledger.verify_chain(run_id)
