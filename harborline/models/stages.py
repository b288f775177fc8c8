"""Stage state machine models — ordered stages with per-stage failure policy."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from harborline.models.build import BuildStatus


class StageState(str, Enum):
    """Strict state model for each pipeline stage within one build attempt."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    BLOCKED = "blocked"
    FAILED = "failed"
    PASSED = "passed"
    ADVISORY = "advisory"  # failed, but the failure policy lets the build continue


class FailurePolicy(str, Enum):
    """What a stage failure does to the rest of the build."""

    FATAL = "fatal"
    ADVISORY = "advisory"


# Valid state transitions, enforced structurally by StageMachine.
# A build attempt never retries a stage in place; a re-run opens a new attempt.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.BLOCKED},
    StageState.RUNNING: {StageState.PASSED, StageState.ADVISORY, StageState.FAILED},
    StageState.BLOCKED: set(),
    StageState.FAILED: set(),
    StageState.PASSED: set(),
    StageState.ADVISORY: set(),
}

# States that satisfy a downstream prerequisite.
SATISFIED_STATES: frozenset[StageState] = frozenset(
    {StageState.PASSED, StageState.ADVISORY}
)


class StageDefinition(BaseModel):
    """Defines a pipeline stage, its prerequisites and its failure policy.

    The prerequisite list encodes the DAG: a stage cannot enter RUNNING
    unless every prerequisite is PASSED or ADVISORY.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: float
    prerequisites: list[str] = []
    failure_policy: FailurePolicy = FailurePolicy.FATAL
    build_status: BuildStatus  # status the Build enters while this stage runs


DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id="s0_checkout",
        display_name="Checkout",
        ordinal=0.0,
        prerequisites=[],
        build_status=BuildStatus.BUILDING,
    ),
    StageDefinition(
        stage_id="s1_build",
        display_name="Build",
        ordinal=1.0,
        prerequisites=["s0_checkout"],
        build_status=BuildStatus.BUILDING,
    ),
    StageDefinition(
        stage_id="s2_scan",
        display_name="Scan",
        ordinal=2.0,
        prerequisites=["s1_build"],
        failure_policy=FailurePolicy.ADVISORY,
        build_status=BuildStatus.SCANNING,
    ),
    StageDefinition(
        stage_id="s3_collect",
        display_name="Collect Reports",
        ordinal=3.0,
        prerequisites=["s2_scan"],
        failure_policy=FailurePolicy.ADVISORY,
        build_status=BuildStatus.SCANNING,
    ),
    StageDefinition(
        stage_id="s4_publish",
        display_name="Publish",
        ordinal=4.0,
        prerequisites=["s1_build", "s3_collect"],
        build_status=BuildStatus.PUBLISHING,
    ),
    StageDefinition(
        stage_id="s5_promote",
        display_name="Promote",
        ordinal=5.0,
        prerequisites=["s4_publish"],
        build_status=BuildStatus.PROMOTING,
    ),
]


def stage_definitions(*, strict_scan: bool = False) -> list[StageDefinition]:
    """Return the default stage plan, with the scan stage fatal in strict mode."""
    if not strict_scan:
        return list(DEFAULT_STAGE_DEFINITIONS)
    return [
        sd.model_copy(update={"failure_policy": FailurePolicy.FATAL})
        if sd.stage_id == "s2_scan"
        else sd
        for sd in DEFAULT_STAGE_DEFINITIONS
    ]
