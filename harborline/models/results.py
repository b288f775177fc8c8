"""Stage and build results.

Each stage produces a tagged variant, ``StageSuccess``, ``AdvisoryFailure``
or ``FatalFailure``, discriminated on ``outcome``.  The orchestrator threads
these through the run and folds them into a ``BuildResult``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from harborline.models.build import Build, BuildStatus
from harborline.models.promotion import PromotionRecord
from harborline.models.reports import ScanReport


class _StageResultBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage_id: str
    detail: str = ""
    data: dict[str, Any] = {}
    input_hash: str = ""
    output_hash: str = ""


class StageSuccess(_StageResultBase):
    outcome: Literal["success"] = "success"


class AdvisoryFailure(_StageResultBase):
    """Recorded in the build result; the build continues."""

    outcome: Literal["advisory_failure"] = "advisory_failure"
    error_type: str = ""
    component: str | None = None


class FatalFailure(_StageResultBase):
    """Aborts the remaining stages and fails the build."""

    outcome: Literal["fatal_failure"] = "fatal_failure"
    error_type: str = ""
    component: str | None = None


StageResult = Annotated[
    Union[StageSuccess, AdvisoryFailure, FatalFailure],
    Field(discriminator="outcome"),
]


class BuildResult(BaseModel):
    """Everything one call to ``Orchestrator.run`` produced."""

    model_config = ConfigDict(frozen=True)

    build: Build
    run_id: str
    attempt: int
    stage_results: list[StageResult] = []
    reports: list[ScanReport] = []
    promotion: PromotionRecord | None = None

    @property
    def succeeded(self) -> bool:
        return self.build.status == BuildStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def advisories(self) -> list[AdvisoryFailure]:
        return [r for r in self.stage_results if isinstance(r, AdvisoryFailure)]

    @property
    def fatal(self) -> FatalFailure | None:
        for r in self.stage_results:
            if isinstance(r, FatalFailure):
                return r
        return None
