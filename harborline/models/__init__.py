"""Harborline data models — all Pydantic v2, all frozen (immutable)."""

from harborline.models.build import (
    BUILD_TRANSITIONS,
    Artifact,
    ArtifactStatus,
    Build,
    BuildFailure,
    BuildStatus,
    Component,
    InvalidTransitionError,
)
from harborline.models.config import (
    BuilderConfig,
    PipelineConfig,
    PromotionConfig,
    RegistryConfig,
    ScanPolicy,
    SourceConfig,
)
from harborline.models.ledger import LedgerEntry, make_run_id
from harborline.models.promotion import PromotionRecord
from harborline.models.reports import ScanReport, SeverityCounts
from harborline.models.results import (
    AdvisoryFailure,
    BuildResult,
    FatalFailure,
    StageResult,
    StageSuccess,
)
from harborline.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    VALID_TRANSITIONS,
    FailurePolicy,
    StageDefinition,
    StageState,
)

__all__ = [
    # build
    "Component",
    "Artifact",
    "ArtifactStatus",
    "Build",
    "BuildFailure",
    "BuildStatus",
    "BUILD_TRANSITIONS",
    "InvalidTransitionError",
    # config
    "PipelineConfig",
    "SourceConfig",
    "BuilderConfig",
    "ScanPolicy",
    "RegistryConfig",
    "PromotionConfig",
    # ledger
    "LedgerEntry",
    "make_run_id",
    # reports
    "ScanReport",
    "SeverityCounts",
    # promotion
    "PromotionRecord",
    # results
    "StageResult",
    "StageSuccess",
    "AdvisoryFailure",
    "FatalFailure",
    "BuildResult",
    # stages
    "StageState",
    "FailurePolicy",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "DEFAULT_STAGE_DEFINITIONS",
]
