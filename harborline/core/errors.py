"""Pipeline error taxonomy.

Every error raised by a stage is a ``PipelineError`` carrying the stage it
originated in and, where it applies, the component.  Whether an error aborts
the build is decided by the failure policy of the stage that raised it, not
by the error type.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for stage-tagged pipeline failures."""

    stage: str = ""

    def __init__(self, message: str, *, component: str | None = None) -> None:
        super().__init__(message)
        self.component = component

    @property
    def cause(self) -> str:
        return str(self)


class CheckoutError(PipelineError):
    stage = "s0_checkout"


class BuildFailed(PipelineError):
    """A component failed to compile or package."""

    stage = "s1_build"


class ScanEngineUnavailable(PipelineError):
    """The scanning engine could not be invoked (missing, unreachable, timed out)."""

    stage = "s2_scan"


class ScanThresholdExceeded(PipelineError):
    """Strict mode: critical + high findings exceeded the configured threshold."""

    stage = "s2_scan"


class ReportCollectionError(PipelineError):
    stage = "s3_collect"


class RegistryAuthError(PipelineError):
    stage = "s4_publish"


class PublishError(PipelineError):
    stage = "s4_publish"


class PromotionConflict(PipelineError):
    """The config repository kept advancing; the retry budget is exhausted."""

    stage = "s5_promote"


class PromotionWriteError(PipelineError):
    stage = "s5_promote"


class PipelineCancelled(PipelineError):
    """A cancellation request was honored at a stage boundary."""

    def __init__(self, stage: str, message: str = "cancelled") -> None:
        super().__init__(message)
        self.stage = stage


class BuildIdentifierError(ValueError):
    """A new build identifier is not greater than the ones already recorded."""
