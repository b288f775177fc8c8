"""Harborline pipeline stages — registry mapping stage_id to stage class.

Usage::

    from harborline.stages import STAGE_REGISTRY, get_stage

    stage = get_stage("s1_build")
    result = stage.run_stage(ctx, definition)
"""

from __future__ import annotations

from harborline.stages.base import BaseStage, BuildContext
from harborline.stages.s0_checkout import CheckoutStage
from harborline.stages.s1_build import BuildStage
from harborline.stages.s2_scan import ScanStage
from harborline.stages.s3_collect import CollectReportsStage
from harborline.stages.s4_publish import PublishStage
from harborline.stages.s5_promote import PromoteStage

# ---------------------------------------------------------------------------
# Stage registry: stage_id -> stage class
# ---------------------------------------------------------------------------

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    "s0_checkout": CheckoutStage,
    "s1_build": BuildStage,
    "s2_scan": ScanStage,
    "s3_collect": CollectReportsStage,
    "s4_publish": PublishStage,
    "s5_promote": PromoteStage,
}

# Ordered list matching the default pipeline execution order.
STAGE_ORDER: list[str] = [
    "s0_checkout",
    "s1_build",
    "s2_scan",
    "s3_collect",
    "s4_publish",
    "s5_promote",
]


def get_stage(stage_id: str) -> BaseStage:
    """Instantiate and return a stage by its ``stage_id``.

    Raises ``KeyError`` if the stage_id is not registered.
    """
    try:
        cls = STAGE_REGISTRY[stage_id]
    except KeyError:
        raise KeyError(
            f"Unknown stage_id {stage_id!r}. "
            f"Registered stages: {sorted(STAGE_REGISTRY.keys())}"
        ) from None
    return cls()


__all__ = [
    "BaseStage",
    "BuildContext",
    "STAGE_REGISTRY",
    "STAGE_ORDER",
    "get_stage",
    "CheckoutStage",
    "BuildStage",
    "ScanStage",
    "CollectReportsStage",
    "PublishStage",
    "PromoteStage",
]
