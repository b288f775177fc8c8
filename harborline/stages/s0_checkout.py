"""Stage 0 — Checkout.

Materializes the build's source revision through the configured
``SourceControl``.  Every later stage reads component sources from this
checkout.  Fatal: without sources there is nothing to build.
"""

from __future__ import annotations

from typing import Any

from harborline.core.errors import CheckoutError
from harborline.stages.base import BaseStage, BuildContext


class CheckoutStage(BaseStage):
    """Stage 0: fetch the source tree for the build's revision."""

    @property
    def stage_id(self) -> str:
        return "s0_checkout"

    @property
    def display_name(self) -> str:
        return "Checkout"

    def execute(self, ctx: BuildContext) -> dict[str, Any]:
        source = ctx.config.source
        dest = ctx.config.workspace_path / "source"
        checkout = ctx.retry(
            lambda: ctx.services.source.checkout(
                source.repository, ctx.build.source_revision, dest
            ),
            retry_on=(CheckoutError,),
            description=f"checkout {ctx.build.source_revision}",
        )

        ctx.checkout = checkout
        return {
            "requested_revision": ctx.build.source_revision,
            "revision": checkout.revision,
            "path": str(checkout.path),
        }
