"""Harborline: a continuous-delivery pipeline with GitOps promotion.

A build turns one source revision into an image per component, scans the
images, publishes them under ``repository:build_id`` and records the new
versions in a declarative config repository that an external reconciler
deploys from.

  - Six stages (checkout, build, scan, collect, publish, promote) with
    per-stage fatal/advisory failure policy
  - Hash-chained SQLite run ledger, one run per build attempt
  - Idempotent re-runs: append-only image tags, immutable registry tags,
    already-promoted descriptors are left alone
  - Structural YAML edits of deployment descriptors
"""

__version__ = "0.1.0"
__description__ = "Continuous-delivery pipeline with GitOps promotion"

from harborline.core.orchestrator import Orchestrator
from harborline.monitor.projection import MonitorProjection as BuildMonitor
from harborline.cli.app import app as cli

__all__ = ["Orchestrator", "BuildMonitor", "cli", "__version__"]
