"""Cooperative cancellation for a running build.

A request is only *honored* at safe points: between stages, and inside the
publish stage after the current artifact's push has completed or failed.
"""

from __future__ import annotations

import logging
import threading

from harborline.core.errors import PipelineCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe flag shared between the caller and the orchestrator."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()
            logger.info("Cancellation requested: %s", reason)

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_requested(self, stage_id: str) -> None:
        """Raise ``PipelineCancelled`` for *stage_id* if a request is pending."""
        if self._event.is_set():
            raise PipelineCancelled(stage_id, self._reason or "cancelled")
