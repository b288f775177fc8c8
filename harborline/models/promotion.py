"""Promotion record — the durable, externally observable output of a build."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class PromotionRecord(BaseModel):
    """A committed version rewrite in the config repository.

    Exists only for builds whose artifacts were all published.  Once pushed,
    the commit is what the external reconciler trusts.
    """

    model_config = ConfigDict(frozen=True)

    build_id: int
    versions: dict[str, str]  # component -> new version
    commit: str
    repository: str = ""
    branch: str = ""
    created_commit: bool = True  # False when the fields already held these versions
    attempts: int = 1
    promoted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
