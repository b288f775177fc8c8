"""Run Ledger entry model (append-only, hash-chained).

One ledger run per build attempt.  Entries are:
- Append-only (no UPDATE, no DELETE)
- Hash-chained (each entry links to the previous via SHA-256)
- Event-driven (one entry per stage state transition)
- Scoped to run_id + stage_id, and tagged with the build identifier
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def make_run_id(build_id: int, attempt: int) -> str:
    """Ledger run id for an attempt of a build, e.g. ``b42.2``."""
    return f"b{build_id}.{attempt}"


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger.

    The Build Monitor is a projection of these entries.
    """

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    build_id: int
    attempt: int = 1
    stage_id: str
    state_transition: str  # "from_state->to_state", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # image refs or content addresses
    detail: str = ""  # failure cause or advisory message
    pipeline_version: str = "0.1.0"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed after construction, seals this entry
