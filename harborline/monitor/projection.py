"""MonitorProjection — pure read-only view over the RunLedger.

The status view is a PROJECTION of the Run Ledger.  It does not compute
truth; it displays it.  Every call re-reads from the ledger.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from harborline.core.run_ledger import LedgerIntegrityError, RunLedger
from harborline.models.ledger import LedgerEntry
from harborline.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    SATISFIED_STATES,
    StageDefinition,
    StageState,
)


class StageStatus(BaseModel):
    """Point-in-time status of one stage in one attempt."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    detail: str | None = None
    artifact_refs: list[str] = []


class AttemptSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of one build attempt."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    build_id: int
    attempt: int
    stages: list[StageStatus] = []
    chain_valid: bool = True
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stages if s.state in SATISFIED_STATES)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def failed_stage(self) -> StageStatus | None:
        for s in self.stages:
            if s.state == StageState.FAILED:
                return s
        return None

    @property
    def advisory_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.ADVISORY]

    @property
    def succeeded(self) -> bool:
        return bool(self.stages) and self.completed_count == self.total_stages


class MonitorProjection:
    """Pure read-only projection over the RunLedger.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    stage_definitions:
        Stage definitions for display names and ordering.
    """

    def __init__(
        self,
        ledger: RunLedger,
        stage_definitions: list[StageDefinition] | None = None,
    ) -> None:
        self._ledger = ledger
        definitions = stage_definitions or DEFAULT_STAGE_DEFINITIONS
        self._stage_defs = {sd.stage_id: sd for sd in definitions}
        self._stage_order = [
            sd.stage_id for sd in sorted(definitions, key=lambda sd: sd.ordinal)
        ]

    def snapshot(self, run_id: str) -> AttemptSnapshot:
        """Snapshot one attempt.  Re-reads the ledger; no cached state."""
        entries = self._ledger.get_run_entries(run_id)
        if not entries:
            raise KeyError(f"No ledger entries for run {run_id}")
        info = self._compute_stage_states(entries)

        stages = []
        for stage_id in self._stage_order:
            stage_info = info.get(stage_id, {})
            sd = self._stage_defs[stage_id]
            stages.append(
                StageStatus(
                    stage_id=stage_id,
                    display_name=sd.display_name,
                    state=stage_info.get("state", StageState.NOT_STARTED),
                    entered_at=stage_info.get("entered_at"),
                    detail=stage_info.get("detail"),
                    artifact_refs=stage_info.get("artifact_refs", []),
                )
            )

        return AttemptSnapshot(
            run_id=run_id,
            build_id=entries[0].build_id,
            attempt=entries[0].attempt,
            stages=stages,
            chain_valid=self._check_chain_valid(run_id),
            last_updated=entries[-1].timestamp_utc,
        )

    def build_history(self, build_id: int) -> list[AttemptSnapshot]:
        """Snapshots of every attempt of *build_id*, oldest first."""
        return [self.snapshot(run_id) for run_id in self._ledger.get_build_run_ids(build_id)]

    def _compute_stage_states(
        self, entries: list[LedgerEntry]
    ) -> dict[str, dict[str, Any]]:
        """Replay ledger entries: stage_id -> {state, entered_at, detail, artifact_refs}."""
        result: dict[str, dict[str, Any]] = {}
        for entry in entries:
            info = result.setdefault(
                entry.stage_id,
                {"state": StageState.NOT_STARTED, "entered_at": None, "detail": None, "artifact_refs": []},
            )
            _, _, to_state = entry.state_transition.partition("->")
            info["state"] = StageState(to_state)
            info["entered_at"] = entry.timestamp_utc
            if entry.detail:
                info["detail"] = entry.detail
            info["artifact_refs"].extend(entry.artifact_references)
        return result

    def _check_chain_valid(self, run_id: str) -> bool:
        try:
            return self._ledger.verify_chain(run_id)
        except LedgerIntegrityError:
            return False
