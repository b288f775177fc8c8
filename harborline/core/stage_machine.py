"""Deterministic stage state machine for one build attempt.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Prerequisites checked before RUNNING
- Cascade blocking on fatal failure
- Every transition recorded in the Run Ledger
"""

from __future__ import annotations

from harborline.core.prerequisite_graph import PrerequisiteGraph, PrerequisiteNotMetError
from harborline.core.run_ledger import RunLedger
from harborline.models.build import InvalidTransitionError
from harborline.models.ledger import LedgerEntry
from harborline.models.stages import VALID_TRANSITIONS, StageState

__all__ = ["InvalidTransitionError", "StageMachine"]


class StageMachine:
    """Enforces the stage state machine with prerequisite checking.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    graph:
        The prerequisite graph for dependency checking.
    """

    def __init__(self, ledger: RunLedger, graph: PrerequisiteGraph) -> None:
        self._ledger = ledger
        self._graph = graph
        # run_id -> {stage_id -> StageState}
        self._states: dict[str, dict[str, StageState]] = {}
        # run_id -> (build_id, attempt)
        self._runs: dict[str, tuple[int, int]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(
        self, run_id: str, build_id: int, attempt: int
    ) -> dict[str, StageState]:
        """Initialize all stages to NOT_STARTED for a new attempt."""
        states = {sid: StageState.NOT_STARTED for sid in self._graph.stage_ids}
        self._states[run_id] = states
        self._runs[run_id] = (build_id, attempt)
        return dict(states)

    def get_current_state(self, run_id: str, stage_id: str) -> StageState:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return self._states[run_id].get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return dict(self._states[run_id])

    def _rebuild_state(self, run_id: str) -> None:
        """Rebuild in-memory state from the ledger."""
        states = {sid: StageState.NOT_STARTED for sid in self._graph.stage_ids}
        entries = self._ledger.get_run_entries(run_id)
        known = {s.value for s in StageState}
        for entry in entries:
            _, _, to_state = entry.state_transition.partition("->")
            if to_state in known:
                states[entry.stage_id] = StageState(to_state)
        self._states[run_id] = states
        if entries:
            self._runs[run_id] = (entries[0].build_id, entries[0].attempt)

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: str = "",
    ) -> LedgerEntry:
        """Transition a stage to a new state, recording in the ledger.

        Validates:
        1. The transition is allowed by VALID_TRANSITIONS.
        2. If target is RUNNING, prerequisites are met.
        3. If transition is to FAILED, cascade-block dependents.

        Returns the sealed LedgerEntry.
        """
        if run_id not in self._states:
            self._rebuild_state(run_id)
        if run_id not in self._runs:
            raise KeyError(f"Run {run_id} was never initialized")

        states = self._states[run_id]
        current = states.get(stage_id, StageState.NOT_STARTED)

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target_state == StageState.RUNNING:
            if not self._graph.are_prerequisites_met(stage_id, states):
                reasons = self._graph.get_blocking_reasons(stage_id, states)
                raise PrerequisiteNotMetError(
                    f"Cannot start {stage_id}: prerequisites not met. "
                    f"Blocked by: {'; '.join(reasons)}"
                )

        sealed = self._record(
            run_id,
            stage_id,
            current,
            target_state,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=artifact_references,
            detail=detail,
        )
        states[stage_id] = target_state

        if target_state == StageState.FAILED:
            for blocked_id in self._graph.cascade_block(stage_id, states):
                self._record(
                    run_id,
                    blocked_id,
                    StageState.NOT_STARTED,
                    StageState.BLOCKED,
                    detail=f"upstream {stage_id} failed",
                )

        return sealed

    def block_remaining(self, run_id: str, reason: str) -> list[str]:
        """Block every stage that has not started yet (used on cancellation)."""
        states = self._states[run_id]
        blocked: list[str] = []
        for stage_id in self._graph.stage_ids:
            if states.get(stage_id) == StageState.NOT_STARTED:
                self.transition(run_id, stage_id, StageState.BLOCKED, detail=reason)
                blocked.append(stage_id)
        return blocked

    def _record(
        self,
        run_id: str,
        stage_id: str,
        from_state: StageState,
        to_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: str = "",
    ) -> LedgerEntry:
        build_id, attempt = self._runs[run_id]
        return self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                build_id=build_id,
                attempt=attempt,
                stage_id=stage_id,
                state_transition=f"{from_state.value}->{to_state.value}",
                input_hash=input_hash,
                output_hash=output_hash,
                artifact_references=artifact_references or [],
                detail=detail,
            )
        )

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    def can_start(self, run_id: str, stage_id: str) -> tuple[bool, list[str]]:
        """Check if a stage can transition to RUNNING.

        Returns (can_start, blocking_reasons).
        """
        if run_id not in self._states:
            self._rebuild_state(run_id)

        current = self._states[run_id].get(stage_id, StageState.NOT_STARTED)
        if current != StageState.NOT_STARTED:
            return False, [f"Stage is currently {current.value}, not not_started"]

        if not self._graph.are_prerequisites_met(stage_id, self._states[run_id]):
            return False, self._graph.get_blocking_reasons(stage_id, self._states[run_id])

        return True, []
