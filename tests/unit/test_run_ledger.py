"""Tests for the RunLedger — append-only, hash-chained, keyed by build attempt."""

from __future__ import annotations

from harborline.core.run_ledger import RunLedger
from harborline.models.ledger import LedgerEntry


def _entry(run_id: str, build_id: int, attempt: int = 1, stage_id: str = "s0_checkout", **kw):
    return LedgerEntry(
        run_id=run_id,
        build_id=build_id,
        attempt=attempt,
        stage_id=stage_id,
        state_transition=kw.pop("state_transition", "not_started->running"),
        **kw,
    )


class TestRunLedger:
    def test_append_sets_entry_hash(self, ledger: RunLedger):
        sealed = ledger.append(_entry("b1.1", 1))
        assert sealed.entry_hash != ""
        assert sealed.previous_entry_hash == ""  # first entry

    def test_hash_chain_links(self, ledger: RunLedger):
        e1 = ledger.append(_entry("b1.1", 1))
        e2 = ledger.append(_entry("b1.1", 1, state_transition="running->passed"))
        assert e2.previous_entry_hash == e1.entry_hash

    def test_chains_are_per_run(self, ledger: RunLedger):
        ledger.append(_entry("b1.1", 1))
        other = ledger.append(_entry("b2.1", 2))
        assert other.previous_entry_hash == ""

    def test_verify_chain_valid(self, ledger: RunLedger):
        ledger.append(_entry("b1.1", 1))
        ledger.append(_entry("b1.1", 1, stage_id="s1_build"))
        assert ledger.verify_chain("b1.1") is True

    def test_verify_chain_empty(self, ledger: RunLedger):
        assert ledger.verify_chain("b404.1") is True

    def test_round_trip_preserves_fields(self, ledger: RunLedger):
        sealed = ledger.append(
            _entry(
                "b1.1",
                1,
                artifact_references=["sha256:aa", "sha256:bb"],
                detail="web failed",
                input_hash="in",
            )
        )
        [stored] = ledger.get_run_entries("b1.1")
        assert stored.entry_id == sealed.entry_id
        assert stored.artifact_references == ["sha256:aa", "sha256:bb"]
        assert stored.detail == "web failed"
        assert stored.entry_hash == sealed.entry_hash

    def test_get_stage_history(self, ledger: RunLedger):
        ledger.append(_entry("b1.1", 1))
        ledger.append(_entry("b1.1", 1, stage_id="s1_build"))
        ledger.append(_entry("b1.1", 1, state_transition="running->passed"))
        history = ledger.get_stage_history("b1.1", "s0_checkout")
        assert [e.state_transition for e in history] == [
            "not_started->running",
            "running->passed",
        ]


class TestBuildQueries:
    def test_attempts_of_a_build(self, ledger: RunLedger):
        ledger.append(_entry("b42.1", 42, 1))
        ledger.append(_entry("b43.1", 43, 1))
        ledger.append(_entry("b42.2", 42, 2))
        assert ledger.get_build_run_ids(42) == ["b42.1", "b42.2"]
        assert ledger.latest_attempt(42) == 2
        assert ledger.latest_attempt(44) == 0

    def test_max_build_id(self, ledger: RunLedger):
        assert ledger.max_build_id() is None
        ledger.append(_entry("b7.1", 7))
        ledger.append(_entry("b3.1", 3))
        assert ledger.max_build_id() == 7
        assert ledger.get_all_build_ids() == [7, 3]

    def test_survives_reopen(self, ledger: RunLedger):
        ledger.append(_entry("b5.1", 5))
        reopened = RunLedger(ledger.db_path)
        assert reopened.get_build_run_ids(5) == ["b5.1"]
        assert reopened.verify_chain("b5.1") is True
