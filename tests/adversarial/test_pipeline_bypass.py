"""Adversarial tests — attempts to publish or promote what should not ship.

These tests verify that:
1. Publishing and promotion cannot start without their prerequisites
2. A failed or cancelled attempt cannot be walked forward afterwards
3. Tampered stored images are never reused or published
4. A registry tag already holding other content is never overwritten
5. A build with any unpublished artifact is never promoted
"""

from __future__ import annotations

from urllib.parse import quote

import pytest

from harborline.core.cancellation import CancellationToken
from harborline.core.errors import PromotionWriteError
from harborline.core.hasher import sha256_hex
from harborline.core.image_store import split_image_ref
from harborline.core.prerequisite_graph import PrerequisiteNotMetError
from harborline.core.stage_machine import InvalidTransitionError
from harborline.models.build import ArtifactStatus, Build, BuildStatus
from harborline.models.stages import StageState
from harborline.stages.base import BuildContext
from harborline.stages.s5_promote import PromoteStage


class TestPrerequisiteBypassAttempts:
    def test_cannot_publish_without_build(self, stage_machine, run_id):
        stage_machine.initialize_run(run_id, 42, 1)
        with pytest.raises(PrerequisiteNotMetError, match="s1_build"):
            stage_machine.transition(run_id, "s4_publish", StageState.RUNNING)

    def test_cannot_publish_without_collected_reports(self, stage_machine, run_id):
        stage_machine.initialize_run(run_id, 42, 1)
        for sid in ("s0_checkout", "s1_build"):
            stage_machine.transition(run_id, sid, StageState.RUNNING)
            stage_machine.transition(run_id, sid, StageState.PASSED)
        with pytest.raises(PrerequisiteNotMetError, match="s3_collect"):
            stage_machine.transition(run_id, "s4_publish", StageState.RUNNING)

    def test_cannot_promote_without_publish(self, stage_machine, run_id):
        stage_machine.initialize_run(run_id, 42, 1)
        with pytest.raises(PrerequisiteNotMetError):
            stage_machine.transition(run_id, "s5_promote", StageState.RUNNING)


class TestFinishedAttemptsStayFinished:
    def test_failed_build_cannot_be_promoted_later(self, orchestrator, services):
        services.builder.fail = {"web"}
        result = orchestrator.run(orchestrator.new_build(43, "main"))
        assert result.build.status == BuildStatus.FAILED

        states = orchestrator.get_states(result.run_id)
        assert states["s5_promote"] == StageState.BLOCKED
        with pytest.raises(InvalidTransitionError):
            orchestrator.stage_machine.transition(
                result.run_id, "s5_promote", StageState.RUNNING
            )

    def test_cancelled_attempt_cannot_resume(self, orchestrator, services):
        token = CancellationToken()
        services.scanner.on_scan = lambda target: token.cancel()
        result = orchestrator.run(orchestrator.new_build(42, "main"), cancel_token=token)
        assert not result.succeeded

        with pytest.raises(InvalidTransitionError):
            orchestrator.stage_machine.transition(
                result.run_id, "s4_publish", StageState.RUNNING
            )
        assert services.promoter.calls == []


class TestImageIntegrity:
    def test_tampered_stored_image_not_reused(
        self, orchestrator, services, pipeline_config, image_store
    ):
        services.registry.login_failures = 1
        first = orchestrator.run(orchestrator.new_build(42, "main"))
        assert not first.succeeded

        address = image_store.resolve("registry.local/acme/api:42")
        digest = address.removeprefix("sha256:")
        blob = (
            pipeline_config.image_store_path
            / "blobs"
            / digest[:2]
            / digest[2:4]
            / f"{digest}.dat"
        )
        blob.write_bytes(b"not the image that was scanned")

        second = orchestrator.run(first.build)
        assert not second.succeeded
        assert second.fatal.stage_id == "s1_build"
        assert second.fatal.component == "api"
        assert "failed verification" in second.fatal.detail
        assert services.registry.tags() == []

    def test_divergent_registry_tag_refused(self, orchestrator, services, pipeline_config):
        repository, tag = split_image_ref("registry.local/acme/api:42")
        squatted = pipeline_config.registry.path / "tags" / quote(repository, safe="") / tag
        squatted.parent.mkdir(parents=True, exist_ok=True)
        forged = f"sha256:{sha256_hex(b'someone else')}"
        squatted.write_text(forged, encoding="utf-8")

        result = orchestrator.run(orchestrator.new_build(42, "main"))

        assert not result.succeeded
        assert result.fatal.stage_id == "s4_publish"
        assert result.fatal.component == "api"
        assert "different content" in result.fatal.detail
        assert squatted.read_text(encoding="utf-8") == forged
        assert services.promoter.calls == []


class TestPartialPromotion:
    def test_one_unpublished_artifact_blocks_promotion(self, pipeline_config, services):
        ctx = BuildContext(
            config=pipeline_config,
            services=services,
            build=Build.create(42, "main", pipeline_config.components),
            run_id="b42.1",
            attempt=1,
            cancel_token=CancellationToken(),
        )
        for name in ("api", "db"):
            artifact = ctx.build.artifacts[name]
            ctx.update_artifact(artifact.model_copy(update={"status": ArtifactStatus.PUBLISHED}))

        with pytest.raises(PromotionWriteError, match="web"):
            PromoteStage().execute(ctx)
        assert services.promoter.calls == []
        assert ctx.promotion is None

