"""GitOps config mutator: records promoted versions in the config repository.

Protocol for one promotion:

1. Refuse unless every artifact of the build is Published and the mapping
   names only components of the build.  Nothing is written otherwise.
2. Clone the target branch into a throwaway working copy.
3. For each component in the mapping, rewrite only its version field with a
   structural edit (``harborline.gitops.descriptor``).
4. Stage only the descriptors that changed and make one commit carrying a
   ``Harborline-Build: <id>`` trailer, authored by the pipeline identity.
5. Push.  A rejected push means another promotion landed first: fetch,
   reset onto the new tip, re-apply the same field edits and try again, up to
   ``max_attempts`` pushes, then raise ``PromotionConflict``.

Fields of components outside the mapping are never touched, so promotions of
disjoint component sets interleave safely.  If every field already holds its
target value the promotion is a no-op and the record points at the commit that
carries the build's trailer.
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from harborline.core.errors import PromotionConflict, PromotionWriteError
from harborline.gitops.descriptor import DescriptorEditError, FieldEdit, apply_edits
from harborline.gitops.git import GitError, GitWorkspace, PushRejectedError
from harborline.models.build import ArtifactStatus, Build, Component
from harborline.models.config import PromotionConfig
from harborline.models.promotion import PromotionRecord

logger = logging.getLogger(__name__)

TRAILER_KEY = "Harborline-Build"


def build_trailer(build_id: int) -> str:
    return f"{TRAILER_KEY}: {build_id}"


@dataclass(frozen=True, slots=True)
class PlannedEdit:
    component: str
    descriptor: str
    edit: FieldEdit


class ConfigRepoMutator:
    """Writes promotions to one branch of the declarative config repository."""

    def __init__(
        self,
        config: PromotionConfig,
        components: list[Component],
        *,
        workspace_root: Path | None = None,
    ) -> None:
        self._config = config
        self._components = {c.name: c for c in components}
        self._workspace_root = workspace_root

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def promote(self, build: Build, mapping: Mapping[str, str]) -> PromotionRecord:
        """Commit *mapping* (component -> new version) for *build*."""
        self._check_preconditions(build, mapping)
        plan = self.plan(build, mapping)

        if self._workspace_root is not None:
            self._workspace_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix=f"promote-{build.build_id}-", dir=self._workspace_root
        ) as tmp:
            try:
                workspace = GitWorkspace.clone(
                    self._config.repository,
                    Path(tmp) / "config",
                    branch=self._config.branch,
                    author_name=self._config.author_name,
                    author_email=self._config.author_email,
                    timeout=self._config.timeout_seconds,
                )
                return self._promote_in(workspace, build, dict(mapping), plan)
            except GitError as exc:
                raise PromotionWriteError(
                    f"Config repository {self._config.repository}: {exc}"
                ) from exc

    def plan(self, build: Build, mapping: Mapping[str, str]) -> list[PlannedEdit]:
        """Resolve each mapped component to its descriptor, field path and value."""
        planned = []
        for name in sorted(mapping):
            component = self._components.get(name)
            if component is None:
                raise PromotionWriteError(
                    f"Component {name!r} is not configured", component=name
                )
            artifact = build.artifacts[name]
            tokens = {
                "component": component.name,
                "repository": component.repository,
                "version": mapping[name],
                "digest": artifact.digest,
                "build_id": build.build_id,
            }
            try:
                descriptor = (component.descriptor or self._config.default_descriptor).format(
                    **tokens
                )
                path = (component.field or self._config.default_field).format(**tokens)
                value = (
                    component.value_template or self._config.default_value_template
                ).format(**tokens)
            except (KeyError, IndexError, ValueError) as exc:
                raise PromotionWriteError(
                    f"Bad promotion template for {name}: {exc}", component=name
                ) from exc
            planned.append(PlannedEdit(name, descriptor, FieldEdit(path, value)))
        return planned

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_preconditions(self, build: Build, mapping: Mapping[str, str]) -> None:
        if not self._config.repository:
            raise PromotionWriteError("No config repository is configured")
        if not mapping:
            raise PromotionWriteError(f"Build {build.build_id}: nothing to promote")
        unknown = sorted(set(mapping) - set(build.artifacts))
        if unknown:
            raise PromotionWriteError(
                f"Build {build.build_id} has no artifacts for {unknown}"
            )
        unpublished = sorted(
            name
            for name, artifact in build.artifacts.items()
            if artifact.status != ArtifactStatus.PUBLISHED
        )
        if unpublished:
            raise PromotionWriteError(
                f"Build {build.build_id}: refusing partial promotion, "
                f"unpublished artifacts {unpublished}"
            )

    def _promote_in(
        self,
        workspace: GitWorkspace,
        build: Build,
        mapping: dict[str, str],
        plan: list[PlannedEdit],
    ) -> PromotionRecord:
        trailer = build_trailer(build.build_id)
        max_attempts = self._config.max_attempts

        for attempt in range(1, max_attempts + 1):
            changed = self._apply(workspace, plan)
            if not changed:
                commit = workspace.find_commit(trailer) or workspace.head()
                logger.info(
                    "Build %d already promoted at %s, nothing to commit",
                    build.build_id,
                    commit[:12],
                )
                return self._record(build, mapping, commit, created=False, attempts=attempt)

            workspace.add(changed)
            commit = workspace.commit(
                f"Promote build {build.build_id}", self._commit_body(mapping, trailer)
            )
            try:
                self._push(workspace)
            except PushRejectedError:
                if attempt == max_attempts:
                    raise PromotionConflict(
                        f"Config repository kept advancing; gave up after "
                        f"{max_attempts} push attempts for build {build.build_id}"
                    ) from None
                logger.warning(
                    "Push of build %d rejected (attempt %d/%d), rebasing edits",
                    build.build_id,
                    attempt,
                    max_attempts,
                )
                workspace.sync()
                continue

            logger.info(
                "Promoted build %d (%s) at %s",
                build.build_id,
                ", ".join(f"{k}={v}" for k, v in sorted(mapping.items())),
                commit[:12],
            )
            return self._record(build, mapping, commit, created=True, attempts=attempt)

        raise AssertionError("unreachable")  # pragma: no cover

    def _apply(self, workspace: GitWorkspace, plan: list[PlannedEdit]) -> list[str]:
        """Apply *plan* to the working copy; return the descriptors that changed."""
        by_descriptor: dict[str, list[PlannedEdit]] = {}
        for item in plan:
            by_descriptor.setdefault(item.descriptor, []).append(item)

        changed = []
        for descriptor, items in sorted(by_descriptor.items()):
            path = workspace.path / descriptor
            try:
                text = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                raise PromotionWriteError(
                    f"Descriptor {descriptor} not found in {self._config.repository}",
                    component=items[0].component,
                ) from None
            try:
                result = apply_edits(text, [item.edit for item in items])
            except DescriptorEditError as exc:
                raise PromotionWriteError(
                    f"{descriptor}: {exc}", component=items[0].component
                ) from exc
            if result.changed:
                path.write_text(result.text, encoding="utf-8")
                changed.append(descriptor)
                for change in result.changes:
                    logger.debug("%s %s: %s -> %s", descriptor, change.path, change.old, change.new)
        return changed

    def _push(self, workspace: GitWorkspace) -> None:
        workspace.push()

    @staticmethod
    def _commit_body(mapping: dict[str, str], trailer: str) -> str:
        lines = [f"{name}: {version}" for name, version in sorted(mapping.items())]
        return "\n".join(lines) + f"\n\n{trailer}"

    def _record(
        self,
        build: Build,
        mapping: dict[str, str],
        commit: str,
        *,
        created: bool,
        attempts: int,
    ) -> PromotionRecord:
        return PromotionRecord(
            build_id=build.build_id,
            versions=mapping,
            commit=commit,
            repository=self._config.repository,
            branch=self._config.branch,
            created_commit=created,
            attempts=attempts,
        )
