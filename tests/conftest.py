"""Shared test fixtures for Harborline.

Pipeline tests run against a three-component project (``api``, ``web``,
``db``) with in-process fakes for the source control, the scanner and the
promoter, the real archive builder and the real filesystem registry.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import threading
from collections.abc import Callable, Mapping
from pathlib import Path

import pytest
from pydantic import SecretStr

from harborline.backends.builders import ArchiveImageBuilder
from harborline.backends.registries import FileSystemRegistry, RegistryCredentials
from harborline.backends.scanners import EngineReport, ScanTarget
from harborline.backends.sources import SourceCheckout
from harborline.config import ProdConfig
from harborline.core.errors import (
    BuildFailed,
    CheckoutError,
    PublishError,
    RegistryAuthError,
    ScanEngineUnavailable,
)
from harborline.core.hasher import sha256_hex
from harborline.core.image_store import LocalImageStore
from harborline.core.orchestrator import Orchestrator
from harborline.core.prerequisite_graph import PrerequisiteGraph
from harborline.core.report_collector import ReportCollector
from harborline.core.run_ledger import RunLedger
from harborline.core.services import PipelineServices
from harborline.core.stage_machine import StageMachine
from harborline.models.build import Build, Component
from harborline.models.config import (
    PipelineConfig,
    PromotionConfig,
    RegistryConfig,
    ScanPolicy,
    SourceConfig,
)
from harborline.models.promotion import PromotionRecord
from harborline.models.reports import SeverityCounts
from harborline.models.stages import DEFAULT_STAGE_DEFINITIONS

REGISTRY_USERS = {"ci": "s3cret"}


# ---------------------------------------------------------------------------
# Ledger and state machine
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def graph() -> PrerequisiteGraph:
    """Provide a PrerequisiteGraph with the default pipeline stages."""
    return PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)


@pytest.fixture
def stage_machine(ledger: RunLedger, graph: PrerequisiteGraph) -> StageMachine:
    """Provide a StageMachine wired to test ledger and graph."""
    return StageMachine(ledger, graph)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "b42.1"


# ---------------------------------------------------------------------------
# Fakes for external collaborators
# ---------------------------------------------------------------------------


class FakeSource:
    """Serves a fixed directory for every revision; can fail the first calls."""

    def __init__(self, root: Path, *, failures: int = 0) -> None:
        self.root = root
        self.failures = failures
        self.calls: list[str] = []

    def checkout(self, repository: str, revision: str, dest: Path) -> SourceCheckout:
        self.calls.append(revision)
        if self.failures:
            self.failures -= 1
            raise CheckoutError(f"{repository}: remote end hung up")
        return SourceCheckout(revision=f"{revision}-resolved", path=self.root)


class FakeBuilder(ArchiveImageBuilder):
    """Real archive builder that fails for chosen component directories."""

    def __init__(self, store: LocalImageStore, *, fail: set[str] | None = None) -> None:
        super().__init__(store)
        self.fail = set(fail or ())
        self.built: list[str] = []
        self._lock = threading.Lock()

    def build(self, context_dir: Path, image_ref: str) -> str:
        with self._lock:
            self.built.append(image_ref)
        if context_dir.name in self.fail:
            raise BuildFailed(f"compilation of {context_dir.name} failed: syntax error")
        return super().build(context_dir, image_ref)


class FakeScanner:
    """Scanner returning configured counts, or failing as if unreachable."""

    name = "fake-scanner"

    def __init__(
        self,
        counts: Mapping[str, SeverityCounts] | None = None,
        *,
        unavailable: bool = False,
        on_scan: Callable[[ScanTarget], None] | None = None,
    ) -> None:
        self.counts = dict(counts or {})
        self.unavailable = unavailable
        self.on_scan = on_scan
        self.scanned: list[str] = []
        self._lock = threading.Lock()

    def scan(self, target: ScanTarget) -> EngineReport:
        with self._lock:
            self.scanned.append(target.image_ref)
        if self.on_scan is not None:
            self.on_scan(target)
        if self.unavailable:
            raise ScanEngineUnavailable(
                f"{self.name}: connection refused", component=target.component
            )
        counts = self.counts.get(target.component, SeverityCounts())
        raw = json.dumps(
            {"ArtifactName": target.image_ref, "Counts": counts.model_dump()},
            sort_keys=True,
        ).encode("utf-8")
        return EngineReport(raw=raw, counts=counts, db_version="2026-10-01")


class FlakyRegistry:
    """Wraps a FileSystemRegistry with scripted login and push failures."""

    def __init__(
        self,
        inner: FileSystemRegistry,
        *,
        login_failures: int = 0,
        failing_pushes: set[str] | None = None,
        after_push: Callable[[str], None] | None = None,
    ) -> None:
        self.inner = inner
        self.login_failures = login_failures
        self.failing_pushes = set(failing_pushes or ())
        self.after_push = after_push
        self.logins = 0
        self.pushes: list[str] = []

    def login(self, credentials: RegistryCredentials | None):
        self.logins += 1
        if self.login_failures:
            self.login_failures -= 1
            raise RegistryAuthError("registry.local: 503 Service Unavailable")
        return _FlakySession(self, self.inner.login(credentials))

    def tags(self) -> list[str]:
        return self.inner.tags()


class _FlakySession:
    def __init__(self, registry: FlakyRegistry, inner) -> None:
        self._registry = registry
        self._inner = inner

    def push(self, image_ref: str, content_digest: str) -> str:
        self._registry.pushes.append(image_ref)
        if image_ref in self._registry.failing_pushes:
            self._registry.failing_pushes.discard(image_ref)
            raise PublishError(f"{image_ref}: connection reset during upload")
        digest = self._inner.push(image_ref, content_digest)
        if self._registry.after_push is not None:
            self._registry.after_push(image_ref)
        return digest

    def close(self) -> None:
        self._inner.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class FakePromoter:
    """Records promotions in memory, with no-op detection like the git mutator."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, dict[str, str]]] = []
        self.versions: dict[str, str] = {}
        self.commits: list[str] = []

    def promote(self, build: Build, mapping: Mapping[str, str]) -> PromotionRecord:
        self.calls.append((build.build_id, dict(mapping)))
        changed = any(self.versions.get(k) != v for k, v in mapping.items())
        if changed:
            self.versions.update(mapping)
            self.commits.append(sha256_hex(json.dumps(self.versions, sort_keys=True).encode()))
        return PromotionRecord(
            build_id=build.build_id,
            versions=dict(mapping),
            commit=self.commits[-1],
            repository="memory://config",
            branch="main",
            created_commit=changed,
        )


# ---------------------------------------------------------------------------
# A three-component project
# ---------------------------------------------------------------------------


def make_components() -> list[Component]:
    return [
        Component(name="api", source_path="api", repository="registry.local/acme/api"),
        Component(name="web", source_path="web", repository="registry.local/acme/web"),
        Component(name="db", source_path="db", repository="registry.local/acme/db"),
    ]


@pytest.fixture
def source_tree(tmp_dir: Path) -> Path:
    """An application source tree with one subtree per component."""
    root = tmp_dir / "src"
    files = {
        "api/main.py": "print('api')\n",
        "api/requirements.txt": "fastapi\n",
        "web/index.html": "<h1>shop</h1>\n",
        "db/schema.sql": "CREATE TABLE orders (id INTEGER PRIMARY KEY);\n",
    }
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def pipeline_config(tmp_dir: Path, source_tree: Path) -> PipelineConfig:
    return PipelineConfig(
        project_name="shop",
        components=make_components(),
        source=SourceConfig(kind="local", repository=str(source_tree)),
        scan=ScanPolicy(cache_dir=tmp_dir / "scan-cache"),
        registry=RegistryConfig(kind="filesystem", path=tmp_dir / "registry"),
        promotion=PromotionConfig(repository=str(tmp_dir / "config.git")),
        max_workers=3,
        retry_attempts=0,
        retry_delay_seconds=0,
        state_dir=tmp_dir / "state",
    )


@pytest.fixture
def image_store(pipeline_config: PipelineConfig) -> LocalImageStore:
    return LocalImageStore(pipeline_config.image_store_path)


@pytest.fixture
def registry(pipeline_config: PipelineConfig, image_store: LocalImageStore) -> FlakyRegistry:
    return FlakyRegistry(
        FileSystemRegistry(pipeline_config.registry.path, image_store, users=REGISTRY_USERS)
    )


@pytest.fixture
def services(
    pipeline_config: PipelineConfig,
    source_tree: Path,
    image_store: LocalImageStore,
    registry: FlakyRegistry,
) -> PipelineServices:
    return PipelineServices(
        source=FakeSource(source_tree),
        builder=FakeBuilder(image_store),
        scanner=FakeScanner(),
        registry=registry,
        promoter=FakePromoter(),
        reports=ReportCollector(pipeline_config.reports_path),
        credentials=RegistryCredentials(username="ci", password=SecretStr("s3cret")),
    )


@pytest.fixture
def prod_config() -> ProdConfig:
    return ProdConfig(_env_file=None)


@pytest.fixture
def make_orchestrator(
    pipeline_config: PipelineConfig,
    services: PipelineServices,
    prod_config: ProdConfig,
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator over the shared state dir and fakes."""

    def _factory(**overrides) -> Orchestrator:
        config = overrides.pop("config", pipeline_config)
        return Orchestrator(
            config,
            services=overrides.pop("services", services),
            prod_config=prod_config,
            **overrides,
        )

    return _factory


@pytest.fixture
def orchestrator(make_orchestrator) -> Orchestrator:
    return make_orchestrator()


# ---------------------------------------------------------------------------
# Git config repository
# ---------------------------------------------------------------------------

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test Operator",
    "GIT_AUTHOR_EMAIL": "operator@example.invalid",
    "GIT_COMMITTER_NAME": "Test Operator",
    "GIT_COMMITTER_EMAIL": "operator@example.invalid",
    "GIT_CONFIG_NOSYSTEM": "1",
}

KUSTOMIZATION = """\
# Production overlay, reconciled by the cluster agent
apiVersion: kustomize.config.k8s.io/v1beta1
kind: Kustomization
resources:
  - ../../base
images:
  - name: registry.local/acme/api
    newTag: "41"   # api version
  - name: registry.local/acme/web
    newTag: "41"
  - name: registry.local/acme/db
    newTag: "41"
  - name: registry.local/acme/api-gateway
    newTag: "7"
"""


def git(*args: str, cwd: Path) -> str:
    """Run git as a human operator would; return stdout."""
    env = {**os.environ, **GIT_ENV}
    result = subprocess.run(
        ["git", *args], cwd=cwd, env=env, text=True, capture_output=True, check=True
    )
    return result.stdout


@pytest.fixture
def git_available() -> None:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")


@pytest.fixture
def config_repo(tmp_dir: Path, git_available: None) -> Path:
    """A bare config repository whose main branch holds a kustomization."""
    bare = tmp_dir / "config.git"
    git("init", "--bare", "--initial-branch=main", str(bare), cwd=tmp_dir)

    seed = tmp_dir / "seed"
    git("clone", str(bare), str(seed), cwd=tmp_dir)
    git("checkout", "-B", "main", cwd=seed)
    overlay = seed / "overlays" / "prod"
    overlay.mkdir(parents=True)
    (overlay / "kustomization.yaml").write_text(KUSTOMIZATION, encoding="utf-8")
    (seed / "README.md").write_text("Cluster state\n", encoding="utf-8")
    git("add", ".", cwd=seed)
    git("commit", "-m", "Initial cluster state", cwd=seed)
    git("push", "origin", "main", cwd=seed)
    return bare


def read_remote(bare: Path, path: str, ref: str = "main") -> str:
    """Read *path* at *ref* straight from the bare repository."""
    return git("show", f"{ref}:{path}", cwd=bare)
