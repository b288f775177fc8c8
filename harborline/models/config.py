"""Pipeline configuration models.

``PipelineConfig`` is the immutable configuration passed into the
Orchestrator at construction.  It is loaded from ``harborline.toml`` or the
``[tool.harborline]`` table of ``pyproject.toml`` (see
``harborline.config.load_pipeline_config``).  Secrets never live here; the
registry credentials come from the environment via ``ProdConfig``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from harborline.models.build import Component


class SourceConfig(BaseModel):
    """Where the application source comes from."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["git", "local"] = "local"
    repository: str = "."  # git URL or local directory
    timeout_seconds: float = 300.0


class BuilderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["archive", "docker"] = "archive"
    timeout_seconds: float = 1800.0


class ScanPolicy(BaseModel):
    """Scanner engine settings and the advisory/strict policy."""

    model_config = ConfigDict(frozen=True)

    engine: Literal["trivy"] = "trivy"
    executable: str = "trivy"
    mode: Literal["image", "fs"] | None = None  # None: fs for archive builds, else image
    strict: bool = False
    threshold: int = Field(default=0, ge=0)  # max critical+high findings in strict mode
    cache_dir: Path = Path(".harborline/cache/scanner")
    report_format: Literal["json"] = "json"
    timeout_seconds: float = 600.0


class RegistryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["filesystem", "docker"] = "filesystem"
    host: str = ""  # registry host for docker login
    path: Path = Path(".harborline/registry")  # filesystem registry root
    timeout_seconds: float = 600.0


class PromotionConfig(BaseModel):
    """The declarative config repository the mutator writes to."""

    model_config = ConfigDict(frozen=True)

    repository: str = ""  # git URL (or local path) of the config repository
    branch: str = "main"
    default_descriptor: str = "kustomization.yaml"
    default_field: str = "images[name={repository}].newTag"
    default_value_template: str = "{version}"
    author_name: str = "harborline-bot"
    author_email: str = "harborline-bot@users.noreply.invalid"
    max_attempts: int = Field(default=3, ge=1)
    timeout_seconds: float = 120.0


class PipelineConfig(BaseModel):
    """Project-level configuration for a Harborline pipeline."""

    model_config = ConfigDict(frozen=True)

    project_name: str = "harborline"
    components: list[Component] = []
    source: SourceConfig = SourceConfig()
    builder: BuilderConfig = BuilderConfig()
    scan: ScanPolicy = ScanPolicy()
    registry: RegistryConfig = RegistryConfig()
    promotion: PromotionConfig = PromotionConfig()

    max_workers: int = Field(default=4, ge=1)
    retry_attempts: int = Field(default=1, ge=0)  # retries after the first try
    retry_delay_seconds: float = Field(default=2.0, ge=0)

    state_dir: Path = Path(".harborline")

    @model_validator(mode="after")
    def _unique_components(self) -> PipelineConfig:
        names = [c.name for c in self.components]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate component names: {duplicates}")
        return self

    # Derived storage locations

    @property
    def ledger_db_path(self) -> Path:
        return self.state_dir / "ledger.db"

    @property
    def image_store_path(self) -> Path:
        return self.state_dir / "images"

    @property
    def reports_path(self) -> Path:
        return self.state_dir / "reports"

    @property
    def workspace_path(self) -> Path:
        return self.state_dir / "workspace"

    def component(self, name: str) -> Component:
        for c in self.components:
            if c.name == name:
                return c
        raise KeyError(f"Unknown component {name!r}")
