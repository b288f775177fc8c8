"""External collaborators of a pipeline, wired once per Orchestrator.

``PipelineServices`` is the explicit dependency bundle handed to every
stage.  ``build_services`` picks concrete backends from the pipeline
configuration; tests construct the bundle directly with fakes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from harborline.backends.builders import ArchiveImageBuilder, DockerImageBuilder, ImageBuilder
from harborline.backends.registries import (
    DockerRegistry,
    FileSystemRegistry,
    Registry,
    RegistryCredentials,
)
from harborline.backends.scanners import ScanEngine, TrivyEngine
from harborline.backends.sources import GitSourceControl, LocalSourceTree, SourceControl
from harborline.config import ConfigError, ProdConfig
from harborline.core.image_store import LocalImageStore
from harborline.core.report_collector import ReportCollector
from harborline.gitops.mutator import ConfigRepoMutator
from harborline.models.build import Build
from harborline.models.config import PipelineConfig
from harborline.models.promotion import PromotionRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class Promoter(Protocol):
    def promote(self, build: Build, mapping: Mapping[str, str]) -> PromotionRecord:
        """Record *mapping* (component -> version) for *build* in the config repo."""
        ...


@dataclass
class PipelineServices:
    source: SourceControl
    builder: ImageBuilder
    scanner: ScanEngine
    registry: Registry
    promoter: Promoter
    reports: ReportCollector
    credentials: RegistryCredentials | None = None


def build_services(config: PipelineConfig, prod_config: ProdConfig) -> PipelineServices:
    """Choose backends for *config*.

    The filesystem registry publishes straight out of the local image store,
    so it can only be paired with the archive builder.  Archive images are
    tarballs of the source tree that no scanner can pull, so archive builds
    are scanned in ``fs`` mode.
    """
    image_store = LocalImageStore(config.image_store_path)

    if config.source.kind == "git":
        source: SourceControl = GitSourceControl(timeout=config.source.timeout_seconds)
    else:
        source = LocalSourceTree()

    if config.builder.kind == "docker":
        builder: ImageBuilder = DockerImageBuilder(timeout=config.builder.timeout_seconds)
    else:
        builder = ArchiveImageBuilder(image_store)

    scan_mode = config.scan.mode or ("fs" if config.builder.kind == "archive" else "image")
    if config.builder.kind == "archive" and scan_mode == "image":
        raise ConfigError(
            "Archive images cannot be scanned as images; use scan.mode = \"fs\""
        )
    scanner = TrivyEngine(
        executable=config.scan.executable,
        cache_dir=config.scan.cache_dir,
        mode=scan_mode,
        report_format=config.scan.report_format,
        timeout=config.scan.timeout_seconds,
    )

    if config.registry.kind == "docker":
        if not config.registry.host:
            raise ConfigError("registry.host is required for the docker registry")
        registry: Registry = DockerRegistry(
            config.registry.host, timeout=config.registry.timeout_seconds
        )
    else:
        if config.builder.kind != "archive":
            raise ConfigError("The filesystem registry requires the archive builder")
        registry = FileSystemRegistry(config.registry.path, image_store)

    promoter = ConfigRepoMutator(
        config.promotion,
        config.components,
        workspace_root=config.workspace_path / "promote",
    )

    logger.debug(
        "Services: source=%s builder=%s registry=%s",
        config.source.kind,
        config.builder.kind,
        config.registry.kind,
    )
    return PipelineServices(
        source=source,
        builder=builder,
        scanner=scanner,
        registry=registry,
        promoter=promoter,
        reports=ReportCollector(config.reports_path),
        credentials=prod_config.registry_credentials(),
    )
