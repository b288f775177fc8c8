"""Vulnerability scanning engine backends.

An engine is invoked with an image reference (or, in ``fs`` mode, the
component's source directory) and a report-format directive, and returns the
raw report plus finding counts by severity.  Any failure to *run* the engine
surfaces as ``ScanEngineUnavailable``; policy decisions are left to the scan
stage.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol, runtime_checkable

from harborline.backends.process import CommandError, CommandUnavailableError, run_command
from harborline.core.errors import ScanEngineUnavailable
from harborline.models.reports import SEVERITY_LEVELS, SeverityCounts

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScanTarget:
    component: str
    image_ref: str
    source_path: Path | None = None


@dataclass(frozen=True, slots=True)
class EngineReport:
    raw: bytes
    counts: SeverityCounts
    db_version: str = ""


@runtime_checkable
class ScanEngine(Protocol):
    name: str

    def scan(self, target: ScanTarget) -> EngineReport:
        """Scan *target*; raise ``ScanEngineUnavailable`` if the engine cannot run."""
        ...


def count_trivy_severities(document: dict[str, Any]) -> SeverityCounts:
    """Count vulnerabilities by severity in a Trivy JSON report."""
    counts = dict.fromkeys(SEVERITY_LEVELS, 0)
    for result in document.get("Results") or []:
        for vuln in result.get("Vulnerabilities") or []:
            level = str(vuln.get("Severity", "unknown")).lower()
            counts[level if level in counts else "unknown"] += 1
    return SeverityCounts(**counts)


class TrivyEngine:
    """Runs ``trivy`` with a shared, persistent cache directory.

    The cache is keyed by trivy's own vulnerability-database version, so
    every build reuses the same definitions instead of downloading them.
    """

    name = "trivy"

    def __init__(
        self,
        *,
        executable: str = "trivy",
        cache_dir: Path = Path(".harborline/cache/scanner"),
        mode: Literal["image", "fs"] = "image",
        report_format: Literal["json"] = "json",
        timeout: float = 600.0,
    ) -> None:
        self._exe = executable
        self._cache_dir = Path(cache_dir)
        self._mode = mode
        self._format = report_format
        self._timeout = timeout

    def _target_arg(self, target: ScanTarget) -> str:
        if self._mode == "fs":
            if target.source_path is None:
                raise ScanEngineUnavailable(
                    f"fs scan of {target.component} needs a source path",
                    component=target.component,
                )
            return str(target.source_path)
        return target.image_ref

    def scan(self, target: ScanTarget) -> EngineReport:
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        args = [
            self._exe,
            self._mode,
            "--cache-dir",
            str(self._cache_dir),
            "--format",
            self._format,
            "--quiet",
            "--timeout",
            f"{int(self._timeout)}s",
            self._target_arg(target),
        ]
        try:
            # Give trivy its own timeout first, then a margin before killing it
            result = run_command(args, timeout=self._timeout + 30)
        except (CommandError, CommandUnavailableError) as exc:
            raise ScanEngineUnavailable(
                f"{self.name} could not scan {target.image_ref}: {exc}",
                component=target.component,
            ) from exc

        try:
            document = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ScanEngineUnavailable(
                f"{self.name} returned unreadable output for {target.image_ref}",
                component=target.component,
            ) from exc

        return EngineReport(
            raw=result.stdout.encode("utf-8"),
            counts=count_trivy_severities(document),
            db_version=self.db_version(),
        )

    def db_version(self) -> str:
        """The vulnerability-database version in the shared cache, if known."""
        try:
            result = run_command(
                [self._exe, "version", "--format", "json", "--cache-dir", str(self._cache_dir)],
                timeout=30,
            )
            info = json.loads(result.stdout)
        except (CommandError, CommandUnavailableError, json.JSONDecodeError):
            return ""
        db = info.get("VulnerabilityDB") or {}
        return str(db.get("Version", ""))
