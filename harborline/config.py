"""Runtime configuration — env-driven settings plus the pipeline definition.

Two layers:

- ``ProdConfig`` (pydantic-settings) reads ``HARBORLINE_*`` environment
  variables or a ``.env`` file: environment name, log level, where the
  pipeline definition lives, and the registry credentials.  Credentials are
  held as ``SecretStr`` and only ever handed to a registry session.
- ``load_pipeline_config`` reads the immutable ``PipelineConfig`` from
  ``harborline.toml`` or the ``[tool.harborline]`` table of
  ``pyproject.toml``.

Examples
--------
Override via environment::

    export HARBORLINE_LOG_LEVEL=DEBUG
    export HARBORLINE_REGISTRY_USERNAME=ci
    export HARBORLINE_REGISTRY_PASSWORD=...
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.logging import RichHandler

from harborline.backends.registries import RegistryCredentials
from harborline.models.config import PipelineConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES: tuple[str, ...] = ("harborline.toml", "pyproject.toml")


class ConfigError(RuntimeError):
    """Raised when the pipeline definition cannot be found or is invalid."""


class ProdConfig(BaseSettings):
    """Process-level settings with environment variable overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HARBORLINE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"
    config_file: Path | None = None

    # Scoped to one run; never written to the ledger or the state dir
    registry_username: str = ""
    registry_password: SecretStr = SecretStr("")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def registry_credentials(self) -> RegistryCredentials | None:
        if not self.registry_username:
            return None
        return RegistryCredentials(
            username=self.registry_username, password=self.registry_password
        )


def _find_config_file(start: Path) -> Path:
    for name in DEFAULT_CONFIG_FILES:
        candidate = start / name
        if candidate.is_file():
            if name == "pyproject.toml" and "harborline" not in _read_toml(candidate).get(
                "tool", {}
            ):
                continue
            return candidate
    raise ConfigError(
        f"No pipeline definition in {start} (looked for {', '.join(DEFAULT_CONFIG_FILES)})"
    )


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc


def load_pipeline_config(path: Path | None = None) -> PipelineConfig:
    """Load and validate the pipeline definition.

    With no *path*, ``harborline.toml`` and then ``pyproject.toml`` in the
    current directory are tried.  Relative storage paths in the file are
    resolved against the file's directory.
    """
    path = Path(path) if path is not None else _find_config_file(Path.cwd())
    data = _read_toml(path)
    if path.name == "pyproject.toml":
        data = data.get("tool", {}).get("harborline")
        if data is None:
            raise ConfigError(f"{path} has no [tool.harborline] table")

    base = path.parent.resolve()
    for section, key in (
        (None, "state_dir"),
        ("scan", "cache_dir"),
        ("registry", "path"),
    ):
        table = data if section is None else data.get(section)
        if isinstance(table, dict) and key in table and not Path(table[key]).is_absolute():
            table[key] = str(base / table[key])
    if "state_dir" not in data:
        data["state_dir"] = str(base / ".harborline")

    try:
        config = PipelineConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid pipeline definition in {path}: {exc}") from exc
    logger.debug("Loaded pipeline %s from %s", config.project_name, path)
    return config


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging through a rich console handler."""
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())
    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_path=False,
        log_time_format="%H:%M:%S",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

