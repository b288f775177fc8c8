"""Helpers shared by the CLI commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from harborline.config import ConfigError, ProdConfig, load_pipeline_config
from harborline.models.config import PipelineConfig

console = Console()

CONFIG_OPTION_HELP = (
    "Pipeline definition (harborline.toml or pyproject.toml). "
    "Defaults to HARBORLINE_CONFIG_FILE, then the current directory."
)


def load_config(config_file: Path | None, prod: ProdConfig) -> PipelineConfig:
    """Load the pipeline definition or exit with code 2."""
    try:
        return load_pipeline_config(config_file or prod.config_file)
    except ConfigError as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc
