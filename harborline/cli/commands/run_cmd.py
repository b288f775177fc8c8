"""``harborline run`` — execute one attempt of a build.

Exits 0 when the build succeeded and was promoted, 1 with a stage-tagged
message when it failed.  Ctrl+C requests cancellation, which is honored at
the next safe point (between stages, or between registry pushes).
"""

from __future__ import annotations

import signal
from pathlib import Path
from typing import Optional

import typer

from harborline.cli.commands.common import CONFIG_OPTION_HELP, console, load_config
from harborline.config import ConfigError, ProdConfig, configure_logging
from harborline.core.cancellation import CancellationToken
from harborline.core.errors import BuildIdentifierError
from harborline.core.orchestrator import Orchestrator
from harborline.monitor.renderer import MonitorRenderer


def run_cmd(
    build_id: int = typer.Option(
        ..., "--build-id", "-b", min=0, help="Monotonically increasing build identifier."
    ),
    revision: str = typer.Option(
        ..., "--revision", "-r", help="Source revision (branch, tag or commit) to build."
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help=CONFIG_OPTION_HELP
    ),
    strict: Optional[bool] = typer.Option(
        None,
        "--strict/--no-strict",
        help="Make vulnerability findings above the threshold fatal.",
    ),
    allow_rollback: bool = typer.Option(
        False,
        "--allow-rollback",
        help="Allow re-running a build older than the newest promoted one.",
    ),
) -> None:
    """Build, scan, publish and promote every component."""
    prod = ProdConfig()
    configure_logging(prod.log_level)
    config = load_config(config_file, prod)

    try:
        orchestrator = Orchestrator(
            config, prod_config=prod, strict_scan=strict, allow_rollback=allow_rollback
        )
        build = orchestrator.new_build(build_id, revision)
    except (ConfigError, ValueError) as exc:
        console.print(f"[bold red]Cannot start build {build_id}:[/bold red] {exc}")
        code = 1 if isinstance(exc, BuildIdentifierError) else 2
        raise typer.Exit(code=code) from exc

    token = CancellationToken()
    previous = signal.signal(signal.SIGINT, lambda *_: token.cancel("interrupted"))
    try:
        result = orchestrator.run(build, cancel_token=token)
    finally:
        signal.signal(signal.SIGINT, previous)

    MonitorRenderer(console=console).print_result(result)
    raise typer.Exit(code=result.exit_code)
