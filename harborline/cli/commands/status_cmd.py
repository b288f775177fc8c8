"""``harborline status BUILD_ID`` — every recorded attempt of a build.

A pure projection of the run ledger; nothing is recomputed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from harborline.cli.commands.common import CONFIG_OPTION_HELP, console, load_config
from harborline.config import ProdConfig
from harborline.core.run_ledger import RunLedger
from harborline.models.stages import stage_definitions
from harborline.monitor.projection import MonitorProjection
from harborline.monitor.renderer import MonitorRenderer


def status_cmd(
    build_id: int = typer.Argument(..., help="Build identifier."),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help=CONFIG_OPTION_HELP
    ),
) -> None:
    """Show the stage states of each attempt of a build."""
    config = load_config(config_file, ProdConfig())
    if not config.ledger_db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {config.ledger_db_path}")
        raise typer.Exit(code=1)

    ledger = RunLedger(config.ledger_db_path)
    projection = MonitorProjection(
        ledger, stage_definitions(strict_scan=config.scan.strict)
    )
    history = projection.build_history(build_id)
    if not history:
        console.print(f"[bold red]No attempts recorded for build {build_id}[/bold red]")
        known = ledger.get_all_build_ids()
        if known:
            console.print(f"[dim]Recent builds: {', '.join(str(b) for b in known[:10])}[/dim]")
        raise typer.Exit(code=1)

    MonitorRenderer(console=console).print_history(history)
