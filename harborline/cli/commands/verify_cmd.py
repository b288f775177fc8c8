"""``harborline verify BUILD_ID`` — check the ledger hash chain of every attempt."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from harborline.cli.commands.common import CONFIG_OPTION_HELP, console, load_config
from harborline.config import ProdConfig
from harborline.core.run_ledger import LedgerIntegrityError, RunLedger
from harborline.monitor.renderer import MonitorRenderer


def verify_cmd(
    build_id: int = typer.Argument(..., help="Build identifier."),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help=CONFIG_OPTION_HELP
    ),
) -> None:
    """Exit 1 if any attempt of the build has a broken hash chain."""
    config = load_config(config_file, ProdConfig())
    ledger = RunLedger(config.ledger_db_path)
    renderer = MonitorRenderer(console=console)

    run_ids = ledger.get_build_run_ids(build_id)
    if not run_ids:
        console.print(f"[bold red]No attempts recorded for build {build_id}[/bold red]")
        raise typer.Exit(code=1)

    broken = False
    for run_id in run_ids:
        try:
            valid = ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]{exc}[/bold red]")
            valid = False
        renderer.print_chain_verification(run_id, valid)
        broken = broken or not valid

    if broken:
        raise typer.Exit(code=1)
