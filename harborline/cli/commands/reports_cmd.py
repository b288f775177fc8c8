"""``harborline reports BUILD_ID`` — show the collected scan reports."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from harborline.cli.commands.common import CONFIG_OPTION_HELP, console, load_config
from harborline.config import ProdConfig
from harborline.core.report_collector import ReportCollector
from harborline.monitor.renderer import MonitorRenderer


def reports_cmd(
    build_id: int = typer.Argument(..., help="Build identifier."),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help=CONFIG_OPTION_HELP
    ),
    raw: Optional[str] = typer.Option(
        None, "--raw", help="Print the raw engine output for this component."
    ),
) -> None:
    """Show severity counts per component for a build."""
    config = load_config(config_file, ProdConfig())
    collector = ReportCollector(config.reports_path)
    reports = collector.collect(build_id)
    if not reports:
        console.print(f"[yellow]No scan reports collected for build {build_id}[/yellow]")
        raise typer.Exit(code=1)

    if raw is not None:
        report = next((r for r in reports if r.component == raw), None)
        if report is None or not report.raw_report:
            console.print(f"[bold red]No raw report for {raw} in build {build_id}[/bold red]")
            raise typer.Exit(code=1)
        console.print(collector.read_raw(report.raw_report).decode("utf-8"), markup=False)
        return

    console.print(MonitorRenderer(console=console).render_reports(build_id, reports))
