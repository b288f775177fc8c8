"""Rich terminal renderer for build status and scan reports.

Color scheme
------------
- green     : PASSED
- red       : FAILED
- yellow    : RUNNING / ADVISORY
- dim       : NOT_STARTED
- bold red  : BLOCKED
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from harborline.models.stages import StageState

if TYPE_CHECKING:
    from harborline.models.reports import ScanReport
    from harborline.models.results import BuildResult
    from harborline.monitor.projection import AttemptSnapshot


_STATE_STYLES: dict[StageState, str] = {
    StageState.PASSED: "bold green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.ADVISORY: "yellow",
    StageState.NOT_STARTED: "dim",
    StageState.BLOCKED: "bold red",
}

_STATE_LABELS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.ADVISORY: "[yellow]ADVISORY[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.BLOCKED: "[bold red]BLOCKED[/bold red]",
}


class MonitorRenderer:
    """Renders snapshots, build results and reports as Rich output."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Attempt snapshots
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: AttemptSnapshot) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Stage", min_width=16)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Details", min_width=20)
        table.add_column("Refs", justify="right", width=5)

        for i, stage in enumerate(snapshot.stages):
            style = _STATE_STYLES.get(stage.state, "")
            details = []
            if stage.detail:
                details.append(Text(stage.detail, style="red" if stage.state == StageState.FAILED else ""))
            if stage.entered_at:
                details.append(Text(stage.entered_at.strftime("%H:%M:%S"), style="dim"))
            table.add_row(
                str(i),
                Text(stage.display_name, style=style),
                _STATE_LABELS.get(stage.state, stage.state.value),
                Text(" | ").join(details) if details else Text("-", style="dim"),
                str(len(stage.artifact_refs)),
            )

        chain = "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        summary = (
            f"[bold]Run:[/bold] {snapshot.run_id}  |  "
            f"[bold]Progress:[/bold] {snapshot.completed_count}/{snapshot.total_stages}  |  "
            f"[bold]Chain:[/bold] {chain}"
        )
        if snapshot.advisory_stages:
            names = ", ".join(s.stage_id for s in snapshot.advisory_stages)
            summary += f"  |  [yellow]Advisory:[/yellow] {names}"
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title=f"[bold]Build {snapshot.build_id} attempt {snapshot.attempt}[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
        )

    def print_history(self, snapshots: list[AttemptSnapshot]) -> None:
        for snapshot in snapshots:
            self.console.print(self.render_snapshot(snapshot))

    # ------------------------------------------------------------------
    # Build results
    # ------------------------------------------------------------------

    def print_result(self, result: BuildResult) -> None:
        build = result.build
        for advisory in result.advisories:
            self.console.print(
                Text.assemble(("advisory ", "yellow"), f"{advisory.stage_id}: {advisory.detail}")
            )
        if result.succeeded:
            line = f"[green]Build {build.build_id} succeeded[/green] ({result.run_id})"
            if result.promotion is not None:
                line += f", promoted at {result.promotion.commit[:12]}"
            self.console.print(line, highlight=False)
            return

        failure = build.failure
        if failure is None:
            self.console.print(f"[bold red]Build {build.build_id} failed[/bold red]")
            return
        where = f" ({failure.component})" if failure.component else ""
        # Text.assemble keeps the "[s1_build]" tag from being read as markup
        self.console.print(
            Text.assemble(
                (f"Build {build.build_id} failed ", "bold red"),
                f"[{failure.stage}]{where}: {failure.cause}",
            )
        )

    # ------------------------------------------------------------------
    # Scan reports
    # ------------------------------------------------------------------

    def render_reports(self, build_id: int, reports: list[ScanReport]) -> Table:
        table = Table(title=f"Scan reports for build {build_id}", header_style="bold cyan")
        table.add_column("Component")
        table.add_column("Image")
        for level in ("critical", "high", "medium", "low"):
            table.add_column(level.capitalize(), justify="right")
        table.add_column("Engine DB")
        table.add_column("Note")

        for r in reports:
            table.add_row(
                r.component,
                r.image_ref,
                Text(str(r.counts.critical), style="bold red" if r.counts.critical else "dim"),
                Text(str(r.counts.high), style="red" if r.counts.high else "dim"),
                str(r.counts.medium),
                str(r.counts.low),
                r.db_version or "-",
                Text("engine unavailable", style="yellow") if r.warning else Text(""),
            )
        return table

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
