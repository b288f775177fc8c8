"""Main Typer application — imports and registers all CLI commands.

Entry point: ``harborline`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from harborline.cli.commands.reports_cmd import reports_cmd
from harborline.cli.commands.run_cmd import run_cmd
from harborline.cli.commands.status_cmd import status_cmd
from harborline.cli.commands.verify_cmd import verify_cmd

app = typer.Typer(
    name="harborline",
    help="Harborline: build, scan, publish and promote container images through GitOps.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="run", help="Run one attempt of a build.")(run_cmd)
app.command(name="status", help="Show the recorded attempts of a build.")(status_cmd)
app.command(name="reports", help="Show the scan reports of a build.")(reports_cmd)
app.command(name="verify", help="Verify the ledger hash chain of a build.")(verify_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
