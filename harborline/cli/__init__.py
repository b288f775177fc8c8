"""Harborline CLI — Typer-based command-line interface.

Provides the ``harborline`` command with subcommands for running builds,
showing their ledger history and scan reports, and verifying the ledger.

All output uses Rich for formatted terminal display.
"""
