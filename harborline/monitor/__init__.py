"""Harborline status views — pure read-only projections over the Run Ledger.

Modules
-------
projection
    ``MonitorProjection`` reads the ledger and produces ``AttemptSnapshot``
    models, one per build attempt.
renderer
    ``MonitorRenderer`` turns snapshots, build results and scan reports
    into Rich renderables.
"""
