"""Adapters for the external tools a build talks to.

Modules
-------
process
    ``run_command`` — subprocess wrapper with timeouts used by every tool.
sources
    ``SourceControl`` protocol with git and local-directory implementations.
builders
    ``ImageBuilder`` protocol with reproducible-archive and docker builders.
scanners
    ``ScanEngine`` protocol with the trivy engine.
registries
    ``Registry`` protocol with filesystem and docker registries.
"""
