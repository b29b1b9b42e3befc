"""
CLI layer for schemashift.

Provides a Typer application whose commands delegate to
:class:`~schemashift.engine.MigrationEngine`.  All migration logic lives in
the engine; this package handles only terminal transport: argument parsing,
coloured output, JSON rendering and exit codes.

Entry point::

    schemashift --help
"""

from schemashift.cli.app import app

__all__ = ["app"]
