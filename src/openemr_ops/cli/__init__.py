"""
CLI layer for openemr-ops.

Provides a Typer application whose sub-commands delegate to the
``coordination`` and ``backup`` packages. This package handles terminal
transport only: argument parsing, coloured output, and exit codes.

Entry point::

    openemr-ops --help
"""

from openemr_ops.cli.app import app

__all__ = ["app"]
