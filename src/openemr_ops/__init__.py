"""
openemr-ops - container coordination and backup tooling for OpenEMR deployments.

Subpackages:
    core          Errors, step results, retry, clock, logging, settings, commands
    coordination  Container Startup Coordinator (leader election, install/upgrade)
    backup        Backup Chain Manager (full/incremental chains, prune, restore)
    cli           Typer command-line surface (``openemr-ops``)
"""

__version__ = "0.3.0"
