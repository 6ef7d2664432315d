"""Container Startup Coordinator.

Architecture::

    roles.py         Role (authority, operator) from the orchestration hint
    markers.py       MarkerStore protocol; file and in-memory stores
    lease.py         LeaderLease with epoch fencing
    election.py      try_become_leader, follower wait loop
    versions.py      target / code / data version markers
    installer.py     installer run + verification, global settings
    upgrade.py       fsupgrade-<n>.sh runner
    services.py      database and Redis readiness, Redis sessions
    certificates.py  SSL command, client certificates, swarm pieces
    lifecycle.py     StartupCoordinator boot sequence, ExitCode
"""

from openemr_ops.coordination.election import ElectionOutcome, LeaderElection
from openemr_ops.coordination.lease import LeaderLease, LeaseRecord
from openemr_ops.coordination.lifecycle import (
    CoordinatorReport,
    ExitCode,
    StartupCoordinator,
    launch_server,
)
from openemr_ops.coordination.markers import FileMarkerStore, MarkerStore, MemoryMarkerStore
from openemr_ops.coordination.roles import Role, compute_role
from openemr_ops.coordination.settings import CoordinatorSettings

__all__ = [
    "CoordinatorReport",
    "CoordinatorSettings",
    "ElectionOutcome",
    "ExitCode",
    "FileMarkerStore",
    "LeaderElection",
    "LeaderLease",
    "LeaseRecord",
    "MarkerStore",
    "MemoryMarkerStore",
    "Role",
    "StartupCoordinator",
    "compute_role",
    "launch_server",
]
