"""Process roles.

AUTHORITY is the right to change the application's configured state:
true for singletons, swarm leaders and Kubernetes setup jobs; false for
swarm followers and Kubernetes workers.

OPERATOR is the right to serve traffic: true for singletons, every swarm
member and Kubernetes workers; false for Kubernetes setup jobs.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from openemr_ops.core.errors import ConfigError


class OrchestrationMode(str, Enum):
    """Explicit orchestration hint (the ``K8S`` variable)."""

    SINGLETON = ""
    ADMIN = "admin"
    WORKER = "worker"


@dataclass(frozen=True, slots=True)
class Role:
    """Derived, per-process rights. Never persisted."""

    authority: bool = True
    operator: bool = True

    def with_authority(self, authority: bool) -> Role:
        return replace(self, authority=authority)

    def describe(self) -> str:
        return (
            f"AUTHORITY={'yes' if self.authority else 'no'} "
            f"OPERATOR={'yes' if self.operator else 'no'}"
        )


def compute_role(mode: str | OrchestrationMode | None) -> Role:
    """Compute the starting role from the orchestration hint.

    >>> compute_role("admin")
    Role(authority=True, operator=False)
    >>> compute_role("worker")
    Role(authority=False, operator=True)
    >>> compute_role(None)
    Role(authority=True, operator=True)
    """
    if isinstance(mode, OrchestrationMode):
        parsed = mode
    else:
        try:
            parsed = OrchestrationMode((mode or "").strip().lower())
        except ValueError as exc:
            raise ConfigError(
                f"Unknown orchestration mode {mode!r}; expected 'admin' or 'worker'",
                cause=exc,
            ) from exc

    if parsed is OrchestrationMode.ADMIN:
        return Role(authority=True, operator=False)
    if parsed is OrchestrationMode.WORKER:
        return Role(authority=False, operator=True)
    return Role()
