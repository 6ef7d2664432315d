"""
Leader election and the follower wait loop.

Replicas sharing a volume race for the leadership marker at boot. The
winner (authority) performs setup; everyone else waits for the completion
marker, taking over if the leader's heartbeat goes stale.

Architecture:
    ::

        try_become_leader()
            completion marker present ─────────────► follower (setup done)
            lease expired or absent ─► break lease, drop in-progress marker
            exclusive create ─── ok ─► leader
                              └─ lost ► follower

        wait_for_completion(is_configured)
            every poll_interval, up to max_wait:
                completion marker present ─► done
                lease expired ─► try_become_leader()  (promotion)
            on timeout: one final try_become_leader()
            still no marker: is_configured() ─► synthesise completion marker

Delays are bounded: a follower notices completion at most one poll interval
late and a dead leader at most ``timeout`` seconds late.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from openemr_ops.core.clock import Clock, SystemClock
from openemr_ops.core.logging import get_logger
from openemr_ops.coordination.lease import LeaderLease
from openemr_ops.coordination.markers import (
    COMPLETED_MARKER,
    INITIATED_MARKER,
    MarkerStore,
)

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ElectionOutcome:
    """Result of the follower wait loop."""

    authority: bool
    completed: bool
    promoted: bool = False
    synthesized: bool = False
    waited: float = 0.0


class LeaderElection:
    """Election algorithm over a :class:`MarkerStore` and a :class:`LeaderLease`."""

    def __init__(
        self,
        store: MarkerStore,
        lease: LeaderLease,
        clock: Clock | None = None,
        poll_interval: float = 10,
        max_wait: float = 600,
    ) -> None:
        self.store = store
        self.lease = lease
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.max_wait = max_wait

    @property
    def completed(self) -> bool:
        return self.store.exists(COMPLETED_MARKER)

    @property
    def authority(self) -> bool:
        return self.lease.held

    def try_become_leader(self) -> bool:
        """Attempt to claim leadership. Safe to call repeatedly.

        Returns True when this process holds the lease afterwards.
        """
        if self.completed:
            if self.lease.held:
                self.lease.release()
            logger.info("setup_already_complete", authority=False)
            return False

        if self.lease.held and not self.lease.is_expired():
            return True

        if self.lease.is_expired():
            if self.store.modified_at(self.lease.marker) is not None:
                logger.warning(
                    "leader_stale", timeout_s=self.lease.timeout, age_s=self.lease.age()
                )
                self.lease.break_expired()
            self.store.remove(INITIATED_MARKER)

        if self.lease.acquire():
            logger.info("leader_claimed", holder=self.lease.holder, epoch=self.lease.epoch)
            return True
        logger.info("follower", holder=self.lease.holder)
        return False

    def heartbeat(self) -> None:
        """Renew the lease if this process holds it.

        Raises:
            LeadershipLostError: another instance took over the marker.
        """
        if self.lease.held:
            self.lease.renew()

    def wait_for_completion(self, is_configured: Callable[[], bool]) -> ElectionOutcome:
        """Follower loop; returns once setup completed, this process was promoted, or time ran out."""
        waited = 0.0
        logger.info("waiting_for_leader", max_wait_s=self.max_wait, poll_s=self.poll_interval)

        while not self.completed and waited < self.max_wait:
            if self.lease.is_expired() and self.try_become_leader():
                logger.info("promoted_after_leader_failure", waited_s=waited)
                return ElectionOutcome(authority=True, completed=False, promoted=True, waited=waited)
            self.clock.sleep(self.poll_interval)
            waited += self.poll_interval

        if self.completed:
            return ElectionOutcome(authority=False, completed=True, waited=waited)

        if self.try_become_leader():
            logger.info("promoted_after_wait", waited_s=waited)
            return ElectionOutcome(authority=True, completed=False, promoted=True, waited=waited)

        if not self.completed and is_configured():
            self.store.touch(COMPLETED_MARKER)
            logger.warning("completion_marker_synthesized", waited_s=waited)
            return ElectionOutcome(
                authority=False, completed=True, synthesized=True, waited=waited
            )

        return ElectionOutcome(authority=False, completed=self.completed, waited=waited)

    def mark_in_progress(self) -> None:
        self.store.touch(INITIATED_MARKER)

    def mark_completed(self) -> None:
        """Create the completion marker and give up the lease."""
        self.store.touch(COMPLETED_MARKER)
        self.lease.release()
        logger.info("swarm_setup_completed")

    def reset(self) -> list[str]:
        """Administrative reset: remove leadership, in-progress and completion markers."""
        removed = []
        for name in (self.lease.marker, INITIATED_MARKER, COMPLETED_MARKER):
            if self.store.exists(name):
                removed.append(name)
            self.store.remove(name)
        logger.warning("swarm_markers_reset", removed=removed)
        return removed
