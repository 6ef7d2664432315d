"""
Leader lease on top of a :class:`MarkerStore`.

The leadership marker holds a small JSON lease record. Its modification
time is the heartbeat followers poll; there is no push notification, so a
dead leader is noticed at most ``timeout`` seconds after its last renewal.

Manifesto:
    - **Atomic claim:** ``acquire`` relies solely on the store's
      create-if-absent primitive
    - **Polling liveness:** ``is_expired`` compares the heartbeat against
      the clock; clock skew between replicas is not compensated
    - **Fencing:** every record carries an epoch one higher than the
      record it replaced; ``renew`` refuses to refresh a marker that no
      longer names this holder and epoch, so a superseded leader stops
      mutating shared state at its next heartbeat

Examples:
    >>> from openemr_ops.coordination.markers import MemoryMarkerStore
    >>> lease = LeaderLease(MemoryMarkerStore(), holder="web-1", timeout=300)
    >>> lease.acquire()
    True
    >>> lease.epoch
    1
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass

from openemr_ops.core.clock import Clock, SystemClock
from openemr_ops.core.errors import LeadershipLostError
from openemr_ops.core.logging import get_logger
from openemr_ops.coordination.markers import LEADER_MARKER, MarkerStore

logger = get_logger(__name__)

UNKNOWN_HOLDER = "unknown"


@dataclass(frozen=True, slots=True)
class LeaseRecord:
    """Content of the leadership marker."""

    holder: str
    epoch: int
    heartbeat: float

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def parse(cls, content: str | None) -> LeaseRecord | None:
        """Parse marker content.

        Older entrypoints wrote a bare epoch timestamp; such markers are read
        as a lease held by ``unknown`` at epoch 0.
        """
        if content is None:
            return None
        text = content.strip()
        try:
            payload = json.loads(text)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            try:
                return cls(
                    holder=str(payload["holder"]),
                    epoch=int(payload["epoch"]),
                    heartbeat=float(payload["heartbeat"]),
                )
            except (KeyError, TypeError, ValueError):
                pass
        try:
            heartbeat = float(text)
        except ValueError:
            heartbeat = 0.0
        return cls(holder=UNKNOWN_HOLDER, epoch=0, heartbeat=heartbeat)


class LeaderLease:
    """Leadership lease: ``acquire``, ``renew``, ``release``, ``is_expired``."""

    def __init__(
        self,
        store: MarkerStore,
        holder: str,
        timeout: float = 300,
        clock: Clock | None = None,
        marker: str = LEADER_MARKER,
    ) -> None:
        self.store = store
        self.holder = holder
        self.timeout = timeout
        self.clock = clock or SystemClock()
        self.marker = marker
        self._record: LeaseRecord | None = None
        self._seen_epoch = 0

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def held(self) -> bool:
        return self._record is not None

    @property
    def epoch(self) -> int | None:
        return self._record.epoch if self._record else None

    def current(self) -> LeaseRecord | None:
        """Record currently stored in the marker, if any."""
        record = LeaseRecord.parse(self.store.read(self.marker))
        if record is not None:
            self._seen_epoch = max(self._seen_epoch, record.epoch)
        return record

    def age(self) -> float | None:
        """Seconds since the last heartbeat, or None when there is no marker."""
        modified = self.store.modified_at(self.marker)
        if modified is None:
            return None
        return self.clock.time() - modified

    def is_expired(self) -> bool:
        """True when no marker exists or its heartbeat is older than ``timeout``."""
        age = self.age()
        return age is None or age > self.timeout

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def acquire(self) -> bool:
        """Try to claim the lease with an exclusive create."""
        self.current()
        record = LeaseRecord(
            holder=self.holder,
            epoch=self._seen_epoch + 1,
            heartbeat=self.clock.time(),
        )
        if self.store.create_exclusive(self.marker, record.to_json()):
            self._record = record
            self._seen_epoch = record.epoch
            logger.info("lease_acquired", holder=self.holder, epoch=record.epoch)
            return True
        self._record = None
        return False

    def break_expired(self) -> LeaseRecord | None:
        """Remove the marker of a dead holder, remembering its epoch.

        Does nothing unless the marker exists and is still expired when
        re-checked here; another replica may have claimed it meanwhile.
        """
        if self.store.modified_at(self.marker) is None or not self.is_expired():
            return None
        stale = self.current()
        self.store.remove(self.marker)
        if stale is not None:
            logger.warning(
                "lease_broken", stale_holder=stale.holder, stale_epoch=stale.epoch
            )
        return stale

    def renew(self) -> None:
        """Refresh the heartbeat.

        Raises:
            LeadershipLostError: the marker is gone or names another holder/epoch.
        """
        if self._record is None:
            raise LeadershipLostError("Cannot renew a lease that is not held").with_context(
                holder=self.holder
            )
        stored = self.current()
        if stored is None or stored.holder != self.holder or stored.epoch != self._record.epoch:
            lost = self._record
            self._record = None
            raise LeadershipLostError(
                "Leadership marker was taken over by another instance"
            ).with_context(
                holder=self.holder,
                epoch=lost.epoch,
                current_holder=stored.holder if stored else None,
                current_epoch=stored.epoch if stored else None,
            )
        self._record = LeaseRecord(
            holder=self.holder, epoch=self._record.epoch, heartbeat=self.clock.time()
        )
        self.store.write(self.marker, self._record.to_json())

    def release(self) -> None:
        """Drop the lease, removing the marker only if it is still ours."""
        if self._record is None:
            return
        stored = self.current()
        if stored is not None and stored.holder == self.holder and stored.epoch == self._record.epoch:
            self.store.remove(self.marker)
            logger.info("lease_released", holder=self.holder, epoch=self._record.epoch)
        self._record = None
