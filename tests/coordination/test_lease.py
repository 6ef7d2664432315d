"""Tests for the leader lease and its fencing epochs."""

import pytest

from openemr_ops.coordination.lease import LeaderLease, LeaseRecord
from openemr_ops.coordination.markers import LEADER_MARKER
from openemr_ops.core.errors import LeadershipLostError


class TestLeaseRecord:
    def test_json_round_trip(self):
        record = LeaseRecord(holder="web-1", epoch=4, heartbeat=1714528800.0)
        assert LeaseRecord.parse(record.to_json()) == record

    def test_bare_timestamp_from_older_entrypoints(self):
        record = LeaseRecord.parse("1714528800\n")
        assert record == LeaseRecord(holder="unknown", epoch=0, heartbeat=1714528800.0)

    def test_empty_marker(self):
        assert LeaseRecord.parse("") == LeaseRecord(holder="unknown", epoch=0, heartbeat=0.0)
        assert LeaseRecord.parse(None) is None


class TestLeaderLease:
    def test_acquire_once(self, store, clock):
        first = LeaderLease(store, "web-1", timeout=300, clock=clock)
        second = LeaderLease(store, "web-2", timeout=300, clock=clock)
        assert first.acquire()
        assert not second.acquire()
        assert first.held and not second.held
        assert first.epoch == 1

    def test_expiry(self, store, clock):
        lease = LeaderLease(store, "web-1", timeout=300, clock=clock)
        assert lease.is_expired()  # no marker
        lease.acquire()
        clock.advance(300)
        assert not lease.is_expired()
        clock.advance(1)
        assert lease.is_expired()

    def test_renew_refreshes_heartbeat(self, store, clock):
        lease = LeaderLease(store, "web-1", timeout=300, clock=clock)
        lease.acquire()
        clock.advance(200)
        lease.renew()
        clock.advance(200)
        assert not lease.is_expired()
        assert lease.current().heartbeat == clock.time() - 200

    def test_takeover_bumps_epoch_and_fences_old_leader(self, store, clock):
        old = LeaderLease(store, "web-1", timeout=300, clock=clock)
        new = LeaderLease(store, "web-2", timeout=300, clock=clock)
        old.acquire()
        clock.advance(301)
        assert new.is_expired()
        new.break_expired()
        assert new.acquire()
        assert new.epoch == 2

        with pytest.raises(LeadershipLostError) as exc_info:
            old.renew()
        assert exc_info.value.context["current_holder"] == "web-2"
        assert not old.held
        # The new leader's marker is untouched.
        assert LeaseRecord.parse(store.read(LEADER_MARKER)).holder == "web-2"

    def test_renew_without_lease(self, store, clock):
        with pytest.raises(LeadershipLostError):
            LeaderLease(store, "web-1", clock=clock).renew()

    def test_release_only_removes_own_marker(self, store, clock):
        old = LeaderLease(store, "web-1", timeout=300, clock=clock)
        old.acquire()
        clock.advance(400)
        new = LeaderLease(store, "web-2", timeout=300, clock=clock)
        new.break_expired()
        new.acquire()
        old.release()
        assert store.exists(LEADER_MARKER)
        new.release()
        assert not store.exists(LEADER_MARKER)

    def test_legacy_marker_is_broken_and_superseded(self, store, clock):
        store.write(LEADER_MARKER, "1700000000")
        clock.advance(301)
        lease = LeaderLease(store, "web-1", timeout=300, clock=clock)
        stale = lease.break_expired()
        assert stale.holder == "unknown"
        assert lease.acquire()
        assert lease.epoch == 1
