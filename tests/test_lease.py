import threading
from datetime import datetime, timedelta, timezone

import pytest

from promexport.lease import Lease, LeaderElectionRecord, LeaseOptions, WrappedLock


def ts(seconds):
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


RECORD = LeaderElectionRecord(
    acquire_time=ts(100), renew_time=ts(200), lease_duration_seconds=20
)


class FakeBackend:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def create(self, record):
        self.calls.append(("create", record))
        if self.fail:
            raise ConnectionError("backend down")

    def update(self, record):
        self.calls.append(("update", record))
        if self.fail:
            raise ConnectionError("backend down")


class FakeElector:
    def __init__(self, lock, lease):
        self.lock = lock
        self.lease = lease
        self.leader = False
        self.runs = 0

    def is_leader(self):
        return self.leader

    def run(self, stop_event):
        self.runs += 1
        self.leader = True
        self.lease.started_leading()
        if self.runs >= 3:
            stop_event.set()


def test_record_result_ok():
    wl = WrappedLock(None)
    wl.record_result(RECORD, None)
    assert wl.last_range() == (ts(100), ts(220))


def test_record_result_with_error():
    wl = WrappedLock(None)
    wl.record_result(RECORD, ValueError("test"))
    assert wl.last_range() == (None, None)


def test_create_success_updates_range():
    backend = FakeBackend()
    wl = WrappedLock(backend)
    wl.create(RECORD)
    assert backend.calls == [("create", RECORD)]
    assert wl.last_range() == (ts(100), ts(220))


def test_update_failure_reraises_and_keeps_range():
    backend = FakeBackend(fail=True)
    wl = WrappedLock(backend)
    with pytest.raises(ConnectionError):
        wl.update(RECORD)
    assert wl.last_range() == (None, None)


def test_options_defaults_for_zero():
    opts = LeaseOptions(lease_duration=timedelta(0), retry_period=timedelta(0))
    assert opts.lease_duration == timedelta(seconds=15)
    assert opts.retry_period == timedelta(seconds=2)
    assert opts.renew_deadline == timedelta(seconds=10)


def test_range_not_leader():
    lease = Lease(FakeElector, FakeBackend())
    assert lease.range(now=ts(150)) is None


def test_range_within_lease():
    lease = Lease(FakeElector, FakeBackend())
    lease.lock.update(RECORD)
    lease.elector.leader = True
    assert lease.range(now=ts(210)) == (ts(100), ts(220))
    assert lease.failing_open is False


def test_range_fails_open_after_expiry():
    lease = Lease(FakeElector, FakeBackend(), LeaseOptions(lease_duration=timedelta(seconds=30)))
    lease.lock.update(RECORD)
    lease.elector.leader = True
    assert lease.range(now=ts(300)) == (ts(100), ts(330))
    assert lease.failing_open is True


def test_run_loops_until_stopped_and_invokes_callback():
    lease = Lease(FakeElector, FakeBackend())
    changes = []
    lease.on_leader_change(lambda: changes.append("change"))
    lease.run(threading.Event())
    assert lease.elector.runs == 3
    assert changes == ["change"] * 3
    assert lease.is_held is True


def test_stopped_leading_clears_held():
    lease = Lease(FakeElector, FakeBackend())
    changes = []
    lease.on_leader_change(lambda: changes.append(1))
    lease.started_leading()
    lease.stopped_leading()
    assert lease.is_held is False
    assert changes == [1, 1]


def test_run_returns_immediately_when_stopped():
    lease = Lease(FakeElector, FakeBackend())
    stop = threading.Event()
    stop.set()
    lease.run(stop)
    assert lease.elector.runs == 0