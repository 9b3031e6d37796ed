"""A lease over time ranges that fails open while its backend is unreachable."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol


@dataclass(frozen=True)
class LeaderElectionRecord:
    """The state written to the lock backend by the current leader."""

    acquire_time: datetime
    renew_time: datetime
    lease_duration_seconds: int
    holder_identity: str = ""


@dataclass
class LeaseOptions:
    """Timing of the leader election. Zero values fall back to the defaults."""

    lease_duration: timedelta = timedelta(seconds=15)
    renew_deadline: timedelta = timedelta(seconds=10)
    retry_period: timedelta = timedelta(seconds=2)

    def __post_init__(self) -> None:
        if not self.lease_duration:
            self.lease_duration = timedelta(seconds=15)
        if not self.renew_deadline:
            self.renew_deadline = timedelta(seconds=10)
        if not self.retry_period:
            self.retry_period = timedelta(seconds=2)


class LockBackend(Protocol):
    def create(self, record: LeaderElectionRecord) -> None: ...

    def update(self, record: LeaderElectionRecord) -> None: ...


class Elector(Protocol):
    def is_leader(self) -> bool: ...

    def run(self, stop_event: threading.Event) -> None: ...


class WrappedLock:
    """Wraps a lock backend and remembers the range of the last successful write."""

    def __init__(self, lock: LockBackend | None) -> None:
        self.inner = lock
        self._mutex = threading.Lock()
        self._start: datetime | None = None
        self._end: datetime | None = None

    def create(self, record: LeaderElectionRecord) -> None:
        """Create a leader election record in the backend."""
        self._write(self.inner.create, record)

    def update(self, record: LeaderElectionRecord) -> None:
        """Update the existing leader election record in the backend."""
        self._write(self.inner.update, record)

    def _write(self, op: Callable[[LeaderElectionRecord], None], record: LeaderElectionRecord) -> None:
        try:
            op(record)
        except Exception as exc:
            self.record_result(record, exc)
            raise
        self.record_result(record, None)

    def record_result(self, record: LeaderElectionRecord, error: BaseException | None) -> None:
        """Cache the record's range if the write that carried it succeeded."""
        if error is not None:
            return
        with self._mutex:
            self._start = record.acquire_time
            self._end = record.renew_time + timedelta(seconds=record.lease_duration_seconds)

    def last_range(self) -> tuple[datetime | None, datetime | None]:
        """Return the start and end of the last successfully written lease."""
        with self._mutex:
            return self._start, self._end


class Lease:
    """A lease on time ranges backed by a leader elector.

    ``elector`` is a factory called with the wrapped lock and this lease; it
    returns an object with ``is_leader()`` and ``run(stop_event)`` that calls
    :meth:`started_leading` and :meth:`stopped_leading` as leadership changes.
    """

    def __init__(
        self,
        elector: Callable[[WrappedLock, "Lease"], Elector],
        lock: LockBackend | WrappedLock,
        options: LeaseOptions | None = None,
    ) -> None:
        self.options = options if options is not None else LeaseOptions()
        self.lock = lock if isinstance(lock, WrappedLock) else WrappedLock(lock)
        self.is_held = False
        self.failing_open = False
        self._on_leader_change: Callable[[], Any] = lambda: None
        self.elector = elector(self.lock, self)

    def range(self, now: datetime | None = None) -> tuple[datetime | None, datetime] | None:
        """Return the (start, end) range held by this replica, or None if not leader.

        If the cached end has passed, the lease fails open and is assumed
        extended by one lease duration from ``now``.
        """
        if not self.elector.is_leader():
            return None
        start, end = self.lock.last_range()
        if now is None:
            now = datetime.now(timezone.utc)
        if end is None or end < now:
            self.failing_open = True
            end = now + self.options.lease_duration
        else:
            self.failing_open = False
        return start, end

    def run(self, stop_event: threading.Event) -> None:
        """Keep trying to acquire and hold the lease until ``stop_event`` is set."""
        while not stop_event.is_set():
            self.elector.run(stop_event)

    def on_leader_change(self, callback: Callable[[], Any]) -> None:
        """Set a callback invoked whenever the leader of the lease changes."""
        self._on_leader_change = callback

    def started_leading(self) -> None:
        self._on_leader_change()
        self.is_held = True

    def stopped_leading(self) -> None:
        self._on_leader_change()
        self.is_held = False