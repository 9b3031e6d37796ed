"""Bounded per-shard sample queues used to assemble export batches."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class QueueEntry:
    """A queued sample together with the hash of the series it belongs to."""

    hash: int
    sample: Any


class Queue:
    """A fixed-capacity FIFO queue that rejects entries once it is full."""

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("queue size must not be negative")
        self.capacity = size
        self._entries: deque[QueueEntry] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, entry: QueueEntry) -> bool:
        """Append an entry; return False if the queue is already full."""
        if len(self._entries) >= self.capacity:
            return False
        self._entries.append(entry)
        return True

    def peek(self) -> QueueEntry | None:
        """Return the oldest entry without removing it, or None if empty."""
        return self._entries[0] if self._entries else None

    def remove(self) -> bool:
        """Drop the oldest entry; return False if the queue was empty."""
        if not self._entries:
            return False
        self._entries.popleft()
        return True


class Batch(Protocol):
    """What a shard needs from the batch it fills."""

    def full(self) -> bool: ...

    def add(self, sample: Any) -> None: ...

    def add_shard(self, shard: "Shard") -> None: ...


class Shard:
    """Holds a queue of samples for a subset of series."""

    def __init__(self, queue_size: int) -> None:
        self.lock = threading.Lock()
        self.queue = Queue(queue_size)
        self.pending = False
        self.dropped = 0

    def enqueue(self, hash_: int, sample: Any) -> None:
        """Queue a sample; it is dropped and counted if the queue is full."""
        with self.lock:
            if not self.queue.add(QueueEntry(hash_, sample)):
                self.dropped += 1

    def fill(self, batch: Batch) -> tuple[int, int]:
        """Move samples into the batch until it is full or a series repeats.

        Returns the number of samples taken and the number still queued.
        """
        with self.lock:
            if self.pending:
                return 0, len(self.queue)

            seen: set[int] = set()
            taken = 0
            while not batch.full():
                entry = self.queue.peek()
                if entry is None or entry.hash in seen:
                    break
                self.queue.remove()
                batch.add(entry.sample)
                seen.add(entry.hash)
                taken += 1

            if taken:
                self.set_pending(True)
                batch.add_shard(self)
            return taken, len(self.queue)

    def set_pending(self, pending: bool) -> None:
        """Set the pending flag; setting it to its current value is a bug."""
        if self.pending == pending:
            raise RuntimeError(f"pending set to {pending} while it already was")
        self.pending = pending

    def notify_done(self) -> None:
        """Mark the batch this shard contributed to as sent."""
        with self.lock:
            self.set_pending(False)