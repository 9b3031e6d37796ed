"""A self-contained storage that exports appended samples through an exporter."""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .distribution import Labels
from .transform import RefSample


@dataclass(frozen=True)
class _Metadata:
    metric: str
    type: str
    help: str = ""


def _gauge_metadata(metric: str) -> _Metadata:
    """Rule results are treated as gauges."""
    return _Metadata(metric=metric, type="gauge")


def _labels_dict(labels: Labels) -> dict[str, str]:
    if isinstance(labels, Mapping):
        return dict(labels)
    return dict(labels)


def _labels_hash(labels: Mapping[str, str]) -> int:
    digest = hashlib.blake2b(digest_size=8)
    for name in sorted(labels):
        digest.update(name.encode())
        digest.update(b"\xff")
        digest.update(labels[name].encode())
        digest.update(b"\xff")
    return int.from_bytes(digest.digest(), "big")


class Storage:
    """Keeps the series-to-labels mapping the exporter needs when no TSDB is present."""

    def __init__(self, exporter: Any) -> None:
        self.exporter = exporter
        self._lock = threading.Lock()
        self._labels: dict[int, dict[str, str]] = {}
        exporter.set_labels_by_id_func(self.labels_by_id)

    def apply_config(self, config: Any) -> None:
        """Apply a new configuration to the exporter."""
        self.exporter.apply_config(config)

    def run(self, stop_event: threading.Event) -> None:
        """Run the exporter's background processing."""
        self.exporter.run(stop_event)

    def labels_by_id(self, ref: int) -> dict[str, str] | None:
        """Return the labels registered for ``ref``, or None."""
        with self._lock:
            labels = self._labels.get(ref)
        return dict(labels) if labels is not None else None

    def _set_labels(self, labels: Labels) -> int:
        lset = _labels_dict(labels)
        ref = _labels_hash(lset)
        with self._lock:
            self._labels[ref] = lset
        return ref

    def _clear_labels(self, samples: Iterable[RefSample]) -> None:
        with self._lock:
            for sample in samples:
                self._labels.pop(sample.ref, None)

    def appender(self) -> "StorageAppender":
        """Return a new appender."""
        return StorageAppender(self)


class StorageAppender:
    """Collects samples and exports them on commit."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self.samples: list[RefSample] = []

    def append(self, ref: int, labels: Labels | None, t: int, v: float) -> int:
        """Add a sample. Returns 0 as there is no fast path for later appends."""
        if labels is None:
            raise ValueError("label set is nil")
        self.samples.append(RefSample(ref=self.storage._set_labels(labels), t=t, v=v))
        return 0

    def commit(self) -> None:
        """Export the collected samples as gauges and forget their labels."""
        self.storage.exporter.export(_gauge_metadata, self.samples, None)
        self.storage._clear_labels(self.samples)