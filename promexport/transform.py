"""Conversion of Prometheus samples into time series ready for export."""

from __future__ import annotations

import dataclasses
import math
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Protocol, Sequence, Tuple

from .distribution import (
    Distribution,
    HistogramAccumulator,
    InvalidHistogramError,
    Labels,
    RefExemplar,
    Timestamp,
    exemplars_discarded,
    get_timestamp,
    samples_discarded,
)

METRIC_NAME_LABEL = "__name__"
BUCKET_LABEL = "le"
METRIC_TYPE_HISTOGRAM = "histogram"

# Prometheus marks series as stale with a NaN carrying this exact bit pattern.
STALE_NAN_BITS = 0x7FF0000000000002
_STALE_NAN_BYTES = STALE_NAN_BITS.to_bytes(8, "big")
STALE_NAN: float = struct.unpack(">d", _STALE_NAN_BYTES)[0]


def _is_stale_nan(v: float) -> bool:
    return struct.pack(">d", v) == _STALE_NAN_BYTES


class MetricSuffix(str, Enum):
    """Suffixes of the series that make up a histogram."""

    BUCKET = "_bucket"
    SUM = "_sum"
    COUNT = "_count"


def metric_suffix(suffix: str) -> MetricSuffix | None:
    """Classify the remainder of a series name after its metric name."""
    try:
        return MetricSuffix(suffix)
    except ValueError:
        return None


def is_histogram_series(metric: str, name: str) -> bool:
    """True if ``name`` is a bucket, sum or count series of histogram ``metric``."""
    if not name.startswith(metric):
        return False
    return metric_suffix(name[len(metric):]) is not None


@dataclass(frozen=True)
class RefSample:
    """A sample value at millisecond time ``t`` for the series ``ref``."""

    ref: int
    t: int
    v: float


@dataclass(frozen=True)
class Point:
    """A single value over a time interval."""

    end_time: Timestamp
    value: float | Distribution
    start_time: Timestamp | None = None


@dataclass(frozen=True)
class TimeSeries:
    """A monitored-resource time series with its points."""

    resource_type: str
    resource_labels: dict[str, str]
    metric_type: str
    metric_labels: dict[str, str]
    metric_kind: str
    value_type: str
    points: list[Point] = field(default_factory=list)


@dataclass(frozen=True)
class HashedSeries:
    """A time series together with the hash identifying its series."""

    hash: int
    proto: TimeSeries


MetadataFunc = Callable[[str], Any]


class _Metadata(Protocol):
    metric: str
    type: str


class _SeriesEntry(Protocol):
    labels: Labels
    metadata: _Metadata
    gauge: HashedSeries | None
    cumulative: HashedSeries | None
    dropped: bool


class _SeriesCache(Protocol):
    def get(
        self, sample: RefSample, external_labels: Labels, metadata: MetadataFunc
    ) -> _SeriesEntry | None: ...

    def get_reset_adjusted(self, ref: int, t: int, v: float) -> Tuple[int, float] | None: ...


Exemplars = Mapping[int, RefExemplar]


def _label_get(labels: Labels, name: str) -> str:
    if isinstance(labels, Mapping):
        return labels.get(name, "")
    for key, value in labels:
        if key == name:
            return value
    return ""


def _discard_exemplar(ref: int, exemplars: Exemplars | None, reason: str) -> None:
    if exemplars and ref in exemplars:
        exemplars_discarded[reason] += 1


def _discard(ref: int, exemplars: Exemplars | None, reason: str) -> None:
    samples_discarded[reason] += 1
    _discard_exemplar(ref, exemplars, reason)


def _parse_bound(text: str) -> float:
    # Reject what Python accepts but the exposition format does not.
    if not text or text != text.strip() or "_" in text:
        raise ValueError(f"malformed bucket bound {text!r}")
    return float(text)


def _with_remaining(exc: InvalidHistogramError, remaining: Sequence[RefSample]) -> InvalidHistogramError:
    exc.remaining = remaining  # type: ignore[attr-defined]
    return exc


class SampleBuilder:
    """Turns batches of samples into time series, one step at a time."""

    def __init__(self, cache: _SeriesCache) -> None:
        self.cache = cache
        self._dists: dict[int, HistogramAccumulator] = {}

    def close(self) -> None:
        """Discard all partially accumulated histograms."""
        for dist in self._dists.values():
            dist.reset()
        self._dists.clear()

    def next(
        self,
        metadata: MetadataFunc,
        external_labels: Labels,
        samples: Sequence[RefSample],
        exemplars: Exemplars | None,
    ) -> tuple[list[HashedSeries], Sequence[RefSample]]:
        """Convert the next sample (or histogram) and return the series and the rest.

        The returned list is empty for samples that could not be converted.
        Raises InvalidHistogramError with a ``remaining`` attribute holding the
        unconsumed samples if a histogram is invalid.
        """
        if not samples:
            raise ValueError("no samples given")
        sample = samples[0]
        tail = samples[1:]

        # Staleness markers are not supported by the backend.
        if _is_stale_nan(sample.v):
            _discard(sample.ref, exemplars, "staleness-marker")
            return [], tail

        entry = self.cache.get(sample, external_labels, metadata)
        if entry is None:
            _discard(sample.ref, exemplars, "no-cache-series-found")
            return [], tail
        if entry.dropped:
            return [], tail

        result: list[HashedSeries] = []
        gauge = entry.gauge
        if gauge is not None and gauge.proto is not None:
            point = Point(end_time=get_timestamp(sample.t), value=sample.v)
            result.append(HashedSeries(gauge.hash, dataclasses.replace(gauge.proto, points=[point])))

        cumulative = entry.cumulative
        if cumulative is not None and cumulative.proto is not None:
            value: float | Distribution | None = None
            reset_timestamp = 0
            if entry.metadata.type == METRIC_TYPE_HISTOGRAM:
                value, reset_timestamp, tail = self.build_distribution(
                    entry.metadata.metric,
                    entry.labels,
                    samples,
                    exemplars,
                    external_labels,
                    metadata,
                )
            else:
                adjusted = self.cache.get_reset_adjusted(sample.ref, sample.t, sample.v)
                if adjusted is not None:
                    reset_timestamp, value = adjusted
                    _discard_exemplar(sample.ref, exemplars, "counters-unsupported")
            # No value if this was the first sample of a cumulative series or a
            # histogram could not be completed from the batch.
            if value is not None:
                point = Point(
                    start_time=get_timestamp(reset_timestamp),
                    end_time=get_timestamp(sample.t),
                    value=value,
                )
                result.append(
                    HashedSeries(cumulative.hash, dataclasses.replace(cumulative.proto, points=[point]))
                )
        return result, tail

    def build_distribution(
        self,
        metric: str,
        match_labels: Labels,
        samples: Sequence[RefSample],
        exemplars: Exemplars | None,
        external_labels: Labels,
        metadata: MetadataFunc,
    ) -> tuple[Distribution | None, int, Sequence[RefSample]]:
        """Consume histogram series until one distribution is complete.

        Returns the distribution (or None), its reset timestamp and the
        remaining samples.
        """
        consumed = 0
        for s in samples:
            entry = self.cache.get(s, external_labels, metadata)
            if entry is None:
                consumed += 1
                _discard(s.ref, exemplars, "no-cache-series-found")
                continue
            name = _label_get(entry.labels, METRIC_NAME_LABEL)
            # All series of a histogram metric are grouped together, so a
            # foreign series ends the histogram.
            if not is_histogram_series(metric, name):
                break
            consumed += 1

            key = entry.cumulative.hash
            dist = self._dists.get(key)
            if dist is None:
                dist = HistogramAccumulator(timestamp=s.t)
                self._dists[key] = dist
            if s.t != dist.timestamp:
                dist.skip = True
                _discard(s.ref, exemplars, "mismatching-histogram-timestamps")
                continue

            adjusted = self.cache.get_reset_adjusted(s.ref, s.t, s.v)
            if adjusted is None:
                # A series seen for the first time has no reset timestamp yet.
                dist.skip = True
                continue
            reset_ts, v = adjusted

            suffix = metric_suffix(name[len(metric):])
            if suffix is MetricSuffix.SUM:
                dist.has_sum, dist.sum = True, v
            elif suffix is MetricSuffix.COUNT:
                dist.has_count, dist.count = True, v
                # The count series is authoritative for the reset timestamp.
                dist.reset_timestamp = reset_ts
            else:
                try:
                    bound = _parse_bound(_label_get(entry.labels, BUCKET_LABEL))
                except ValueError:
                    _discard(s.ref, exemplars, "malformed-bucket-le-label")
                    continue
                if not math.isfinite(v):
                    _discard(s.ref, exemplars, "NaN-bucket-value")
                    continue
                if not dist.has_inf_bucket:
                    dist.has_inf_bucket = math.isinf(bound) and bound > 0
                dist.bounds.append(bound)
                dist.values.append(int(v))
                if exemplars and s.ref in exemplars:
                    dist.exemplars.append(exemplars[s.ref])

            if not dist.complete():
                continue
            remaining = samples[consumed:]
            try:
                built = dist.build(entry.labels)
            except InvalidHistogramError as exc:
                raise _with_remaining(exc, remaining) from None
            return built, dist.reset_timestamp, remaining

        if consumed == 0:
            _discard(samples[0].ref, exemplars, "zero-histogram-samples-processed")
            raise _with_remaining(
                InvalidHistogramError("no sample consumed for histogram"), samples[1:]
            )
        return None, 0, samples[consumed:]