"""Conversion of accumulated histogram series into distribution values."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Tuple, Union

Labels = Union[Mapping[str, str], Iterable[Tuple[str, str]]]

PROJECT_ID_LABEL = "project_id"
TRACE_ID_LABEL = "trace_id"
SPAN_ID_LABEL = "span_id"
SPAN_CONTEXT_FORMAT = "projects/{project}/traces/{trace}/spans/{span}"

# Samples and exemplars discarded during data model conversion, keyed by reason.
samples_discarded: Counter[str] = Counter()
exemplars_discarded: Counter[str] = Counter()


def _label_items(labels: Labels) -> Iterator[tuple[str, str]]:
    if isinstance(labels, Mapping):
        return iter(labels.items())
    return iter(labels)


def _format_labels(labels: Labels) -> str:
    inner = ", ".join(f'{name}="{value}"' for name, value in _label_items(labels))
    return "{" + inner + "}"


@dataclass(frozen=True)
class Timestamp:
    """A point in time as whole seconds plus nanoseconds."""

    seconds: int = 0
    nanos: int = 0


def get_timestamp(t: int) -> Timestamp:
    """Convert a millisecond timestamp into seconds and nanoseconds.

    Division truncates toward zero, so negative inputs yield negative parts.
    """
    seconds, millis = divmod(abs(t), 1000)
    sign = -1 if t < 0 else 1
    return Timestamp(seconds=sign * seconds, nanos=sign * millis * 1_000_000)


@dataclass(frozen=True)
class RefExemplar:
    """An exemplar attached to the series with the given reference."""

    ref: int
    t: int
    v: float
    labels: Labels = ()


@dataclass(frozen=True)
class SpanContext:
    """An exemplar attachment pointing at a trace span."""

    span_name: str


@dataclass(frozen=True)
class DroppedLabels:
    """An exemplar attachment carrying labels not otherwise represented."""

    label: dict[str, str]


@dataclass(frozen=True)
class Exemplar:
    """An exemplar of a distribution value."""

    value: float
    timestamp: Timestamp
    attachments: list[SpanContext | DroppedLabels] = field(default_factory=list)


@dataclass(frozen=True)
class Distribution:
    """A distribution value with explicit bucket bounds."""

    count: int
    mean: float
    sum_of_squared_deviation: float
    bounds: list[float]
    bucket_counts: list[int]
    exemplars: list[Exemplar] = field(default_factory=list)


class InvalidHistogramError(ValueError):
    """Raised when accumulated histogram series violate histogram invariants."""


def build_exemplar_attachments(labels: Labels) -> list[SpanContext | DroppedLabels]:
    """Turn exemplar labels into attachments.

    A span context is built if project, trace and span IDs are all present;
    every other label goes into a dropped-labels attachment.
    """
    project_id = span_id = trace_id = ""
    dropped: dict[str, str] = {}
    for name, value in _label_items(labels):
        if name == PROJECT_ID_LABEL:
            project_id = value
        elif name == SPAN_ID_LABEL:
            span_id = value
        elif name == TRACE_ID_LABEL:
            trace_id = value
        else:
            dropped[name] = value

    attachments: list[SpanContext | DroppedLabels] = []
    if project_id and span_id and trace_id:
        attachments.append(
            SpanContext(
                SPAN_CONTEXT_FORMAT.format(project=project_id, trace=trace_id, span=span_id)
            )
        )
    else:
        for name, value in (
            (PROJECT_ID_LABEL, project_id),
            (SPAN_ID_LABEL, span_id),
            (TRACE_ID_LABEL, trace_id),
        ):
            if value:
                dropped[name] = value
    if dropped:
        attachments.append(DroppedLabels(dropped))
    return attachments


def build_exemplars(exemplars: Iterable[RefExemplar]) -> list[Exemplar]:
    """Convert exemplars, ordered by increasing value as the API requires."""
    return [
        Exemplar(
            value=ex.v,
            timestamp=get_timestamp(ex.t),
            attachments=build_exemplar_attachments(ex.labels),
        )
        for ex in sorted(exemplars, key=lambda ex: ex.v)
    ]


@dataclass
class HistogramAccumulator:
    """Collects the series of one histogram until it can be built."""

    bounds: list[float] = field(default_factory=list)
    values: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: float = 0.0
    timestamp: int = 0
    reset_timestamp: int = 0
    exemplars: list[RefExemplar] = field(default_factory=list)
    has_sum: bool = False
    has_count: bool = False
    has_inf_bucket: bool = False
    skip: bool = False

    def reset(self) -> None:
        """Return every field to its initial value."""
        self.bounds = []
        self.values = []
        self.sum = 0.0
        self.count = 0.0
        self.timestamp = 0
        self.reset_timestamp = 0
        self.exemplars = []
        self.has_sum = self.has_count = self.has_inf_bucket = False
        self.skip = False

    def input_sample_count(self) -> int:
        """Number of input samples consumed into this histogram."""
        return int(self.has_sum) + int(self.has_count) + len(self.values)

    def complete(self) -> bool:
        """True once sum, count and the +Inf bucket have all been seen."""
        return not self.skip and self.has_sum and self.has_count and self.has_inf_bucket

    def build(self, labels: Labels) -> Distribution | None:
        """Build the distribution value.

        Returns None if there are no finite bucket bounds. Raises
        InvalidHistogramError for negative bucket counts or a zero count with
        non-zero mean or deviation.
        """
        if not self.bounds:
            raise InvalidHistogramError(
                f"histogram without buckets for {_format_labels(labels)}"
            )
        pairs = sorted(zip(self.bounds, self.values), key=lambda p: p[0])
        self.bounds = [b for b, _ in pairs]
        self.values = [v for _, v in pairs]

        # The +Inf bucket is authoritative for the count.
        self.count = float(self.values[-1])
        mean = 0.0
        if not math.isnan(self.sum) and self.count > 0:
            mean = self.sum / self.count

        bounds: list[float] = []
        counts: list[int] = []
        prev_bound = 0.0
        prev_val = 0
        dev = 0.0
        for index, (bound, raw) in enumerate(pairs):
            if math.isinf(bound) and bound > 0:
                bound = prev_bound
            else:
                bounds.append(bound)
            val = raw - prev_val
            if val < 0:
                samples_discarded["negative-bucket-count"] += self.input_sample_count()
                raise InvalidHistogramError(
                    f"invalid bucket with negative count {_format_labels(labels)}: "
                    f"count={self.count:f}, sum={self.sum:f}, dev={dev:f}, index={index}, "
                    f"bucketVal={raw}, bucketPrevVal={prev_val}"
                )
            x = (prev_bound + bound) / 2
            dev += val * (x - mean) * (x - mean)
            prev_bound = bound
            prev_val = raw
            counts.append(val)

        if not bounds:
            samples_discarded["zero-buckets-bounds"] += self.input_sample_count()
            return None
        if self.count == 0 and (mean != 0 or dev != 0):
            samples_discarded["zero-count-violation"] += self.input_sample_count()
            raise InvalidHistogramError(
                f"invalid histogram with 0 count for {_format_labels(labels)}: "
                f"count={self.count:f}, sum={self.sum:f}, dev={dev:f}"
            )
        return Distribution(
            count=int(self.count),
            mean=mean,
            sum_of_squared_deviation=dev,
            bounds=bounds,
            bucket_counts=counts,
            exemplars=build_exemplars(self.exemplars),
        )