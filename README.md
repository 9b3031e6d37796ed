# promexport

This package provides building blocks for turning Prometheus samples into
monitoring time series and for queueing them in batches. It has no runtime
dependencies.

## Modules

- `promexport.shard`: `Queue` is a FIFO queue with a fixed capacity. `add`
  returns `False` when the queue is full. `Shard` wraps a `Queue`.
  `Shard.enqueue(hash_, sample)` adds a sample. If the queue is full, the sample
  is dropped and counted in `Shard.dropped`. `Shard.fill(batch)` moves samples
  into a batch until one of these happens:
  - the batch is full;
  - the queue is empty;
  - a series hash repeats within that fill.

  It returns `(taken, remaining)`. If it took any samples, the shard is marked
  pending. A pending shard gives up no more samples until
  `Shard.notify_done()` is called. Setting the pending flag to the value it
  already has raises `RuntimeError`.
- `promexport.lease`: `WrappedLock` wraps a lock backend, which has `create`
  and `update` methods. It remembers the start and end of the last
  `LeaderElectionRecord` that was written successfully, and
  `last_range()` returns them. `Lease` is built with three things:
  - an elector factory;
  - a lock;
  - optional `LeaseOptions` (defaults of 15 s, 10 s and 2 s).

  `Lease.range(now)` returns `None` when this replica is not the leader.
  Otherwise it returns `(start, end)`. If the cached end has passed, the lease
  "fails open": the end is pushed one lease duration past `now`, and
  `failing_open` is set. `Lease.run(stop_event)` runs the elector over and over
  until the event is set. `on_leader_change` registers a callback, which
  `started_leading` and `stopped_leading` invoke.
- `promexport.distribution`: `HistogramAccumulator` collects the bucket, sum
  and count values of one histogram. `build(labels)` returns a `Distribution`,
  which holds:
  - the count, taken from the `+Inf` bucket;
  - the mean;
  - the sum of squared deviation;
  - the finite bounds;
  - the per-bucket counts;
  - the exemplars, sorted by value.

  `build` returns `None` when there are no finite bounds. It raises
  `InvalidHistogramError` in three cases: there are no buckets, a bucket count
  is negative, or the count is zero while the mean or deviation is not.

  Helper functions:
  - `get_timestamp(ms)` converts milliseconds to a `Timestamp`.
  - `build_exemplar_attachments` yields a `SpanContext` when the labels
    `project_id`, `trace_id` and `span_id` are all present. All other labels go
    into `DroppedLabels`.

  Samples and exemplars that are discarded are counted by reason in
  `samples_discarded` and `exemplars_discarded`.
- `promexport.transform`: `SampleBuilder(cache).next(metadata, external_labels,
  samples, exemplars)` converts the next sample, or the next whole histogram,
  into a list of `HashedSeries` holding `TimeSeries` with `Point` values. It
  returns that list together with the unconsumed samples. It handles:
  - gauges;
  - cumulative series, with reset adjustment;
  - histograms.

  Staleness markers are dropped. On an invalid histogram, it raises
  `InvalidHistogramError`; the exception's `remaining` attribute holds the
  unconsumed samples. `is_histogram_series` and `metric_suffix` classify series
  names.
- `promexport.storage`: `Storage(exporter)` keeps the mapping from series id to
  labels for callers that have no storage engine of their own. It hands
  `labels_by_id` to the exporter. `Storage.appender()` returns a
  `StorageAppender`:
  - `append(ref, labels, t, v)` adds a sample and returns 0.
  - `commit()` exports the collected samples as gauges through
    `exporter.export(...)`, then forgets their labels.

## Example

```python
from promexport.distribution import build_exemplar_attachments, get_timestamp

get_timestamp(1500)
# Timestamp(seconds=1, nanos=500000000)

build_exemplar_attachments(
    {"project_id": "1", "trace_id": "2", "span_id": "3", "random": "4"}
)
# [SpanContext(span_name='projects/1/traces/2/spans/3'),
#  DroppedLabels(label={'random': '4'})]
```

```python
from promexport.shard import Shard

shard = Shard(queue_size=4)
shard.enqueue(1, "sample-a")
shard.enqueue(2, "sample-b")
len(shard.queue)  # 2
```

## What this package does not do

The pieces that these building blocks plug into are supplied by the caller.
The package does not provide:

- a client that sends time series to a monitoring API;
- the exporter object that `Storage` drives;
- the series cache that `SampleBuilder` reads from;
- a leader elector or a lock backend for `Lease`;
- command-line flag handling or a process-wide exporter.

It has no command to run.

## Running the tests

```
pip install -e .[test]
pytest
```