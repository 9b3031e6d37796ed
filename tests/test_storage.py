import threading

import pytest

from promexport.storage import Storage, StorageAppender
from promexport.transform import RefSample


class FakeExporter:
    def __init__(self):
        self.labels_func = None
        self.configs = []
        self.runs = []
        self.exports = []

    def set_labels_by_id_func(self, func):
        self.labels_func = func

    def apply_config(self, config):
        self.configs.append(config)

    def run(self, stop_event):
        self.runs.append(stop_event)

    def export(self, metadata, samples, exemplars):
        resolved = [self.labels_func(s.ref) for s in samples]
        self.exports.append((metadata, list(samples), exemplars, resolved))


@pytest.fixture
def exporter():
    return FakeExporter()


def test_storage_registers_labels_lookup(exporter):
    storage = Storage(exporter)
    assert exporter.labels_func == storage.labels_by_id


def test_apply_config_and_run_delegate(exporter):
    storage = Storage(exporter)
    config = {"global": {}}
    stop = threading.Event()
    storage.apply_config(config)
    storage.run(stop)
    assert exporter.configs == [config]
    assert exporter.runs == [stop]


def test_append_returns_zero_ref(exporter):
    appender = Storage(exporter).appender()
    assert isinstance(appender, StorageAppender)
    assert appender.append(5, {"__name__": "up"}, 1000, 1.0) == 0


def test_append_none_labels_raises(exporter):
    appender = Storage(exporter).appender()
    with pytest.raises(ValueError, match="label set"):
        appender.append(0, None, 1000, 1.0)


def test_commit_exports_samples_with_labels(exporter):
    storage = Storage(exporter)
    appender = storage.appender()
    first = {"__name__": "up", "job": "a"}
    second = [("__name__", "up"), ("job", "b")]
    appender.append(0, first, 1000, 1.0)
    appender.append(0, second, 2000, 0.5)
    appender.commit()

    (metadata, samples, exemplars, resolved) = exporter.exports[0]
    assert exemplars is None
    assert [(s.t, s.v) for s in samples] == [(1000, 1.0), (2000, 0.5)]
    assert resolved == [first, dict(second)]
    assert samples[0].ref != samples[1].ref
    assert metadata("up").type == "gauge"
    assert metadata("up").metric == "up"


def test_labels_cleared_after_commit(exporter):
    storage = Storage(exporter)
    appender = storage.appender()
    appender.append(0, {"__name__": "up"}, 1000, 1.0)
    ref = appender.samples[0].ref
    assert storage.labels_by_id(ref) == {"__name__": "up"}
    appender.commit()
    assert storage.labels_by_id(ref) is None


def test_same_labels_give_same_ref_regardless_of_order(exporter):
    storage = Storage(exporter)
    appender = storage.appender()
    appender.append(0, {"a": "1", "b": "2"}, 1000, 1.0)
    appender.append(0, [("b", "2"), ("a", "1")], 2000, 2.0)
    refs = {s.ref for s in appender.samples}
    assert len(refs) == 1
    assert all(isinstance(s, RefSample) for s in appender.samples)


def test_unknown_ref_has_no_labels(exporter):
    storage = Storage(exporter)
    assert storage.labels_by_id(42) is None