"""Tests for the hashed aggregator."""
import threading

import pytest

from devops_exporter.aggregator import HashedAggregator, export_rows
from devops_exporter.cache import MetricsCache
from devops_exporter.errors import AggregationError
from devops_exporter.series import MetricFamily, canonical_labels, label_digest


def test_record_merges_identical_labels():
    agg = HashedAggregator()
    agg.record({"project": "P", "status": "active"})
    agg.record({"status": "active", "project": "P"})

    rows = agg.snapshot()
    assert len(rows) == 1
    assert rows[0].value == 2
    assert rows[0].labels == {"project": "P", "status": "active"}


def test_record_value_overwrites():
    agg = HashedAggregator()
    agg.record_value({"pool_id": "7"}, 3)
    agg.record_value({"pool_id": "7"}, 5)

    rows = agg.snapshot()
    assert len(rows) == 1
    assert rows[0].value == 5.0


def test_distinct_labels_are_separate_rows():
    agg = HashedAggregator()
    agg.record({"project": "A"})
    agg.record({"project": "B"})
    agg.record({"project": "A", "status": ""})

    assert len(agg) == 3


def test_digest_is_order_independent():
    assert label_digest({"a": "1", "b": "2"}) == label_digest({"b": "2", "a": "1"})
    assert label_digest({"a": "1", "b": "2"}) != label_digest({"a": "2", "b": "1"})


def test_separators_in_values_do_not_merge_label_sets():
    agg = HashedAggregator(("creator", "status"))
    agg.record({"creator": "x;status=a", "status": "b"})
    agg.record({"creator": "x", "status": "a;status=b"})

    rows = sorted((r.labels["creator"], r.labels["status"], r.value) for r in agg.snapshot())
    assert rows == [("x", "a;status=b", 1.0), ("x;status=a", "b", 1.0)]
    assert canonical_labels({"a": "1;b=2"}) != canonical_labels({"a": "1", "b": "2"})


def test_missing_values_normalized_to_empty_string():
    agg = HashedAggregator()
    agg.record({"project": "P", "result": None})
    agg.record({"project": "P", "result": ""})

    rows = agg.snapshot()
    assert len(rows) == 1
    assert rows[0].labels["result"] == ""
    assert rows[0].value == 2


def test_snapshot_is_isolated_from_later_changes():
    agg = HashedAggregator()
    agg.record({"project": "P"})
    first = agg.snapshot()

    agg.record({"project": "P"})
    agg.record({"project": "Q"})
    first[0].labels["project"] = "changed"

    assert len(first) == 1
    assert {r.labels["project"] for r in agg.snapshot()} == {"P", "Q"}
    assert sorted(r.value for r in agg.snapshot()) == [1.0, 2.0]


def test_reset_clears_rows():
    agg = HashedAggregator()
    agg.record({"project": "P"})
    agg.reset()
    assert agg.snapshot() == []


def test_undeclared_label_raises():
    agg = HashedAggregator(label_names=("project",))
    with pytest.raises(AggregationError):
        agg.record({"project": "P", "extra": "x"})


def test_concurrent_record_counts_every_call():
    agg = HashedAggregator()

    def worker():
        for _ in range(500):
            agg.record({"project": "P"})

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    rows = agg.snapshot()
    assert len(rows) == 1
    assert rows[0].value == 4000


def test_cache_round_trip_and_expiry():
    now = [1000.0]
    cache = MetricsCache(clock=lambda: now[0])

    agg = HashedAggregator(cache=cache)
    agg.record({"project": "P"})
    agg.record_value({"project": "Q"}, 4)
    expected = sorted((canonical_labels(r.labels), r.value) for r in agg.snapshot())
    agg.store_to_cache("general:info", ttl_s=60)

    restored = HashedAggregator(cache=cache)
    assert restored.load_from_cache("general:info") is True
    assert sorted((canonical_labels(r.labels), r.value) for r in restored.snapshot()) == expected

    now[0] += 61
    expired = HashedAggregator(cache=cache)
    expired.record({"project": "stale"})
    assert expired.load_from_cache("general:info") is False
    assert expired.snapshot() == []


def test_cache_operations_without_cache_are_noops():
    agg = HashedAggregator()
    agg.record({"project": "P"})
    agg.store_to_cache("k", 60)
    assert agg.load_from_cache("k") is False
    assert agg.snapshot() == []


def test_export_gauge_family():
    family = MetricFamily("azure_devops_project_info", "Project", ("project_id", "project", "state"))
    agg = HashedAggregator(family.label_names)
    agg.record_value({"project_id": "1", "project": "P", "state": "wellFormed"}, 1)

    metric = agg.export(family)
    assert metric.type == "gauge"
    assert len(metric.samples) == 1
    sample = metric.samples[0]
    assert sample.labels == {"project_id": "1", "project": "P", "state": "wellFormed"}
    assert sample.value == 1.0


def test_export_counter_family_fills_missing_labels():
    family = MetricFamily("azure_devops_events_total", "PRs", ("project", "status"), kind="counter")
    metric = export_rows(family, HashedAggregator().snapshot())
    assert metric.type == "counter"
    assert metric.samples == []

    agg = HashedAggregator()
    agg.record({"project": "P"})
    metric = export_rows(family, agg.snapshot())
    assert metric.samples[0].labels == {"project": "P", "status": ""}
    assert metric.samples[0].name == "azure_devops_events_total"
