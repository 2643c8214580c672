"""MetricsCollector tests: counters, labels, latency histogram, thread safety."""

import threading

from opsguard.observability.metrics import (
    DECISION_LATENCY,
    DECISIONS_TOTAL,
    RECENT_SAMPLES,
    MetricsCollector,
)


def test_metrics_counter_increment():
    m = MetricsCollector()
    m.increment("request_count")
    m.increment("request_count", 2)
    assert m.export_metrics()["counters"]["request_count"] == 3


def test_metrics_histogram_tracks_latency():
    m = MetricsCollector()
    m.observe_latency("request_latency", 10.5)
    m.observe_latency("request_latency", 20.0)
    h = m.export_metrics()["histograms"]["request_latency"]
    assert h["count"] == 2
    assert h["sum"] == 30.5
    assert h["max"] == 20.0


def test_record_decision_labels_by_result_and_operation():
    m = MetricsCollector()
    m.record_decision("post:publish", "allowed", 1.5)
    m.record_decision("execute:shell", "blocked", 0.5)
    out = m.export_metrics()
    assert out["counters"][DECISIONS_TOTAL] == 2
    labels = out["counters_by_labels"][DECISIONS_TOTAL]
    assert labels[f"{DECISIONS_TOTAL}:result=blocked,operation=execute:shell"] == 1
    assert out["histograms"][f"{DECISION_LATENCY}:result=allowed"]["count"] == 1


def test_metrics_thread_safe_increment():
    m = MetricsCollector()

    def bump():
        for _ in range(1000):
            m.increment("hits")

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert m.export_metrics()["counters"]["hits"] == 4000


def test_reset_clears_everything():
    m = MetricsCollector()
    m.record_decision("post:publish", "allowed", 1.0)
    m.reset()
    assert m.export_metrics() == {"counters": {}, "counters_by_labels": {}, "histograms": {}}


def test_histogram_keeps_bounded_samples_with_lifetime_totals():
    m = MetricsCollector()
    for n in range(RECENT_SAMPLES * 3):
        m.observe_latency("request_latency", float(n % 100))

    h = m.export_metrics()["histograms"]["request_latency"]
    assert h["count"] == RECENT_SAMPLES * 3
    assert h["max"] == 99.0
    assert h["p95"] == 95.0
    assert len(m._histograms["request_latency"].recent) == RECENT_SAMPLES
