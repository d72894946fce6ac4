import pytest
from fastapi.testclient import TestClient

from queueline.main import create_app
from queueline.metrics import MetricsRegistry, PrometheusExporter, register_default_metrics
from queueline.metrics.base import track_duration
from queueline.metrics.definitions import BOOKINGS_TOTAL, FANOUT_SUBSCRIBERS, MUTATION_DURATION_SECONDS


def test_counter_rejects_negative_increments():
    registry = MetricsRegistry()
    counter = registry.counter("things_total")

    counter.inc()
    counter.inc(2)
    with pytest.raises(ValueError):
        counter.inc(-1)

    assert registry.snapshot()["things_total"][()]["value"] == 3.0


def test_labels_are_enforced():
    registry = MetricsRegistry()
    counter = registry.counter("labelled_total", label_names=("service_type",))

    with pytest.raises(ValueError):
        counter.inc()
    with pytest.raises(ValueError):
        counter.inc(labels={"operation": "book"})


def test_registry_refuses_type_changes():
    registry = MetricsRegistry()
    registry.counter("queue_depth")

    with pytest.raises(TypeError):
        registry.gauge("queue_depth")


def test_gauge_and_distribution_snapshots():
    registry = MetricsRegistry()
    gauge = registry.gauge("active", label_names=("tier",))
    gauge.set(4, labels={"tier": "line"})
    gauge.set(2, labels={"tier": "line"})
    distribution = registry.distribution("latency_seconds")
    distribution.observe(0.5)
    distribution.observe(1.5)

    snapshot = registry.snapshot()

    assert snapshot["active"][("line",)]["value"] == 2.0
    assert snapshot["latency_seconds"][()] == {"count": 2.0, "sum": 2.0, "min": 0.5, "max": 1.5}


def test_track_duration_records_even_on_error():
    registry = MetricsRegistry()
    distribution = registry.distribution("work_seconds", label_names=("operation",))

    with pytest.raises(RuntimeError):
        with track_duration(distribution, labels={"operation": "book"}):
            raise RuntimeError("boom")

    assert registry.snapshot()["work_seconds"][("book",)]["count"] == 1.0


def test_prometheus_exporter_renders_families():
    registry = MetricsRegistry()
    register_default_metrics(registry)
    registry.counter(BOOKINGS_TOTAL).inc(labels={"service_type": "Post Office"})
    registry.distribution(MUTATION_DURATION_SECONDS).observe(0.25, labels={"operation": "book"})
    registry.gauge(FANOUT_SUBSCRIBERS).set(3, labels={"tier": "all"})

    payload = PrometheusExporter(registry).build_payload()

    assert "# TYPE queue_bookings_total counter" in payload
    assert 'queue_bookings_total{service_type="Post Office"} 1.0' in payload
    assert 'queue_mutation_duration_seconds_count{operation="book"} 1.0' in payload
    assert 'queue_mutation_duration_seconds_sum{operation="book"} 0.25' in payload
    assert 'queue_fanout_subscribers{tier="all"} 3.0' in payload


def test_metrics_endpoint_exposes_queue_counters():
    with TestClient(create_app()) as client:
        client.post(
            "/queue/book",
            json={"serviceType": "Hospital", "timeSlot": "09:00 AM"},
            headers={"Authorization": "Bearer user-token"},
        )
        response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'queue_bookings_total{service_type="Hospital"}' in response.text
