from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter

from probe_service.exposition import SKIPPED_METRIC, render_text, resolve_conflicts
from probe_service.probes import MetricKind, MetricsRegistry


def _lines(registry: MetricsRegistry, extra=None) -> list[str]:
    return render_text(registry.scrape(), extra).decode().splitlines()


def test_samples_render_in_registration_order() -> None:
    registry = MetricsRegistry()
    registry.register("producer_a", MetricKind.GAUGE, lambda: 1)
    registry.register("producer_b", MetricKind.GAUGE, lambda: 2)

    lines = _lines(registry)

    assert lines.index("producer_a 1.0") < lines.index("producer_b 2.0")
    assert "# TYPE producer_a gauge" in lines


def test_counter_keeps_total_suffix_once() -> None:
    registry = MetricsRegistry()
    registry.register("jobs_total", MetricKind.COUNTER, lambda: 3, labels={"queue": "default"})
    registry.register("retries", MetricKind.COUNTER, lambda: 1)

    lines = _lines(registry)

    assert "# TYPE jobs_total counter" in lines
    assert 'jobs_total{queue="default"} 3.0' in lines
    assert "retries_total 1.0" in lines
    assert not any("_total_total" in line for line in lines)


def test_labelled_samples_share_one_family() -> None:
    registry = MetricsRegistry()
    registry.register("queue_depth", MetricKind.GAUGE, lambda: 4, labels={"queue": "a"}, help="Jobs waiting")
    registry.register("queue_depth", MetricKind.GAUGE, lambda: 7, labels={"queue": "b"})

    lines = _lines(registry)

    assert lines.count("# TYPE queue_depth gauge") == 1
    assert "# HELP queue_depth Jobs waiting" in lines
    assert lines.index('queue_depth{queue="a"} 4.0') < lines.index('queue_depth{queue="b"} 7.0')


def test_skipped_count_is_exported() -> None:
    registry = MetricsRegistry()
    registry.register("fine", MetricKind.GAUGE, lambda: 1)
    registry.register("broken", MetricKind.GAUGE, lambda: 1 / 0)

    lines = _lines(registry)

    assert "fine 1.0" in lines
    assert f"{SKIPPED_METRIC} 1.0" in lines
    assert not any(line.startswith("broken") for line in lines)


def test_extra_registry_is_appended() -> None:
    extra = CollectorRegistry()
    Counter("http_requests", "HTTP requests", registry=extra).inc()
    registry = MetricsRegistry()
    registry.register("fine", MetricKind.GAUGE, lambda: 1)

    lines = _lines(registry, extra)

    assert lines.index("fine 1.0") < lines.index("http_requests_total 1.0")


def test_sample_colliding_with_extra_registry_is_skipped() -> None:
    extra = CollectorRegistry()
    Counter("http_requests", "HTTP requests", registry=extra).inc()
    registry = MetricsRegistry()
    registry.register("fine", MetricKind.GAUGE, lambda: 1)
    registry.register("http_requests_total", MetricKind.COUNTER, lambda: 99)

    lines = _lines(registry, extra)
    type_names = [line.split()[2] for line in lines if line.startswith("# TYPE")]

    assert len(type_names) == len(set(type_names))
    assert "http_requests_total 99.0" not in lines
    assert "http_requests_total 1.0" in lines
    assert f"{SKIPPED_METRIC} 1.0" in lines


def test_resolve_conflicts_moves_sample_to_skipped() -> None:
    extra = CollectorRegistry()
    Counter("http_requests", "HTTP requests", registry=extra)
    registry = MetricsRegistry()
    registry.register("http_requests", MetricKind.COUNTER, lambda: 2)

    result = resolve_conflicts(registry.scrape(), extra)

    assert result.samples == ()
    assert result.skipped_producers == ("http_requests",)
    assert resolve_conflicts(result, None) is result


def test_counter_registered_with_and_without_suffix_share_a_family() -> None:
    registry = MetricsRegistry()
    registry.register("jobs", MetricKind.COUNTER, lambda: 1, labels={"queue": "a"})
    registry.register("jobs_total", MetricKind.COUNTER, lambda: 2, labels={"queue": "b"})

    lines = _lines(registry)

    assert lines.count("# TYPE jobs_total counter") == 1
    assert 'jobs_total{queue="a"} 1.0' in lines
    assert 'jobs_total{queue="b"} 2.0' in lines
