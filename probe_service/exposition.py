"""Render a ``ScrapeResult`` in the Prometheus text exposition format."""
from __future__ import annotations

import logging
from typing import Optional, Set

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.metrics_core import Metric

from .probes import SKIPPED_METRIC, MetricKind, ScrapeResult

logger = logging.getLogger(__name__)

__all__ = ["SKIPPED_METRIC", "ScrapeCollector", "render_text", "resolve_conflicts"]


def _taken_names(registry: CollectorRegistry) -> Set[str]:
    names = set()
    for metric in registry.collect():
        names.add(metric.name)
        if metric.type == "counter":
            names.add(metric.name + "_total")
        elif metric.type == "info":
            names.add(metric.name + "_info")
        names.update(sample.name for sample in metric.samples)
    return names


def resolve_conflicts(result: ScrapeResult, extra_registry: Optional[CollectorRegistry]) -> ScrapeResult:
    """Move samples whose name ``extra_registry`` already exposes into the skipped list."""
    if extra_registry is None:
        return result
    taken = _taken_names(extra_registry)
    kept = []
    skipped = list(result.skipped_producers)
    for sample in result.samples:
        if sample.exposed_name in taken:
            logger.warning("Skipping metric sample %r: name already exposed by HTTP metrics", sample.name)
            skipped.append(sample.name)
        else:
            kept.append(sample)
    if len(kept) == len(result.samples):
        return result
    return ScrapeResult(tuple(kept), tuple(skipped))


class ScrapeCollector:
    """Groups the samples of one scrape into metric families, in scrape order."""

    def __init__(self, result: ScrapeResult):
        self.result = result

    def collect(self):
        families = {}
        for sample in self.result.samples:
            sample_name = sample.exposed_name
            family = families.get(sample_name)
            if family is None:
                # the text format appends "_total" to counter families itself
                family_name = sample_name[: -len("_total")] if sample.kind is MetricKind.COUNTER else sample_name
                family = Metric(family_name, sample.help or sample.name.replace("_", " "), sample.kind.value)
                families[sample_name] = family
            family.add_sample(sample_name, dict(sample.labels), sample.value)
        yield from families.values()

        skipped = Metric(SKIPPED_METRIC, "Metric producers that failed during this scrape", "gauge")
        skipped.add_sample(SKIPPED_METRIC, {}, self.result.skipped)
        yield skipped


def render_text(result: ScrapeResult, extra_registry: Optional[CollectorRegistry] = None) -> bytes:
    """Exposition text for ``result``, followed by ``extra_registry`` if given."""
    result = resolve_conflicts(result, extra_registry)
    registry = CollectorRegistry(auto_describe=False)
    registry.register(ScrapeCollector(result))
    output = generate_latest(registry)
    if extra_registry is not None:
        output += generate_latest(extra_registry)
    return output
